#!/usr/bin/env python3
"""
OMGKIT Alignment Validation - Main Validator

Builds the component dependency graph of an OMGKIT plugin and runs every
validator family over it:
1. Existence    - referenced components exist
2. Format       - identities match their kind's format
3. Hierarchy    - references only point down the mcp < command < skill < agent < workflow order
4. Consistency  - usedBy mirrors dependsOn; identities are unique
5. Optimization - no duplicate references; coverage thresholds (warnings)
6. Registry     - registry.yaml agrees with the files (when present)

Usage:
    uv run python scripts/omg_validate.py /path/to/plugin
    uv run python scripts/omg_validate.py /path/to/plugin --verbose
    uv run python scripts/omg_validate.py /path/to/plugin --json
    uv run python scripts/omg_validate.py /path/to/plugin --tree workflow:development/feature

Exit codes:
    0 - All checks passed
    1 - CRITICAL issues found (or configuration error)
    2 - MAJOR issues found
    3 - MINOR issues found
    4 - NIT issues found (--strict only)
"""

from __future__ import annotations

import argparse
import sys

from omg_dependency_graph import DependencyGraph, build_dependency_graph, format_dependency_tree, format_stats, parse_tree_target
from omg_registry_sync import check_registry
from omg_validation_common import (
    COLORS,
    EXIT_CRITICAL,
    ConfigurationError,
    PluginLayout,
    ValidationReport,
    print_report_summary,
    print_results_by_level,
    resolve_plugin_root,
)
from omg_validators import (
    DEFAULT_MIN_AGENT_SKILL_COVERAGE,
    DEFAULT_MIN_AGENT_WORKFLOW_COVERAGE,
    ValidatorConfig,
    run_all_validators,
)


def validate_plugin(
    plugin: PluginLayout,
    config: ValidatorConfig | None = None,
    check_registry_sync: bool = True,
) -> tuple[ValidationReport, DependencyGraph | None]:
    """Build the graph for a plugin and validate it.

    A configuration error (missing component root, unreadable registry)
    becomes a single CRITICAL result instead of an exception.

    Args:
        plugin: Plugin layout to validate
        config: Coverage thresholds
        check_registry_sync: Also compare registry.yaml with the files

    Returns:
        (report, graph); graph is None when it could not be built
    """
    report = ValidationReport()
    if not plugin.root.is_dir():
        report.critical(f"Plugin directory does not exist: {plugin.root}")
        return report, None

    try:
        graph = build_dependency_graph(plugin)
    except ConfigurationError as e:
        report.critical(f"Configuration error: {e}")
        return report, None

    report.merge(run_all_validators(graph, config))

    if check_registry_sync:
        try:
            health = check_registry(graph, plugin.registry)
        except ConfigurationError as e:
            report.critical(f"Configuration error: {e}")
        else:
            report.extend(health.violations)
            if not health.violations:
                report.passed("registry checks passed", plugin.registry.name)
    return report, graph


def _ratio(value: str) -> float:
    """argparse type for a coverage threshold between 0 and 1."""
    try:
        ratio = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a number: '{value}'") from None
    if not 0.0 <= ratio <= 1.0:
        raise argparse.ArgumentTypeError(f"must be between 0 and 1, got {ratio}")
    return ratio


def main() -> int:
    """CLI entry point for OMGKIT alignment validation.

    Returns:
        Exit code (0=OK, 1=CRITICAL, 2=MAJOR, 3=MINOR, 4=NIT in --strict)
    """
    parser = argparse.ArgumentParser(
        description="Validate referential integrity of an OMGKIT plugin's agents, commands, skills and workflows",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    uv run python scripts/omg_validate.py plugin/
    uv run python scripts/omg_validate.py plugin/ --verbose --stats
    uv run python scripts/omg_validate.py plugin/ --json
    uv run python scripts/omg_validate.py --tree agent:planner

Exit codes:
    0 - All checks passed
    1 - CRITICAL issues found
    2 - MAJOR issues found
    3 - MINOR issues found
    4 - NIT issues found (--strict only)
        """,
    )
    parser.add_argument("plugin_path", nargs="?", default=None, help="Plugin directory (default: $OMGKIT_PLUGIN_DIR or ./plugin)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show all results including PASSED and INFO")
    parser.add_argument("--json", "-j", action="store_true", help="Output results as JSON")
    parser.add_argument("--strict", action="store_true", help="NIT issues also fail validation")
    parser.add_argument("--stats", action="store_true", help="Print dependency graph statistics")
    parser.add_argument("--tree", type=parse_tree_target, metavar="KIND:ID", help="Print the dependency tree of one component")
    parser.add_argument(
        "--no-registry", action="store_true", help="Skip registry sync checks (registry.yaml is still read for MCP servers)"
    )
    parser.add_argument(
        "--min-agent-workflow-coverage",
        type=_ratio,
        default=DEFAULT_MIN_AGENT_WORKFLOW_COVERAGE,
        metavar="RATIO",
        help=f"Share of agents that workflows must use (default {DEFAULT_MIN_AGENT_WORKFLOW_COVERAGE})",
    )
    parser.add_argument(
        "--min-agent-skill-coverage",
        type=_ratio,
        default=DEFAULT_MIN_AGENT_SKILL_COVERAGE,
        metavar="RATIO",
        help=f"Share of agents that must declare skills (default {DEFAULT_MIN_AGENT_SKILL_COVERAGE})",
    )
    args = parser.parse_args()

    layout = PluginLayout.from_root(resolve_plugin_root(args.plugin_path))
    config = ValidatorConfig(
        min_agent_workflow_coverage=args.min_agent_workflow_coverage,
        min_agent_skill_coverage=args.min_agent_skill_coverage,
    )
    report, graph = validate_plugin(layout, config, check_registry_sync=not args.no_registry)

    if args.json:
        print(report.to_json())
    else:
        if graph is not None and args.stats:
            print(format_stats(graph.stats))
        print_report_summary(report, "OMGKIT Alignment Validation Report")
        print_results_by_level(report, verbose=args.verbose)

    if args.tree and graph is not None:
        kind, identity = args.tree
        tree = format_dependency_tree(graph, kind, identity)
        if tree is None:
            print(f"{COLORS['CRITICAL']}No {kind} named '{identity}'{COLORS['RESET']}", file=sys.stderr)
            return EXIT_CRITICAL
        # Keep stdout pure JSON when --json is combined with --tree
        print(tree, file=sys.stderr if args.json else sys.stdout)

    if args.strict:
        return report.exit_code_strict()
    return report.exit_code


if __name__ == "__main__":
    sys.exit(main())
