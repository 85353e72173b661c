#!/usr/bin/env python3
"""
OMGKIT Alignment Validation - Registry Sync Validator

Validates that registry.yaml agrees with the component files:
1. Every registry agent/workflow has a file, and its skill/command/agent
   lists match the file's frontmatter; registered workflows name agents
2. Every agent on disk is registered
3. Every skill category and command namespace on disk is registered
4. The alignment principle declares the 5-level hierarchy and is enforced
5. Command namespaces and skill categories do not reuse agent names

Usage:
    uv run python scripts/omg_registry_sync.py /path/to/plugin
    uv run python scripts/omg_registry_sync.py /path/to/plugin --json

Exit codes:
    0 - Registry aligned with the file tree
    1 - Drift detected (or configuration error)
"""

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from omg_dependency_graph import DependencyGraph, build_dependency_graph
from omg_scanner import coerce_reference_list, load_yaml_mapping
from omg_validation_common import (
    EXIT_CRITICAL,
    EXIT_OK,
    KIND_FIELDS,
    KINDS,
    ConfigurationError,
    Kind,
    Level,
    PluginLayout,
    Violation,
    resolve_plugin_root,
)

ALIGNED = "ALIGNED"
DRIFT_DETECTED = "DRIFT_DETECTED"

# Registered workflows must cover at least this share of workflow files
MIN_REGISTERED_WORKFLOW_SHARE = 0.4

# Issues shown per component kind in the text report
MAX_ISSUES_PER_KIND = 5


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class ComponentCount:
    """Registered vs. actual number of components of one kind."""

    registry: int
    actual: int
    match: bool | None = None

    def to_dict(self) -> dict[str, object]:
        return {"registry": self.registry, "actual": self.actual, "match": self.match}


@dataclass
class RegistryHealth:
    """Outcome of comparing registry.yaml with the dependency graph.

    Attributes:
        violations: Every drift found, in check order
        counts: Registered vs. actual counts per kind
        registry_file: Registry path shown in results
    """

    violations: list[Violation] = field(default_factory=list)
    counts: dict[str, ComponentCount] = field(default_factory=dict)
    registry_file: str | None = None

    @property
    def total_issues(self) -> int:
        """Number of blocking drift issues (warnings excluded)."""
        return sum(1 for v in self.violations if v.level in ("CRITICAL", "MAJOR", "MINOR"))

    @property
    def status(self) -> str:
        return ALIGNED if self.total_issues == 0 else DRIFT_DETECTED

    def issues_for(self, kind: Kind | None) -> list[Violation]:
        """Violations about one component kind; None selects registry-wide ones."""
        return [v for v in self.violations if v.kind == kind]

    def to_dict(self) -> dict[str, object]:
        """Convert to dictionary for JSON serialization."""
        return {
            "status": self.status,
            "totalIssues": self.total_issues,
            "componentCounts": {k: c.to_dict() for k, c in self.counts.items()},
            "violations": [v.to_dict() for v in self.violations],
        }


# =============================================================================
# Helper Functions
# =============================================================================


def load_registry(registry_path: str | Path) -> dict[str, Any]:
    """Load registry.yaml as a mapping.

    Raises:
        ConfigurationError: If the file is missing, unreadable or not a mapping
    """
    path = Path(registry_path)
    if not path.is_file():
        raise ConfigurationError(f"Registry file does not exist: {path}")
    return load_yaml_mapping(path)


def compare_lists(actual: list[str], expected: list[str]) -> tuple[list[str], list[str]]:
    """Set-compare a file's references with the registry's.

    Returns:
        (missing, extra): registered but not declared, declared but not registered
    """
    actual_set = set(actual)
    expected_set = set(expected)
    missing = [x for x in dict.fromkeys(expected) if x not in actual_set]
    extra = [x for x in dict.fromkeys(actual) if x not in expected_set]
    return missing, extra


def _registry_violation(
    rule: str,
    source_id: str,
    detail: str,
    kind: Kind | None,
    level: Level = "MINOR",
    file: str | None = None,
) -> Violation:
    return Violation(rule=rule, source_id=source_id, detail=detail, level=level, family="registry", kind=kind, file=file)


def _mapping(registry: dict[str, Any], key: str) -> dict[str, Any]:
    value = registry.get(key)
    return value if isinstance(value, dict) else {}


def _names(registry: dict[str, Any], key: str) -> set[str]:
    return set(coerce_reference_list(registry.get(key)))


# =============================================================================
# Sync Checks
# =============================================================================


def _check_entries(
    graph: DependencyGraph,
    kind: Kind,
    entries: dict[str, Any],
    compared: tuple[Kind, ...],
    registry_file: str | None,
) -> list[Violation]:
    """Compare registry entries of one kind with the components on disk."""
    violations = []
    for identity, data in entries.items():
        identity = str(identity)
        node = graph.get(kind, identity)
        if node is None:
            violations.append(
                _registry_violation(
                    "registry.orphaned", identity, f"{kind} in registry but file not found", kind, "MAJOR", registry_file
                )
            )
            continue

        data = data if isinstance(data, dict) else {}
        for ref_kind in compared:
            field_name = KIND_FIELDS[ref_kind]
            missing, extra = compare_lists(node.references(ref_kind), coerce_reference_list(data.get(field_name)))
            if not missing and not extra:
                continue
            parts = []
            if missing:
                parts.append(f"missing from file: {', '.join(missing)}")
            if extra:
                parts.append(f"missing from registry: {', '.join(extra)}")
            violations.append(
                _registry_violation(
                    f"registry.{ref_kind}-mismatch",
                    identity,
                    f"{field_name.capitalize()} mismatch ({'; '.join(parts)})",
                    kind,
                    file=node.source or None,
                )
            )
    return violations


def validate_registry_sync(graph: DependencyGraph, registry: dict[str, Any], registry_file: str | None = None) -> RegistryHealth:
    """Compare registry.yaml with the dependency graph.

    Args:
        graph: Built dependency graph
        registry: Parsed registry.yaml
        registry_file: Registry path shown in results

    Returns:
        RegistryHealth with every drift found and the component count comparison
    """
    health = RegistryHealth(registry_file=registry_file)
    registry_agents = _mapping(registry, "agents")
    registry_workflows = _mapping(registry, "workflows")

    health.violations += _check_entries(graph, "agent", registry_agents, ("skill", "command"), registry_file)

    for identity, node in graph.of_kind("agent").items():
        if identity not in registry_agents:
            health.violations.append(
                _registry_violation("registry.unregistered", identity, "agent exists but not in registry", "agent", file=node.source or None)
            )

    health.violations += _check_entries(graph, "workflow", registry_workflows, ("agent", "skill", "command"), registry_file)

    for identity, data in registry_workflows.items():
        if isinstance(data, dict) and data.get("agents") == []:
            health.violations.append(
                _registry_violation(
                    "registry.workflow-without-agents",
                    str(identity),
                    "registered workflow lists no agents",
                    "workflow",
                    "WARNING",
                    registry_file,
                )
            )

    groups: list[tuple[Kind, str, str]] = [("skill", "skill_categories", "category"), ("command", "command_namespaces", "namespace")]
    for kind, key, label in groups:
        registered = _names(registry, key)
        on_disk = sorted({n.group for n in graph.of_kind(kind).values() if n.group})
        for group in on_disk:
            if group not in registered:
                health.violations.append(
                    _registry_violation(
                        f"registry.unregistered-{label}", group, f"{kind} {label} exists but not in {key}", kind, file=registry_file
                    )
                )

    stats = graph.stats
    health.counts = {
        "agents": ComponentCount(len(registry_agents), stats.counts.get("agent", 0)),
        "skills": ComponentCount(len(_names(registry, "skill_categories")), stats.counts.get("skill", 0)),
        "commands": ComponentCount(len(_names(registry, "command_namespaces")), stats.counts.get("command", 0)),
        "workflows": ComponentCount(len(registry_workflows), stats.counts.get("workflow", 0)),
        "mcps": ComponentCount(len(_mapping(registry, "mcp_servers")), stats.counts.get("mcp", 0)),
    }
    health.counts["agents"].match = health.counts["agents"].registry == health.counts["agents"].actual
    workflows = health.counts["workflows"]
    workflows.match = workflows.registry >= workflows.actual * MIN_REGISTERED_WORKFLOW_SHARE
    if not workflows.match:
        health.violations.append(
            _registry_violation(
                "registry.workflow-coverage",
                "workflows",
                f"only {workflows.registry} of {workflows.actual} workflows are registered "
                f"(minimum {MIN_REGISTERED_WORKFLOW_SHARE:.0%})",
                "workflow",
                "WARNING",
                registry_file,
            )
        )
    return health


def validate_alignment_principle(registry: dict[str, Any], registry_file: str | None = None) -> list[Violation]:
    """Check the registry declares the enforced 5-level hierarchy mcp..workflow."""
    principle = registry.get("alignment_principle")
    if not isinstance(principle, dict):
        return [_registry_violation("registry.alignment-principle", "alignment_principle", "alignment_principle is not defined", None, "MAJOR", registry_file)]

    violations = []
    hierarchy = principle.get("hierarchy")
    entries = hierarchy if isinstance(hierarchy, list) else []
    levels = [e.get("level") for e in entries if isinstance(e, dict)]
    types = [e.get("type") for e in entries if isinstance(e, dict)]
    if levels != list(range(len(KINDS))) or types != list(KINDS):
        violations.append(
            _registry_violation(
                "registry.alignment-principle",
                "alignment_principle",
                f"hierarchy must list levels 0-4 as {', '.join(KINDS)}; found types {types}",
                None,
                "MAJOR",
                registry_file,
            )
        )
    if principle.get("enforced") is not True:
        violations.append(
            _registry_violation("registry.alignment-principle", "alignment_principle", "enforced must be true", None, "MAJOR", registry_file)
        )
    return violations


def validate_disambiguation(graph: DependencyGraph) -> list[Violation]:
    """Report command namespaces and skill categories that reuse agent names."""
    agents = graph.of_kind("agent")
    violations = []
    for namespace in sorted({n.group for n in graph.of_kind("command").values() if n.group}):
        if namespace in agents:
            violations.append(
                _registry_violation("registry.namespace-agent-overlap", namespace, "command namespace is also an agent name", "command")
            )
    for category in sorted({n.group for n in graph.of_kind("skill").values() if n.group}):
        if category in agents:
            violations.append(
                _registry_violation(
                    "registry.category-agent-overlap", category, "skill category is also an agent name", "skill", "WARNING"
                )
            )
    return violations


# =============================================================================
# Report Formatting
# =============================================================================


def format_health_report(health: RegistryHealth, graph: DependencyGraph) -> str:
    """Render the alignment health report as text."""
    aligned = health.status == ALIGNED
    counts = health.counts
    stats = graph.stats

    def mark(ok: bool | None) -> str:
        return "✓" if ok or ok is None else "⚠"

    lines = [
        "OMGKIT Alignment Health Report",
        "==============================",
        "",
        f"Registry Sync Status: {'✓ ALIGNED' if aligned else '⚠ DRIFT DETECTED'}",
        "━" * 50,
        "",
        "Component Counts:",
        f"   Agents:    {counts['agents'].registry} registered, {counts['agents'].actual} actual    {mark(counts['agents'].match)}",
        f"   Skills:    {counts['skills'].actual} actual",
        f"   Commands:  {counts['commands'].actual} actual",
        f"   Workflows: {counts['workflows'].registry} registered, {counts['workflows'].actual} actual    {mark(counts['workflows'].match)}",
        f"   MCPs:      {counts['mcps'].actual} registered",
        "",
        "Dependency Health:",
        f"   Agent→Skill refs:    {stats.edges_between('agent', 'skill')}",
        f"   Agent→Command refs:  {stats.edges_between('agent', 'command')}",
        f"   Workflow→Agent refs: {stats.total_agent_refs}",
        "",
    ]

    if health.violations:
        lines.append("Issues Found:")
        for kind in (None, *KINDS):
            issues = health.issues_for(kind)
            if not issues:
                continue
            lines.append(f"\n   {KIND_FIELDS[kind].capitalize() if kind else 'Registry'}:")
            for issue in issues[:MAX_ISSUES_PER_KIND]:
                lines.append(f"   - {issue.source_id}: {issue.detail}")
            if len(issues) > MAX_ISSUES_PER_KIND:
                lines.append(f"   ... and {len(issues) - MAX_ISSUES_PER_KIND} more")

    lines.append("")
    lines.append(f"Overall: {'✓ HEALTHY' if aligned else '⚠ NEEDS ATTENTION'}")
    return "\n".join(lines)


def check_registry(graph: DependencyGraph, registry_path: Path) -> RegistryHealth:
    """Load the registry and run every registry check against the graph.

    Raises:
        ConfigurationError: If the registry cannot be loaded
    """
    registry = load_registry(registry_path)
    registry_file = registry_path.name
    health = validate_registry_sync(graph, registry, registry_file)
    health.violations += validate_alignment_principle(registry, registry_file)
    health.violations += validate_disambiguation(graph)
    return health


# =============================================================================
# CLI Entry Point
# =============================================================================


def main() -> int:
    """CLI entry point for registry sync validation.

    Returns:
        Exit code (0=ALIGNED, 1=drift detected or configuration error)
    """
    parser = argparse.ArgumentParser(description="Validate that registry.yaml matches the OMGKIT component files")
    parser.add_argument("plugin_path", nargs="?", default=None, help="Plugin directory (default: $OMGKIT_PLUGIN_DIR or ./plugin)")
    parser.add_argument("--json", "-j", action="store_true", help="Output results as JSON")
    args = parser.parse_args()

    layout = PluginLayout.from_root(resolve_plugin_root(args.plugin_path))
    try:
        graph = build_dependency_graph(layout)
        health = check_registry(graph, layout.registry)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_CRITICAL

    if args.json:
        print(json.dumps(health.to_dict(), indent=2))
    else:
        print(format_health_report(health, graph))
    return EXIT_OK if health.status == ALIGNED else EXIT_CRITICAL


if __name__ == "__main__":
    sys.exit(main())
