#!/usr/bin/env python3
"""
OMGKIT Alignment Validation - Graph Validators

Independent, pure checks over a built DependencyGraph. Each validator
returns a list of Violation records (empty means pass), never raises and
never mutates the graph, so one run surfaces every problem at once.

Families:
1. Existence    - every dependsOn target exists as a node of its kind
2. Format       - every identity matches the pattern for its kind
3. Hierarchy    - references only point to strictly lower levels; no cycles
4. Consistency  - usedBy is exactly the transpose of dependsOn; ids unique
5. Optimization - no duplicate references; soft coverage and tidiness checks

Usage:
    from omg_dependency_graph import build_dependency_graph
    from omg_validators import run_all_validators
    report = run_all_validators(build_dependency_graph("plugin"))
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field

from omg_dependency_graph import DependencyGraph
from omg_scanner import ComponentNode, unique_in_order
from omg_validation_common import (
    FIELD_KINDS,
    ID_FORMAT_HINTS,
    KIND_FIELDS,
    KIND_LEVELS,
    Family,
    Kind,
    Level,
    ValidationReport,
    Violation,
    is_known_kind,
    is_valid_format,
)

# =============================================================================
# Configuration
# =============================================================================

# Minimum share of agents that at least one workflow orchestrates
DEFAULT_MIN_AGENT_WORKFLOW_COVERAGE = 0.3

# Minimum share of agents that declare at least one skill
DEFAULT_MIN_AGENT_SKILL_COVERAGE = 0.7

# Skills every plugin is expected to put to use
DEFAULT_CORE_SKILLS = (
    "methodology/writing-plans",
    "methodology/executing-plans",
    "methodology/problem-solving",
)

# How many example ids to list in coverage and existence details
MAX_LISTED_IDS = 10


@dataclass
class ValidatorConfig:
    """Thresholds for the soft quality checks.

    Attributes:
        min_agent_workflow_coverage: Share of agents used by >= 1 workflow
        min_agent_skill_coverage: Share of agents declaring >= 1 skill
        core_skills: Skills that must be used by at least one component
    """

    min_agent_workflow_coverage: float = DEFAULT_MIN_AGENT_WORKFLOW_COVERAGE
    min_agent_skill_coverage: float = DEFAULT_MIN_AGENT_SKILL_COVERAGE
    core_skills: tuple[str, ...] = field(default=DEFAULT_CORE_SKILLS)


def _violation(node: ComponentNode, rule: str, detail: str, family: Family, level: Level = "MAJOR", **extra: str) -> Violation:
    return Violation(
        rule=rule,
        source_id=node.id,
        detail=detail,
        level=level,
        family=family,
        kind=node.kind,
        file=node.source or None,
        **extra,  # type: ignore[arg-type]
    )


def _listing(ids: list[str]) -> str:
    shown = ", ".join(ids[:MAX_LISTED_IDS])
    return shown + (f" (+{len(ids) - MAX_LISTED_IDS} more)" if len(ids) > MAX_LISTED_IDS else "")


# =============================================================================
# Family 1: Existence
# =============================================================================


def _existence_hint(graph: DependencyGraph, kind: Kind, identity: str) -> str:
    """Suggest same-category skills or workflows for a missing grouped id."""
    if kind not in ("skill", "workflow") or "/" not in identity:
        return ""
    prefix = identity.split("/", 1)[0] + "/"
    siblings = sorted(i for i in graph.of_kind(kind) if i.startswith(prefix))
    if not siblings:
        return ""
    return f". Available in this category: {_listing(siblings)}"


def validate_existence(graph: DependencyGraph) -> list[Violation]:
    """Report every dependsOn target that has no node of the expected kind."""
    violations = []
    for node in graph.iter_nodes():
        for ref_kind, ids in node.depends_on.items():
            if not is_known_kind(ref_kind):
                continue
            for ref_id in unique_in_order(ids):
                if graph.exists(ref_kind, ref_id):
                    continue
                violations.append(
                    _violation(
                        node,
                        "existence.missing-target",
                        f"references {ref_kind} '{ref_id}' which does not exist{_existence_hint(graph, ref_kind, ref_id)}",
                        "existence",
                        target=ref_id,
                        target_kind=ref_kind,
                    )
                )
    return violations


# =============================================================================
# Family 2: Format
# =============================================================================


def validate_format(graph: DependencyGraph) -> list[Violation]:
    """Check node ids and every id in dependsOn/usedBy against its kind's pattern."""
    violations = []
    for node in graph.iter_nodes():
        if not is_valid_format(node.id, node.kind):
            violations.append(
                _violation(
                    node,
                    "format.node-id",
                    f"identity does not match {node.kind} format ({ID_FORMAT_HINTS[node.kind]})",
                    "format",
                )
            )
        for ref_kind, ids in node.depends_on.items():
            if not is_known_kind(ref_kind):
                continue
            for ref_id in unique_in_order(ids):
                if not is_valid_format(ref_id, ref_kind):
                    violations.append(
                        _violation(
                            node,
                            "format.reference",
                            f"'{ref_id}' in {KIND_FIELDS[ref_kind]} does not match {ref_kind} format ({ID_FORMAT_HINTS[ref_kind]})",
                            "format",
                            target=ref_id,
                            target_kind=ref_kind,
                        )
                    )
        for ref_kind, ids in node.used_by.items():
            for ref_id in sorted(ids):
                if is_known_kind(ref_kind) and not is_valid_format(ref_id, ref_kind):
                    violations.append(
                        _violation(
                            node,
                            "format.reverse-reference",
                            f"used by {ref_kind} '{ref_id}' whose identity does not match {ref_kind} format",
                            "format",
                            target=ref_id,
                            target_kind=ref_kind,
                        )
                    )
    return violations


# =============================================================================
# Family 3: Hierarchy
# =============================================================================


def _reference_fields(node: ComponentNode) -> list[str]:
    """Reference field names a node carries, from its header and its dependsOn."""
    names = set(node.declared_fields)
    names.update(KIND_FIELDS.get(k, k) for k in node.depends_on)
    return sorted(names, key=lambda name: (KIND_LEVELS.get(FIELD_KINDS.get(name, ""), len(KIND_LEVELS)), name))


def validate_hierarchy(graph: DependencyGraph) -> list[Violation]:
    """Report every reference field pointing at the node's own level or above.

    Presence of the field is enough: an agent carrying `workflows: []` is a
    violation even though it references nothing.
    """
    violations = []
    for node in graph.iter_nodes():
        level = KIND_LEVELS[node.kind]
        for field_name in _reference_fields(node):
            ref_kind = FIELD_KINDS.get(field_name)
            if ref_kind is None:
                violations.append(
                    _violation(node, "hierarchy.unknown-kind", f"references unknown component kind '{field_name}'", "hierarchy")
                )
                continue
            ref_level = KIND_LEVELS[ref_kind]
            if ref_level < level:
                continue
            rule = "hierarchy.peer-reference" if ref_level == level else "hierarchy.upward-reference"
            violations.append(
                _violation(
                    node,
                    rule,
                    f"{node.kind} (level {level}) must not declare '{field_name}' ({ref_kind} is level {ref_level})",
                    "hierarchy",
                    target_kind=ref_kind,
                )
            )
    return violations


def find_cycles(graph: DependencyGraph) -> list[list[tuple[Kind, str]]]:
    """Find reference cycles over resolved dependsOn edges.

    Returns:
        One list per distinct cycle, each ending with its starting node
    """
    # 0 = unvisited, 1 = on the current path, 2 = done
    state: dict[tuple[Kind, str], int] = {}
    seen: set[frozenset[tuple[Kind, str]]] = set()
    cycles: list[list[tuple[Kind, str]]] = []

    def neighbours(key: tuple[Kind, str]) -> list[tuple[Kind, str]]:
        node = graph.get(*key)
        if node is None:
            return []
        return [
            (ref_kind, ref_id)
            for ref_kind, ids in node.depends_on.items()
            if is_known_kind(ref_kind)
            for ref_id in ids
            if graph.exists(ref_kind, ref_id)
        ]

    for start in [(n.kind, n.id) for n in graph.iter_nodes()]:
        if state.get(start):
            continue
        path = [start]
        stack = [iter(neighbours(start))]
        state[start] = 1
        while stack:
            nxt = next(stack[-1], None)
            if nxt is None:
                state[path.pop()] = 2
                stack.pop()
                continue
            if state.get(nxt) == 1:
                cycle = path[path.index(nxt) :] + [nxt]
                members = frozenset(cycle)
                if members not in seen:
                    seen.add(members)
                    cycles.append(cycle)
            elif not state.get(nxt):
                state[nxt] = 1
                path.append(nxt)
                stack.append(iter(neighbours(nxt)))
    return cycles


def validate_no_cycles(graph: DependencyGraph) -> list[Violation]:
    """Report every reference cycle once, attributed to its first node."""
    violations = []
    for cycle in find_cycles(graph):
        first = graph.get(*cycle[0])
        if first is None:
            continue
        chain = " -> ".join(f"{kind}:{identity}" for kind, identity in cycle)
        violations.append(_violation(first, "hierarchy.cycle", f"reference cycle {chain}", "hierarchy", level="CRITICAL"))
    return violations


# =============================================================================
# Family 4: Consistency
# =============================================================================


def validate_consistency(graph: DependencyGraph) -> list[Violation]:
    """Check usedBy against dependsOn in both directions.

    For every B and every A in B.usedBy, A must exist and list B; for every
    resolved edge A -> B, B.usedBy must contain A.
    """
    violations = []
    for node in graph.iter_nodes():
        for ref_kind, ids in node.used_by.items():
            for ref_id in sorted(ids):
                referrer = graph.get(ref_kind, ref_id)
                if referrer is None:
                    violations.append(
                        _violation(
                            node,
                            "consistency.unknown-referrer",
                            f"usedBy lists {ref_kind} '{ref_id}' which does not exist",
                            "consistency",
                            target=ref_id,
                            target_kind=ref_kind,
                        )
                    )
                elif node.id not in referrer.references(node.kind):
                    violations.append(
                        _violation(
                            node,
                            "consistency.stale-reverse-reference",
                            f"usedBy lists {ref_kind} '{ref_id}' but it does not depend on this {node.kind}",
                            "consistency",
                            target=ref_id,
                            target_kind=ref_kind,
                        )
                    )

    for node, ref_kind, ref_id in graph.iter_edges():
        if not is_known_kind(ref_kind):
            continue
        target = graph.get(ref_kind, ref_id)
        if target is not None and node.id not in target.used_by.get(node.kind, set()):
            violations.append(
                _violation(
                    node,
                    "consistency.missing-reverse-reference",
                    f"depends on {ref_kind} '{ref_id}' but is missing from its usedBy",
                    "consistency",
                    target=ref_id,
                    target_kind=ref_kind,
                )
            )
    return violations


def validate_unique_ids(graph: DependencyGraph) -> list[Violation]:
    """Report components whose identity is already taken within their kind."""
    violations = []
    for kind, duplicates in graph.duplicate_ids.items():
        for node in duplicates:
            first = graph.get(kind, node.id)
            where = f" by {first.source}" if first is not None and first.source else ""
            violations.append(_violation(node, "consistency.duplicate-id", f"identity is already defined{where}", "consistency"))
    return violations


# =============================================================================
# Family 5: Optimization / Quality
# =============================================================================


def validate_no_duplicates(graph: DependencyGraph) -> list[Violation]:
    """Report each id repeated within one reference list, once per id."""
    violations = []
    for node in graph.iter_nodes():
        for ref_kind, ids in node.raw_references().items():
            for ref_id, count in Counter(ids).items():
                if count > 1:
                    violations.append(
                        _violation(
                            node,
                            "optimization.duplicate-reference",
                            f"lists '{ref_id}' {count} times in {KIND_FIELDS.get(ref_kind, ref_kind)}",
                            "optimization",
                            level="MINOR",
                            target=ref_id,
                        )
                    )
    return violations


def validate_skill_manifests(graph: DependencyGraph) -> list[Violation]:
    """Warn about skill directories that hold no SKILL.md."""
    return [
        Violation(
            rule="optimization.missing-manifest",
            source_id=skill_id,
            detail="skill directory has no SKILL.md, so it is not a skill",
            level="WARNING",
            family="optimization",
            kind="skill",
            file=f"skills/{skill_id}",
        )
        for skill_id in graph.missing_manifests
    ]


def validate_empty_groups(graph: DependencyGraph) -> list[Violation]:
    """Warn about categories and namespaces with nothing in them."""
    violations = []
    for kind, groups in graph.empty_groups.items():
        label = "namespace" if kind == "command" else "category"
        for group in groups:
            violations.append(
                Violation(
                    rule="optimization.empty-group",
                    source_id=group,
                    detail=f"{kind} {label} is empty",
                    level="WARNING",
                    family="optimization",
                    kind=kind,
                    file=f"{KIND_FIELDS[kind]}/{group}",
                )
            )
    return violations


def validate_frontmatter_consistency(graph: DependencyGraph) -> list[Violation]:
    """Warn about agent names that disagree with their file and missing descriptions."""
    violations = []
    for node in graph.iter_nodes():
        if node.parse_error or node.kind not in ("agent", "workflow"):
            continue
        if node.kind == "agent" and node.name != node.id:
            violations.append(
                _violation(
                    node,
                    "optimization.name-mismatch",
                    f"frontmatter name '{node.name}' does not match the file name",
                    "optimization",
                    level="WARNING",
                )
            )
        if not node.description:
            violations.append(
                _violation(node, "optimization.missing-description", "frontmatter has no description", "optimization", level="WARNING")
            )
    return violations


def coverage_ratio(graph: DependencyGraph, kind: Kind, referencing_kind: Kind) -> float:
    """Fraction of `kind` nodes used by at least one `referencing_kind` node.

    A kind with no nodes is fully covered.
    """
    nodes = graph.of_kind(kind)
    if not nodes:
        return 1.0
    covered = sum(1 for n in nodes.values() if n.used_by.get(referencing_kind))
    return covered / len(nodes)


def _coverage_violation(rule: str, source_id: str, kind: Kind, detail: str) -> Violation:
    return Violation(rule=rule, source_id=source_id, detail=detail, level="WARNING", family="optimization", kind=kind)


def validate_coverage(graph: DependencyGraph, config: ValidatorConfig | None = None) -> list[Violation]:
    """Soft, threshold-based usage checks, reported as warnings."""
    config = config or ValidatorConfig()
    violations = []
    agents = graph.of_kind("agent")

    if agents:
        ratio = coverage_ratio(graph, "agent", "workflow")
        if ratio < config.min_agent_workflow_coverage:
            unused = sorted(a for a, n in agents.items() if not n.used_by.get("workflow"))
            violations.append(
                _coverage_violation(
                    "optimization.agent-workflow-coverage",
                    "agents",
                    "agent",
                    f"only {ratio:.1%} of agents are used by a workflow (minimum {config.min_agent_workflow_coverage:.0%}). "
                    f"Unused: {_listing(unused)}",
                )
            )

        without_skills = sorted(a for a, n in agents.items() if not n.references("skill"))
        ratio = 1 - len(without_skills) / len(agents)
        if ratio < config.min_agent_skill_coverage:
            violations.append(
                _coverage_violation(
                    "optimization.agent-skill-coverage",
                    "agents",
                    "agent",
                    f"only {ratio:.1%} of agents declare skills (minimum {config.min_agent_skill_coverage:.0%}). "
                    f"Agents without skills: {_listing(without_skills)}",
                )
            )

    for skill_id in config.core_skills:
        skill = graph.get("skill", skill_id)
        if skill is not None and not any(skill.used_by.values()):
            violations.append(
                _coverage_violation("optimization.core-skill-unused", skill_id, "skill", "core skill is not used by any component")
            )
    return violations


# =============================================================================
# Running Every Family
# =============================================================================

Validator = Callable[[DependencyGraph], list[Violation]]

VALIDATORS: list[tuple[Family, Validator]] = [
    ("existence", validate_existence),
    ("format", validate_format),
    ("hierarchy", validate_hierarchy),
    ("hierarchy", validate_no_cycles),
    ("consistency", validate_consistency),
    ("consistency", validate_unique_ids),
    ("optimization", validate_no_duplicates),
    ("optimization", validate_skill_manifests),
    ("optimization", validate_empty_groups),
    ("optimization", validate_frontmatter_consistency),
]


def run_validator_families(graph: DependencyGraph, config: ValidatorConfig | None = None) -> dict[Family, list[Violation]]:
    """Run every validator and group the violations by family."""
    families: dict[Family, list[Violation]] = {}
    for family, validator in VALIDATORS:
        families.setdefault(family, []).extend(validator(graph))
    families["optimization"].extend(validate_coverage(graph, config))
    return families


def run_all_validators(graph: DependencyGraph, config: ValidatorConfig | None = None) -> ValidationReport:
    """Run every validator family over the graph and collect all results.

    Args:
        graph: Built dependency graph
        config: Coverage thresholds (defaults when omitted)

    Returns:
        ValidationReport holding every violation, INFO lines for the
        component counts and a NIT for each unusable frontmatter block
    """
    report = ValidationReport()
    for kind, count in graph.stats.counts.items():
        report.info(f"Found {count} {KIND_FIELDS[kind]}")
    for node in graph.iter_nodes():
        if node.parse_error:
            report.add("NIT", f"{node.kind} '{node.id}' has no usable frontmatter: {node.parse_error}", node.source or None)

    for family, violations in run_validator_families(graph, config).items():
        report.extend(violations)
        if not violations:
            report.passed(f"{family} checks passed")
    return report
