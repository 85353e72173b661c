#!/usr/bin/env python3
"""
OMGKIT Alignment Validation - Dependency Graph Builder

Builds the bi-directional dependency graph of a plugin from its component
files:
- dependsOn: what a component uses (forward refs, exactly as declared)
- usedBy: what uses a component (reverse refs, derived by inversion only)

Unresolved forward references are kept in dependsOn; reporting them is the
job of the existence validator, not of graph construction.

Usage:
    uv run python scripts/omg_dependency_graph.py /path/to/plugin
    uv run python scripts/omg_dependency_graph.py /path/to/plugin --json
    uv run python scripts/omg_dependency_graph.py /path/to/plugin --tree agent:planner

Exit codes:
    0 - Graph built
    1 - Configuration error (missing component root, unreadable registry)
"""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from omg_scanner import ComponentNode, find_empty_groups, find_missing_manifests, scan_kind
from omg_validation_common import (
    EXIT_CRITICAL,
    EXIT_OK,
    KIND_FIELDS,
    KINDS,
    ConfigurationError,
    Kind,
    PluginLayout,
    is_known_kind,
    resolve_plugin_root,
)

# Edge = (source node, referenced kind, referenced id)
Edge = tuple[ComponentNode, Kind, str]


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class GraphStats:
    """Aggregate counts for a built graph.

    Attributes:
        counts: Number of nodes per kind
        edge_counts: Number of forward edges per (source kind, target kind)
        unresolved_edges: Forward edges whose target does not exist
        modes: Number of mode files (counted, not part of the graph)
    """

    counts: dict[Kind, int] = field(default_factory=dict)
    edge_counts: dict[tuple[Kind, Kind], int] = field(default_factory=dict)
    unresolved_edges: int = 0
    modes: int = 0

    def edges_between(self, source: Kind, target: Kind) -> int:
        """Number of references from components of `source` kind to `target` kind."""
        return self.edge_counts.get((source, target), 0)

    def edges_to(self, target: Kind) -> int:
        """Number of references to `target` kind from any kind."""
        return sum(n for (_, t), n in self.edge_counts.items() if t == target)

    @property
    def total_skill_refs(self) -> int:
        return self.edges_between("agent", "skill") + self.edges_between("workflow", "skill")

    @property
    def total_command_refs(self) -> int:
        return self.edges_between("agent", "command") + self.edges_between("workflow", "command")

    @property
    def total_agent_refs(self) -> int:
        return self.edges_between("workflow", "agent")

    def to_dict(self) -> dict[str, object]:
        """Convert to dictionary for JSON serialization."""
        return {
            "counts": {KIND_FIELDS[k]: n for k, n in self.counts.items()},
            "edges": {f"{s}->{t}": n for (s, t), n in sorted(self.edge_counts.items())},
            "unresolvedEdges": self.unresolved_edges,
            "modes": self.modes,
            "totalSkillRefs": self.total_skill_refs,
            "totalCommandRefs": self.total_command_refs,
            "totalAgentRefs": self.total_agent_refs,
        }


@dataclass
class DependencyGraph:
    """All components of a plugin, keyed by kind then identity.

    Built fresh per validation run and passed explicitly to validators.

    Attributes:
        nodes: Kind -> identity -> node
        stats: Aggregate counts
        duplicate_ids: Kind -> nodes whose identity was already taken
        missing_manifests: Skill directories (category/skill) without SKILL.md
        empty_groups: Kind -> category or namespace directories with no entries
        layout: Plugin layout the graph was scanned from, if any
    """

    nodes: dict[Kind, dict[str, ComponentNode]] = field(default_factory=dict)
    stats: GraphStats = field(default_factory=GraphStats)
    duplicate_ids: dict[Kind, list[ComponentNode]] = field(default_factory=dict)
    missing_manifests: list[str] = field(default_factory=list)
    empty_groups: dict[Kind, list[str]] = field(default_factory=dict)
    layout: PluginLayout | None = None

    def of_kind(self, kind: Kind) -> dict[str, ComponentNode]:
        """Identity -> node mapping for one kind (empty when none)."""
        return self.nodes.get(kind, {})

    def get(self, kind: Kind, identity: str) -> ComponentNode | None:
        """Look up a node, or None when no component of that kind has that identity."""
        return self.of_kind(kind).get(identity)

    def exists(self, kind: Kind, identity: str) -> bool:
        """Check whether a component of `kind` with `identity` exists."""
        return identity in self.of_kind(kind)

    def iter_nodes(self, kind: Kind | None = None) -> Iterator[ComponentNode]:
        """Iterate nodes of one kind, or of every kind lowest level first."""
        kinds = (kind,) if kind else KINDS
        for k in kinds:
            yield from self.of_kind(k).values()

    def iter_edges(self) -> Iterator[Edge]:
        """Iterate every forward edge, resolved or not."""
        for node in self.iter_nodes():
            for ref_kind, ids in node.depends_on.items():
                for ref_id in ids:
                    yield node, ref_kind, ref_id

    def to_dict(self) -> dict[str, object]:
        """Convert to dictionary for JSON serialization."""
        result: dict[str, object] = {
            KIND_FIELDS[k]: {identity: node.to_dict() for identity, node in self.of_kind(k).items()} for k in KINDS
        }
        result["stats"] = self.stats.to_dict()
        return result


# =============================================================================
# Graph Assembly
# =============================================================================


def invert_references(nodes: Iterable[ComponentNode], index: Mapping[Kind, Mapping[str, ComponentNode]]) -> dict[tuple[Kind, str], dict[Kind, set[str]]]:
    """Fold every resolvable forward edge into a reverse-reference index.

    Args:
        nodes: Every node of the graph
        index: Kind -> identity -> node, used to resolve targets

    Returns:
        (target kind, target id) -> referencing kind -> referencing ids
    """
    reverse: dict[tuple[Kind, str], dict[Kind, set[str]]] = {}
    for node in nodes:
        for ref_kind, ids in node.depends_on.items():
            targets = index.get(ref_kind, {})
            for ref_id in ids:
                if ref_id in targets:
                    reverse.setdefault((ref_kind, ref_id), {}).setdefault(node.kind, set()).add(node.id)
    return reverse


def compute_stats(nodes: Mapping[Kind, Mapping[str, ComponentNode]], modes: int = 0) -> GraphStats:
    """Count nodes per kind and forward edges per kind pair."""
    stats = GraphStats(counts={k: len(nodes.get(k, {})) for k in KINDS}, modes=modes)
    for kind_nodes in nodes.values():
        for node in kind_nodes.values():
            for ref_kind, ids in node.depends_on.items():
                key = (node.kind, ref_kind)
                stats.edge_counts[key] = stats.edge_counts.get(key, 0) + len(ids)
                stats.unresolved_edges += sum(1 for i in ids if i not in nodes.get(ref_kind, {}))
    return stats


def assemble_graph(
    nodes_by_kind: Mapping[Kind, Iterable[ComponentNode]],
    layout: PluginLayout | None = None,
    modes: int = 0,
) -> DependencyGraph:
    """Index scanned nodes by identity and derive every usedBy set.

    Any usedBy content already on the nodes is discarded; reverse references
    come only from inverting dependsOn. The first node seen for an identity
    wins and later ones are recorded in duplicate_ids.
    """
    graph = DependencyGraph(layout=layout)
    for kind in KINDS:
        kind_nodes: dict[str, ComponentNode] = {}
        for node in nodes_by_kind.get(kind, []):
            node.used_by = {}
            if node.id in kind_nodes:
                graph.duplicate_ids.setdefault(kind, []).append(node)
                continue
            kind_nodes[node.id] = node
        graph.nodes[kind] = kind_nodes

    for (kind, identity), referrers in invert_references(graph.iter_nodes(), graph.nodes).items():
        graph.nodes[kind][identity].used_by = referrers

    graph.stats = compute_stats(graph.nodes, modes)
    return graph


def count_modes(modes_dir: Path) -> int:
    """Count mode files; a plugin without a modes/ directory has none."""
    if not modes_dir.is_dir():
        return 0
    return sum(1 for p in modes_dir.iterdir() if p.is_file() and p.suffix == ".md")


def build_dependency_graph(plugin: PluginLayout | str | Path) -> DependencyGraph:
    """Scan all five component kinds and build the cross-referenced graph.

    Args:
        plugin: Plugin layout, or the plugin directory to derive it from

    Returns:
        DependencyGraph with dependsOn, usedBy and statistics

    Raises:
        ComponentRootError: If any component root is missing
        ConfigurationError: If the registry cannot be parsed
    """
    layout = plugin if isinstance(plugin, PluginLayout) else PluginLayout.from_root(plugin)
    # Every scan completes before inversion reads any dependsOn
    scanned = {kind: scan_kind(kind, layout.root_for(kind), layout.root) for kind in KINDS}
    graph = assemble_graph(scanned, layout, count_modes(layout.modes))
    graph.missing_manifests = find_missing_manifests(layout.skills)
    for kind in ("command", "skill", "workflow"):
        groups = find_empty_groups(kind, layout.root_for(kind))
        if groups:
            graph.empty_groups[kind] = groups
    return graph


# =============================================================================
# Dependency Tree Formatting
# =============================================================================


def _tree_lines(title: str, items: list[str], details: Mapping[str, list[str]] | None = None) -> list[str]:
    """Render one titled branch list, with optional indented detail lines per item."""
    if not items:
        return []
    lines = [f"{title} ({len(items)}):"]
    for i, item in enumerate(items):
        last = i == len(items) - 1
        lines.append(f"   {'└──' if last else '├──'} {item}")
        sub = (details or {}).get(item, [])
        for j, text in enumerate(sub):
            lines.append(f"   {' ' if last else '│'}   {'└──' if j == len(sub) - 1 else '├──'} {text}")
    lines.append("")
    return lines


def _preview(ids: list[str], limit: int = 2) -> str:
    return ", ".join(ids[:limit]) + ("..." if len(ids) > limit else "")


def _short(text: str, limit: int = 50) -> str:
    return text if len(text) <= limit else f"{text[:limit]}..."


def format_dependency_tree(graph: DependencyGraph, kind: Kind, identity: str) -> str | None:
    """Render a text dependency tree for one component.

    Agents and workflows show what they depend on; skills, commands and MCPs
    show what uses them.

    Returns:
        The rendered tree, or None if the component does not exist
    """
    node = graph.get(kind, identity)
    if node is None:
        return None

    reverse_view = kind in ("mcp", "command", "skill")
    header = "Usage Graph" if reverse_view else "Dependency Graph"
    lines = [f"{header}: {identity}", "═" * 50, "", f"{kind.capitalize()}: {identity}"]
    if node.description:
        lines.append(f"   └── {node.description}")
    lines.append("")

    def describe(ref_kind: Kind, ids: list[str]) -> dict[str, list[str]]:
        details = {}
        for ref_id in ids:
            target = graph.get(ref_kind, ref_id)
            if target is not None and target.description:
                details[ref_id] = [_short(target.description)]
        return details

    if kind == "workflow":
        agents = node.references("agent")
        agent_details: dict[str, list[str]] = {}
        for agent_id in agents:
            agent = graph.get("agent", agent_id)
            if agent is None:
                continue
            sub = []
            if agent.references("skill"):
                sub.append(f"Skills: {_preview(agent.references('skill'))}")
            if agent.references("command"):
                sub.append(f"Commands: {_preview(agent.references('command'))}")
            agent_details[agent_id] = sub
        lines += _tree_lines("Agents Orchestrated", agents, agent_details)
        lines += _tree_lines("Skills Applied", node.references("skill"))
        lines += _tree_lines("Commands Available", node.references("command"))
        lines += _tree_lines("MCPs Required", node.references("mcp"))
    elif kind == "agent":
        skills = node.references("skill")
        lines += _tree_lines("Skills Used", skills, describe("skill", skills))
        lines += _tree_lines("Commands Triggered", node.references("command"))
        lines += _tree_lines("MCPs Required", node.references("mcp"))
        lines += _tree_lines("Used By Workflows", sorted(node.used_by.get("workflow", set())))
    else:
        if kind == "skill":
            lines += _tree_lines("Commands Used", node.references("command"))
        agents = sorted(node.used_by.get("agent", set()))
        titles = {"command": "Triggered By Agents"}
        lines += _tree_lines(titles.get(kind, "Used By Agents"), agents, describe("agent", agents))
        lines += _tree_lines("Used By Commands", sorted(node.used_by.get("command", set())))
        lines += _tree_lines("Used By Skills", sorted(node.used_by.get("skill", set())))
        lines += _tree_lines("Used By Workflows", sorted(node.used_by.get("workflow", set())))

    return "\n".join(lines).rstrip() + "\n"


def format_stats(stats: GraphStats) -> str:
    """Render graph statistics as a text block."""
    lines = [
        "OMGKIT Dependency Graph Statistics",
        "===================================",
        f"MCPs:       {stats.counts.get('mcp', 0)}",
        f"Commands:   {stats.counts.get('command', 0)}",
        f"Skills:     {stats.counts.get('skill', 0)}",
        f"Agents:     {stats.counts.get('agent', 0)}",
        f"Workflows:  {stats.counts.get('workflow', 0)}",
        f"Modes:      {stats.modes}",
        f"Skill Refs: {stats.total_skill_refs}",
        f"Cmd Refs:   {stats.total_command_refs}",
        f"Agent Refs: {stats.total_agent_refs}",
    ]
    if stats.unresolved_edges:
        lines.append(f"Unresolved: {stats.unresolved_edges}")
    return "\n".join(lines)


def parse_tree_target(value: str) -> tuple[Kind, str]:
    """Parse a KIND:ID argument such as "agent:planner" or "command:/dev:fix".

    Raises:
        argparse.ArgumentTypeError: If the kind is unknown or the id is empty
    """
    kind, sep, identity = value.partition(":")
    if not sep or not identity or not is_known_kind(kind):
        raise argparse.ArgumentTypeError(f"expected KIND:ID with KIND one of {', '.join(KINDS)}, got '{value}'")
    return kind, identity  # type: ignore[return-value]


# =============================================================================
# CLI Entry Point
# =============================================================================


def main() -> int:
    """CLI entry point: build the graph and print statistics or a tree.

    Returns:
        Exit code (0=OK, 1=configuration error or unknown tree target)
    """
    parser = argparse.ArgumentParser(
        description="Build the OMGKIT component dependency graph",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("plugin_path", nargs="?", default=None, help="Plugin directory (default: $OMGKIT_PLUGIN_DIR or ./plugin)")
    parser.add_argument("--json", "-j", action="store_true", help="Output the whole graph as JSON")
    parser.add_argument("--tree", type=parse_tree_target, metavar="KIND:ID", help="Print the dependency tree of one component")
    args = parser.parse_args()

    try:
        graph = build_dependency_graph(resolve_plugin_root(args.plugin_path))
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_CRITICAL

    if args.tree:
        kind, identity = args.tree
        tree = format_dependency_tree(graph, kind, identity)
        if tree is None:
            print(f"Error: no {kind} named '{identity}'", file=sys.stderr)
            return EXIT_CRITICAL
        print(tree)
    elif args.json:
        print(json.dumps(graph.to_dict(), indent=2))
    else:
        print(format_stats(graph.stats))
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
