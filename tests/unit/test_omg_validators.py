#!/usr/bin/env python3
"""Tests for omg_validators.py - the five validator families over a built graph."""

import pytest
from omg_dependency_graph import DependencyGraph, assemble_graph, build_dependency_graph
from omg_scanner import ComponentNode
from omg_validation_common import ID_PATTERNS, KIND_LEVELS, KINDS, is_valid_format
from omg_validators import (
    ValidatorConfig,
    coverage_ratio,
    find_cycles,
    run_all_validators,
    run_validator_families,
    validate_consistency,
    validate_coverage,
    validate_empty_groups,
    validate_existence,
    validate_format,
    validate_frontmatter_consistency,
    validate_hierarchy,
    validate_no_cycles,
    validate_no_duplicates,
    validate_skill_manifests,
    validate_unique_ids,
)

from plugin_builder import PluginFactory


def graph_of(plugin: PluginFactory) -> DependencyGraph:
    return build_dependency_graph(plugin.root)


class TestExistence:
    """Tests for dangling-reference detection."""

    def test_resolved_edge_has_no_violation(self, plugin: PluginFactory) -> None:
        plugin.skill("methodology", "writing-plans")
        plugin.agent("planner", skills=["methodology/writing-plans"])
        assert validate_existence(graph_of(plugin)) == []

    def test_missing_skill_is_one_violation(self, plugin: PluginFactory) -> None:
        """A missing skill yields exactly one violation naming source, kind and target."""
        plugin.skill("methodology", "writing-plans")
        plugin.agent("planner", skills=["methodology/nonexistent-skill"])

        violations = validate_existence(graph_of(plugin))

        assert len(violations) == 1
        v = violations[0]
        assert (v.source_id, v.target_kind, v.target) == ("planner", "skill", "methodology/nonexistent-skill")
        assert v.rule == "existence.missing-target"
        assert v.file == "agents/planner.md"
        assert "methodology/writing-plans" in v.detail

    def test_repeated_missing_target_reported_once(self, plugin: PluginFactory) -> None:
        plugin.agent("planner", skills=["a/missing", "a/missing"])
        assert len(validate_existence(graph_of(plugin))) == 1

    def test_every_kind_checked(self, plugin: PluginFactory) -> None:
        plugin.command("dev", "fix", mcps=["no-such-mcp"])
        plugin.skill("a", "b", commands=["/dev:missing"])
        plugin.agent("planner", skills=["a/missing"])
        plugin.workflow("dev", "feature", agents=["ghost"])

        targets = {(v.target_kind, v.target) for v in validate_existence(graph_of(plugin))}

        assert targets == {
            ("mcp", "no-such-mcp"),
            ("command", "/dev:missing"),
            ("skill", "a/missing"),
            ("agent", "ghost"),
        }


class TestFormat:
    """Tests for identity pattern checks."""

    def test_bad_agent_id_in_workflow(self, plugin: PluginFactory) -> None:
        """A wrongly cased agent id is exactly one format violation."""
        plugin.workflow("development", "feature", agents=["Data_Engineer"])

        violations = validate_format(graph_of(plugin))

        assert len(violations) == 1
        assert violations[0].rule == "format.reference"
        assert violations[0].target == "Data_Engineer"
        assert violations[0].target_kind == "agent"

    def test_bad_node_identity(self, plugin: PluginFactory) -> None:
        plugin.agent("Planner")
        violations = validate_format(graph_of(plugin))
        assert [v.rule for v in violations] == ["format.node-id"]

    def test_bad_reverse_reference(self) -> None:
        skill = ComponentNode(kind="skill", id="a/b")
        graph = assemble_graph({"skill": [skill]})
        skill.used_by = {"agent": {"Bad Agent"}}
        assert [v.rule for v in validate_format(graph)] == ["format.reverse-reference"]

    @pytest.mark.parametrize(
        ("identity", "kind", "valid"),
        [
            ("methodology/writing-plans", "skill", True),
            ("Methodology/writing-plans", "skill", False),
            ("methodology", "skill", False),
            ("a/b/c", "skill", False),
            ("/dev:fix", "command", True),
            ("dev:fix", "command", False),
            ("/dev/fix", "command", False),
            ("planner", "agent", True),
            ("data_engineer", "agent", False),
            ("1planner", "agent", False),
            ("sequential-thinking", "mcp", True),
            ("development/feature", "workflow", True),
            ("development/", "workflow", False),
        ],
    )
    def test_identity_patterns(self, identity: str, kind: str, valid: bool) -> None:
        assert is_valid_format(identity, kind) is valid  # type: ignore[arg-type]

    def test_every_kind_has_a_pattern(self) -> None:
        assert set(ID_PATTERNS) == set(KINDS)


class TestHierarchy:
    """Tests for downward-only references."""

    def test_field_presence_is_a_violation(self, plugin: PluginFactory) -> None:
        """An agent with `workflows: []` breaks the hierarchy; one without the field does not."""
        plugin.agent("planner", workflows=[])
        plugin.agent("reviewer")

        violations = validate_hierarchy(graph_of(plugin))

        assert len(violations) == 1
        assert violations[0].source_id == "planner"
        assert violations[0].rule == "hierarchy.upward-reference"
        assert violations[0].target_kind == "workflow"

    def test_peer_reference(self, plugin: PluginFactory) -> None:
        plugin.skill("a", "b", skills=["a/c"])
        plugin.skill("a", "c")
        violations = validate_hierarchy(graph_of(plugin))
        assert [(v.source_id, v.rule) for v in violations] == [("a/b", "hierarchy.peer-reference")]

    @pytest.mark.parametrize("source", KINDS[1:])
    @pytest.mark.parametrize("target", KINDS)
    def test_direction_for_every_kind_pair(self, source: str, target: str) -> None:
        """Only strictly lower levels may be referenced."""
        node = ComponentNode(kind=source, id="x", declared_fields=frozenset({f"{target}s"}))  # type: ignore[arg-type]
        violations = validate_hierarchy(assemble_graph({source: [node]}))  # type: ignore[dict-item]
        allowed = KIND_LEVELS[target] < KIND_LEVELS[source]  # type: ignore[index]
        assert (violations == []) is allowed

    def test_mcps_reference_nothing(self, plugin: PluginFactory) -> None:
        graph = graph_of(plugin)
        assert graph.of_kind("mcp")
        assert validate_hierarchy(graph) == []

    def test_unknown_kind(self) -> None:
        node = ComponentNode(kind="agent", id="planner", depends_on={"widget": ["x"]})  # type: ignore[dict-item]
        violations = validate_hierarchy(assemble_graph({"agent": [node]}))
        assert [v.rule for v in violations] == ["hierarchy.unknown-kind"]

    def test_cycle_detected_once(self) -> None:
        a = ComponentNode(kind="agent", id="a", depends_on={"agent": ["b"]})
        b = ComponentNode(kind="agent", id="b", depends_on={"agent": ["a"]})
        graph = assemble_graph({"agent": [a, b]})

        cycles = find_cycles(graph)
        violations = validate_no_cycles(graph)

        assert cycles == [[("agent", "a"), ("agent", "b"), ("agent", "a")]]
        assert len(violations) == 1
        assert violations[0].level == "CRITICAL"
        assert "agent:a -> agent:b -> agent:a" in violations[0].detail

    def test_self_reference_is_a_cycle(self) -> None:
        a = ComponentNode(kind="skill", id="a/b", depends_on={"skill": ["a/b"]})
        assert len(validate_no_cycles(assemble_graph({"skill": [a]}))) == 1

    def test_sample_has_no_cycles(self, sample_plugin: PluginFactory) -> None:
        assert find_cycles(graph_of(sample_plugin)) == []


class TestConsistency:
    """Tests for usedBy mirroring dependsOn."""

    def test_built_graph_is_consistent(self, sample_plugin: PluginFactory) -> None:
        assert validate_consistency(graph_of(sample_plugin)) == []

    def test_missing_reverse_reference(self, plugin: PluginFactory) -> None:
        plugin.skill("a", "b")
        plugin.agent("planner", skills=["a/b"])
        graph = graph_of(plugin)
        graph.get("skill", "a/b").used_by = {}

        violations = validate_consistency(graph)

        assert [(v.source_id, v.rule, v.target) for v in violations] == [
            ("planner", "consistency.missing-reverse-reference", "a/b")
        ]

    def test_stale_and_unknown_referrers(self, plugin: PluginFactory) -> None:
        plugin.skill("a", "b")
        plugin.agent("planner")
        graph = graph_of(plugin)
        graph.get("skill", "a/b").used_by = {"agent": {"planner", "ghost"}}

        rules = sorted(v.rule for v in validate_consistency(graph))

        assert rules == ["consistency.stale-reverse-reference", "consistency.unknown-referrer"]

    def test_duplicate_identity(self, plugin: PluginFactory) -> None:
        first = ComponentNode(kind="agent", id="planner", source="agents/planner.md")
        second = ComponentNode(kind="agent", id="planner", source="agents/copy/planner.md")
        violations = validate_unique_ids(assemble_graph({"agent": [first, second]}))
        assert len(violations) == 1
        assert violations[0].file == "agents/copy/planner.md"
        assert "agents/planner.md" in violations[0].detail


class TestOptimization:
    """Tests for duplicate references and coverage thresholds."""

    def test_duplicate_reference_once(self, plugin: PluginFactory) -> None:
        """A repeated entry is one violation and the resolved list holds it once."""
        plugin.skill("frontend", "react")
        plugin.agent("planner", skills=["frontend/react", "frontend/react"])
        graph = graph_of(plugin)

        violations = validate_no_duplicates(graph)

        assert len(violations) == 1
        assert violations[0].level == "MINOR"
        assert graph.get("agent", "planner").references("skill") == ["frontend/react"]

    def test_triple_repeat_is_still_one_violation(self, plugin: PluginFactory) -> None:
        plugin.agent("planner", skills=["a/b", "a/b", "a/b"])
        violations = validate_no_duplicates(graph_of(plugin))
        assert len(violations) == 1
        assert "3 times" in violations[0].detail

    def test_coverage_ratio_of_empty_kind(self, plugin: PluginFactory) -> None:
        assert coverage_ratio(graph_of(plugin), "agent", "workflow") == 1.0

    def test_low_coverage_warnings(self, plugin: PluginFactory) -> None:
        plugin.skill("methodology", "writing-plans")
        for i in range(4):
            plugin.agent(f"agent-{i}")
        plugin.workflow("dev", "feature", agents=["agent-0"])

        violations = validate_coverage(graph_of(plugin))

        rules = sorted(v.rule for v in violations)
        assert rules == [
            "optimization.agent-skill-coverage",
            "optimization.agent-workflow-coverage",
            "optimization.core-skill-unused",
        ]
        assert all(v.level == "WARNING" for v in violations)

    def test_thresholds_are_configurable(self, plugin: PluginFactory) -> None:
        plugin.agent("planner")
        config = ValidatorConfig(min_agent_workflow_coverage=0.0, min_agent_skill_coverage=0.0)
        assert validate_coverage(graph_of(plugin), config) == []

    def test_missing_core_skill_is_not_flagged(self, plugin: PluginFactory) -> None:
        """Core skills are only checked when the plugin ships them."""
        assert validate_coverage(graph_of(plugin)) == []

    def test_skill_directory_without_manifest(self, plugin: PluginFactory) -> None:
        """Each manifest-less skill directory is one warning."""
        plugin.skill("methodology", "writing-plans")
        (plugin.root / "skills" / "methodology" / "empty-skill").mkdir()

        violations = validate_skill_manifests(graph_of(plugin))

        assert [(v.rule, v.source_id, v.level) for v in violations] == [
            ("optimization.missing-manifest", "methodology/empty-skill", "WARNING")
        ]
        assert violations[0].file == "skills/methodology/empty-skill"

    def test_empty_category_and_namespace(self, plugin: PluginFactory) -> None:
        (plugin.root / "skills" / "frontend").mkdir()
        (plugin.root / "commands" / "ops").mkdir()

        violations = validate_empty_groups(graph_of(plugin))

        assert sorted((v.kind, v.source_id) for v in violations) == [("command", "ops"), ("skill", "frontend")]
        assert all(v.rule == "optimization.empty-group" and v.level == "WARNING" for v in violations)

    def test_agent_name_and_description(self, plugin: PluginFactory) -> None:
        plugin.agent("planner", header={"name": "other-name"})
        plugin.agent("reviewer")

        violations = validate_frontmatter_consistency(graph_of(plugin))

        assert sorted((v.source_id, v.rule) for v in violations) == [
            ("planner", "optimization.missing-description"),
            ("planner", "optimization.name-mismatch"),
        ]
        assert all(v.level == "WARNING" for v in violations)

    def test_workflow_without_description(self, plugin: PluginFactory) -> None:
        plugin.workflow("dev", "feature", header={"name": "feature"})
        violations = validate_frontmatter_consistency(graph_of(plugin))
        assert [(v.source_id, v.rule) for v in violations] == [("dev/feature", "optimization.missing-description")]

    def test_unparseable_header_is_not_checked_for_description(self, plugin: PluginFactory) -> None:
        plugin.agent("broken", header="skills: [unclosed")
        assert validate_frontmatter_consistency(graph_of(plugin)) == []

    def test_hygiene_warnings_do_not_block(self, sample_plugin: PluginFactory) -> None:
        (sample_plugin.root / "skills" / "scratch").mkdir()
        report = run_all_validators(graph_of(sample_plugin))
        assert [v.rule for v in report.violations] == ["optimization.empty-group"]
        assert report.exit_code == 0


class TestRunAllValidators:
    """Tests for running every family in one pass."""

    def test_aligned_sample_has_zero_violations(self, sample_plugin: PluginFactory) -> None:
        """40 agents, 100 skills, 90 commands and 45 workflows with no dangling refs are clean."""
        graph = graph_of(sample_plugin)
        report = run_all_validators(graph)

        assert report.violations == []
        assert report.exit_code == 0
        assert report.score == 100
        for family in ("existence", "format", "hierarchy", "consistency", "optimization"):
            assert any(r.message == f"{family} checks passed" for r in report.results)

    def test_families_are_independent(self, plugin: PluginFactory) -> None:
        """One bad reference surfaces in every family it touches, in one run."""
        plugin.workflow("dev", "feature", agents=["Data_Engineer", "Data_Engineer"])
        families = run_validator_families(graph_of(plugin))

        assert len(families["existence"]) == 1
        assert len(families["format"]) == 1
        assert families["hierarchy"] == []
        assert len([v for v in families["optimization"] if v.rule == "optimization.duplicate-reference"]) == 1

    def test_parse_error_is_nit(self, plugin: PluginFactory) -> None:
        plugin.agent("broken", header="skills: [unclosed")
        report = run_all_validators(graph_of(plugin))
        assert report.has_nit
        assert report.exit_code == 0
        assert report.exit_code_strict() == 4

    def test_validators_do_not_mutate_graph(self, sample_plugin: PluginFactory) -> None:
        graph = graph_of(sample_plugin)
        before = graph.to_dict()
        run_all_validators(graph)
        assert graph.to_dict() == before
