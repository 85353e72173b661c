#!/usr/bin/env python3
"""Tests for the command-line entry points, run as subprocesses."""

import json
import os
import subprocess
import sys
from pathlib import Path

from plugin_builder import PluginFactory

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
SCRIPTS_DIR = PROJECT_ROOT / "scripts"


def run_script(name: str, *args: str, env: dict[str, str] | None = None, cwd: Path | None = None) -> subprocess.CompletedProcess[str]:
    """Run one of the scripts/ entry points with given args and return result."""
    cmd = [sys.executable, str(SCRIPTS_DIR / name)] + list(args)
    return subprocess.run(cmd, capture_output=True, text=True, timeout=60, env=env, cwd=cwd)


def run_validate(*args: str, **kwargs) -> subprocess.CompletedProcess[str]:
    return run_script("omg_validate.py", *args, **kwargs)


class TestValidateExitCodes:
    """Tests for omg_validate.py exit codes."""

    def test_clean_plugin_exits_zero(self, sample_plugin: PluginFactory) -> None:
        result = run_validate(str(sample_plugin.root))
        assert result.returncode == 0, result.stdout + result.stderr
        assert "OMGKIT Alignment Validation Report" in result.stdout
        assert "All checks passed" in result.stdout

    def test_dangling_reference_exits_major(self, plugin: PluginFactory) -> None:
        plugin.agent("planner", skills=["methodology/nonexistent-skill"])
        plugin.write_registry()

        result = run_validate(str(plugin.root))

        assert result.returncode == 2
        assert "existence.missing-target" in result.stdout

    def test_missing_plugin_dir_exits_critical(self, tmp_path: Path) -> None:
        result = run_validate(str(tmp_path / "nope"))
        assert result.returncode == 1
        assert "Plugin directory does not exist" in result.stdout

    def test_missing_component_root_exits_critical(self, plugin: PluginFactory) -> None:
        (plugin.root / "skills").rmdir()
        result = run_validate(str(plugin.root))
        assert result.returncode == 1
        assert "Configuration error" in result.stdout

    def test_registry_with_invalid_utf8_exits_critical(self, plugin: PluginFactory) -> None:
        (plugin.root / "registry.yaml").write_bytes(b"mcp_servers:\n  ctx\xff: {}\n")
        result = run_validate(str(plugin.root))
        assert result.returncode == 1
        assert "Configuration error" in result.stdout
        assert "not valid UTF-8" in result.stdout

    def test_unregistered_agent_is_minor(self, plugin: PluginFactory) -> None:
        plugin.agent("planner")
        assert run_validate(str(plugin.root)).returncode == 3
        assert run_validate(str(plugin.root), "--no-registry").returncode == 0

    def test_strict_fails_on_parse_error(self, plugin: PluginFactory) -> None:
        plugin.agent("broken", header="skills: [unclosed")
        data = plugin.registry_data()
        data["agents"]["broken"] = {"skills": [], "commands": []}
        plugin.write_registry(data)

        assert run_validate(str(plugin.root)).returncode == 0
        assert run_validate(str(plugin.root), "--strict").returncode == 4


class TestValidateOutput:
    """Tests for omg_validate.py output options."""

    def test_json_output(self, plugin: PluginFactory) -> None:
        plugin.workflow("development", "feature", agents=["Data_Engineer"])
        plugin.write_registry()

        result = run_validate(str(plugin.root), "--json")
        data = json.loads(result.stdout)

        assert data["exit_code"] == result.returncode == 2
        rules = {v["rule"] for v in data["violations"]}
        assert {"existence.missing-target", "format.reference"} <= rules
        assert data["violation_count"] == len(data["violations"])

    def test_stats_and_tree(self, sample_plugin: PluginFactory) -> None:
        result = run_validate(str(sample_plugin.root), "--stats", "--tree", "agent:agent-00")
        assert result.returncode == 0
        assert "OMGKIT Dependency Graph Statistics" in result.stdout
        assert "Dependency Graph: agent-00" in result.stdout
        assert "Used By Workflows" in result.stdout

    def test_unknown_tree_target(self, sample_plugin: PluginFactory) -> None:
        result = run_validate(str(sample_plugin.root), "--tree", "agent:nobody")
        assert result.returncode == 1
        assert "No agent named 'nobody'" in result.stderr

    def test_verbose_lists_passed_checks(self, sample_plugin: PluginFactory) -> None:
        result = run_validate(str(sample_plugin.root), "--verbose")
        assert "existence checks passed" in result.stdout
        assert "Found 40 agents" in result.stdout

    def test_plugin_dir_from_environment(self, sample_plugin: PluginFactory, tmp_path: Path) -> None:
        env = {**os.environ, "OMGKIT_PLUGIN_DIR": str(sample_plugin.root)}
        result = run_validate("--json", env=env, cwd=tmp_path)
        assert result.returncode == 0
        assert json.loads(result.stdout)["violation_count"] == 0

    def test_default_plugin_dir_is_cwd_plugin(self, sample_plugin: PluginFactory) -> None:
        env = {k: v for k, v in os.environ.items() if k != "OMGKIT_PLUGIN_DIR"}
        result = run_validate(env=env, cwd=sample_plugin.root.parent)
        assert result.returncode == 0

    def test_help(self) -> None:
        result = run_validate("--help")
        assert result.returncode == 0
        assert "--no-registry" in result.stdout
        assert "still read for MCP servers" in " ".join(result.stdout.split())

    def test_bad_arguments(self, sample_plugin: PluginFactory) -> None:
        assert run_validate("--no-such-flag").returncode == 2
        assert run_validate(str(sample_plugin.root), "--min-agent-skill-coverage", "2").returncode == 2
        assert run_validate(str(sample_plugin.root), "--tree", "planner").returncode == 2


class TestOtherEntryPoints:
    """Tests for omg_registry_sync.py and omg_dependency_graph.py."""

    def test_registry_sync_aligned(self, sample_plugin: PluginFactory) -> None:
        result = run_script("omg_registry_sync.py", str(sample_plugin.root))
        assert result.returncode == 0
        assert "✓ ALIGNED" in result.stdout

    def test_registry_sync_drift(self, plugin: PluginFactory) -> None:
        plugin.agent("planner")
        result = run_script("omg_registry_sync.py", str(plugin.root), "--json")
        assert result.returncode == 1
        assert json.loads(result.stdout)["status"] == "DRIFT_DETECTED"

    def test_registry_sync_missing_registry(self, plugin: PluginFactory) -> None:
        (plugin.root / "registry.yaml").unlink()
        result = run_script("omg_registry_sync.py", str(plugin.root))
        assert result.returncode == 1
        assert "Error:" in result.stderr

    def test_dependency_graph_stats(self, sample_plugin: PluginFactory) -> None:
        result = run_script("omg_dependency_graph.py", str(sample_plugin.root))
        assert result.returncode == 0
        assert "Workflows:  45" in result.stdout

    def test_dependency_graph_json(self, sample_plugin: PluginFactory) -> None:
        result = run_script("omg_dependency_graph.py", str(sample_plugin.root), "--json")
        data = json.loads(result.stdout)
        assert len(data["agents"]) == 40
        assert data["stats"]["totalAgentRefs"] == 45

    def test_dependency_graph_tree(self, sample_plugin: PluginFactory) -> None:
        result = run_script("omg_dependency_graph.py", str(sample_plugin.root), "--tree", "skill:methodology/writing-plans")
        assert result.returncode == 0
        assert result.stdout.startswith("Usage Graph: methodology/writing-plans")
