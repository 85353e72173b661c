#!/usr/bin/env python3
"""
OMGKIT Alignment Validation - Common Module

Shared infrastructure for the OMGKIT component graph and its validators.
This module contains:
- Component kind definitions (levels, header fields, identity patterns)
- Type definitions (Level, Violation, ValidationReport)
- Plugin layout and configuration errors
- Utility functions (scoring, formatting, exit codes)

Every other omg_* module imports from here so kinds and severities stay
consistent across the scanner, the graph builder and the validators.
"""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

# =============================================================================
# Type Definitions
# =============================================================================

# Validation result severity levels
# Hierarchy: CRITICAL > MAJOR > MINOR > NIT > WARNING > INFO > PASSED
# - CRITICAL/MAJOR/MINOR: always block validation (non-zero exit code)
# - NIT: blocks only in --strict mode
# - WARNING: never blocks, always reported (coverage and quality advisories)
# - INFO: informational only, shown in verbose mode
# - PASSED: check passed, shown in verbose mode
Level = Literal["CRITICAL", "MAJOR", "MINOR", "NIT", "WARNING", "INFO", "PASSED"]

# Component kinds, lowest level first
Kind = Literal["mcp", "command", "skill", "agent", "workflow"]

# Validator families
Family = Literal["existence", "format", "hierarchy", "consistency", "optimization", "registry"]

# =============================================================================
# Exit Codes
# =============================================================================

EXIT_OK = 0  # All checks passed (or only WARNING/INFO/PASSED)
EXIT_CRITICAL = 1  # CRITICAL issues found (also: configuration errors)
EXIT_MAJOR = 2  # MAJOR issues found
EXIT_MINOR = 3  # MINOR issues found
EXIT_NIT = 4  # NIT issues found (only in --strict mode)

# =============================================================================
# Component Kinds
# =============================================================================

KINDS: tuple[Kind, ...] = ("mcp", "command", "skill", "agent", "workflow")

# Position in the alignment hierarchy; a kind may only reference lower levels
KIND_LEVELS: dict[Kind, int] = {kind: level for level, kind in enumerate(KINDS)}

# Frontmatter field that lists references to each kind
KIND_FIELDS: dict[Kind, str] = {
    "mcp": "mcps",
    "command": "commands",
    "skill": "skills",
    "agent": "agents",
    "workflow": "workflows",
}

FIELD_KINDS: dict[str, Kind] = {value: key for key, value in KIND_FIELDS.items()}

# Canonical identity shape per kind
ID_PATTERNS: dict[Kind, re.Pattern[str]] = {
    "mcp": re.compile(r"^[a-z][a-z0-9-]*$"),
    "command": re.compile(r"^/[a-z][a-z0-9-]*:[a-z0-9][a-z0-9-]*$"),
    "skill": re.compile(r"^[a-z][a-z0-9-]*/[a-z0-9][a-z0-9-]*$"),
    "agent": re.compile(r"^[a-z][a-z0-9-]*$"),
    "workflow": re.compile(r"^[a-z][a-z0-9-]*/[a-z0-9][a-z0-9-]*$"),
}

ID_FORMAT_HINTS: dict[Kind, str] = {
    "mcp": "kebab-case name",
    "command": "/namespace:name",
    "skill": "category/skill-name",
    "agent": "kebab-case name",
    "workflow": "category/workflow-name",
}


def allowed_reference_kinds(kind: Kind) -> tuple[Kind, ...]:
    """Return the kinds a component of `kind` may reference (strictly lower levels)."""
    return KINDS[: KIND_LEVELS[kind]]


def is_known_kind(value: str) -> bool:
    """Check if value names one of the five component kinds."""
    return value in KIND_LEVELS


def is_valid_format(identity: str, kind: Kind) -> bool:
    """Check an identity string against the canonical pattern for its kind.

    Args:
        identity: Identity string such as "planner" or "/dev:fix"
        kind: Component kind the identity claims to be

    Returns:
        True if identity is a string matching the kind's pattern
    """
    if not isinstance(identity, str):
        return False
    return bool(ID_PATTERNS[kind].match(identity))


# =============================================================================
# Plugin Layout
# =============================================================================

# Default plugin directory name, relative to the working directory
DEFAULT_PLUGIN_DIRNAME = "plugin"

# Environment variable overriding the plugin directory
PLUGIN_DIR_ENV_VAR = "OMGKIT_PLUGIN_DIR"

# Manifest file inside each skill directory
SKILL_MANIFEST = "SKILL.md"

# Central manifest holding mcp_servers, agents, workflows, categories
REGISTRY_FILENAME = "registry.yaml"

# Directories to skip when scanning (cache dirs, hidden dirs, etc.)
SKIP_DIRS = {
    ".git",
    "__pycache__",
    "node_modules",
    ".pytest_cache",
    ".ruff_cache",
    ".mypy_cache",
}


class ConfigurationError(Exception):
    """The plugin tree or registry cannot be used for validation at all."""


class ComponentRootError(ConfigurationError):
    """The root directory for an entire component kind is missing."""

    def __init__(self, kind: Kind, path: Path) -> None:
        super().__init__(f"Component root for {kind} does not exist: {path}")
        self.kind = kind
        self.path = path


@dataclass(frozen=True)
class PluginLayout:
    """Locations of every component root inside one plugin directory.

    Attributes:
        root: Plugin directory
        agents: Flat directory of <agent>.md files
        commands: <namespace>/<name>.md tree
        skills: <category>/<skill>/SKILL.md tree
        workflows: <category>/<name>.md tree
        modes: Flat directory of mode files (counted, not graphed)
        registry: Central registry.yaml manifest (source of MCPs)
    """

    root: Path
    agents: Path
    commands: Path
    skills: Path
    workflows: Path
    modes: Path
    registry: Path

    @classmethod
    def from_root(cls, root: str | Path) -> PluginLayout:
        """Derive the standard layout from a plugin directory."""
        base = Path(root).resolve()
        return cls(
            root=base,
            agents=base / "agents",
            commands=base / "commands",
            skills=base / "skills",
            workflows=base / "workflows",
            modes=base / "modes",
            registry=base / REGISTRY_FILENAME,
        )

    def root_for(self, kind: Kind) -> Path:
        """Return the path a scan of `kind` starts from."""
        if kind == "mcp":
            return self.registry
        return getattr(self, KIND_FIELDS[kind])


def resolve_plugin_root(path_arg: str | None = None) -> Path:
    """Resolve the plugin directory to validate.

    Order: explicit argument, then the OMGKIT_PLUGIN_DIR environment
    variable, then ./plugin relative to the working directory.
    """
    if path_arg:
        return Path(path_arg).resolve()
    env_dir = os.environ.get(PLUGIN_DIR_ENV_VAR, "").strip()
    if env_dir:
        return Path(env_dir).resolve()
    return (Path.cwd() / DEFAULT_PLUGIN_DIRNAME).resolve()


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class Violation:
    """Single rule violation found in the component graph.

    Attributes:
        rule: Stable rule identifier (e.g. "existence.missing-target")
        source_id: Identity of the offending component
        detail: Human-readable description
        level: Severity level
        family: Validator family that produced it
        kind: Kind of the offending component
        target: Offending referenced id, when the rule is about a reference
        target_kind: Kind the target was expected to be
        file: Source file of the offending component
    """

    rule: str
    source_id: str
    detail: str
    level: Level = "MAJOR"
    family: Family = "existence"
    kind: Kind | None = None
    target: str | None = None
    target_kind: Kind | None = None
    file: str | None = None

    @property
    def message(self) -> str:
        """One-line message naming source, rule and detail."""
        prefix = f"{self.kind} " if self.kind else ""
        return f"[{self.rule}] {prefix}'{self.source_id}': {self.detail}"

    def to_dict(self) -> dict[str, str | None]:
        """Convert to dictionary for JSON serialization."""
        result: dict[str, str | None] = {
            "rule": self.rule,
            "sourceId": self.source_id,
            "detail": self.detail,
            "level": self.level,
            "family": self.family,
        }
        if self.kind is not None:
            result["kind"] = self.kind
        if self.target is not None:
            result["target"] = self.target
        if self.target_kind is not None:
            result["targetKind"] = self.target_kind
        if self.file is not None:
            result["file"] = self.file
        return result


@dataclass
class ValidationResult:
    """Single reported result, either a violation or an informational line.

    Attributes:
        level: Severity level
        message: Human-readable description of the result
        file: Optional file path related to the result
        violation: The underlying violation, when there is one
    """

    level: Level
    message: str
    file: str | None = None
    violation: Violation | None = None

    def to_dict(self) -> dict[str, object]:
        """Convert to dictionary for JSON serialization."""
        result: dict[str, object] = {"level": self.level, "message": self.message}
        if self.file is not None:
            result["file"] = self.file
        if self.violation is not None:
            result["violation"] = self.violation.to_dict()
        return result


@dataclass
class ValidationReport:
    """Complete validation report with results collection and scoring.

    Supports:
    - Error accumulation (every violation of every family in one run)
    - Per-family lookup of violations
    - Exit codes, health score and JSON output
    """

    results: list[ValidationResult] = field(default_factory=list)

    def add(self, level: Level, message: str, file: str | None = None) -> None:
        """Add a validation result."""
        self.results.append(ValidationResult(level, message, file))

    def add_violation(self, violation: Violation) -> None:
        """Add a violation as a result at its own level."""
        self.results.append(ValidationResult(violation.level, violation.message, violation.file, violation))

    def extend(self, violations: list[Violation]) -> None:
        """Add every violation from a validator's return value."""
        for violation in violations:
            self.add_violation(violation)

    def passed(self, message: str, file: str | None = None) -> None:
        """Add a passed check."""
        self.add("PASSED", message, file)

    def info(self, message: str, file: str | None = None) -> None:
        """Add an info message."""
        self.add("INFO", message, file)

    def critical(self, message: str, file: str | None = None) -> None:
        """Add a critical issue."""
        self.add("CRITICAL", message, file)

    @property
    def violations(self) -> list[Violation]:
        """All violations recorded in this report, in insertion order."""
        return [r.violation for r in self.results if r.violation is not None]

    def violations_for(self, family: Family) -> list[Violation]:
        """Get the violations produced by one validator family."""
        return [v for v in self.violations if v.family == family]

    def has_level(self, level: Level) -> bool:
        """Check if any result of the given level exists."""
        return any(r.level == level for r in self.results)

    @property
    def has_critical(self) -> bool:
        """Check if any CRITICAL issues exist."""
        return self.has_level("CRITICAL")

    @property
    def has_major(self) -> bool:
        """Check if any MAJOR issues exist."""
        return self.has_level("MAJOR")

    @property
    def has_minor(self) -> bool:
        """Check if any MINOR issues exist."""
        return self.has_level("MINOR")

    @property
    def has_nit(self) -> bool:
        """Check if any NIT issues exist."""
        return self.has_level("NIT")

    @property
    def exit_code(self) -> int:
        """Get appropriate exit code based on highest severity issue.

        NIT and WARNING never affect exit code here.
        NIT blocking is handled by exit_code_strict().
        """
        if self.has_critical:
            return EXIT_CRITICAL
        if self.has_major:
            return EXIT_MAJOR
        if self.has_minor:
            return EXIT_MINOR
        return EXIT_OK

    def exit_code_strict(self) -> int:
        """Get exit code for --strict mode (NIT issues also block)."""
        code = self.exit_code
        if code != EXIT_OK:
            return code
        if self.has_nit:
            return EXIT_NIT
        return EXIT_OK

    @property
    def score(self) -> int:
        """Calculate health score (0-100) based on validation results.

        Scoring:
        - Start at 100
        - Deduct 25 for each CRITICAL
        - Deduct 10 for each MAJOR
        - Deduct 3 for each MINOR
        - Deduct 1 for each NIT
        - WARNING, INFO, and PASSED don't affect score
        """
        penalties = {"CRITICAL": 25, "MAJOR": 10, "MINOR": 3, "NIT": 1}
        score = 100 - sum(penalties.get(r.level, 0) for r in self.results)
        return max(0, score)

    def count_by_level(self) -> dict[str, int]:
        """Get count of results by level."""
        counts: dict[str, int] = {"CRITICAL": 0, "MAJOR": 0, "MINOR": 0, "NIT": 0, "WARNING": 0, "INFO": 0, "PASSED": 0}
        for r in self.results:
            counts[r.level] = counts.get(r.level, 0) + 1
        return counts

    def merge(self, other: ValidationReport) -> None:
        """Merge results from another report into this one."""
        self.results.extend(other.results)

    def to_dict(self) -> dict[str, object]:
        """Convert to dictionary for JSON serialization."""
        violations = self.violations
        return {
            "score": self.score,
            "grade": calculate_letter_grade(self.score),
            "exit_code": self.exit_code,
            "counts": self.count_by_level(),
            "violation_count": len(violations),
            "violations": [v.to_dict() for v in violations],
            "results": [r.to_dict() for r in self.results],
        }

    def to_json(self, indent: int = 2) -> str:
        """Convert report to JSON string."""
        return json.dumps(self.to_dict(), indent=indent)


# =============================================================================
# Utility Functions
# =============================================================================


def calculate_letter_grade(score: int) -> str:
    """Convert numeric score (0-100) to letter grade.

    Grade scale:
    - A+ : 97-100
    - A  : 93-96
    - A- : 90-92
    - B+ : 87-89
    - B  : 83-86
    - B- : 80-82
    - C+ : 77-79
    - C  : 73-76
    - C- : 70-72
    - D  : 60-69
    - F  : 0-59
    """
    thresholds = [(97, "A+"), (93, "A"), (90, "A-"), (87, "B+"), (83, "B"), (80, "B-"), (77, "C+"), (73, "C"), (70, "C-"), (60, "D")]
    for minimum, grade in thresholds:
        if score >= minimum:
            return grade
    return "F"


def relative_source(path: Path, root: Path | None) -> str:
    """Render a source path relative to the plugin root when possible."""
    if root is None:
        return str(path)
    try:
        return path.resolve().relative_to(root.resolve()).as_posix()
    except ValueError:
        return str(path)


# =============================================================================
# Color Formatting (for terminal output)
# =============================================================================

# ANSI color codes
COLORS = {
    "CRITICAL": "\033[91m",  # Red
    "MAJOR": "\033[93m",  # Yellow
    "MINOR": "\033[94m",  # Blue
    "NIT": "\033[96m",  # Cyan, blocks only in --strict
    "WARNING": "\033[95m",  # Magenta, never blocks
    "INFO": "\033[90m",  # Gray
    "PASSED": "\033[92m",  # Green
    "RESET": "\033[0m",  # Reset
    "BOLD": "\033[1m",  # Bold
}


def colorize(text: str, level: str) -> str:
    """Apply color to text based on level."""
    color = COLORS.get(level, "")
    return f"{color}{text}{COLORS['RESET']}"


def format_result(result: ValidationResult, show_file: bool = True) -> str:
    """Format a single validation result for terminal output."""
    text = f"{colorize(f'[{result.level}]', result.level)} {result.message}"
    if show_file and result.file:
        text += f" ({result.file})"
    return text


# Summary line per exit code; MINOR doubles as the fallback
OUTCOME_LINES: dict[int, tuple[str, str]] = {
    EXIT_OK: ("PASSED", "✓ All checks passed"),
    EXIT_CRITICAL: ("CRITICAL", "✗ Critical issues found - must fix before release"),
    EXIT_MAJOR: ("MAJOR", "! Major issues found - should fix"),
    EXIT_MINOR: ("MINOR", "~ Minor issues found - recommended to fix"),
}

# Printed sections in order: (level, heading, note, shown only with --verbose)
RESULT_SECTIONS: list[tuple[str, str, str, bool]] = [
    ("CRITICAL", "CRITICAL ISSUES", "", False),
    ("MAJOR", "MAJOR ISSUES", "", False),
    ("MINOR", "MINOR ISSUES", "", False),
    ("NIT", "NIT ISSUES", " [blocks in --strict]", False),
    ("WARNING", "WARNINGS", " [non-blocking]", False),
    ("INFO", "INFO", "", True),
    ("PASSED", "PASSED", "", True),
]


def print_report_summary(report: ValidationReport, title: str = "Validation Report") -> None:
    """Print level counts, the health score and a one-line outcome."""
    counts = report.count_by_level()
    score = report.score

    print(f"\n{'=' * 60}")
    print(colorize(title, "BOLD"))
    print("=" * 60)
    print()
    for level, count in counts.items():
        print(colorize(f"{level + ':':<9} {count}", level))

    grade_level = "PASSED" if score >= 80 else "MAJOR" if score >= 60 else "CRITICAL"
    print(f"\n{colorize('Health Score:', 'BOLD')} {colorize(f'{score}/100 (Grade: {calculate_letter_grade(score)})', grade_level)}")

    level, line = OUTCOME_LINES.get(report.exit_code, OUTCOME_LINES[EXIT_MINOR])
    print(f"\n{colorize(line, level)}")


def print_results_by_level(report: ValidationReport, verbose: bool = False) -> None:
    """Print results grouped by level; INFO and PASSED only when verbose."""
    for level, heading, note, verbose_only in RESULT_SECTIONS:
        results = [r for r in report.results if r.level == level]
        if not results or (verbose_only and not verbose):
            continue
        print(colorize(f"\n--- {heading} ({len(results)}){note} ---", level))
        for result in results:
            print(f"  {format_result(result)}")
