#!/usr/bin/env python3
"""
OMGKIT Alignment Validation - Component Scanner

Walks one component-kind directory tree and produces one typed node per
component file. Identity always comes from the file's position in the tree,
never from its frontmatter, so every file gets a node even when its header
is missing or malformed.

Storage conventions:
    agents/<agent>.md
    commands/<namespace>/<name>.md
    skills/<category>/<skill>/SKILL.md
    workflows/<category>/<name>.md
    registry.yaml -> mcp_servers: {<mcp>: ...}

Usage:
    from omg_scanner import scan_kind
    nodes = scan_kind("agent", Path("plugin/agents"))
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from omg_validation_common import (
    FIELD_KINDS,
    KIND_FIELDS,
    SKILL_MANIFEST,
    SKIP_DIRS,
    ComponentRootError,
    ConfigurationError,
    Kind,
    allowed_reference_kinds,
    relative_source,
)

# Leading '---' fenced block; the closing fence must sit on its own line
FRONTMATTER_PATTERN = re.compile(r"\A---[ \t]*\n(.*?)\n?^---[ \t]*$", re.DOTALL | re.MULTILINE)


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class ComponentNode:
    """One component of the plugin, projected read-only from its source file.

    Attributes:
        kind: Component kind
        id: Canonical identity derived from the file path
        source: Path of the originating file (relative to the plugin root)
        name: Display name from frontmatter, falling back to the file name
        description: Description from frontmatter
        group: Category (skills, workflows) or namespace (commands)
        declared: Reference lists exactly as written, duplicates preserved
        depends_on: Referenced kind -> ordered, de-duplicated identities
        used_by: Referencing kind -> identities; written only by the graph builder
        declared_fields: Reference field names present in the frontmatter
        parse_error: Why the frontmatter could not be read, if it could not
    """

    kind: Kind
    id: str
    source: str = ""
    name: str = ""
    description: str = ""
    group: str | None = None
    declared: dict[Kind, list[str]] = field(default_factory=dict)
    depends_on: dict[Kind, list[str]] = field(default_factory=dict)
    used_by: dict[Kind, set[str]] = field(default_factory=dict)
    declared_fields: frozenset[str] = frozenset()
    parse_error: str | None = None

    def references(self, kind: Kind) -> list[str]:
        """Resolved (de-duplicated) references to `kind`, empty when absent."""
        return self.depends_on.get(kind, [])

    def raw_references(self) -> dict[Kind, list[str]]:
        """Declared reference lists, falling back to depends_on for kinds never declared."""
        raw = {kind: list(ids) for kind, ids in self.depends_on.items()}
        raw.update({kind: list(ids) for kind, ids in self.declared.items()})
        return raw

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "kind": self.kind,
            "id": self.id,
            "file": self.source,
            "name": self.name,
            "description": self.description,
            "group": self.group,
            "dependsOn": {KIND_FIELDS[k]: list(v) for k, v in self.depends_on.items()},
            "usedBy": {KIND_FIELDS[k]: sorted(v) for k, v in self.used_by.items()},
        }


# =============================================================================
# Frontmatter Parsing
# =============================================================================


def parse_frontmatter(content: str) -> tuple[dict[str, Any], str | None]:
    """Parse the YAML frontmatter block at the top of a markdown file.

    Args:
        content: Full file content

    Returns:
        Tuple of (header mapping, error message). The mapping is empty and the
        error set when the block is absent, malformed, or not a mapping.
    """
    content = content.lstrip("\ufeff").replace("\r\n", "\n")
    match = FRONTMATTER_PATTERN.match(content)
    if not match:
        return {}, "missing frontmatter block"

    try:
        header = yaml.safe_load(match.group(1))
    except yaml.YAMLError as e:
        return {}, f"invalid YAML frontmatter: {e}"

    if header is None:
        return {}, None
    if not isinstance(header, dict):
        return {}, f"frontmatter is a {type(header).__name__}, expected a mapping"
    return header, None


def coerce_reference_list(value: Any) -> list[str]:
    """Normalize a frontmatter reference field to a list of strings.

    Non-list values count as empty. Null items are dropped; any other
    non-string item is stringified so format checks can report it.
    """
    if not isinstance(value, list):
        return []
    items = []
    for item in value:
        if item is None:
            continue
        items.append(item.strip() if isinstance(item, str) else str(item))
    return items


def unique_in_order(values: list[str]) -> list[str]:
    """Drop repeated values, keeping the first occurrence of each."""
    return list(dict.fromkeys(values))


def node_from_header(
    kind: Kind,
    identity: str,
    header: dict[str, Any],
    source: str = "",
    group: str | None = None,
    parse_error: str | None = None,
) -> ComponentNode:
    """Build a typed node from a path-derived identity and a parsed header.

    Only fields naming a kind that `kind` may reference become declared
    references; every reference-shaped field is recorded in declared_fields
    so structural hierarchy checks can see fields that should not exist.
    """
    permitted = allowed_reference_kinds(kind)
    declared: dict[Kind, list[str]] = {}
    for ref_kind in permitted:
        if KIND_FIELDS[ref_kind] in header:
            declared[ref_kind] = coerce_reference_list(header[KIND_FIELDS[ref_kind]])

    name = header.get("name")
    description = header.get("description")
    return ComponentNode(
        kind=kind,
        id=identity,
        source=source,
        name=name if isinstance(name, str) and name else identity,
        description=description.strip() if isinstance(description, str) else "",
        group=group,
        declared=declared,
        depends_on={ref_kind: unique_in_order(ids) for ref_kind, ids in declared.items()},
        declared_fields=frozenset(key for key in header if key in FIELD_KINDS),
        parse_error=parse_error,
    )


# =============================================================================
# Directory Walking
# =============================================================================


def should_skip(path: Path) -> bool:
    """Check if a directory entry should be ignored during scanning."""
    return path.name.startswith(".") or path.name in SKIP_DIRS


def _subdirs(directory: Path) -> list[Path]:
    return sorted(p for p in directory.iterdir() if p.is_dir() and not should_skip(p))


def _markdown_files(directory: Path) -> list[Path]:
    return sorted(p for p in directory.iterdir() if p.is_file() and p.suffix == ".md" and not should_skip(p))


def iter_component_files(kind: Kind, root_dir: Path) -> Iterator[tuple[str, str | None, Path]]:
    """Lazily yield (identity, group, path) for every component file of a kind.

    The walk is stateless; calling again restarts it from the top.

    Raises:
        ComponentRootError: If root_dir does not exist
    """
    if kind == "mcp":
        raise ValueError("MCPs are declared in the registry, not stored as files")
    if not root_dir.is_dir():
        raise ComponentRootError(kind, root_dir)

    if kind == "agent":
        for path in _markdown_files(root_dir):
            yield path.stem, None, path
    elif kind == "skill":
        for category in _subdirs(root_dir):
            for skill_dir in _subdirs(category):
                manifest = skill_dir / SKILL_MANIFEST
                # A skill directory without its manifest is not a skill
                if manifest.is_file():
                    yield f"{category.name}/{skill_dir.name}", category.name, manifest
    elif kind == "command":
        for namespace in _subdirs(root_dir):
            for path in _markdown_files(namespace):
                yield f"/{namespace.name}:{path.stem}", namespace.name, path
    else:
        for category in _subdirs(root_dir):
            for path in _markdown_files(category):
                yield f"{category.name}/{path.stem}", category.name, path


def find_missing_manifests(skills_root: Path) -> list[str]:
    """List category/skill directories that have no SKILL.md and so produce no node.

    Raises:
        ComponentRootError: If skills_root does not exist
    """
    if not skills_root.is_dir():
        raise ComponentRootError("skill", skills_root)
    return [
        f"{category.name}/{skill_dir.name}"
        for category in _subdirs(skills_root)
        for skill_dir in _subdirs(category)
        if not (skill_dir / SKILL_MANIFEST).is_file()
    ]


def find_empty_groups(kind: Kind, root_dir: Path) -> list[str]:
    """List category or namespace directories that hold no entry of `kind`.

    A skill category counts as populated when it has any skill directory,
    with or without a manifest. Ungrouped kinds have no groups.

    Raises:
        ComponentRootError: If root_dir does not exist
    """
    if kind in ("mcp", "agent"):
        return []
    if not root_dir.is_dir():
        raise ComponentRootError(kind, root_dir)
    if kind == "skill":
        return [category.name for category in _subdirs(root_dir) if not _subdirs(category)]
    return [group.name for group in _subdirs(root_dir) if not _markdown_files(group)]


def read_component_header(path: Path) -> tuple[dict[str, Any], str | None]:
    """Read a component file and parse its frontmatter, failing soft on I/O errors."""
    try:
        content = path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        return {}, f"could not read file: {e}"
    return parse_frontmatter(content)


def load_yaml_mapping(path: Path) -> dict[str, Any]:
    """Load a YAML file that must contain a mapping.

    Raises:
        ConfigurationError: If the file is missing, unreadable or not a mapping
    """
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigurationError(f"Could not read {path}: {e}") from e
    except UnicodeDecodeError as e:
        raise ConfigurationError(f"{path} is not valid UTF-8: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path} must contain a mapping, found {type(data).__name__}")
    return data


def scan_mcps(registry_path: Path, plugin_root: Path | None = None) -> list[ComponentNode]:
    """Produce one node per key of the registry's mcp_servers mapping.

    Raises:
        ComponentRootError: If the registry file does not exist
        ConfigurationError: If the registry cannot be parsed
    """
    if not registry_path.is_file():
        raise ComponentRootError("mcp", registry_path)

    registry = load_yaml_mapping(registry_path)
    servers = registry.get("mcp_servers")
    if not isinstance(servers, dict):
        return []

    source = relative_source(registry_path, plugin_root)
    nodes = []
    for name, config in servers.items():
        description = config.get("description", "") if isinstance(config, dict) else ""
        nodes.append(
            ComponentNode(
                kind="mcp",
                id=str(name),
                source=source,
                name=str(name),
                description=description if isinstance(description, str) else "",
            )
        )
    return nodes


def scan_kind(kind: Kind, root_dir: str | Path, plugin_root: Path | None = None) -> list[ComponentNode]:
    """Scan one component kind into a flat list of nodes.

    Args:
        kind: Component kind to scan
        root_dir: Directory holding that kind (the registry file for MCPs)
        plugin_root: Base for rendering source paths; defaults to root_dir's parent

    Returns:
        One node per component file, in path order, with raw depends_on

    Raises:
        ComponentRootError: If the kind's root does not exist
    """
    root = Path(root_dir)
    base = plugin_root if plugin_root is not None else root.parent
    if kind == "mcp":
        return scan_mcps(root, base)

    nodes = []
    for identity, group, path in iter_component_files(kind, root):
        header, error = read_component_header(path)
        nodes.append(node_from_header(kind, identity, header, relative_source(path, base), group, error))
    return nodes

