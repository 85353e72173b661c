"""Shared fixtures: throwaway OMGKIT plugin trees under tmp_path."""

from __future__ import annotations

from pathlib import Path

import pytest
from plugin_builder import PluginFactory, populate_sample


@pytest.fixture
def plugin(tmp_path: Path) -> PluginFactory:
    """Empty plugin tree with a registry declaring the default MCPs."""
    factory = PluginFactory(tmp_path / "plugin")
    factory.write_registry()
    return factory


@pytest.fixture
def sample_plugin(plugin: PluginFactory) -> PluginFactory:
    """Fully aligned plugin tree with no violations of any kind."""
    return populate_sample(plugin)
