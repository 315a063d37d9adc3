"""Shared test fixtures — reduces boilerplate across test modules.

Provides:
- ``set_test_config`` — autouse fixture pinning settings to their defaults
  and pointing ``TMP_DIR`` at a per-test directory
- ``minifier`` — a ``FakeMinifier`` instance
- ``telemetry`` — a ``RecordingTelemetry`` instance
- ``write_tree`` — writes ``{relative path: content}`` files under a root
"""

from __future__ import annotations

import pytest

import fakes
from bundle_stats.telemetry import RecordingTelemetry
from fakes import FakeMinifier

# ---------------------------------------------------------------------------
# Environment patching
# ---------------------------------------------------------------------------

_SETTINGS_PATCHES: dict[str, object] = {
    "MAX_BUILD_RETRIES": 3,
    "MAX_AUTO_EXTERNALS": 6,
    "EXPORT_BATCH_SIZE": 20,
    "EXPORT_CONCURRENCY": 3,
    "INSTALL_CLIENTS": ["npm", "yarn", "pnpm"],
    "INSTALL_TIMEOUT_S": 120,
    "NETWORK_CONCURRENCY": 0,
    "ESBUILD_BIN": "esbuild",
}


@pytest.fixture(autouse=True)
def set_test_config(monkeypatch, tmp_path):
    """Give every test deterministic settings and a private ``TMP_DIR``."""
    from bundle_stats.config import settings

    for name, value in _SETTINGS_PATCHES.items():
        monkeypatch.setattr(settings, name, value)
    monkeypatch.setattr(settings, "TMP_DIR", str(tmp_path / "bundle-stats-tmp"))


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


@pytest.fixture
def minifier() -> FakeMinifier:
    return FakeMinifier()


@pytest.fixture
def telemetry() -> RecordingTelemetry:
    return RecordingTelemetry()


# ---------------------------------------------------------------------------
# On-disk package trees
# ---------------------------------------------------------------------------


@pytest.fixture
def write_tree():
    """``write_tree(root, {"node_modules/a/index.js": "..."})`` → *root*.

    Dict / list values are written as JSON.
    """
    return fakes.write_tree
