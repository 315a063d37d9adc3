"""Dependency attribution — which top-level dependency owns each module.

Given the modules that survived tree-shaking in one artifact, every
module path is split on ``/node_modules/`` boundaries into an ownership
chain (``a`` → ``b`` for ``node_modules/a/node_modules/b/x.js``).
Modules are filed under the first chain entry; only those first-level
nodes are reported, each with the minified size of its modules joined
into one script, every module in its own scope.  First-party modules
(no boundary) are dropped.

pnpm store hops (``node_modules/.pnpm/<name>@<version>/node_modules/``)
count as a single boundary so the real package name is used.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time

from bundle_stats import telemetry as tm
from bundle_stats.bundler import EsbuildMinifier, Minifier
from bundle_stats.contracts import BundleModule, DependencySize
from bundle_stats.errors import MinifyError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

ROOT_NAME = "<root>"

_LOADER_PREFIX_RE = re.compile(r".*!")
_BOUNDARY_RE = re.compile(r"/node_modules/(?:\.pnpm/(?:[^/]+/)?node_modules/)?")

# JSON modules minify as an expression, not as a bare object literal.
_JSON_PREFIX = "$a$="


# ---------------------------------------------------------------------------
# Path handling
# ---------------------------------------------------------------------------


def module_path(identifier: str) -> str:
    """Strip bundler decoration from a module identifier.

    Identifiers look like ``(<loader>!)*/path/to/module.js`` or
    ``javascript/esm|/path/to/module.js``.  Backslashes become ``/``.
    """
    without_loader = _LOADER_PREFIX_RE.sub("", identifier)
    if "|" in without_loader:
        without_loader = without_loader.split("|")[1]
    return without_loader.replace("\\", "/")


def _segment_package_name(segment: str) -> str:
    parts = segment.split("/")
    if segment.startswith("@") and len(parts) >= 2:
        return "/".join(parts[:2])
    return parts[0]


def extract_package_names(path: str) -> list[str]:
    """Ownership chain for *path*, shallowest dependency first.

    ``/p/node_modules/a/node_modules/@s/b/i.js`` → ``["a", "@s/b"]``;
    a path without any ``node_modules`` boundary → ``[]``.
    """
    segments = _BOUNDARY_RE.split(path.replace("\\", "/"))
    if len(segments) <= 1:
        return []
    # segments[0] is the install root
    return [_segment_package_name(segment) for segment in segments[1:] if segment]


# ---------------------------------------------------------------------------
# Tree
# ---------------------------------------------------------------------------


def normalise_module_source(module: BundleModule) -> str | None:
    """Source text used for sizing; ``None`` for placeholder modules."""
    if module.source is None:
        return None
    if module_path(module.identifier).endswith(".json"):
        return f"{_JSON_PREFIX}{module.source}"
    return module.source


class PackageNode:
    """A dependency in the ownership tree.

    Mutable — modules are attached while the tree is built; the size is
    computed once, on first ``measure``.
    """

    __slots__ = ("name", "modules", "children", "_size")

    def __init__(self, name: str) -> None:
        self.name = name
        self.modules: list[BundleModule] = []
        self.children: dict[str, PackageNode] = {}
        self._size: int | None = None

    def child(self, name: str) -> PackageNode:
        node = self.children.get(name)
        if node is None:
            node = PackageNode(name)
            self.children[name] = node
        return node

    def sources(self) -> list[str]:
        return [s for s in (normalise_module_source(m) for m in self.modules) if s]

    @property
    def approximate_size(self) -> int | None:
        return self._size

    async def measure(self, minifier: Minifier) -> int:
        """Minify the sources as one script and cache the UTF-8 byte length."""
        if self._size is None:
            minified = await minifier.minify_modules(self.sources())
            self._size = len(minified.encode("utf-8"))
        return self._size

    def __repr__(self) -> str:
        return f"PackageNode({self.name!r}, modules={len(self.modules)}, children={list(self.children)})"


def build_tree(modules: list[BundleModule]) -> PackageNode:
    """File every real module under its ownership chain.

    The chain becomes a path of nodes, but the module attaches to the
    first-level node only, so nested dependencies are absorbed by their
    shallowest ancestor.  First-party modules attach to the root.
    """
    root = PackageNode(ROOT_NAME)
    real = [m for m in modules if m.source is not None]
    real.sort(key=lambda m: m.identifier)

    for module in real:
        chain = extract_package_names(module_path(module.path or module.identifier))
        if not chain:
            root.modules.append(module)
            continue
        owner = root.child(chain[0])
        owner.modules.append(module)
        parent = owner
        for name in chain[1:]:
            parent = parent.child(name)
    return root


# ---------------------------------------------------------------------------
# Sizing
# ---------------------------------------------------------------------------


async def _measure_node(node: PackageNode, minifier: Minifier) -> DependencySize:
    try:
        size = await node.measure(minifier)
    except Exception as exc:
        raise MinifyError(
            exc,
            {
                "message": getattr(exc, "message", None) or str(exc),
                "file_path": getattr(exc, "file_path", "") or "",
                "package": node.name,
            },
        ) from exc
    return DependencySize(name=node.name, approximate_size=size)


async def get_dependency_sizes(
    package_name: str,
    modules: list[BundleModule],
    *,
    minifier: Minifier | None = None,
    telemetry: tm.TelemetrySink | None = None,
) -> list[DependencySize]:
    """Report one minified size per first-level dependency.

    Nodes are minified concurrently; the first failure aborts the whole
    computation with ``MinifyError``.
    """
    start = time.perf_counter()
    minifier = minifier or EsbuildMinifier()
    root = build_tree(modules)
    nodes = [node for node in root.children.values() if node.sources()]

    try:
        results = await asyncio.gather(*(_measure_node(n, minifier) for n in nodes))
    except MinifyError as exc:
        tm.record(telemetry, tm.DEPENDENCY_SIZES, package_name, start, ok=False, error=exc)
        raise

    logger.debug(
        "Attributed %d modules of %s to %d dependencies",
        len(modules), package_name, len(results),
    )
    tm.record(telemetry, tm.DEPENDENCY_SIZES, package_name, start, ok=True)
    return list(results)


__all__ = [
    "PackageNode",
    "ROOT_NAME",
    "build_tree",
    "extract_package_names",
    "get_dependency_sizes",
    "module_path",
    "normalise_module_source",
]
