"""Export graph resolution — every export reachable from a module.

``get_all_exports`` resolves a specifier, scans the file for its
exports and follows each wildcard re-export (``export * from``) into the
target module, starting the lookup from the directory of the file that
contains the statement.  The result maps each export name to the file
that declares it, relative to the root context.

Wildcard branches run concurrently; their results are merged in
declaration order and the last write wins on a name collision.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time

from bundle_stats import telemetry as tm
from bundle_stats.lang import ExportDetails
from bundle_stats.lang.js_exports import get_exports_details
from bundle_stats.resolver import ModuleResolver, NodeResolver

logger = logging.getLogger(__name__)


def _read_source(path: str) -> str:
    with open(path, encoding="utf-8", errors="replace") as fh:
        return fh.read()


class ExportGraphWalker:
    """State for one export-graph walk.

    Resolution results and parsed files are memoized for the lifetime of
    the walker; a fresh walker is used for every ``get_all_exports`` call.
    """

    def __init__(self, resolver: ModuleResolver, root_context: str) -> None:
        self.resolver = resolver
        self.root_context = root_context
        self._resolved: dict[tuple[str, str], str] = {}
        self._details: dict[str, ExportDetails] = {}

    def resolve(self, context: str, specifier: str) -> str:
        key = (context, specifier)
        path = self._resolved.get(key)
        if path is None:
            path = self.resolver.resolve(context, specifier)
            self._resolved[key] = path
        return path

    async def details(self, path: str) -> ExportDetails:
        cached = self._details.get(path)
        if cached is not None:
            return cached
        loop = asyncio.get_running_loop()
        code = await loop.run_in_executor(None, _read_source, path)
        details = get_exports_details(code, path)
        self._details[path] = details
        return details

    async def walk(
        self,
        context: str,
        specifier: str,
        ancestors: frozenset[str] = frozenset(),
    ) -> dict[str, str]:
        path = self.resolve(context, specifier)
        # A module re-exporting one of its own importers adds nothing new.
        if path in ancestors:
            logger.debug("Skipping re-export cycle back into %s", path)
            return {}

        details = await self.details(path)
        if not details.has_module_syntax:
            return {}

        relative = os.path.relpath(path, self.root_context)
        resolved = {name: relative for name in details.exports}

        directory = os.path.dirname(path)
        branches = await asyncio.gather(*(
            self.walk(directory, location, ancestors | {path})
            for location in details.export_all_locations
        ))
        for branch in branches:
            resolved.update(branch)
        return resolved


async def get_all_exports(
    package_string: str,
    context: str,
    lookup_path: str,
    *,
    root_context: str | None = None,
    resolver: ModuleResolver | None = None,
    telemetry: tm.TelemetrySink | None = None,
) -> dict[str, str]:
    """Map every export reachable from *lookup_path* to its source file.

    Parameters
    ----------
    package_string:
        Package being analysed; used for telemetry only.
    context:
        Directory *lookup_path* is resolved from.
    lookup_path:
        Specifier of the entry module (a package name or a path).
    root_context:
        Directory the returned paths are relative to; defaults to *context*.

    Raises
    ------
    ModuleResolutionError
        An entry or re-export target could not be resolved.
    ExportParseError
        A module in the graph could not be scanned.
    """
    start = time.perf_counter()
    walker = ExportGraphWalker(resolver or NodeResolver(), root_context or context)
    try:
        exports = await walker.walk(context, lookup_path)
    except Exception as exc:
        tm.record(telemetry, tm.EXPORTS_TREEWALK, package_string, start, ok=False, error=exc)
        raise

    logger.debug("Found %d exports for %s", len(exports), package_string)
    tm.record(telemetry, tm.EXPORTS_TREEWALK, package_string, start, ok=True)
    return exports


__all__ = [
    "ExportGraphWalker",
    "get_all_exports",
]
