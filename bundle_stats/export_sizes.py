"""Per-export analysis — export maps and per-export bundle sizes.

``get_all_package_exports`` installs a package and returns its export
map.  ``get_package_export_sizes`` additionally builds one entry per
named export (``default`` excluded) and reports each entry's size with
the file that declares the export.

Entries are built in batches of ``settings.EXPORT_BATCH_SIZE``; batches
from every caller on the event loop share one ``ConcurrencyLimiter``
sized ``settings.EXPORT_CONCURRENCY``.
"""

from __future__ import annotations

import logging
import re
import time

from bundle_stats import telemetry as tm
from bundle_stats.build import build_package_ignoring_missing_deps
from bundle_stats.bundler import Bundler
from bundle_stats.config import VERSION, settings
from bundle_stats.contracts import (
    Asset,
    BuildOptions,
    BuildResult,
    ExportSizesResult,
    Externals,
    InstallOptions,
)
from bundle_stats.exports import get_all_exports
from bundle_stats.installation import install_directory, install_package
from bundle_stats.limiter import gather_settled, shared_limiter
from bundle_stats.packages import get_externals, parse_package_string
from bundle_stats.resolver import ModuleResolver

logger = logging.getLogger(__name__)

# Names that can appear inside `import { ... }` without an alias.
_IMPORTABLE_NAME_RE = re.compile(r"^[A-Za-z_$\u0080-\uffff][\w$\u0080-\uffff]*$")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def batched(items: list[str], size: int) -> list[list[str]]:
    return [items[i:i + size] for i in range(0, len(items), size)]


def sizeable_exports(export_map: dict[str, str]) -> list[str]:
    """Export names that get their own entry build."""
    names: list[str] = []
    for name in export_map:
        if name == "default":
            continue
        if not _IMPORTABLE_NAME_RE.match(name):
            logger.debug("Skipping export %r: not importable by name", name)
            continue
        names.append(name)
    return names


async def _install(
    package_string: str,
    install_path: str,
    options: InstallOptions,
    telemetry: tm.TelemetrySink | None,
) -> str:
    parsed = parse_package_string(package_string)
    await install_package(
        parsed.normal_path or package_string,
        install_path,
        options.model_copy(update={"is_local": parsed.is_local}),
        telemetry=telemetry,
    )
    return parsed.name


async def _build_batch(
    package_name: str,
    install_path: str,
    externals: Externals,
    batch: list[str],
    *,
    bundler: Bundler | None,
    telemetry: tm.TelemetrySink | None,
) -> BuildResult:
    async with shared_limiter(settings.EXPORT_CONCURRENCY):
        logger.debug("Building %d export entries for %s", len(batch), package_name)
        return await build_package_ignoring_missing_deps(
            package_name,
            install_path,
            externals,
            BuildOptions(
                custom_imports=batch,
                split_custom_imports=True,
                include_dependency_sizes=False,
            ),
            bundler=bundler,
            telemetry=telemetry,
        )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def get_all_package_exports(
    package_string: str,
    options: InstallOptions | None = None,
    *,
    resolver: ModuleResolver | None = None,
    telemetry: tm.TelemetrySink | None = None,
) -> dict[str, str]:
    """Install *package_string* and map each export to its declaring file.

    Paths are relative to the install directory.
    """
    options = options or InstallOptions()
    telemetry = telemetry or tm.LoggingTelemetry()
    start = time.perf_counter()
    name = parse_package_string(package_string).name

    try:
        async with install_directory(name) as install_path:
            await _install(package_string, install_path, options, telemetry)
            export_map = await get_all_exports(
                package_string, install_path, name,
                root_context=install_path, resolver=resolver, telemetry=telemetry,
            )
    except Exception as exc:
        tm.record(telemetry, tm.PACKAGE_EXPORTS, package_string, start, ok=False, error=exc)
        raise

    tm.record(telemetry, tm.PACKAGE_EXPORTS, package_string, start, ok=True)
    return export_map


async def get_package_export_sizes(
    package_string: str,
    options: InstallOptions | None = None,
    *,
    bundler: Bundler | None = None,
    resolver: ModuleResolver | None = None,
    telemetry: tm.TelemetrySink | None = None,
) -> ExportSizesResult:
    """Size of every named export of *package_string* when imported alone."""
    options = options or InstallOptions()
    telemetry = telemetry or tm.LoggingTelemetry()
    start = time.perf_counter()
    name = parse_package_string(package_string).name

    try:
        async with install_directory(name) as install_path:
            await _install(package_string, install_path, options, telemetry)
            export_map = await get_all_exports(
                package_string, install_path, name,
                root_context=install_path, resolver=resolver, telemetry=telemetry,
            )
            exports = sizeable_exports(export_map)
            logger.debug("Got %d exports for %s", len(exports), package_string)

            results: list[BuildResult] = []
            if exports:
                externals = get_externals(name, install_path)
                results = await gather_settled(*(
                    _build_batch(
                        name, install_path, externals, batch,
                        bundler=bundler, telemetry=telemetry,
                    )
                    for batch in batched(exports, settings.EXPORT_BATCH_SIZE)
                ))
    except Exception as exc:
        tm.record(telemetry, tm.PACKAGE_EXPORTS_SIZES, package_string, start, ok=False, error=exc)
        raise

    assets: list[Asset] = []
    ignored: list[str] = []
    for result in results:
        assets.extend(
            asset.model_copy(update={"path": export_map.get(asset.name)})
            for asset in result.assets
        )
        for missing in result.ignored_missing_dependencies or []:
            if missing not in ignored:
                ignored.append(missing)

    tm.record(telemetry, tm.PACKAGE_EXPORTS_SIZES, package_string, start, ok=True)
    return ExportSizesResult(
        assets=assets,
        ignored_missing_dependencies=ignored or None,
        build_version=VERSION,
    )


__all__ = [
    "batched",
    "get_all_package_exports",
    "get_package_export_sizes",
    "sizeable_exports",
]
