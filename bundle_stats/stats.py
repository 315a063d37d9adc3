"""Whole-package size report — ``get_package_stats``.

Installs the package into a throwaway directory, then reads its
``package.json`` and builds it concurrently, and reports the size of
the main asset together with the per-dependency breakdown.
"""

from __future__ import annotations

import asyncio
import logging
import time

from bundle_stats import telemetry as tm
from bundle_stats.build import MAIN_ENTRY, build_package_ignoring_missing_deps
from bundle_stats.bundler import Bundler, Minifier
from bundle_stats.contracts import (
    Asset,
    BuildOptions,
    PackageJSONDetails,
    PackageStats,
    PackageStatsOptions,
)
from bundle_stats.errors import UnexpectedBuildError
from bundle_stats.installation import install_directory, install_package
from bundle_stats.limiter import gather_settled
from bundle_stats.packages import get_externals, parse_package_string, read_package_json_details

logger = logging.getLogger(__name__)


async def package_json_details(
    package_name: str,
    install_path: str,
    *,
    telemetry: tm.TelemetrySink | None = None,
) -> PackageJSONDetails:
    """Read the installed package's ``package.json`` facts off the event loop."""
    start = time.perf_counter()
    loop = asyncio.get_running_loop()
    try:
        details = await loop.run_in_executor(
            None, read_package_json_details, package_name, install_path,
        )
    except Exception as exc:
        tm.record(telemetry, tm.PACKAGE_JSON_DETAILS, package_name, start, ok=False, error=exc)
        raise
    tm.record(telemetry, tm.PACKAGE_JSON_DETAILS, package_name, start, ok=True)
    return details


def select_main_asset(assets: list[Asset]) -> Asset:
    """The ``main`` asset: its CSS output when there is any CSS, else its JS."""
    main_type = "css" if any(a.type == "css" for a in assets) else "js"
    for asset in assets:
        if asset.name == MAIN_ENTRY and asset.type == main_type:
            return asset
    raise UnexpectedBuildError(
        [a.model_dump() for a in assets],
        message="Did not find a main asset in the built bundle",
    )


async def get_package_stats(
    package_string: str,
    options: PackageStatsOptions | None = None,
    *,
    bundler: Bundler | None = None,
    minifier: Minifier | None = None,
    telemetry: tm.TelemetrySink | None = None,
) -> PackageStats:
    """Install, build and measure *package_string*.

    Raises whatever installation or building raised, or
    ``UnexpectedBuildError`` when the build has no main asset.
    """
    options = options or PackageStatsOptions()
    telemetry = telemetry or tm.LoggingTelemetry()
    start = time.perf_counter()
    log_options = options.model_dump(exclude={"additional_packages", "custom_imports"})

    parsed = parse_package_string(package_string)
    install_options = options.model_copy(update={"is_local": parsed.is_local})

    try:
        async with install_directory(parsed.name, debug=options.debug) as install_path:
            await install_package(
                parsed.normal_path or package_string,
                install_path,
                install_options,
                telemetry=telemetry,
            )
            externals = get_externals(parsed.name, install_path)

            details, built = await gather_settled(
                package_json_details(parsed.name, install_path, telemetry=telemetry),
                build_package_ignoring_missing_deps(
                    parsed.name,
                    install_path,
                    externals,
                    BuildOptions(
                        custom_imports=options.custom_imports,
                        minify=options.minify,
                        debug=options.debug,
                        include_dependency_sizes=True,
                    ),
                    bundler=bundler,
                    minifier=minifier,
                    telemetry=telemetry,
                ),
            )
            main_asset = select_main_asset(built.assets)
    except Exception as exc:
        tm.record(
            telemetry, tm.PACKAGE_STATS, package_string, start,
            ok=False, options=log_options, error=exc,
        )
        raise

    tm.record(telemetry, tm.PACKAGE_STATS, package_string, start, ok=True, options=log_options)
    logger.info(
        "%s: %d bytes (%d gzip), %d assets",
        package_string, main_asset.size, main_asset.gzip, len(built.assets),
    )
    return PackageStats(
        **details.model_dump(),
        assets=built.assets,
        dependency_sizes=built.dependency_sizes,
        ignored_missing_dependencies=built.ignored_missing_dependencies,
        size=main_asset.size,
        gzip=main_asset.gzip,
        install_path=install_path,
    )


__all__ = [
    "get_package_stats",
    "package_json_details",
    "select_main_asset",
]
