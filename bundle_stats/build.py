"""Package builds — entry files, compile, measure, and repair missing deps.

``build_package`` runs one build: it writes the entry points,
compiles them with the injected ``Bundler``, turns the artifacts into
size figures and (for whole-package builds) attributes the bundle to
its dependencies.  Failures are raised as typed errors.

``build_package_ignoring_missing_deps`` supervises ``build_package``:
while a build fails only because a few nameable packages cannot be
resolved, those packages are externalized and the build is retried, up
to ``settings.MAX_BUILD_RETRIES`` extra attempts.  Externals only grow.
"""

from __future__ import annotations

import gzip
import logging
import re
import time

from bundle_stats import telemetry as tm
from bundle_stats.bundler import Bundler, EsbuildBundler, Minifier
from bundle_stats.config import settings
from bundle_stats.contracts import (
    Artifact,
    Asset,
    BuildIteration,
    BuildOptions,
    BuildResult,
    BundleModule,
    CompileOutcome,
    Externals,
)
from bundle_stats.dependency_tree import get_dependency_sizes
from bundle_stats.diagnostics import BuildFailure, FailureKind, classify_failure
from bundle_stats.entry_point import create_entry_point
from bundle_stats.errors import (
    BuildError,
    CLIBuildError,
    EntryPointError,
    MissingDependencyError,
    UnexpectedBuildError,
)
from bundle_stats.packages import is_valid_package_name

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MAIN_ENTRY = "main"
EXPORT_ENTRY_PREFIX = "export-"

_ASSET_NAME_RE = re.compile(r"^(.+?)\.bundle\.(.+)$")
_GZIP_LEVEL = 6


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def make_entry_map(name: str, install_path: str, options: BuildOptions) -> dict[str, str]:
    """Write the entry file(s) for one build and map entry name → path.

    Split builds get one ESM entry per custom import, named after the
    import; everything else gets a single CJS ``main`` entry.
    """
    if options.split_custom_imports:
        return {
            binding: str(create_entry_point(
                name,
                install_path,
                esm=True,
                custom_imports=[binding],
                entry_filename=f"{EXPORT_ENTRY_PREFIX}{binding}.js",
            ))
            for binding in options.custom_imports or []
        }
    return {
        MAIN_ENTRY: str(create_entry_point(
            name,
            install_path,
            esm=False,
            custom_imports=options.custom_imports,
        )),
    }


def asset_from_artifact(artifact: Artifact) -> Asset:
    """Size and gzip size of one ``<entry>.bundle.<ext>`` output."""
    m = _ASSET_NAME_RE.match(artifact.file_name)
    if not m:
        raise UnexpectedBuildError(
            artifact.file_name,
            message=(
                "Found an asset without the `.bundle` suffix. "
                "A loader customization might be needed to recognize this "
                f"asset type: {artifact.file_name}"
            ),
        )
    entry_name, extension = m.group(1), m.group(2)
    return Asset(
        name=entry_name,
        type=extension,
        size=len(artifact.contents),
        gzip=len(gzip.compress(artifact.contents, compresslevel=_GZIP_LEVEL, mtime=0)),
    )


def _reported_artifacts(artifacts: list[Artifact]) -> list[Artifact]:
    return [a for a in artifacts if not a.file_name.endswith("LICENSE.txt")]


def _script_modules(artifacts: list[Artifact]) -> list[BundleModule]:
    modules: list[BundleModule] = []
    for artifact in artifacts:
        if artifact.file_name.endswith((".js", ".mjs", ".cjs")):
            modules.extend(artifact.modules)
    return modules


def raise_for_failure(failure: BuildFailure, diagnostics: list[str]) -> None:
    """Raise the error matching a classified build failure."""
    if failure.kind is FailureKind.ENTRY_POINT:
        raise EntryPointError(diagnostics, {"missing_modules": failure.missing_modules})
    if failure.kind is FailureKind.MISSING_DEPENDENCY:
        raise MissingDependencyError(diagnostics, {"missing_modules": failure.missing_modules})
    if failure.kind is FailureKind.CLI:
        raise CLIBuildError(diagnostics)
    if failure.kind is FailureKind.GENERIC:
        raise BuildError(diagnostics)
    raise UnexpectedBuildError(
        diagnostics, message="The bundler failed without reporting any diagnostics",
    )


def can_auto_externalize(missing_modules: list[str], limit: int | None = None) -> bool:
    """True when *missing_modules* are few enough and all look like packages."""
    limit = settings.MAX_AUTO_EXTERNALS if limit is None else limit
    return (
        0 < len(missing_modules) <= limit
        and all(is_valid_package_name(m) for m in missing_modules)
    )


# ---------------------------------------------------------------------------
# Single build
# ---------------------------------------------------------------------------


async def build_package(
    name: str,
    install_path: str,
    externals: Externals,
    options: BuildOptions | None = None,
    *,
    bundler: Bundler | None = None,
    minifier: Minifier | None = None,
    telemetry: tm.TelemetrySink | None = None,
) -> BuildResult:
    """Compile *name* once with *externals* and measure the result.

    Raises
    ------
    EntryPointError
        The entry file could not be written, or only *name* itself is missing.
    MissingDependencyError
        Other imports could not be resolved (see ``missing_modules``).
    CLIBuildError / BuildError
        Any other compile failure.
    UnexpectedBuildError
        The bundler output broke an expected invariant.
    """
    options = options or BuildOptions()
    bundler = bundler or EsbuildBundler()
    start = time.perf_counter()
    log_options = options.model_dump(exclude={"custom_imports"})

    if options.split_custom_imports and not options.custom_imports:
        return BuildResult(assets=[])

    try:
        entry_map = make_entry_map(name, install_path, options)

        logger.debug("build start %s (externals=%d)", name, len(externals.all_names()))
        compile_start = time.perf_counter()
        outcome: CompileOutcome = await bundler.compile(
            entry_map, externals, minify=options.minify, cwd=install_path,
        )
        tm.record(
            telemetry, tm.PACKAGE_COMPILE, name, compile_start,
            ok=outcome.succeeded, options=log_options,
        )
        logger.debug("build end %s", name)

        if not outcome.succeeded:
            failure = classify_failure(outcome.diagnostics, name)
            raise_for_failure(failure, [str(d) for d in outcome.diagnostics])

        artifacts = _reported_artifacts(outcome.artifacts)
        assets = [asset_from_artifact(a) for a in artifacts]

        dependency_sizes = None
        if options.include_dependency_sizes and not options.custom_imports:
            dependency_sizes = await get_dependency_sizes(
                name,
                _script_modules(artifacts),
                minifier=minifier,
                telemetry=telemetry,
            )
    except Exception as exc:
        tm.record(telemetry, tm.PACKAGE_BUILD, name, start, ok=False, options=log_options, error=exc)
        raise

    tm.record(telemetry, tm.PACKAGE_BUILD, name, start, ok=True, options=log_options)
    return BuildResult(assets=assets, dependency_sizes=dependency_sizes)


# ---------------------------------------------------------------------------
# Retry loop
# ---------------------------------------------------------------------------


async def build_package_ignoring_missing_deps(
    name: str,
    install_path: str,
    externals: Externals,
    options: BuildOptions | None = None,
    *,
    bundler: Bundler | None = None,
    minifier: Minifier | None = None,
    telemetry: tm.TelemetrySink | None = None,
    max_retries: int | None = None,
    max_auto_externals: int | None = None,
) -> BuildResult:
    """Build *name*, externalizing a few unresolvable imports if needed.

    Each failed attempt whose only problem is at most
    ``max_auto_externals`` missing, validly-named packages widens the
    externals and retries; at most ``max_retries + 1`` attempts are made.
    The names externalized along the way are returned in
    ``ignored_missing_dependencies``.
    """
    ceiling = settings.MAX_BUILD_RETRIES if max_retries is None else max_retries
    state = BuildIteration(externals=externals, iteration=1)
    ignored: list[str] = []

    while True:
        try:
            result = await build_package(
                name,
                install_path,
                state.externals,
                options,
                bundler=bundler,
                minifier=minifier,
                telemetry=telemetry,
            )
        except MissingDependencyError as exc:
            missing = exc.missing_modules
            if not can_auto_externalize(missing, max_auto_externals):
                raise
            if state.iteration > ceiling:
                logger.info(
                    "%s still has missing dependencies after %d attempts: %s",
                    name, state.iteration, missing,
                )
                raise
            logger.info(
                "%s has missing dependencies, rebuilding without %s",
                name, ", ".join(missing),
            )
            ignored.extend(m for m in missing if m not in ignored)
            state = BuildIteration(
                externals=state.externals.widen(missing),
                iteration=state.iteration + 1,
            )
            continue

        if ignored:
            return result.model_copy(update={"ignored_missing_dependencies": ignored})
        return result


__all__ = [
    "MAIN_ENTRY",
    "asset_from_artifact",
    "build_package",
    "build_package_ignoring_missing_deps",
    "can_auto_externalize",
    "make_entry_map",
    "raise_for_failure",
]
