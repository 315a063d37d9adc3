"""Bundler and minifier adapters.

``Bundler`` and ``Minifier`` are the boundaries to the external tools;
the rest of the package depends only on these protocols.  The shipped
implementations drive the ``esbuild`` CLI through ``runner.run``:

- ``EsbuildBundler.compile`` bundles an entry map with ``--metafile``
  and returns the emitted artifacts together with the modules that
  survived tree-shaking, or tagged diagnostics on failure.
- ``EsbuildMinifier.minify`` pipes source text through ``--minify``;
  ``minify_modules`` first converts each module to CommonJS and wraps
  it in its own function scope, then minifies the joined script.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
import uuid
from pathlib import Path
from typing import Protocol

from bundle_stats.config import settings
from bundle_stats.contracts import (
    Artifact,
    BuildDiagnostic,
    BundleModule,
    CompileOutcome,
    Externals,
)
from bundle_stats.diagnostics import diagnostic_from_message, parse_esbuild_log
from bundle_stats.errors import ToolFailure, UnexpectedBuildError
from bundle_stats.runner import RunResult, run

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

ENTRY_NAMES = "[name].bundle"

# Non-JS imports emitted as separate files so they do not count as JS.
ASSET_LOADERS: dict[str, str] = {
    ".png": "file", ".jpg": "file", ".jpeg": "file", ".gif": "file",
    ".svg": "file", ".webp": "file", ".woff": "file", ".woff2": "file",
    ".ttf": "file", ".eot": "file", ".otf": "file",
}

_COMMON_FLAGS: tuple[str, ...] = (
    "--log-level=error",
    "--log-limit=0",
    "--color=false",
    "--legal-comments=none",
)


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


class Bundler(Protocol):
    async def compile(
        self,
        entry_map: dict[str, str],
        externals: Externals,
        *,
        minify: bool,
        cwd: str,
    ) -> CompileOutcome: ...


class Minifier(Protocol):
    async def minify(self, source: str) -> str: ...

    async def minify_modules(self, sources: list[str]) -> str: ...


# ---------------------------------------------------------------------------
# esbuild bundler
# ---------------------------------------------------------------------------


def external_flags(externals: Externals) -> list[str]:
    """``--external`` flags covering each name and its sub-paths."""
    flags: list[str] = []
    for name in externals.all_names():
        flags.append(f"--external:{name}")
        flags.append(f"--external:{name}/*")
    return flags


class EsbuildBundler:
    """Runs ``esbuild --bundle`` inside the install directory."""

    def __init__(self, binary: str | None = None, *, timeout_s: int | None = None) -> None:
        self.binary = binary or settings.ESBUILD_BIN
        self.timeout_s = timeout_s or settings.BUILD_TIMEOUT_S

    def build_argv(
        self,
        entry_map: dict[str, str],
        externals: Externals,
        *,
        minify: bool,
        outdir: str,
        metafile: str,
    ) -> list[str]:
        argv = [self.binary]
        argv.extend(f"{name}={path}" for name, path in entry_map.items())
        argv.extend([
            "--bundle",
            f"--outdir={outdir}",
            f"--entry-names={ENTRY_NAMES}",
            f"--metafile={metafile}",
            "--asset-names=assets/[name]-[hash]",
            "--platform=browser",
            "--format=esm",
            "--define:process.env.NODE_ENV=\"production\"",
            *_COMMON_FLAGS,
        ])
        argv.extend(f"--loader:{ext}={loader}" for ext, loader in ASSET_LOADERS.items())
        if minify:
            argv.append("--minify")
        argv.extend(external_flags(externals))
        return argv

    async def compile(
        self,
        entry_map: dict[str, str],
        externals: Externals,
        *,
        minify: bool,
        cwd: str,
    ) -> CompileOutcome:
        build_id = uuid.uuid4().hex[:8]
        outdir = os.path.join(cwd, f"dist-{build_id}")
        metafile = os.path.join(cwd, f"meta-{build_id}.json")
        argv = self.build_argv(
            entry_map, externals, minify=minify, outdir=outdir, metafile=metafile,
        )

        try:
            result = await run(argv, cwd=cwd, timeout_s=self.timeout_s)
            if not result.ok:
                return CompileOutcome(
                    succeeded=False,
                    diagnostics=_failure_diagnostics(result.stderr, result.exit_code, result.killed),
                )
            return CompileOutcome(artifacts=_read_artifacts(metafile, cwd))
        finally:
            shutil.rmtree(outdir, ignore_errors=True)
            Path(metafile).unlink(missing_ok=True)


def _failure_diagnostics(stderr: str, exit_code: int, killed: bool) -> list[BuildDiagnostic]:
    diagnostics = parse_esbuild_log(stderr)
    if diagnostics:
        return diagnostics
    if killed:
        return [diagnostic_from_message("Bundler timed out")]
    text = stderr.strip() or f"Bundler exited with code {exit_code}"
    return [diagnostic_from_message(text)]


def _read_artifacts(metafile: str, cwd: str) -> list[Artifact]:
    try:
        with open(metafile, encoding="utf-8") as fh:
            meta = json.load(fh)
    except (OSError, json.JSONDecodeError) as exc:
        raise UnexpectedBuildError(
            exc, message=f"Bundler succeeded but its metafile is unreadable: {exc}",
        ) from exc

    artifacts: list[Artifact] = []
    for output_key, output in (meta.get("outputs") or {}).items():
        # file-loader outputs (images, fonts) are not size-reported
        if output_key.endswith(".map") or "/assets/" in output_key.replace("\\", "/"):
            continue
        output_path = os.path.join(cwd, output_key)
        try:
            contents = Path(output_path).read_bytes()
        except OSError as exc:
            raise UnexpectedBuildError(
                exc, message=f"Bundler output '{output_key}' is missing",
            ) from exc

        modules = [
            _read_module(input_key, cwd)
            for input_key, usage in (output.get("inputs") or {}).items()
            if usage.get("bytesInOutput", 0) > 0
        ]
        artifacts.append(Artifact(
            file_name=os.path.basename(output_key),
            contents=contents,
            modules=modules,
        ))
    return artifacts


def _read_module(identifier: str, cwd: str) -> BundleModule:
    """Turn a metafile input key into a module; non-file inputs get no source."""
    path = os.path.normpath(os.path.join(cwd, identifier))
    source: str | None = None
    if os.path.isfile(path):
        try:
            source = Path(path).read_text(encoding="utf-8", errors="replace")
        except OSError:
            logger.warning("Could not read bundled module %s", path)
    return BundleModule(identifier=identifier, path=path, source=source)


# ---------------------------------------------------------------------------
# esbuild minifier
# ---------------------------------------------------------------------------


def scope_module(script: str) -> str:
    """Wrap a CommonJS *script* so its top-level names stay private."""
    return f"(function(){{{script}\n}})();"


class EsbuildMinifier:
    """Pipes source text through ``esbuild --minify``."""

    def __init__(self, binary: str | None = None, *, timeout_s: int | None = None) -> None:
        self.binary = binary or settings.ESBUILD_BIN
        self.timeout_s = timeout_s or settings.BUILD_TIMEOUT_S

    async def minify(self, source: str) -> str:
        """Return the minified form of *source*.

        Raises
        ------
        ToolFailure
            When esbuild rejects the input; ``message`` and ``file_path``
            carry the first reported error.
        """
        argv = [self.binary, "--minify", "--loader=js", *_COMMON_FLAGS]
        result = await run(argv, timeout_s=self.timeout_s, input_text=source)
        if not result.ok:
            raise self._failure(result)
        return result.stdout

    async def minify_modules(self, sources: list[str]) -> str:
        """Minify *sources* as one script, each module in its own scope.

        Modules are converted to CommonJS first, so ``import`` / ``export``
        statements and clashing top-level names survive the wrapping.
        """
        scripts = await self.to_commonjs(sources)
        return await self.minify("\n".join(scope_module(s) for s in scripts))

    async def to_commonjs(self, sources: list[str]) -> list[str]:
        """Convert every module in *sources* to CommonJS in one esbuild run."""
        if not sources:
            return []
        workdir = tempfile.mkdtemp(prefix="bundle-stats-cjs-")
        try:
            names = [f"module-{index}.js" for index in range(len(sources))]
            for name, source in zip(names, sources):
                Path(workdir, name).write_text(source, encoding="utf-8")
            outdir = os.path.join(workdir, "out")
            argv = [self.binary, *names, "--format=cjs", f"--outdir={outdir}", *_COMMON_FLAGS]
            result = await run(argv, cwd=workdir, timeout_s=self.timeout_s)
            if not result.ok:
                raise self._failure(result)
            return [Path(outdir, name).read_text(encoding="utf-8") for name in names]
        finally:
            shutil.rmtree(workdir, ignore_errors=True)

    def _failure(self, result: RunResult) -> ToolFailure:
        diagnostics = parse_esbuild_log(result.stderr)
        first = diagnostics[0] if diagnostics else None
        return ToolFailure(
            self.binary,
            result.stderr,
            exit_code=result.exit_code,
            file_path=first.file if first else "",
            message=first.message if first else (result.stderr.strip() or None),
        )


__all__ = [
    "ASSET_LOADERS",
    "Bundler",
    "EsbuildBundler",
    "EsbuildMinifier",
    "Minifier",
    "external_flags",
    "scope_module",
]
