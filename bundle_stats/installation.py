"""Package installation into throwaway directories.

Each analysis gets its own directory under ``settings.TMP_DIR/packages``
holding a stub ``package.json``; the package is installed there with
npm, yarn or pnpm (tried in ``settings.INSTALL_CLIENTS`` order) and the
directory is removed afterwards.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import re
import shutil
import time
import uuid
from collections.abc import AsyncIterator

from bundle_stats import telemetry as tm
from bundle_stats.config import settings
from bundle_stats.contracts import InstallOptions
from bundle_stats.errors import InstallError, PackageNotFoundError
from bundle_stats.runner import RunResult, run

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_UNSAFE_FILENAME_RE = re.compile(r'[/\\?<>:*|"\x00-\x1f\x80-\x9f]')
_NOT_FOUND_RE = re.compile(r"code E404|ERR_PNPM_FETCH_404|\b404 Not Found\b|ERR_PNPM_NO_MATCHING_VERSION|ETARGET")


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------


def get_install_path(package_name: str) -> str:
    """A fresh, filesystem-safe directory path for installing *package_name*."""
    short_id = uuid.uuid4().hex[:6]
    directory = _UNSAFE_FILENAME_RE.sub("", f"build-{package_name}-{short_id}")
    return os.path.join(settings.TMP_DIR, "packages", directory)


def _prepare_path_sync(install_path: str) -> None:
    os.makedirs(install_path, exist_ok=True)
    with open(os.path.join(install_path, "package.json"), "w", encoding="utf-8") as fh:
        json.dump({"dependencies": {}}, fh)


async def prepare_path(package_name: str) -> str:
    """Create an install directory with an empty-dependency ``package.json``."""
    install_path = get_install_path(package_name)
    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, _prepare_path_sync, install_path)
    logger.debug("Prepared install directory %s", install_path)
    return install_path


async def cleanup_path(install_path: str) -> None:
    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, lambda: shutil.rmtree(install_path, ignore_errors=True))
    logger.debug("Removed install directory %s", install_path)


@contextlib.asynccontextmanager
async def install_directory(package_name: str, *, debug: bool = False) -> AsyncIterator[str]:
    """Yield a prepared install directory; remove it on exit unless *debug*."""
    install_path = await prepare_path(package_name)
    try:
        yield install_path
    finally:
        if debug:
            logger.info("Keeping install directory %s", install_path)
        else:
            await cleanup_path(install_path)


# ---------------------------------------------------------------------------
# Client commands
# ---------------------------------------------------------------------------


def install_command(
    client: str,
    package_spec: str,
    options: InstallOptions,
) -> list[str]:
    """argv that adds *package_spec* (plus extras) with *client*."""
    packages = [package_spec, *options.additional_packages]
    network_concurrency = options.network_concurrency or settings.NETWORK_CONCURRENCY

    if client == "yarn":
        argv = [
            "yarn", "add", *packages,
            "--ignore-flags", "--ignore-engines", "--skip-integrity-check",
            "--exact", "--json", "--no-progress", "--silent", "--no-lockfile",
            "--no-bin-links", "--ignore-optional",
        ]
        if options.limit_concurrency:
            argv.extend(["--mutex", "network"])
        if network_concurrency:
            argv.extend(["--network-concurrency", str(network_concurrency)])
        return argv

    if client == "npm":
        return [
            "npm", "install", *packages,
            # cache under TMP_DIR, shared by concurrent installs
            f"--cache={os.path.join(settings.TMP_DIR, 'cache')}",
            "--no-package-lock", "--no-shrinkwrap", "--omit=optional",
            "--no-bin-links", "--progress=false", "--loglevel=error",
            "--ignore-scripts", "--save-exact", "--omit=dev", "--no-audit",
            "--no-fund", "--json",
        ]

    if client == "pnpm":
        argv = [
            "pnpm", "add", *packages,
            "--no-optional", "--loglevel=error", "--ignore-scripts", "--save-exact",
        ]
        if network_concurrency:
            argv.append(f"--network-concurrency={network_concurrency}")
        return argv

    raise InstallError(None, {"client": client}, message=f"Unknown install client '{client}'")


def _client_order(options: InstallOptions) -> list[str]:
    if options.is_local:
        # Local directories are packed with npm first.
        return ["npm"]
    order = list(settings.INSTALL_CLIENTS)
    if options.client:
        order = [options.client, *(c for c in order if c != options.client)]
    return order


async def _pack_local(package_path: str, install_path: str, timeout_s: int) -> str:
    """``npm pack`` a local package into *install_path*; return the tarball path.

    Packing copies the package's files instead of symlinking the folder.
    """
    result = await run(
        ["npm", "pack", "--ignore-scripts", os.path.abspath(package_path),
         f"--pack-destination={install_path}"],
        cwd=install_path,
        timeout_s=timeout_s,
    )
    lines = [line.strip() for line in result.stdout.splitlines() if line.strip()]
    if not result.ok or not lines:
        raise InstallError(
            result.stderr,
            {"client": "npm", "exit_code": result.exit_code},
            message=f"Could not pack local package '{package_path}'",
        )
    return os.path.join(install_path, lines[-1])


def _is_not_found(result: RunResult) -> bool:
    return bool(_NOT_FOUND_RE.search(result.stderr) or _NOT_FOUND_RE.search(result.stdout))


# ---------------------------------------------------------------------------
# Install
# ---------------------------------------------------------------------------


async def install_package(
    package_string: str,
    install_path: str,
    options: InstallOptions | None = None,
    *,
    telemetry: tm.TelemetrySink | None = None,
) -> str:
    """Install *package_string* into *install_path*; return the client used.

    Clients are tried in order until one succeeds.  A registry 404 stops
    the fallback immediately.

    Raises
    ------
    PackageNotFoundError
        The registry does not know the package or version.
    InstallError
        Every client failed (or timed out).
    """
    options = options or InstallOptions()
    timeout_s = options.install_timeout_s or settings.INSTALL_TIMEOUT_S
    start = time.perf_counter()
    log_options = options.model_dump(exclude={"additional_packages"})

    try:
        package_spec = package_string
        if options.is_local:
            package_spec = await _pack_local(package_string, install_path, timeout_s)

        failures: list[str] = []
        for client in _client_order(options):
            argv = install_command(client, package_spec, options)
            logger.debug("install start %s (%s)", package_string, client)
            result = await run(argv, cwd=install_path, timeout_s=timeout_s)
            if result.ok:
                logger.debug("install finish %s (%s)", package_string, client)
                tm.record(
                    telemetry, tm.PACKAGE_INSTALL, package_string, start,
                    ok=True, options={**log_options, "client": client},
                )
                return client

            if _is_not_found(result):
                raise PackageNotFoundError(
                    result.stderr,
                    {"client": client},
                    message=f"Package '{package_string}' was not found in the registry",
                )
            reason = "timed out" if result.killed else f"exited with code {result.exit_code}"
            logger.warning("%s install of %s %s", client, package_string, reason)
            failures.append(f"{client}: {result.stderr.strip() or reason}")

        raise InstallError(
            failures,
            {"clients": _client_order(options)},
            message=f"Could not install '{package_string}'",
        )
    except Exception as exc:
        tm.record(
            telemetry, tm.PACKAGE_INSTALL, package_string, start,
            ok=False, options=log_options, error=exc,
        )
        raise


__all__ = [
    "cleanup_path",
    "get_install_path",
    "install_command",
    "install_directory",
    "install_package",
    "prepare_path",
]
