"""Package helpers — package-string parsing, name validation, externals.

Pure functions apart from the ``package.json`` reads, which go straight
to disk (the install directory is local and owned by the caller).
"""

from __future__ import annotations

import json
import os
import re
from typing import Any

from pydantic import BaseModel, ConfigDict

from bundle_stats.contracts import Externals, PackageJSONDetails
from bundle_stats.errors import UnexpectedBuildError

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Node.js core modules.  Anything here that a package does not list as a
# real npm dependency is treated as supplied by the host at load time.
BUILTIN_MODULES: tuple[str, ...] = (
    "assert", "assert/strict", "async_hooks", "buffer", "child_process",
    "cluster", "console", "constants", "crypto", "dgram",
    "diagnostics_channel", "dns", "dns/promises", "domain", "events", "fs",
    "fs/promises", "http", "http2", "https", "inspector", "module", "net",
    "os", "path", "path/posix", "path/win32", "perf_hooks", "process",
    "punycode", "querystring", "readline", "readline/promises", "repl",
    "stream", "stream/consumers", "stream/promises", "stream/web",
    "string_decoder", "sys", "timers", "timers/promises", "tls",
    "trace_events", "tty", "url", "util", "util/types", "v8", "vm", "wasi",
    "worker_threads", "zlib",
)

MAX_PACKAGE_NAME_LENGTH = 214

_PACKAGE_NAME_RE = re.compile(
    r"^(?:@[a-z0-9\-~][a-z0-9\-._~]*/)?[a-z0-9\-~][a-z0-9\-._~]*$"
)
_RESERVED_NAMES: frozenset[str] = frozenset({"node_modules", "favicon.ico"})
_TILDE_RE = re.compile(r"^~(?=$|/|\\)")


# ---------------------------------------------------------------------------
# Package strings
# ---------------------------------------------------------------------------


class ParsedPackage(BaseModel):
    """A package string split into its parts."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str | None = None
    scoped: bool = False
    is_local: bool = False
    normal_path: str | None = None


def _expand_tilde(package_string: str) -> str:
    home = os.path.expanduser("~")
    if not home or home == "~":
        return package_string
    return _TILDE_RE.sub(lambda _m: home, package_string)


def _is_local_package_string(package_string: str) -> bool:
    return os.path.isfile(os.path.join(os.path.abspath(package_string), "package.json"))


def parse_package_string(package_string: str) -> ParsedPackage:
    """Split ``name@version`` / ``@scope/name@version`` / a local path.

    A string naming a directory that holds a ``package.json`` is treated
    as a local package and its name and version are read from that file.
    """
    normal = _expand_tilde(package_string)

    if _is_local_package_string(normal):
        data = _load_json(os.path.join(os.path.abspath(normal), "package.json"))
        name = str(data.get("name", ""))
        return ParsedPackage(
            name=name,
            version=data.get("version"),
            scoped=name.startswith("@"),
            is_local=True,
            normal_path=normal,
        )

    scoped = normal.startswith("@")
    last_at = normal.rfind("@")
    if (scoped and last_at == 0) or last_at == -1:
        return ParsedPackage(name=normal, version=None, scoped=scoped)
    return ParsedPackage(
        name=normal[:last_at],
        version=normal[last_at + 1:] or None,
        scoped=scoped,
    )


def package_name_from_specifier(specifier: str) -> str:
    """Strip any sub-path from an import specifier.

    ``@babel/runtime/helpers/x`` → ``@babel/runtime``,
    ``lodash/fp/map`` → ``lodash``.
    """
    parts = specifier.split("/")
    if specifier.startswith("@") and len(parts) >= 2:
        return "/".join(parts[:2])
    return parts[0]


def is_valid_package_name(name: str) -> bool:
    """Return True when *name* is acceptable as a new npm package name."""
    if not name or len(name) > MAX_PACKAGE_NAME_LENGTH:
        return False
    if name != name.strip() or name.startswith((".", "_")):
        return False
    if name.lower() in _RESERVED_NAMES:
        return False
    return bool(_PACKAGE_NAME_RE.match(name))


# ---------------------------------------------------------------------------
# package.json
# ---------------------------------------------------------------------------


def _load_json(path: str) -> dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as fh:
            data = json.load(fh)
    except (OSError, json.JSONDecodeError) as exc:
        raise UnexpectedBuildError(
            exc, {"path": path}, message=f"Could not read '{path}': {exc}",
        ) from exc
    if not isinstance(data, dict):
        raise UnexpectedBuildError(
            None, {"path": path}, message=f"'{path}' is not a JSON object",
        )
    return data


def installed_package_json_path(package_name: str, install_path: str) -> str:
    return os.path.join(install_path, "node_modules", *package_name.split("/"), "package.json")


def read_installed_package_json(package_name: str, install_path: str) -> dict[str, Any]:
    return _load_json(installed_package_json_path(package_name, install_path))


def get_externals(package_name: str, install_path: str) -> Externals:
    """Peer dependencies plus built-ins the package does not depend on itself.

    A built-in name that the package lists as a real dependency (e.g. the
    ``buffer`` polyfill), or that is the package itself, gets bundled.
    """
    package_json = read_installed_package_json(package_name, install_path)
    dependencies = list((package_json.get("dependencies") or {}).keys())
    peer_dependencies = list((package_json.get("peerDependencies") or {}).keys())

    built_ins = [
        mod for mod in BUILTIN_MODULES
        if mod not in dependencies and mod != package_name
    ]
    return Externals(
        external_packages=peer_dependencies,
        external_built_ins=built_ins,
    )


def package_json_details(package_json: dict[str, Any]) -> PackageJSONDetails:
    """Extract the size-report facts from a parsed ``package.json``."""
    side_effects = package_json.get("sideEffects", True)
    if not isinstance(side_effects, (bool, list)):
        side_effects = bool(side_effects)
    return PackageJSONDetails(
        dependency_count=len(package_json.get("dependencies") or {}),
        has_js_next=package_json.get("jsnext:main") or False,
        has_js_module=package_json.get("module") or False,
        is_module_type=package_json.get("type") == "module",
        has_side_effects=side_effects,
        peer_dependencies=list((package_json.get("peerDependencies") or {}).keys()),
    )


def read_package_json_details(package_name: str, install_path: str) -> PackageJSONDetails:
    return package_json_details(read_installed_package_json(package_name, install_path))


__all__ = [
    "BUILTIN_MODULES",
    "ParsedPackage",
    "get_externals",
    "installed_package_json_path",
    "is_valid_package_name",
    "package_json_details",
    "package_name_from_specifier",
    "parse_package_string",
    "read_installed_package_json",
    "read_package_json_details",
]
