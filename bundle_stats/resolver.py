"""Module resolution — map ``(context directory, specifier)`` to a file.

``NodeResolver`` implements the Node.js lookup rules needed to follow a
package's re-export graph:

- relative and absolute specifiers, with extension and ``index`` probing;
- bare specifiers, searched through every ancestor ``node_modules``;
- ``package.json`` ``exports`` (strings, arrays, condition objects,
  subpaths, ``*`` patterns, ``null`` exclusions) and ``imports`` (``#x``);
- ``main`` fields when a package has no ``exports``.

Conditions and main fields are tried in the configured priority order,
ESM first.  Symlinks are never resolved, so returned paths stay under
the directory they were looked up from.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Protocol

from bundle_stats.errors import ModuleResolutionError
from bundle_stats.packages import package_name_from_specifier

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_EXTENSIONS: tuple[str, ...] = (
    ".mjs", ".js", ".mts", ".ts", ".jsx", ".tsx", ".cjs", ".cts", ".json",
)
DEFAULT_MAIN_FIELDS: tuple[str, ...] = ("module", "main")
DEFAULT_CONDITIONS: tuple[str, ...] = ("import", "module", "node", "require", "default")

_NOT_FOUND = object()


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class ModuleResolver(Protocol):
    def resolve(self, context: str, specifier: str) -> str: ...


# ---------------------------------------------------------------------------
# Node resolver
# ---------------------------------------------------------------------------


class NodeResolver:
    """Pure-Python Node.js module resolution.

    Parameters
    ----------
    extensions:
        Suffixes tried, in order, for extension-less file specifiers.
    main_fields:
        ``package.json`` fields consulted for a package without ``exports``.
    conditions:
        ``exports`` / ``imports`` condition names in priority order.
    """

    def __init__(
        self,
        *,
        extensions: tuple[str, ...] = DEFAULT_EXTENSIONS,
        main_fields: tuple[str, ...] = DEFAULT_MAIN_FIELDS,
        conditions: tuple[str, ...] = DEFAULT_CONDITIONS,
    ) -> None:
        self.extensions = extensions
        self.main_fields = main_fields
        self.conditions = conditions
        self._package_json: dict[str, Any] = {}

    def resolve(self, context: str, specifier: str) -> str:
        """Return the absolute path *specifier* refers to from *context*.

        Raises ``ModuleResolutionError`` when nothing matches.
        """
        if not specifier:
            raise ModuleResolutionError(specifier, context, reason="empty specifier")
        context = os.path.abspath(context)

        if _is_path_specifier(specifier):
            path = os.path.normpath(os.path.join(context, specifier))
            found = self._load_as_file(path) or self._load_as_directory(path)
            if found:
                return found
            raise ModuleResolutionError(specifier, context, reason="no such file")

        if specifier.startswith("#"):
            return self._resolve_imports(context, specifier)
        return self._resolve_package(context, specifier)

    # -- packages ----------------------------------------------------------

    def _resolve_package(self, context: str, specifier: str) -> str:
        name = package_name_from_specifier(specifier)
        rest = specifier[len(name):]

        for modules_dir in node_modules_paths(context):
            package_dir = os.path.join(modules_dir, *name.split("/"))
            if not os.path.isdir(package_dir):
                continue

            package_json = self._read_package_json(package_dir)
            exports = package_json.get("exports") if package_json else None
            if exports is not None:
                found = self._resolve_exports(package_dir, exports, "." + rest)
                if found:
                    return found
                raise ModuleResolutionError(
                    specifier, context,
                    reason=f"'.{rest}' is not exported by '{name}'",
                )

            path = os.path.join(package_dir, rest.lstrip("/")) if rest else package_dir
            found = (self._load_as_file(path) if rest else None) or self._load_as_directory(path)
            if found:
                return found

        raise ModuleResolutionError(specifier, context, reason="package not found")

    def _resolve_exports(self, package_dir: str, exports: Any, subpath: str) -> str | None:
        if isinstance(exports, dict) and any(k.startswith(".") for k in exports):
            matched = match_subpath(exports, subpath)
            if matched is None:
                return None
            target, star = matched
            return self._resolve_target(package_dir, target, star)
        # Sugar: the whole value describes ".".
        if subpath != ".":
            return None
        return self._resolve_target(package_dir, exports, "")

    def _resolve_imports(self, context: str, specifier: str) -> str:
        package_dir = find_package_dir(context)
        package_json = self._read_package_json(package_dir) if package_dir else None
        imports = package_json.get("imports") if package_json else None
        if not isinstance(imports, dict):
            raise ModuleResolutionError(specifier, context, reason="no 'imports' map")

        matched = match_subpath(imports, specifier)
        found = None
        if matched is not None:
            target, star = matched
            found = self._resolve_target(package_dir, target, star, allow_bare=True)
        if found is None:
            raise ModuleResolutionError(
                specifier, context, reason="not defined in the 'imports' map",
            )
        return found

    def _resolve_target(
        self,
        package_dir: str,
        target: Any,
        star: str,
        *,
        allow_bare: bool = False,
    ) -> str | None:
        if isinstance(target, str):
            value = target.replace("*", star)
            if not value.startswith("./"):
                if allow_bare:
                    try:
                        return self.resolve(package_dir, value)
                    except ModuleResolutionError:
                        return None
                return None
            path = os.path.normpath(os.path.join(package_dir, value))
            return path if os.path.isfile(path) else None

        if isinstance(target, list):
            for item in target:
                found = self._resolve_target(package_dir, item, star, allow_bare=allow_bare)
                if found:
                    return found
            return None

        if isinstance(target, dict):
            for condition in self.conditions:
                if condition in target:
                    found = self._resolve_target(
                        package_dir, target[condition], star, allow_bare=allow_bare,
                    )
                    if found:
                        return found
            return None

        return None

    # -- files and directories ---------------------------------------------

    def _load_as_file(self, path: str) -> str | None:
        if os.path.isfile(path):
            return path
        for ext in self.extensions:
            if os.path.isfile(path + ext):
                return path + ext
        return None

    def _load_index(self, path: str) -> str | None:
        for ext in self.extensions:
            candidate = os.path.join(path, "index" + ext)
            if os.path.isfile(candidate):
                return candidate
        return None

    def _load_as_directory(self, path: str) -> str | None:
        if not os.path.isdir(path):
            return None
        package_json = self._read_package_json(path)
        if package_json:
            for field in self.main_fields:
                value = package_json.get(field)
                if not isinstance(value, str) or not value:
                    continue
                target = os.path.normpath(os.path.join(path, value))
                found = self._load_as_file(target) or (
                    self._load_index(target) if os.path.isdir(target) else None
                )
                if found:
                    return found
        return self._load_index(path)

    def _read_package_json(self, directory: str) -> dict[str, Any] | None:
        cached = self._package_json.get(directory, _NOT_FOUND)
        if cached is not _NOT_FOUND:
            return cached
        data: dict[str, Any] | None = None
        path = os.path.join(directory, "package.json")
        if os.path.isfile(path):
            try:
                with open(path, encoding="utf-8") as fh:
                    loaded = json.load(fh)
                data = loaded if isinstance(loaded, dict) else None
            except (OSError, json.JSONDecodeError):
                logger.warning("Ignoring unreadable %s", path)
        self._package_json[directory] = data
        return data


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _is_path_specifier(specifier: str) -> bool:
    return (
        specifier in (".", "..")
        or specifier.startswith(("./", "../"))
        or os.path.isabs(specifier)
    )


def node_modules_paths(context: str) -> list[str]:
    """Every ``node_modules`` directory searched from *context*, nearest first."""
    paths: list[str] = []
    directory = os.path.abspath(context)
    while True:
        if os.path.basename(directory) != "node_modules":
            paths.append(os.path.join(directory, "node_modules"))
        parent = os.path.dirname(directory)
        if parent == directory:
            return paths
        directory = parent


def find_package_dir(context: str) -> str | None:
    """Nearest directory at or above *context* holding a ``package.json``."""
    directory = os.path.abspath(context)
    while True:
        if os.path.isfile(os.path.join(directory, "package.json")):
            return directory
        parent = os.path.dirname(directory)
        if parent == directory:
            return None
        directory = parent


def match_subpath(mapping: dict[str, Any], key: str) -> tuple[Any, str] | None:
    """Find the ``exports`` / ``imports`` entry for *key*.

    Exact keys win; otherwise the ``*`` pattern with the longest prefix
    matches and the text it covers is returned alongside the target.
    """
    if key in mapping and "*" not in key:
        return mapping[key], ""

    best_key: str | None = None
    best_star = ""
    for candidate in mapping:
        star_at = candidate.find("*")
        if star_at == -1:
            continue
        prefix, suffix = candidate[:star_at], candidate[star_at + 1:]
        if not key.startswith(prefix) or key == prefix:
            continue
        if suffix and (not key.endswith(suffix) or len(key) < len(candidate)):
            continue
        if best_key is None or len(prefix) > best_key.find("*"):
            best_key = candidate
            best_star = key[len(prefix):len(key) - len(suffix)] if suffix else key[len(prefix):]
    if best_key is None:
        return None
    return mapping[best_key], best_star


__all__ = [
    "DEFAULT_CONDITIONS",
    "DEFAULT_EXTENSIONS",
    "DEFAULT_MAIN_FIELDS",
    "ModuleResolver",
    "NodeResolver",
    "find_package_dir",
    "match_subpath",
    "node_modules_paths",
]
