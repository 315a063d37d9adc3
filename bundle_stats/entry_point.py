"""Entry-point synthesis — entry modules that pull a package into a bundle.

An entry imports either the whole package or exactly the requested
bindings and references each one, so the bundler keeps them alive.
"""

from __future__ import annotations

import logging
from pathlib import Path

from bundle_stats.errors import EntryPointError

logger = logging.getLogger(__name__)

DEFAULT_ENTRY_FILENAME = "index.js"


def render_entry_source(
    package_name: str,
    *,
    esm: bool = False,
    custom_imports: list[str] | None = None,
) -> str:
    """Return the entry source for *package_name*.

    ESM entries use ``import``; CJS entries use ``require``.  With
    *custom_imports* only those bindings are imported.
    """
    if custom_imports:
        names = ", ".join(custom_imports)
        if esm:
            return f"import {{ {names} }} from '{package_name}';\nconsole.log({names});\n"
        return f"const {{ {names} }} = require('{package_name}');\nconsole.log({names});\n"

    if esm:
        return f"import p from '{package_name}';\nconsole.log(p);\n"
    return f"const p = require('{package_name}');\nconsole.log(p);\n"


def create_entry_point(
    package_name: str,
    install_path: str | Path,
    *,
    esm: bool = False,
    custom_imports: list[str] | None = None,
    entry_filename: str | None = None,
) -> Path:
    """Write an entry module into *install_path* and return its path.

    An existing file of the same name is overwritten.

    Raises
    ------
    EntryPointError
        When the file cannot be written.
    """
    entry_path = Path(install_path) / (entry_filename or DEFAULT_ENTRY_FILENAME)
    source = render_entry_source(
        package_name, esm=esm, custom_imports=custom_imports,
    )
    try:
        entry_path.write_text(source, encoding="utf-8")
    except OSError as exc:
        raise EntryPointError(
            exc,
            {"entry_path": str(entry_path)},
            message=f"Could not write entry point '{entry_path}': {exc}",
        ) from exc

    logger.debug("Wrote entry point %s for %s", entry_path, package_name)
    return entry_path


__all__ = [
    "DEFAULT_ENTRY_FILENAME",
    "create_entry_point",
    "render_entry_source",
]
