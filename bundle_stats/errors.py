"""Build-stats error hierarchy.

Every error wraps the original failure payload under a discriminant
``name`` so callers can branch without string matching.  Errors carry
typed fields (not just a message string), support ``to_dict()`` for
serialisation, and have a readable ``__str__`` for logging.
"""

from __future__ import annotations

from typing import Any


class BuildStatsError(Exception):
    """Base error for all package-analysis failures."""

    def __init__(
        self,
        original_error: Any = None,
        extra: dict | None = None,
        *,
        message: str | None = None,
    ) -> None:
        self.original_error = original_error
        self.extra = extra or {}
        self.message = message or _describe(original_error) or type(self).__name__
        super().__init__(self.message)

    @property
    def name(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "message": self.message,
            "original_error": _serialisable(self.original_error),
            "extra": self.extra,
        }

    def __str__(self) -> str:
        return f"{self.name}: {self.message}"


class EntryPointError(BuildStatsError):
    """Entry file unwritable, or the package cannot resolve itself."""


class MissingDependencyError(BuildStatsError):
    """Unresolved imports exceed what can be auto-externalized."""

    def __init__(
        self,
        original_error: Any = None,
        extra: dict | None = None,
        *,
        message: str | None = None,
    ) -> None:
        extra = dict(extra or {})
        extra.setdefault("missing_modules", [])
        if message is None and extra["missing_modules"]:
            message = "Missing dependencies: " + ", ".join(extra["missing_modules"])
        super().__init__(original_error, extra, message=message)

    @property
    def missing_modules(self) -> list[str]:
        return list(self.extra.get("missing_modules", []))


class BuildError(BuildStatsError):
    """Generic compile failure."""


class CLIBuildError(BuildError):
    """Compile failure caused by a hashbang line (a CLI-only package)."""


class UnexpectedBuildError(BuildStatsError):
    """The bundler output violated an invariant the caller relies on."""


class MinifyError(BuildStatsError):
    """The minifier rejected a dependency's source."""


class PackageNotFoundError(BuildStatsError):
    """The registry does not know the requested package or version."""


class InstallError(BuildStatsError):
    """Every configured package manager failed to install the package."""


class ModuleResolutionError(BuildStatsError):
    """A specifier could not be resolved from its context directory."""

    def __init__(self, specifier: str, context: str, *, reason: str = "") -> None:
        self.specifier = specifier
        self.context = context
        msg = f"Cannot resolve module '{specifier}' from '{context}'"
        if reason:
            msg = f"{msg} ({reason})"
        super().__init__(
            reason or None,
            {"specifier": specifier, "context": context},
            message=msg,
        )


class ExportParseError(BuildStatsError):
    """A module's source could not be scanned for export statements."""

    def __init__(self, reason: str, *, file_path: str = "", offset: int = -1) -> None:
        self.reason = reason
        self.file_path = file_path
        self.offset = offset
        where = f" in '{file_path}'" if file_path else ""
        detail: dict = {"reason": reason, "offset": offset}
        if file_path:
            detail["file_path"] = file_path
        super().__init__(reason, detail, message=f"Parse error{where}: {reason}")


class ToolFailure(BuildStatsError):
    """An external tool (bundler, minifier, package manager) exited non-zero."""

    def __init__(
        self,
        tool: str,
        stderr: str,
        *,
        exit_code: int = -1,
        file_path: str = "",
        message: str | None = None,
    ) -> None:
        self.tool = tool
        self.stderr = stderr
        self.exit_code = exit_code
        self.file_path = file_path
        super().__init__(
            stderr,
            {"tool": tool, "exit_code": exit_code, "file_path": file_path},
            message=message or f"'{tool}' failed with exit code {exit_code}",
        )


class CommandRejected(BuildStatsError):
    """The runner refused to launch a command."""

    def __init__(self, reason: str, argv: list[str] | None = None) -> None:
        self.reason = reason
        self.argv = list(argv or [])
        super().__init__(None, {"argv": self.argv}, message=reason)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _describe(original: Any) -> str:
    if original is None:
        return ""
    if isinstance(original, BaseException):
        return str(original) or type(original).__name__
    if isinstance(original, (list, tuple)):
        return "; ".join(str(item) for item in original[:3])
    return str(original)


def _serialisable(original: Any) -> Any:
    if original is None or isinstance(original, (str, int, float, bool)):
        return original
    if isinstance(original, (list, tuple)):
        return [_serialisable(item) for item in original]
    if isinstance(original, dict):
        return {str(k): _serialisable(v) for k, v in original.items()}
    if isinstance(original, BuildStatsError):
        return original.to_dict()
    return str(original)


__all__ = [
    "BuildError",
    "BuildStatsError",
    "CLIBuildError",
    "CommandRejected",
    "EntryPointError",
    "ExportParseError",
    "InstallError",
    "MinifyError",
    "MissingDependencyError",
    "ModuleResolutionError",
    "PackageNotFoundError",
    "ToolFailure",
    "UnexpectedBuildError",
]
