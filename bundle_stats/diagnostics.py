"""Build diagnostics — parse bundler logs and classify build failures.

``parse_esbuild_log`` turns raw esbuild stderr into tagged
``BuildDiagnostic`` models; this is the only place message wording is
inspected.  ``classify_failure`` then reduces a diagnostic list to one
``BuildFailure`` the retry loop can act on.

All functions are pure (string in → model out).
"""

from __future__ import annotations

import enum
import re

from pydantic import BaseModel, ConfigDict, Field

from bundle_stats.contracts import BuildDiagnostic
from bundle_stats.packages import package_name_from_specifier

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Current esbuild:   ✘ [ERROR] Could not resolve "foo"
# (Windows consoles print "X" instead of the heavy cross.)
_ERROR_HEADER_RE = re.compile(r"^\s*(?:[✘X×]\s*)?\[ERROR\]\s+(.+?)\s*(?:\[[\w-]+\])?$")
# Location line under a header:      index.js:1:14:
_LOCATION_RE = re.compile(r"^\s+(.+?):(\d+):(\d+):\s*$")
# Legacy esbuild:    > index.js:1:14: error: Could not resolve "foo"
_LEGACY_RE = re.compile(r"^>\s*(.+?):(\d+):(\d+):\s+error:\s+(.+)$")
# Summary form:      index.js:1:14: ERROR: Could not resolve "foo"
_SUMMARY_RE = re.compile(r"^(.+?):(\d+):(\d+):\s+ERROR:\s+(.+)$")

_NOT_RESOLVED_RE = re.compile(r"""Could not resolve ["']([^"']+)["']""")
_HASHBANG_RE = re.compile(
    r"""(?:Unexpected|Syntax error)\s+["']#!?["']|Unexpected character '#'"""
)


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class FailureKind(str, enum.Enum):
    """Outcome of classifying a failed build."""

    ENTRY_POINT = "entry_point"
    MISSING_DEPENDENCY = "missing_dependency"
    CLI = "cli"
    GENERIC = "generic"
    EMPTY = "empty"


class BuildFailure(BaseModel):
    """A classified build failure."""

    model_config = ConfigDict(frozen=True)

    kind: FailureKind
    missing_modules: list[str] = Field(default_factory=list)
    messages: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def diagnostic_from_message(
    message: str,
    *,
    file: str = "",
    line: int = 0,
    column: int = 0,
) -> BuildDiagnostic:
    """Tag a single error message with its ``kind``."""
    missing = _NOT_RESOLVED_RE.search(message)
    if missing:
        return BuildDiagnostic(
            kind="module_not_found",
            message=message,
            file=file,
            line=line,
            column=column,
            specifier=missing.group(1),
        )
    kind = "hashbang" if _HASHBANG_RE.search(message) else "other"
    return BuildDiagnostic(kind=kind, message=message, file=file, line=line, column=column)


def parse_esbuild_log(raw: str) -> list[BuildDiagnostic]:
    """Parse esbuild stderr into diagnostics.

    Understands the boxed ``[ERROR]`` format, the legacy ``> file: error:``
    format and the one-line ``file: ERROR:`` summary format.  Warnings and
    source excerpts are ignored.  Returns an empty list for empty input.
    """
    if not raw or not raw.strip():
        return []

    diagnostics: list[BuildDiagnostic] = []
    lines = raw.splitlines()
    i = 0
    while i < len(lines):
        line = lines[i].rstrip()

        m = _ERROR_HEADER_RE.match(line)
        if m:
            message = m.group(1)
            file, line_no, col = "", 0, 0
            # The location, when present, follows within a couple of lines.
            for j in range(i + 1, min(i + 4, len(lines))):
                loc = _LOCATION_RE.match(lines[j])
                if loc:
                    file, line_no, col = loc.group(1), int(loc.group(2)), int(loc.group(3))
                    break
                if _ERROR_HEADER_RE.match(lines[j]):
                    break
            diagnostics.append(
                diagnostic_from_message(message, file=file, line=line_no, column=col)
            )
            i += 1
            continue

        m = _LEGACY_RE.match(line) or _SUMMARY_RE.match(line)
        if m:
            diagnostics.append(diagnostic_from_message(
                m.group(4).strip(),
                file=m.group(1).strip(),
                line=int(m.group(2)),
                column=int(m.group(3)),
            ))
        i += 1

    return _dedupe(diagnostics)


def _dedupe(diagnostics: list[BuildDiagnostic]) -> list[BuildDiagnostic]:
    # esbuild repeats every error in its "Build failed" summary.
    seen: set[tuple[str, str, int, int]] = set()
    unique: list[BuildDiagnostic] = []
    for diag in diagnostics:
        key = (diag.message, diag.file, diag.line, diag.column)
        if key in seen:
            continue
        seen.add(key)
        unique.append(diag)
    return unique


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def missing_package_names(diagnostics: list[BuildDiagnostic]) -> list[str]:
    """Unique package names behind every ``module_not_found`` diagnostic.

    Sub-paths are stripped (``@babel/runtime/x`` → ``@babel/runtime``),
    order of first appearance is kept.
    """
    names: list[str] = []
    for diag in diagnostics:
        if diag.kind != "module_not_found" or not diag.specifier:
            continue
        name = package_name_from_specifier(diag.specifier)
        if name not in names:
            names.append(name)
    return names


def classify_failure(
    diagnostics: list[BuildDiagnostic],
    package_name: str,
) -> BuildFailure:
    """Reduce *diagnostics* from a failed build to one ``BuildFailure``.

    - any unresolved import → ``MISSING_DEPENDENCY``, or ``ENTRY_POINT``
      when the only unresolved package is *package_name* itself;
    - a hashbang parse error → ``CLI``;
    - anything else → ``GENERIC``; no diagnostics at all → ``EMPTY``.
    """
    messages = [str(d) for d in diagnostics]
    if not diagnostics:
        return BuildFailure(kind=FailureKind.EMPTY)

    missing = missing_package_names(diagnostics)
    if missing:
        if missing == [package_name]:
            return BuildFailure(
                kind=FailureKind.ENTRY_POINT, missing_modules=missing, messages=messages,
            )
        return BuildFailure(
            kind=FailureKind.MISSING_DEPENDENCY, missing_modules=missing, messages=messages,
        )

    if any(d.kind == "hashbang" for d in diagnostics):
        return BuildFailure(kind=FailureKind.CLI, messages=messages)
    return BuildFailure(kind=FailureKind.GENERIC, messages=messages)


__all__ = [
    "BuildFailure",
    "FailureKind",
    "classify_failure",
    "diagnostic_from_message",
    "missing_package_names",
    "parse_esbuild_log",
]
