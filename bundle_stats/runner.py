"""Command runner — structured subprocess execution for external tools.

Provides ``run()`` for executing the bundler, minifier and package
managers and returning structured ``RunResult`` models.  Executable
validation, environment isolation, timeout management and stderr
truncation are all handled transparently.

Commands are argv lists and never pass through a shell.
"""

from __future__ import annotations

import asyncio
import os
import subprocess
import time

from pydantic import BaseModel, ConfigDict, Field

from bundle_stats.errors import CommandRejected

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MAX_STDERR_BYTES: int = 20_000  # 20 KB
DEFAULT_TIMEOUT_S: int = 120

ALLOWED_EXECUTABLES: frozenset[str] = frozenset({
    "esbuild", "node", "npm", "npx", "pnpm", "yarn",
})

# Env vars safe to propagate (no secrets).
_SAFE_ENV_KEYS: tuple[str, ...] = (
    "PATH", "SYSTEMROOT", "TEMP", "TMP", "TMPDIR",
    "HOME", "USERPROFILE", "APPDATA", "LOCALAPPDATA",
    "NODE_OPTIONS", "NODE_EXTRA_CA_CERTS",
    "npm_config_registry", "NPM_CONFIG_REGISTRY",
    "HTTP_PROXY", "HTTPS_PROXY", "NO_PROXY",
)


# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------


class RunResult(BaseModel):
    """Structured result of a subprocess invocation."""

    model_config = ConfigDict(frozen=True)

    exit_code: int = Field(..., description="Process exit code (-1 if crashed)")
    stdout: str = Field(default="", description="Captured stdout (never truncated)")
    stderr: str = Field(default="", description="Captured stderr (may be truncated)")
    duration_ms: int = Field(default=0, ge=0, description="Wall-clock duration in ms")
    truncated: bool = Field(default=False, description="True if stderr was truncated")
    killed: bool = Field(
        default=False,
        description="True if the process was killed due to timeout",
    )
    command: str = Field(..., description="The command that was executed")

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.killed


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def validate_command(
    argv: list[str],
    allowed: frozenset[str] | None = None,
) -> str | None:
    """Check *argv* against the executable allowlist.

    Returns ``None`` when the command is acceptable, or an error-message
    string explaining why it was rejected.
    """
    if not argv or not argv[0].strip():
        return "Error: Command is empty"

    executable = os.path.basename(argv[0])
    stem, ext = os.path.splitext(executable)
    if ext.lower() in (".cmd", ".exe", ".bat"):
        executable = stem

    permitted = allowed if allowed is not None else ALLOWED_EXECUTABLES
    if executable not in permitted:
        return (
            f"Error: Executable '{executable}' not in allowlist. "
            f"Allowed: {', '.join(sorted(permitted))}"
        )
    return None


def _build_env(extra: dict[str, str] | None = None) -> dict[str, str]:
    """Build a restricted environment dict for subprocess execution."""
    env: dict[str, str] = {}
    for key in _SAFE_ENV_KEYS:
        val = os.environ.get(key)
        if val:
            env[key] = val
    if extra:
        env.update(extra)
    return env


def _truncate(text: str, max_bytes: int) -> tuple[str, bool]:
    """Truncate *text* to at most *max_bytes* characters."""
    if len(text) <= max_bytes:
        return text, False
    return (
        text[:max_bytes] + f"\n\n[... truncated at {max_bytes} bytes ...]",
        True,
    )


def _decode(raw: str | bytes | None) -> str:
    if raw is None:
        return ""
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    return raw


# ---------------------------------------------------------------------------
# Core runner
# ---------------------------------------------------------------------------


async def run(
    argv: list[str],
    *,
    timeout_s: int = DEFAULT_TIMEOUT_S,
    cwd: str | None = None,
    env: dict[str, str] | None = None,
    input_text: str | None = None,
    allowed: frozenset[str] | None = None,
) -> RunResult:
    """Execute *argv* in a subprocess and return a ``RunResult``.

    Parameters
    ----------
    argv:
        Executable followed by its arguments.  Must pass ``validate_command``.
    timeout_s:
        Maximum wall-clock seconds before the process is killed.
    cwd:
        Working directory for the subprocess.  ``None`` → inherit.
    env:
        Extra environment variables merged on top of the safe base set.
    input_text:
        Text written to the process's stdin.
    allowed:
        Override ``ALLOWED_EXECUTABLES`` for validation.

    Raises
    ------
    CommandRejected
        When the executable is not in the allowlist.
    """
    error = validate_command(argv, allowed)
    if error:
        raise CommandRejected(error, argv)

    merged_env = _build_env(env)
    command = " ".join(argv)
    start = time.perf_counter()

    def _sync() -> tuple[int, str, str, bool]:
        """Run in a thread so the event loop stays free."""
        try:
            result = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                cwd=cwd,
                env=merged_env,
                input=input_text,
                timeout=timeout_s,
            )
            return result.returncode, result.stdout or "", result.stderr or "", False
        except subprocess.TimeoutExpired as exc:
            return -1, _decode(exc.stdout), _decode(exc.stderr), True

    loop = asyncio.get_running_loop()
    try:
        exit_code, raw_out, raw_err, was_killed = await loop.run_in_executor(
            None, _sync,
        )
    except OSError as exc:
        elapsed = int((time.perf_counter() - start) * 1000)
        return RunResult(
            exit_code=-1,
            stdout="",
            stderr=f"Error: {exc}",
            duration_ms=elapsed,
            command=command,
        )

    elapsed = int((time.perf_counter() - start) * 1000)
    stderr, trunc_err = _truncate(raw_err, MAX_STDERR_BYTES)

    return RunResult(
        exit_code=exit_code,
        stdout=raw_out,
        stderr=stderr,
        duration_ms=elapsed,
        truncated=trunc_err,
        killed=was_killed,
        command=command,
    )


__all__ = [
    "ALLOWED_EXECUTABLES",
    "DEFAULT_TIMEOUT_S",
    "MAX_STDERR_BYTES",
    "RunResult",
    "run",
    "validate_command",
]
