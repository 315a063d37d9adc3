"""Telemetry — fire-and-forget observability events.

Each analysis call receives a ``TelemetrySink`` (defaulting to a fresh
``LoggingTelemetry``); there is no module-level emitter.  Sinks must not
raise: ``emit`` failures are logged and swallowed so that observability
never changes a functional result.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

# Event names
PACKAGE_INSTALL = "TASK_PACKAGE_INSTALL"
PACKAGE_JSON_DETAILS = "TASK_PACKAGE_JSON_DETAILS"
PACKAGE_BUILD = "TASK_PACKAGE_BUILD"
PACKAGE_COMPILE = "TASK_PACKAGE_COMPILE"
PACKAGE_STATS = "TASK_PACKAGE_STATS"
DEPENDENCY_SIZES = "TASK_PACKAGE_DEPENDENCY_SIZES"
EXPORTS_TREEWALK = "TASK_PACKAGE_EXPORTS_TREEWALK"
PACKAGE_EXPORTS = "TASK_PACKAGE_EXPORTS"
PACKAGE_EXPORTS_SIZES = "TASK_PACKAGE_EXPORTS_SIZES"

_MAX_ERROR_FIELD = 40


class TelemetryEvent(BaseModel):
    """A single task-completion event."""

    model_config = ConfigDict(frozen=True)

    type: str
    package: str
    is_successful: bool
    duration_ms: float = Field(default=0.0, ge=0.0)
    options: dict[str, Any] = Field(default_factory=dict)
    error: dict[str, Any] | None = None


class TelemetrySink(Protocol):
    def emit(self, event: TelemetryEvent) -> None: ...


class LoggingTelemetry:
    """Default sink: writes each event to the module logger at DEBUG."""

    def emit(self, event: TelemetryEvent) -> None:
        logger.debug(
            "Telemetry event: %s package=%s ok=%s duration=%.1fms",
            event.type,
            event.package,
            event.is_successful,
            event.duration_ms,
        )


class RecordingTelemetry:
    """Sink that keeps events in memory (handy for callers and tests)."""

    def __init__(self) -> None:
        self.events: list[TelemetryEvent] = []

    def emit(self, event: TelemetryEvent) -> None:
        self.events.append(event)

    def types(self) -> list[str]:
        return [e.type for e in self.events]


def error_to_dict(error: BaseException | None) -> dict[str, Any] | None:
    """Flatten *error* into a short, JSON-friendly dict."""
    if error is None:
        return None
    if hasattr(error, "to_dict"):
        raw = error.to_dict()
    else:
        raw = {"name": type(error).__name__, "message": str(error)}
    return {
        key: value if isinstance(value, (int, float, bool)) or value is None
        else str(value)[:_MAX_ERROR_FIELD]
        for key, value in raw.items()
    }


def record(
    sink: TelemetrySink | None,
    event_type: str,
    package: str,
    start: float,
    *,
    ok: bool,
    options: dict[str, Any] | None = None,
    error: BaseException | None = None,
) -> None:
    """Build and emit one event; *start* is a ``time.perf_counter()`` value."""
    if sink is None:
        return
    event = TelemetryEvent(
        type=event_type,
        package=package,
        is_successful=ok,
        duration_ms=max(0.0, (time.perf_counter() - start) * 1000),
        options=options or {},
        error=error_to_dict(error),
    )
    try:
        sink.emit(event)
    except Exception:
        logger.warning("Telemetry sink failed for %s", event_type, exc_info=True)


__all__ = [
    "LoggingTelemetry",
    "RecordingTelemetry",
    "TelemetryEvent",
    "TelemetrySink",
    "error_to_dict",
    "record",
]
