"""Language models — shared types for the source scanners.

Provides ``ExportDetails``, the per-file result of scanning a module
for its export statements.

All models are frozen (immutable after creation).
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Export details model
# ---------------------------------------------------------------------------


class ExportDetails(BaseModel):
    """Exports declared by one module."""

    model_config = ConfigDict(frozen=True)

    exports: list[str] = Field(
        default_factory=list,
        description="Exported binding names in declaration order ('default' included)",
    )
    export_all_locations: list[str] = Field(
        default_factory=list,
        description="Specifiers of 'export * from' / 'export * as ns from' targets",
    )
    has_module_syntax: bool = Field(
        default=False,
        description="True if the file contains any import/export declaration",
    )


__all__ = [
    "ExportDetails",
]
