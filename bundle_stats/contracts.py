"""Build-stats contracts — Pydantic models passed between pipeline stages.

The bundler adapter, the retry loop, the attribution tree and the
orchestrators all communicate through these models.
All models are frozen (immutable after creation).
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Externals
# ---------------------------------------------------------------------------


class Externals(BaseModel):
    """Package and built-in names excluded from one build attempt."""

    model_config = ConfigDict(frozen=True)

    external_packages: list[str] = Field(
        default_factory=list,
        description="Peer dependencies and auto-externalized missing imports",
    )
    external_built_ins: list[str] = Field(
        default_factory=list,
        description="Host-environment modules assumed present at load time",
    )

    def widen(self, names: list[str]) -> Externals:
        """Return a copy with *names* appended to ``external_packages``.

        Existing entries are never removed and duplicates are skipped.
        """
        merged = list(self.external_packages)
        for name in names:
            if name not in merged:
                merged.append(name)
        return Externals(
            external_packages=merged,
            external_built_ins=list(self.external_built_ins),
        )

    def all_names(self) -> list[str]:
        return [*self.external_packages, *self.external_built_ins]


class BuildIteration(BaseModel):
    """One round of the missing-dependency retry loop."""

    model_config = ConfigDict(frozen=True)

    externals: Externals
    iteration: int = Field(default=1, ge=1)


# ---------------------------------------------------------------------------
# Bundler boundary
# ---------------------------------------------------------------------------


class BundleModule(BaseModel):
    """A module the bundler actually emitted into an artifact."""

    model_config = ConfigDict(frozen=True)

    identifier: str = Field(..., description="Bundler-assigned module id")
    path: str = Field(..., description="Absolute filesystem path")
    source: str | None = Field(
        default=None,
        description="Module source text; None for placeholder modules",
    )


class Artifact(BaseModel):
    """One compiled output file."""

    model_config = ConfigDict(frozen=True)

    file_name: str = Field(..., description="Output file name, e.g. main.bundle.js")
    contents: bytes = Field(default=b"")
    modules: list[BundleModule] = Field(default_factory=list)


class BuildDiagnostic(BaseModel):
    """A structured compile diagnostic.

    ``kind`` is assigned once by the bundler adapter; downstream code
    branches on it rather than on message wording.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["module_not_found", "hashbang", "other"]
    message: str
    file: str = ""
    line: int = Field(default=0, ge=0)
    column: int = Field(default=0, ge=0)
    specifier: str | None = Field(
        default=None,
        description="Unresolved import specifier (module_not_found only)",
    )

    def __str__(self) -> str:
        where = f"{self.file}:{self.line}:{self.column}: " if self.file else ""
        return f"{where}{self.message}"


class CompileOutcome(BaseModel):
    """Result of one ``Bundler.compile`` call: artifacts or diagnostics."""

    model_config = ConfigDict(frozen=True)

    artifacts: list[Artifact] = Field(default_factory=list)
    diagnostics: list[BuildDiagnostic] = Field(default_factory=list)
    succeeded: bool = True


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class Asset(BaseModel):
    """Size figures for one compiled asset."""

    model_config = ConfigDict(frozen=True)

    name: str
    type: str
    size: int = Field(..., ge=0)
    gzip: int = Field(..., ge=0)
    path: str | None = Field(
        default=None,
        description="Source file of the export (export-size builds only)",
    )


class DependencySize(BaseModel):
    """Minified size attributed to one top-level dependency."""

    model_config = ConfigDict(frozen=True)

    name: str
    approximate_size: int = Field(..., ge=0)


class BuildResult(BaseModel):
    """Output of ``build_package`` / ``build_package_ignoring_missing_deps``."""

    model_config = ConfigDict(frozen=True)

    assets: list[Asset] = Field(default_factory=list)
    dependency_sizes: list[DependencySize] | None = None
    ignored_missing_dependencies: list[str] | None = None


class BuildOptions(BaseModel):
    """Per-build switches."""

    model_config = ConfigDict(frozen=True)

    custom_imports: list[str] | None = None
    split_custom_imports: bool = False
    include_dependency_sizes: bool = True
    minify: bool = True
    debug: bool = False


class InstallOptions(BaseModel):
    """Options forwarded to the package installer."""

    model_config = ConfigDict(frozen=True)

    client: Literal["npm", "yarn", "pnpm"] | None = Field(
        default=None,
        description="Preferred client; None uses settings.INSTALL_CLIENTS order",
    )
    limit_concurrency: bool = False
    network_concurrency: int | None = None
    additional_packages: list[str] = Field(default_factory=list)
    is_local: bool = False
    install_timeout_s: int | None = None


class PackageStatsOptions(InstallOptions):
    """Options for ``get_package_stats``."""

    debug: bool = False
    minify: bool = True
    custom_imports: list[str] | None = None


class PackageJSONDetails(BaseModel):
    """Facts read from the installed package's ``package.json``."""

    model_config = ConfigDict(frozen=True)

    dependency_count: int = Field(default=0, ge=0)
    has_js_next: bool | str = False
    has_js_module: bool | str = False
    is_module_type: bool = False
    has_side_effects: bool | list[str] = True
    peer_dependencies: list[str] = Field(default_factory=list)


class PackageStats(PackageJSONDetails):
    """Full size report for one package."""

    assets: list[Asset] = Field(default_factory=list)
    dependency_sizes: list[DependencySize] | None = None
    ignored_missing_dependencies: list[str] | None = None
    size: int = Field(..., ge=0)
    gzip: int = Field(..., ge=0)
    install_path: str = ""


class ExportSizesResult(BaseModel):
    """Per-export sizes for one package."""

    model_config = ConfigDict(frozen=True)

    assets: list[Asset] = Field(default_factory=list)
    ignored_missing_dependencies: list[str] | None = None
    build_version: str = ""


__all__ = [
    "Artifact",
    "Asset",
    "BuildDiagnostic",
    "BuildIteration",
    "BuildOptions",
    "BuildResult",
    "BundleModule",
    "CompileOutcome",
    "DependencySize",
    "ExportSizesResult",
    "Externals",
    "InstallOptions",
    "PackageJSONDetails",
    "PackageStats",
    "PackageStatsOptions",
]
