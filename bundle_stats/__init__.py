"""Bundle-cost analysis for npm packages.

Public API
----------
Analyses::

    get_package_stats, get_all_package_exports, get_package_export_sizes,

Building::

    build_package, build_package_ignoring_missing_deps,
    create_entry_point,

Attribution::

    get_dependency_sizes, extract_package_names,

Export graph::

    get_all_exports, get_exports_details, ExportDetails,
    NodeResolver, ModuleResolver,

Adapters::

    Bundler, Minifier, EsbuildBundler, EsbuildMinifier,

Contracts (Pydantic models)::

    Externals, Asset, DependencySize, BuildResult, BuildOptions,
    InstallOptions, PackageStatsOptions, PackageStats, ExportSizesResult,

Errors::

    BuildStatsError, EntryPointError, MissingDependencyError,
    BuildError, CLIBuildError, UnexpectedBuildError, MinifyError,
    PackageNotFoundError, InstallError, ModuleResolutionError,
    ExportParseError, ToolFailure, CommandRejected,

Telemetry::

    TelemetrySink, TelemetryEvent, LoggingTelemetry, RecordingTelemetry,

Configuration::

    settings, VERSION
"""

from bundle_stats.build import build_package, build_package_ignoring_missing_deps
from bundle_stats.bundler import Bundler, EsbuildBundler, EsbuildMinifier, Minifier
from bundle_stats.config import VERSION, settings
from bundle_stats.contracts import (
    Asset,
    BuildOptions,
    BuildResult,
    DependencySize,
    ExportSizesResult,
    Externals,
    InstallOptions,
    PackageStats,
    PackageStatsOptions,
)
from bundle_stats.dependency_tree import extract_package_names, get_dependency_sizes
from bundle_stats.entry_point import create_entry_point
from bundle_stats.errors import (
    BuildError,
    BuildStatsError,
    CLIBuildError,
    CommandRejected,
    EntryPointError,
    ExportParseError,
    InstallError,
    MinifyError,
    MissingDependencyError,
    ModuleResolutionError,
    PackageNotFoundError,
    ToolFailure,
    UnexpectedBuildError,
)
from bundle_stats.export_sizes import get_all_package_exports, get_package_export_sizes
from bundle_stats.exports import get_all_exports
from bundle_stats.lang import ExportDetails
from bundle_stats.lang.js_exports import get_exports_details
from bundle_stats.resolver import ModuleResolver, NodeResolver
from bundle_stats.stats import get_package_stats
from bundle_stats.telemetry import (
    LoggingTelemetry,
    RecordingTelemetry,
    TelemetryEvent,
    TelemetrySink,
)

__all__ = [
    # Analyses
    "get_all_package_exports",
    "get_package_export_sizes",
    "get_package_stats",
    # Building
    "build_package",
    "build_package_ignoring_missing_deps",
    "create_entry_point",
    # Attribution
    "extract_package_names",
    "get_dependency_sizes",
    # Export graph
    "ExportDetails",
    "ModuleResolver",
    "NodeResolver",
    "get_all_exports",
    "get_exports_details",
    # Adapters
    "Bundler",
    "EsbuildBundler",
    "EsbuildMinifier",
    "Minifier",
    # Contracts
    "Asset",
    "BuildOptions",
    "BuildResult",
    "DependencySize",
    "ExportSizesResult",
    "Externals",
    "InstallOptions",
    "PackageStats",
    "PackageStatsOptions",
    # Errors
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
    # Telemetry
    "LoggingTelemetry",
    "RecordingTelemetry",
    "TelemetryEvent",
    "TelemetrySink",
    # Configuration
    "VERSION",
    "settings",
]
