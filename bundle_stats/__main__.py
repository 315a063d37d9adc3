"""
__main__.py — command-line entry point for bundle-stats.

Usage:
    python -m bundle_stats total <package> [--client npm] [--debug] [--no-minify]
    python -m bundle_stats exports <package> [--client npm]
    python -m bundle_stats export-sizes <package> [--client npm]

Examples:
    # Minified and gzipped size of react plus its dependency breakdown
    python -m bundle_stats total react@18.2.0

    # Which file declares each export of lodash-es
    python -m bundle_stats exports lodash-es

Results are printed as JSON on stdout.  On failure the error is printed
as JSON on stderr and the exit status is 1.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from bundle_stats.config import VERSION, settings
from bundle_stats.contracts import InstallOptions, PackageStatsOptions
from bundle_stats.errors import BuildStatsError
from bundle_stats.export_sizes import get_all_package_exports, get_package_export_sizes
from bundle_stats.stats import get_package_stats

logger = logging.getLogger("bundle_stats")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bundle-stats",
        description="Measure what an npm package costs a browser bundle",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    parser.add_argument(
        "--log-level", default=settings.LOG_LEVEL,
        help=f"Logging level (default: {settings.LOG_LEVEL})",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (
        ("total", "Bundle size of the whole package"),
        ("exports", "Map each export to the file that declares it"),
        ("export-sizes", "Bundle size of each named export"),
    ):
        sub = commands.add_parser(name, help=help_text)
        sub.add_argument("package", help="name[@version], or a local package directory")
        sub.add_argument(
            "--client", choices=("npm", "yarn", "pnpm"), default=None,
            help="Preferred package manager (default: settings.INSTALL_CLIENTS order)",
        )
        sub.add_argument(
            "--limit-concurrency", action="store_true",
            help="Serialise network access across concurrent installs (yarn)",
        )
        sub.add_argument("--network-concurrency", type=int, default=None)
        sub.add_argument("--install-timeout", type=int, default=None, metavar="SECONDS")
        if name == "total":
            sub.add_argument(
                "--debug", action="store_true",
                help="Keep the install directory after the run",
            )
            sub.add_argument("--no-minify", action="store_true")
            sub.add_argument(
                "--import", dest="custom_imports", action="append", default=None,
                metavar="NAME", help="Measure only these named imports (repeatable)",
            )
    return parser


async def _run(args: argparse.Namespace) -> object:
    install = dict(
        client=args.client,
        limit_concurrency=args.limit_concurrency,
        network_concurrency=args.network_concurrency,
        install_timeout_s=args.install_timeout,
    )
    if args.command == "total":
        stats = await get_package_stats(
            args.package,
            PackageStatsOptions(
                **install,
                debug=args.debug,
                minify=not args.no_minify,
                custom_imports=args.custom_imports,
            ),
        )
        return stats.model_dump(exclude_none=True)
    if args.command == "exports":
        return await get_all_package_exports(args.package, InstallOptions(**install))
    result = await get_package_export_sizes(args.package, InstallOptions(**install))
    return result.model_dump(exclude_none=True)


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        output = asyncio.run(_run(args))
    except BuildStatsError as exc:
        logger.error("%s", exc)
        print(json.dumps(exc.to_dict(), indent=2), file=sys.stderr)
        return 1

    print(json.dumps(output, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
