"""Tests for bundle_stats.__main__ — the command-line entry point."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, patch

import pytest

from bundle_stats.__main__ import main
from bundle_stats.config import VERSION
from bundle_stats.contracts import Asset, ExportSizesResult, PackageStats
from bundle_stats.errors import MissingDependencyError, PackageNotFoundError


class TestCli:
    def test_exports(self, capsys):
        mock = AsyncMock(return_value={"a": "node_modules/pkg/index.js"})
        with patch("bundle_stats.__main__.get_all_package_exports", mock):
            code = main(["exports", "pkg", "--client", "yarn"])
        assert code == 0
        assert json.loads(capsys.readouterr().out) == {"a": "node_modules/pkg/index.js"}
        package, options = mock.call_args.args
        assert package == "pkg"
        assert options.client == "yarn"

    def test_total(self, capsys):
        stats = PackageStats(
            size=10, gzip=8,
            assets=[Asset(name="main", type="js", size=10, gzip=8)],
        )
        mock = AsyncMock(return_value=stats)
        with patch("bundle_stats.__main__.get_package_stats", mock):
            code = main([
                "total", "react@18", "--no-minify", "--debug",
                "--import", "useState", "--import", "useEffect",
                "--install-timeout", "30",
            ])
        assert code == 0
        out = json.loads(capsys.readouterr().out)
        assert out["size"] == 10
        assert "dependency_sizes" not in out
        options = mock.call_args.args[1]
        assert options.minify is False
        assert options.debug is True
        assert options.custom_imports == ["useState", "useEffect"]
        assert options.install_timeout_s == 30

    def test_export_sizes(self, capsys):
        result = ExportSizesResult(
            assets=[Asset(name="a", type="js", size=3, gzip=3, path="index.js")],
            build_version=VERSION,
        )
        mock = AsyncMock(return_value=result)
        with patch("bundle_stats.__main__.get_package_export_sizes", mock):
            code = main(["export-sizes", "pkg", "--limit-concurrency", "--network-concurrency", "2"])
        assert code == 0
        out = json.loads(capsys.readouterr().out)
        assert out["assets"][0]["path"] == "index.js"
        options = mock.call_args.args[1]
        assert options.limit_concurrency is True
        assert options.network_concurrency == 2

    def test_error_is_reported_as_json(self, capsys):
        mock = AsyncMock(side_effect=PackageNotFoundError("E404", {"client": "npm"}))
        with patch("bundle_stats.__main__.get_all_package_exports", mock):
            code = main(["exports", "ghost"])
        assert code == 1
        captured = capsys.readouterr()
        assert captured.out == ""
        err = json.loads(captured.err[captured.err.index("{"):])
        assert err["name"] == "PackageNotFoundError"
        assert err["extra"] == {"client": "npm"}

    def test_missing_dependency_error(self, capsys):
        exc = MissingDependencyError(["diag"], {"missing_modules": ["a"]})
        with patch("bundle_stats.__main__.get_package_stats", AsyncMock(side_effect=exc)):
            assert main(["total", "pkg"]) == 1

    def test_command_required(self):
        with pytest.raises(SystemExit):
            main([])

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["--version"])
        assert exc_info.value.code == 0
        assert VERSION in capsys.readouterr().out
