"""Tests for bundle_stats.build — single builds and the missing-dependency retry loop."""

from __future__ import annotations

import gzip

import pytest

from bundle_stats import telemetry as tm
from bundle_stats.build import (
    asset_from_artifact,
    build_package,
    build_package_ignoring_missing_deps,
    can_auto_externalize,
    make_entry_map,
)
from bundle_stats.contracts import Artifact, BuildOptions, Externals
from bundle_stats.errors import (
    BuildError,
    CLIBuildError,
    EntryPointError,
    MinifyError,
    MissingDependencyError,
    UnexpectedBuildError,
)
from fakes import FakeBundler, FakeMinifier, bundle, bundle_per_entry, failure, missing, module, squash

BASE = Externals(external_packages=["react"], external_built_ins=["fs"])


# ═══════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════


class TestAssetFromArtifact:
    def test_sizes(self):
        contents = b"console.log('hello world');" * 10
        asset = asset_from_artifact(Artifact(file_name="main.bundle.js", contents=contents))
        assert asset.name == "main"
        assert asset.type == "js"
        assert asset.size == len(contents)
        assert asset.gzip == len(gzip.compress(contents, compresslevel=6, mtime=0))
        assert asset.gzip < asset.size

    def test_entry_name_with_dots(self):
        asset = asset_from_artifact(Artifact(file_name="a.b.bundle.css", contents=b""))
        assert (asset.name, asset.type) == ("a.b", "css")

    def test_without_bundle_suffix(self):
        with pytest.raises(UnexpectedBuildError, match="without the `.bundle` suffix"):
            asset_from_artifact(Artifact(file_name="chunk.js", contents=b"x"))


class TestCanAutoExternalize:
    def test_small_valid_set(self):
        assert can_auto_externalize(["a", "@s/b"])

    def test_empty(self):
        assert not can_auto_externalize([])

    def test_over_limit(self):
        assert not can_auto_externalize([f"p{i}" for i in range(7)])
        assert can_auto_externalize([f"p{i}" for i in range(6)])

    def test_explicit_limit(self):
        assert not can_auto_externalize(["a", "b"], limit=1)

    def test_invalid_name(self):
        assert not can_auto_externalize(["a", "../foo"])


class TestMakeEntryMap:
    def test_main_entry(self, tmp_path):
        entry_map = make_entry_map("pkg", str(tmp_path), BuildOptions())
        assert list(entry_map) == ["main"]
        assert "require('pkg')" in (tmp_path / "index.js").read_text()

    def test_split_entries(self, tmp_path):
        options = BuildOptions(custom_imports=["a", "b"], split_custom_imports=True)
        entry_map = make_entry_map("pkg", str(tmp_path), options)
        assert list(entry_map) == ["a", "b"]
        assert entry_map["a"].endswith("export-a.js")
        assert "import { b } from 'pkg';" in (tmp_path / "export-b.js").read_text()


# ═══════════════════════════════════════════════════════════════════════════
# build_package
# ═══════════════════════════════════════════════════════════════════════════


class TestBuildPackage:
    @pytest.mark.asyncio
    async def test_success_with_dependency_sizes(self, tmp_path, minifier, telemetry):
        modules = [
            module("/w/node_modules/a/index.js", "var a = 1;"),
            module("/w/node_modules/a/node_modules/b/x.js", "var b = 2;"),
            module("/w/index.js", "require('a')"),
        ]
        bundler = FakeBundler(bundle(b"abc", modules))
        result = await build_package(
            "pkg", str(tmp_path), BASE,
            bundler=bundler, minifier=minifier, telemetry=telemetry,
        )
        (asset,) = result.assets
        assert asset.name == "main" and asset.size == 3
        assert [(d.name, d.approximate_size) for d in result.dependency_sizes] == [
            ("a", len(squash("var a = 1;\nvar b = 2;"))),
        ]
        assert result.ignored_missing_dependencies is None
        call = bundler.calls[0]
        assert call.externals == BASE
        assert call.minify is True
        assert call.cwd == str(tmp_path)
        assert telemetry.types() == [
            tm.PACKAGE_COMPILE, tm.DEPENDENCY_SIZES, tm.PACKAGE_BUILD,
        ]

    @pytest.mark.asyncio
    async def test_custom_imports_skip_dependency_sizes(self, tmp_path, minifier):
        bundler = FakeBundler(bundle(modules=[module("/w/node_modules/a/i.js", "x")]))
        result = await build_package(
            "pkg", str(tmp_path), BASE, BuildOptions(custom_imports=["x"]),
            bundler=bundler, minifier=minifier,
        )
        assert result.dependency_sizes is None
        assert minifier.inputs == []

    @pytest.mark.asyncio
    async def test_dependency_sizes_opt_out(self, tmp_path, minifier):
        result = await build_package(
            "pkg", str(tmp_path), BASE, BuildOptions(include_dependency_sizes=False),
            bundler=FakeBundler(bundle()), minifier=minifier,
        )
        assert result.dependency_sizes is None

    @pytest.mark.asyncio
    async def test_license_and_css_artifacts(self, tmp_path, minifier):
        outcome = bundle().model_copy(update={"artifacts": [
            Artifact(file_name="main.bundle.js", contents=b"js"),
            Artifact(file_name="main.bundle.css", contents=b".a{}"),
            Artifact(file_name="main.bundle.js.LICENSE.txt", contents=b"MIT"),
        ]})
        result = await build_package(
            "pkg", str(tmp_path), BASE, bundler=FakeBundler(outcome), minifier=minifier,
        )
        assert sorted(a.type for a in result.assets) == ["css", "js"]

    @pytest.mark.asyncio
    async def test_split_without_imports_is_empty(self, tmp_path):
        bundler = FakeBundler(bundle())
        result = await build_package(
            "pkg", str(tmp_path), BASE,
            BuildOptions(split_custom_imports=True, custom_imports=[]),
            bundler=bundler,
        )
        assert result.assets == []
        assert bundler.calls == []

    @pytest.mark.asyncio
    async def test_split_build_one_asset_per_import(self, tmp_path):
        result = await build_package(
            "pkg", str(tmp_path), BASE,
            BuildOptions(custom_imports=["a", "bb"], split_custom_imports=True,
                         include_dependency_sizes=False),
            bundler=FakeBundler(bundle_per_entry),
        )
        assert {a.name: a.size for a in result.assets} == {"a": 9, "bb": 10}

    @pytest.mark.asyncio
    async def test_entry_point_error_when_package_itself_missing(self, tmp_path, telemetry):
        with pytest.raises(EntryPointError):
            await build_package(
                "pkg", str(tmp_path), BASE,
                bundler=FakeBundler(missing("pkg")), telemetry=telemetry,
            )
        build_event = telemetry.events[-1]
        assert build_event.type == tm.PACKAGE_BUILD
        assert not build_event.is_successful
        assert build_event.error["name"] == "EntryPointError"

    @pytest.mark.asyncio
    async def test_entry_point_error_when_entry_unwritable(self, tmp_path):
        with pytest.raises(EntryPointError):
            await build_package(
                "pkg", str(tmp_path / "absent"), BASE, bundler=FakeBundler(bundle()),
            )

    @pytest.mark.asyncio
    async def test_missing_dependency(self, tmp_path):
        with pytest.raises(MissingDependencyError) as exc_info:
            await build_package("pkg", str(tmp_path), BASE, bundler=FakeBundler(missing("a", "b/sub")))
        assert exc_info.value.missing_modules == ["a", "b"]

    @pytest.mark.asyncio
    async def test_cli_build_error(self, tmp_path):
        with pytest.raises(CLIBuildError):
            await build_package(
                "pkg", str(tmp_path), BASE,
                bundler=FakeBundler(failure('Syntax error "#"', kind="hashbang")),
            )

    @pytest.mark.asyncio
    async def test_generic_build_error(self, tmp_path):
        with pytest.raises(BuildError) as exc_info:
            await build_package(
                "pkg", str(tmp_path), BASE, bundler=FakeBundler(failure("Expected ';'")),
            )
        assert not isinstance(exc_info.value, CLIBuildError)
        assert "Expected ';'" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_failure_without_diagnostics(self, tmp_path):
        outcome = failure("x").model_copy(update={"diagnostics": []})
        with pytest.raises(UnexpectedBuildError):
            await build_package("pkg", str(tmp_path), BASE, bundler=FakeBundler(outcome))

    @pytest.mark.asyncio
    async def test_minify_error_propagates(self, tmp_path):
        modules = [module("/w/node_modules/bad/index.js", "BROKEN")]
        with pytest.raises(MinifyError) as exc_info:
            await build_package(
                "pkg", str(tmp_path), BASE,
                bundler=FakeBundler(bundle(modules=modules)),
                minifier=FakeMinifier(fail_on="BROKEN"),
            )
        assert exc_info.value.extra["package"] == "bad"


# ═══════════════════════════════════════════════════════════════════════════
# build_package_ignoring_missing_deps
# ═══════════════════════════════════════════════════════════════════════════


class TestRetryLoop:
    @pytest.mark.asyncio
    async def test_first_attempt_succeeds(self, tmp_path, minifier):
        bundler = FakeBundler(bundle())
        result = await build_package_ignoring_missing_deps(
            "pkg", str(tmp_path), BASE, bundler=bundler, minifier=minifier,
        )
        assert len(bundler.calls) == 1
        assert result.ignored_missing_dependencies is None

    @pytest.mark.asyncio
    async def test_externalizes_and_retries(self, tmp_path, minifier):
        bundler = FakeBundler(missing("left-pad", "@s/x/deep"), bundle())
        result = await build_package_ignoring_missing_deps(
            "pkg", str(tmp_path), BASE, bundler=bundler, minifier=minifier,
        )
        assert len(bundler.calls) == 2
        second = bundler.calls[1].externals
        assert second.external_packages == ["react", "left-pad", "@s/x"]
        assert second.external_built_ins == ["fs"]
        assert result.ignored_missing_dependencies == ["left-pad", "@s/x"]

    @pytest.mark.asyncio
    async def test_externals_grow_monotonically(self, tmp_path, minifier):
        bundler = FakeBundler(missing("a"), missing("b"), missing("a", "c"), bundle())
        result = await build_package_ignoring_missing_deps(
            "pkg", str(tmp_path), BASE, bundler=bundler, minifier=minifier,
        )
        packages = [call.externals.external_packages for call in bundler.calls]
        assert packages == [
            ["react"],
            ["react", "a"],
            ["react", "a", "b"],
            ["react", "a", "b", "c"],
        ]
        for earlier, later in zip(packages, packages[1:]):
            assert set(earlier) <= set(later)
        assert result.ignored_missing_dependencies == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_gives_up_after_ceiling(self, tmp_path):
        bundler = FakeBundler(missing("a"))
        with pytest.raises(MissingDependencyError):
            await build_package_ignoring_missing_deps(
                "pkg", str(tmp_path), BASE, bundler=bundler,
            )
        assert len(bundler.calls) == 4

    @pytest.mark.asyncio
    async def test_explicit_ceiling(self, tmp_path):
        bundler = FakeBundler(missing("a"))
        with pytest.raises(MissingDependencyError):
            await build_package_ignoring_missing_deps(
                "pkg", str(tmp_path), BASE, bundler=bundler, max_retries=1,
            )
        assert len(bundler.calls) == 2

    @pytest.mark.asyncio
    async def test_too_many_missing_fails_immediately(self, tmp_path):
        bundler = FakeBundler(missing(*(f"dep{i}" for i in range(7))), bundle())
        with pytest.raises(MissingDependencyError) as exc_info:
            await build_package_ignoring_missing_deps(
                "pkg", str(tmp_path), BASE, bundler=bundler,
            )
        assert len(bundler.calls) == 1
        assert len(exc_info.value.missing_modules) == 7

    @pytest.mark.asyncio
    async def test_invalid_name_fails_immediately(self, tmp_path):
        bundler = FakeBundler(missing("../foo"), bundle())
        with pytest.raises(MissingDependencyError):
            await build_package_ignoring_missing_deps(
                "pkg", str(tmp_path), BASE, bundler=bundler,
            )
        assert len(bundler.calls) == 1

    @pytest.mark.asyncio
    async def test_other_errors_not_retried(self, tmp_path):
        bundler = FakeBundler(failure("Expected ';'"), bundle())
        with pytest.raises(BuildError):
            await build_package_ignoring_missing_deps(
                "pkg", str(tmp_path), BASE, bundler=bundler,
            )
        assert len(bundler.calls) == 1

    @pytest.mark.asyncio
    async def test_entry_point_not_retried(self, tmp_path):
        bundler = FakeBundler(missing("pkg"), bundle())
        with pytest.raises(EntryPointError):
            await build_package_ignoring_missing_deps(
                "pkg", str(tmp_path), BASE, bundler=bundler,
            )
        assert len(bundler.calls) == 1

    @pytest.mark.asyncio
    async def test_retry_telemetry(self, tmp_path, minifier, telemetry):
        bundler = FakeBundler(missing("a"), bundle())
        await build_package_ignoring_missing_deps(
            "pkg", str(tmp_path), BASE,
            BuildOptions(include_dependency_sizes=False),
            bundler=bundler, minifier=minifier, telemetry=telemetry,
        )
        builds = [e for e in telemetry.events if e.type == tm.PACKAGE_BUILD]
        assert [e.is_successful for e in builds] == [False, True]
