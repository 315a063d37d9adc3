"""Tests for bundle_stats.bundler — the esbuild adapters."""

from __future__ import annotations

import json
import os
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from bundle_stats.bundler import (
    EsbuildBundler,
    EsbuildMinifier,
    external_flags,
)
from bundle_stats.contracts import Externals
from bundle_stats.errors import ToolFailure, UnexpectedBuildError
from bundle_stats.runner import RunResult


def _result(exit_code=0, stdout="", stderr="", killed=False):
    return RunResult(exit_code=exit_code, stdout=stdout, stderr=stderr,
                     killed=killed, command="esbuild")


def _flag(argv, prefix):
    return next(arg.split("=", 1)[1] for arg in argv if arg.startswith(prefix))


def _fake_esbuild(outputs: dict[str, dict], files: dict[str, str]):
    """A ``run`` stand-in that writes *outputs* into the metafile.

    *outputs* maps output file names to their metafile ``inputs``;
    *files* are written relative to ``cwd`` before the metafile.
    """

    async def fake_run(argv, *, cwd=None, **kwargs):
        outdir = _flag(argv, "--outdir=")
        metafile = _flag(argv, "--metafile=")
        os.makedirs(outdir, exist_ok=True)
        for rel, text in files.items():
            path = Path(cwd) / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text)
        meta_outputs = {}
        for name, inputs in outputs.items():
            Path(outdir, name).write_text(f"/* {name} */")
            key = os.path.relpath(os.path.join(outdir, name), cwd)
            meta_outputs[key] = {"inputs": inputs}
        Path(metafile).write_text(json.dumps({"outputs": meta_outputs}))
        return _result()

    return fake_run


# ═══════════════════════════════════════════════════════════════════════════
# Command line
# ═══════════════════════════════════════════════════════════════════════════


class TestBuildArgv:
    def test_flags(self):
        bundler = EsbuildBundler("esbuild")
        argv = bundler.build_argv(
            {"main": "/w/index.js"},
            Externals(external_packages=["react"], external_built_ins=["fs"]),
            minify=True,
            outdir="/w/dist",
            metafile="/w/meta.json",
        )
        assert argv[0] == "esbuild"
        assert "main=/w/index.js" in argv
        assert "--bundle" in argv
        assert "--minify" in argv
        assert "--outdir=/w/dist" in argv
        assert "--metafile=/w/meta.json" in argv
        assert "--entry-names=[name].bundle" in argv
        assert "--external:react" in argv and "--external:react/*" in argv
        assert "--external:fs" in argv
        assert "--log-limit=0" in argv

    def test_no_minify(self):
        argv = EsbuildBundler("esbuild").build_argv(
            {"main": "i.js"}, Externals(), minify=False, outdir="o", metafile="m",
        )
        assert "--minify" not in argv

    def test_external_flags(self):
        assert external_flags(Externals(external_packages=["@s/p"])) == [
            "--external:@s/p", "--external:@s/p/*",
        ]

    def test_binary_from_settings(self, monkeypatch):
        from bundle_stats.config import settings

        monkeypatch.setattr(settings, "ESBUILD_BIN", "/opt/esbuild")
        assert EsbuildBundler().binary == "/opt/esbuild"


# ═══════════════════════════════════════════════════════════════════════════
# compile
# ═══════════════════════════════════════════════════════════════════════════


class TestCompile:
    @pytest.mark.asyncio
    async def test_success_reads_artifacts_and_modules(self, tmp_path):
        fake = _fake_esbuild(
            {
                "main.bundle.js": {
                    "node_modules/a/index.js": {"bytesInOutput": 10},
                    "node_modules/a/unused.js": {"bytesInOutput": 0},
                    "index.js": {"bytesInOutput": 5},
                },
                "main.bundle.css": {},
            },
            {"node_modules/a/index.js": "module.exports = 1", "index.js": "require('a')"},
        )
        with patch("bundle_stats.bundler.run", side_effect=fake):
            outcome = await EsbuildBundler("esbuild").compile(
                {"main": str(tmp_path / "index.js")}, Externals(), minify=True, cwd=str(tmp_path),
            )

        assert outcome.succeeded
        names = sorted(a.file_name for a in outcome.artifacts)
        assert names == ["main.bundle.css", "main.bundle.js"]
        js = next(a for a in outcome.artifacts if a.file_name == "main.bundle.js")
        assert js.contents == b"/* main.bundle.js */"
        paths = sorted(m.path for m in js.modules)
        assert paths == [
            os.path.normpath(str(tmp_path / "index.js")),
            os.path.normpath(str(tmp_path / "node_modules/a/index.js")),
        ]
        dep = next(m for m in js.modules if "node_modules" in m.path)
        assert dep.source == "module.exports = 1"

    @pytest.mark.asyncio
    async def test_virtual_inputs_have_no_source(self, tmp_path):
        fake = _fake_esbuild({"main.bundle.js": {"<runtime>": {"bytesInOutput": 3}}}, {})
        with patch("bundle_stats.bundler.run", side_effect=fake):
            outcome = await EsbuildBundler("esbuild").compile(
                {"main": "index.js"}, Externals(), minify=True, cwd=str(tmp_path),
            )
        (module,) = outcome.artifacts[0].modules
        assert module.source is None

    @pytest.mark.asyncio
    async def test_file_loader_outputs_skipped(self, tmp_path):
        fake = _fake_esbuild({"main.bundle.js": {}}, {})

        async def with_asset(argv, **kwargs):
            result = await fake(argv, **kwargs)
            metafile = _flag(argv, "--metafile=")
            meta = json.loads(Path(metafile).read_text())
            meta["outputs"]["dist/assets/logo-abc.png"] = {"inputs": {}}
            meta["outputs"]["dist/main.bundle.js.map"] = {"inputs": {}}
            Path(metafile).write_text(json.dumps(meta))
            return result

        with patch("bundle_stats.bundler.run", side_effect=with_asset):
            outcome = await EsbuildBundler("esbuild").compile(
                {"main": "index.js"}, Externals(), minify=True, cwd=str(tmp_path),
            )
        assert [a.file_name for a in outcome.artifacts] == ["main.bundle.js"]

    @pytest.mark.asyncio
    async def test_failure_returns_diagnostics(self, tmp_path):
        stderr = '✘ [ERROR] Could not resolve "left-pad"\n\n    index.js:1:7:\n'
        with patch("bundle_stats.bundler.run", AsyncMock(return_value=_result(1, stderr=stderr))):
            outcome = await EsbuildBundler("esbuild").compile(
                {"main": "index.js"}, Externals(), minify=True, cwd=str(tmp_path),
            )
        assert not outcome.succeeded
        (diag,) = outcome.diagnostics
        assert diag.kind == "module_not_found"
        assert diag.specifier == "left-pad"

    @pytest.mark.asyncio
    async def test_unparseable_failure(self, tmp_path):
        with patch("bundle_stats.bundler.run", AsyncMock(return_value=_result(2, stderr=""))):
            outcome = await EsbuildBundler("esbuild").compile(
                {"main": "index.js"}, Externals(), minify=True, cwd=str(tmp_path),
            )
        assert outcome.diagnostics[0].message == "Bundler exited with code 2"

    @pytest.mark.asyncio
    async def test_timeout(self, tmp_path):
        result = _result(-1, killed=True)
        with patch("bundle_stats.bundler.run", AsyncMock(return_value=result)):
            outcome = await EsbuildBundler("esbuild").compile(
                {"main": "index.js"}, Externals(), minify=True, cwd=str(tmp_path),
            )
        assert outcome.diagnostics[0].message == "Bundler timed out"

    @pytest.mark.asyncio
    async def test_missing_metafile(self, tmp_path):
        with patch("bundle_stats.bundler.run", AsyncMock(return_value=_result())):
            with pytest.raises(UnexpectedBuildError, match="metafile"):
                await EsbuildBundler("esbuild").compile(
                    {"main": "index.js"}, Externals(), minify=True, cwd=str(tmp_path),
                )

    @pytest.mark.asyncio
    async def test_output_dir_cleaned_up(self, tmp_path):
        fake = _fake_esbuild({"main.bundle.js": {}}, {})
        with patch("bundle_stats.bundler.run", side_effect=fake):
            await EsbuildBundler("esbuild").compile(
                {"main": "index.js"}, Externals(), minify=True, cwd=str(tmp_path),
            )
        leftovers = [p.name for p in tmp_path.iterdir()]
        assert not any(n.startswith(("dist-", "meta-")) for n in leftovers)


# ═══════════════════════════════════════════════════════════════════════════
# minify
# ═══════════════════════════════════════════════════════════════════════════


class TestMinify:
    @pytest.mark.asyncio
    async def test_success(self):
        mock = AsyncMock(return_value=_result(stdout="var a=1;\n"))
        with patch("bundle_stats.bundler.run", mock):
            out = await EsbuildMinifier("esbuild").minify("var a = 1;")
        assert out == "var a=1;\n"
        assert mock.call_args.kwargs["input_text"] == "var a = 1;"
        assert "--minify" in mock.call_args.args[0]
        assert "--log-limit=0" in mock.call_args.args[0]

    @pytest.mark.asyncio
    async def test_failure_raises_tool_failure(self):
        stderr = '✘ [ERROR] Unexpected "}"\n\n    <stdin>:1:4:\n'
        with patch("bundle_stats.bundler.run", AsyncMock(return_value=_result(1, stderr=stderr))):
            with pytest.raises(ToolFailure) as exc_info:
                await EsbuildMinifier("esbuild").minify("a = }")
        assert exc_info.value.message == 'Unexpected "}"'
        assert exc_info.value.file_path == "<stdin>"
        assert exc_info.value.exit_code == 1


def _fake_cjs_esbuild(calls: list):
    """A ``run`` stand-in: converts module files, then echoes minify input."""

    async def fake_run(argv, *, cwd=None, input_text=None, **kwargs):
        calls.append((list(argv), input_text))
        if "--format=cjs" in argv:
            outdir = _flag(argv, "--outdir=")
            os.makedirs(outdir, exist_ok=True)
            for name in (arg for arg in argv[1:] if arg.endswith(".js")):
                source = Path(cwd, name).read_text()
                converted = source.replace("export default ", "module.exports = ")
                Path(outdir, name).write_text(converted)
            return _result()
        return _result(stdout=input_text)

    return fake_run


class TestMinifyModules:
    @pytest.mark.asyncio
    async def test_clashing_modules_get_their_own_scope(self):
        calls: list = []
        sources = [
            'const u = require("./u");\nexport default function a() { return u; }',
            'const u = require("./v");\nexport default function b() { return u; }',
        ]
        with patch("bundle_stats.bundler.run", side_effect=_fake_cjs_esbuild(calls)):
            out = await EsbuildMinifier("esbuild").minify_modules(sources)

        (convert_argv, _), (minify_argv, script) = calls
        assert convert_argv[1:3] == ["module-0.js", "module-1.js"]
        assert "--log-limit=0" in convert_argv
        assert "--minify" in minify_argv
        assert out == script
        assert "export " not in script
        first, second = script.split("\n})();\n")
        assert first.startswith("(function(){const u = require(\"./u\")")
        assert second.startswith("(function(){const u = require(\"./v\")")
        assert script.endswith("\n})();")

    @pytest.mark.asyncio
    async def test_conversion_dir_removed(self):
        calls: list = []
        with patch("bundle_stats.bundler.run", side_effect=_fake_cjs_esbuild(calls)):
            await EsbuildMinifier("esbuild").minify_modules(["var a = 1;"])
        outdir = _flag(calls[0][0], "--outdir=")
        assert not os.path.exists(outdir)

    @pytest.mark.asyncio
    async def test_conversion_failure(self):
        stderr = '✘ [ERROR] Unexpected "}"\n\n    module-1.js:1:4:\n'
        with patch("bundle_stats.bundler.run", AsyncMock(return_value=_result(1, stderr=stderr))):
            with pytest.raises(ToolFailure) as exc_info:
                await EsbuildMinifier("esbuild").minify_modules(["var a;", "a = }"])
        assert exc_info.value.file_path == "module-1.js"

    @pytest.mark.asyncio
    async def test_no_modules(self):
        mock = AsyncMock(return_value=_result(stdout=""))
        with patch("bundle_stats.bundler.run", mock):
            assert await EsbuildMinifier("esbuild").minify_modules([]) == ""
        assert mock.call_count == 1
