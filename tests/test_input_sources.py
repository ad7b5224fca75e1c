"""Tests for input discovery and file reading."""

from __future__ import annotations

import zipfile

import pytest

from phantomscan.console import silent_logger
from phantomscan.input_sources import InputItem, is_likely_binary, iter_source_units, sniff_role
from phantomscan.models import (
    UNIT_CI_SCRIPT,
    UNIT_CONFIG,
    UNIT_DOCUMENT,
    UNIT_LOCKFILE,
    UNIT_MANIFEST,
    UNIT_MODULE,
    UNIT_SOURCE_MAP,
)


@pytest.mark.parametrize(
    "path, role",
    [
        ("src/app.tsx", UNIT_MODULE),
        ("lib/index.mjs", UNIT_MODULE),
        ("webpack.config.js", UNIT_CONFIG),
        (".babelrc", UNIT_CONFIG),
        ("tsconfig.json", UNIT_CONFIG),
        ("package.json", UNIT_MANIFEST),
        ("package-lock.json", UNIT_LOCKFILE),
        ("yarn.lock", UNIT_LOCKFILE),
        ("dist/app.js.map", UNIT_SOURCE_MAP),
        (".github/workflows/ci.yml", UNIT_CI_SCRIPT),
        ("Dockerfile", UNIT_CI_SCRIPT),
        ("scripts/setup.sh", UNIT_CI_SCRIPT),
        ("README.md", UNIT_DOCUMENT),
        ("public/index.html", UNIT_DOCUMENT),
        ("assets/logo.png", None),
        ("data.json", None),
    ],
)
def test_sniff_role(path, role):
    assert sniff_role(path) == role


def test_binary_sniffing():
    assert is_likely_binary(b"PK\x03\x04\x00\x00")
    assert not is_likely_binary(b"const a = require('x');\n")
    assert not is_likely_binary(b"")


def collect(paths, max_file_bytes=1024 * 1024, **kwargs):
    return list(iter_source_units(paths, silent_logger(), max_file_bytes, **kwargs))


def test_folder_walk_skips_vendored_and_unknown_files(tmp_path):
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "a.js").write_text("require('a')", encoding="utf-8")
    (tmp_path / "node_modules" / "dep").mkdir(parents=True)
    (tmp_path / "node_modules" / "dep" / "index.js").write_text("require('b')", encoding="utf-8")
    (tmp_path / "image.png").write_bytes(b"\x89PNG\x00\x00")
    (tmp_path / "empty.js").write_text("", encoding="utf-8")
    units = collect([tmp_path])
    assert [u.unit_id.replace("\\", "/").rsplit("/", 2)[-2:] for u in units] == [["src", "a.js"]]
    assert units[0].role == UNIT_MODULE


def test_zip_members(tmp_path):
    archive = tmp_path / "bundle.zip"
    with zipfile.ZipFile(archive, "w") as zf:
        zf.writestr("app/src/main.js", "import 'zipped-dep';")
        zf.writestr("app/package.json", '{"dependencies": {}}')
        zf.writestr("app/node_modules/x/index.js", "require('vendored')")
        zf.writestr("app/photo.jpg", "not text")
    units = collect([archive])
    assert sorted(u.unit_id for u in units) == ["bundle.zip:app/package.json", "bundle.zip:app/src/main.js"]


def test_too_large_and_binary_files_are_skipped(tmp_path):
    big = tmp_path / "big.js"
    big.write_text("x" * 2048, encoding="utf-8")
    blob = tmp_path / "blob.js"
    blob.write_bytes(b"\x00\x01\x02binary")
    assert collect([big, blob], max_file_bytes=1024) == []


def test_single_file_with_unknown_suffix_is_module(tmp_path):
    script = tmp_path / "loader.txt.bak"
    script.write_text("require('lone')", encoding="utf-8")
    units = collect([script])
    assert units[0].role == UNIT_MODULE


def test_bom_is_stripped(tmp_path):
    path = tmp_path / "bom.js"
    path.write_bytes(b"\xef\xbb\xbfrequire('bom-dep')")
    assert collect([path])[0].text == "require('bom-dep')"


def test_missing_input(tmp_path):
    with pytest.raises(FileNotFoundError):
        collect([tmp_path / "nope"])


def test_item_without_a_location_cannot_be_opened():
    with pytest.raises(FileNotFoundError):
        InputItem("ghost.js", 10, UNIT_MODULE).open_binary()
    with pytest.raises(FileNotFoundError):
        InputItem("bundle.zip:ghost.js", 10, UNIT_MODULE, is_zip_member=True).open_binary()
