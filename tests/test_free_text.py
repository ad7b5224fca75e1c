"""Tests for free-text mentions in comments, strings and documents."""

from __future__ import annotations

from conftest import PROJECT, make_unit, texts

from phantomscan.free_text import FreeTextScanner
from phantomscan.lexer import lex
from phantomscan.models import DETECTOR_FREE_TEXT, ROLE_FREE_TEXT, UNIT_DOCUMENT, UNIT_MANIFEST


def mentions(text, role="module-source", unit_id="unit.js"):
    unit = make_unit(text, role=role, unit_id=unit_id)
    source = None if role == UNIT_DOCUMENT else lex(text)
    return list(FreeTextScanner().detect(unit, source))


def test_bundle_strings_and_comments():
    text = (PROJECT / "dist" / "bundle.js").read_text(encoding="utf-8")
    refs = mentions(text, unit_id="dist/bundle.js")
    assert set(texts(refs)) == {
        "vendor-chunk-lib",
        "cdn-only-lib@1.2.3",
        "@cdn-scope/widget@2.0.0",
        "jquery@3.6.0",
        "nm-path-lib",
    }
    assert {ref.role for ref in refs} == {ROLE_FREE_TEXT}
    assert {ref.detector for ref in refs} == {DETECTOR_FREE_TEXT}


def test_comment_mentions_loader_calls():
    text = "// TODO: switch to import('future-lib')\nconst a = 1;\n"
    refs = mentions(text)
    assert texts(refs) == ["future-lib"]
    assert refs[0].line_no == 1


def test_loader_call_inside_string_is_not_a_mention():
    assert mentions("const s = \"require('in-string')\";") == []


def test_code_import_map():
    text = 'const imports = { "map-lib": "https://esm.sh/map-lib@1.0.0" };'
    assert sorted(texts(mentions(text))) == ["map-lib", "map-lib@1.0.0"]


def test_plain_mapping_values_are_not_mentions():
    assert mentions('const labels = { "ok-key": "just a label" };') == []


def test_readme_cdn_link():
    text = (PROJECT / "README.md").read_text(encoding="utf-8")
    refs = mentions(text, role=UNIT_DOCUMENT, unit_id="README.md")
    assert texts(refs) == ["readme-cdn-lib@0.4.0"]
    assert refs[0].line_no == 4


def test_html_import_map():
    text = (
        '<script type="importmap">\n'
        '{"imports": {"doc-map-lib": "https://cdn.example.com/doc-map-lib.js"}}\n'
        "</script>\n"
    )
    assert texts(mentions(text, role=UNIT_DOCUMENT, unit_id="index.html")) == ["doc-map-lib"]


def test_install_command_in_a_string():
    refs = mentions("const hint = 'npm install string-hint-pkg';")
    assert texts(refs) == ["string-hint-pkg"]


def test_manifests_are_not_scanned_for_mentions():
    assert not FreeTextScanner().applies_to(make_unit("{}", role=UNIT_MANIFEST))
