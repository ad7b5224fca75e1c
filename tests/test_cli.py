"""Tests for the phantomscan command line."""

from __future__ import annotations

import json

from conftest import FIXTURES, PROJECT

from phantomscan.cli import build_arg_parser, main

REGISTRY = str(FIXTURES / "registry.json")
RULESET = str(FIXTURES / "ruleset.json")


def test_defaults():
    args = build_arg_parser().parse_args(["src"])
    assert args.registry is None
    assert args.max_file_mb == 25
    assert args.threads >= 1
    assert not args.online


def test_risky_project_exits_one(tmp_path):
    out = tmp_path / "out"
    code = main([str(PROJECT), "--registry", REGISTRY, "--ruleset", RULESET, "--out", str(out), "-s"])
    assert code == 1

    lines = (out / "findings.jsonl").read_text(encoding="utf-8").splitlines()
    first = json.loads(lines[0])
    assert first["package"] == "event-stream"
    assert first["categories"] == ["vulnerable"]
    summary = json.loads((out / "summary.json").read_text(encoding="utf-8"))
    assert summary["findings"] == len(lines)
    metadata = json.loads((out / "run_metadata.json").read_text(encoding="utf-8"))
    assert metadata["ruleset_version"] == "fixture-1"
    assert metadata["units_total"] > 0


def test_clean_project_exits_zero(tmp_path):
    (tmp_path / "index.js").write_text("const React = require('react');\n", encoding="utf-8")
    assert main([str(tmp_path), "--registry", REGISTRY, "-s", "--hide-resolved"]) == 0


def test_usage_errors_exit_two(tmp_path):
    assert main([str(PROJECT), "-s"]) == 2
    assert main([str(PROJECT), "--registry", REGISTRY, "--max-file-mb", "0", "-s"]) == 2
    assert main([str(tmp_path / "absent"), "--registry", REGISTRY, "-s"]) == 2
    assert main([str(PROJECT), "--registry", str(tmp_path / "absent.json"), "-s"]) == 2

    bad_rules = tmp_path / "rules.json"
    bad_rules.write_text('{"free_text_cap": 5}', encoding="utf-8")
    assert main([str(PROJECT), "--registry", REGISTRY, "--ruleset", str(bad_rules), "-s"]) == 2
