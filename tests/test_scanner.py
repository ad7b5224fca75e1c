"""End-to-end scans and scan orchestration."""

from __future__ import annotations

import threading
from dataclasses import replace

import pytest

from conftest import PROJECT, by_package, make_unit

from phantomscan.classifier import severity_rank
from phantomscan.console import silent_logger
from phantomscan.detectors import Detector
from phantomscan.input_sources import iter_source_units
from phantomscan.models import (
    CATEGORY_MISSING,
    CATEGORY_RESOLVED,
    CATEGORY_TYPOSQUAT,
    CATEGORY_UNCLAIMED,
    CATEGORY_VULNERABLE,
    ROLE_FREE_TEXT,
)
from phantomscan.registry import RegistrySnapshot, RegistryUnavailableError
from phantomscan.ruleset import RulesetError
from phantomscan.scanner import Scanner, collect_package_names, scan


@pytest.fixture
def project_units():
    return list(iter_source_units([PROJECT], silent_logger(), max_file_bytes=1024 * 1024))


def test_project_scan(project_units, registry, fixture_ruleset):
    findings = scan(project_units, registry, fixture_ruleset, threads=4)
    found = by_package(findings)

    assert found["react"].categories == {CATEGORY_RESOLVED}
    assert found["event-stream"].categories == {CATEGORY_VULNERABLE}
    assert found["xyz-missing-pkg"].categories == {CATEGORY_MISSING, CATEGORY_UNCLAIMED}
    assert found["reakt"].nearest_popular == "react"
    assert CATEGORY_TYPOSQUAT in found["reakt"].categories
    assert found["commented-out-pkg"].roles == {ROLE_FREE_TEXT}
    assert found["umd-missing-dep"].categories >= {CATEGORY_MISSING}

    # the loader call inside a string literal is not a reference
    assert "string-inner-pkg" not in found
    # built-ins, pseudo-modules and relative paths name no package
    for absent in ("fs", "path", "exports", "./src/index.js"):
        assert absent not in found

    mapped = found["mapped-content-lib"]
    assert mapped.references[0].unit_id.endswith("app.js.map!0")

    ranks = [severity_rank(f.categories) for f in findings]
    assert ranks == sorted(ranks)
    assert findings[0].package == "event-stream"


def test_every_location_is_kept(project_units, registry, fixture_ruleset):
    found = by_package(scan(project_units, registry, fixture_ruleset, threads=1))
    units = {ref.unit_id.replace("\\", "/").rsplit("/", 1)[-1] for ref in found["lodash"].references}
    assert {"mixed-imports.js", "umd-bundle.js", "package.json"} <= units


def test_missing_collaborators(registry, ruleset):
    units = [make_unit("require('a')")]
    with pytest.raises(RegistryUnavailableError):
        scan(units, None, ruleset)
    with pytest.raises(RegistryUnavailableError):
        scan(units, RegistrySnapshot(), ruleset)
    with pytest.raises(RulesetError):
        scan(units, registry, None)
    with pytest.raises(RulesetError):
        scan(units, registry, replace(ruleset, partial_penalty=3.0))


def test_empty_input(registry, ruleset):
    assert scan([], registry, ruleset) == ()


class ExplodingDetector(Detector):
    kind = "sync-call"

    def detect(self, unit, source):
        if "boom" in unit.text:
            raise RuntimeError("detector failure")
        return iter(())


def test_failing_unit_is_skipped():
    scanner = Scanner(detectors=(ExplodingDetector(),))
    results = scanner.scan_units([make_unit("boom", unit_id="bad.js"), make_unit("fine", unit_id="ok.js")])
    assert [r.unit_id for r in results] == ["bad.js", "ok.js"]
    assert results[0].skipped
    assert not results[1].skipped


def test_partial_units_are_reported():
    result = Scanner().scan_unit(make_unit("const s = 'open\nrequire('later');"))
    assert result.partial
    assert [ref.text for ref in result.references if ref.text == "later"] == ["later"]


def test_on_unit_and_cancel(registry, ruleset):
    units = [make_unit("require('a-one')", unit_id="1.js"), make_unit("require('a-two')", unit_id="2.js")]
    seen = []
    scan(units, registry, ruleset, threads=1, on_unit=lambda r: seen.append(r.unit_id))
    assert seen == ["1.js", "2.js"]

    cancel = threading.Event()
    cancel.set()
    assert scan(units, registry, ruleset, threads=2, cancel=cancel) == ()


def test_collect_package_names(ruleset):
    units = [
        make_unit("require('b-pkg'); import x from 'a-pkg/sub'; require('fs');"),
        make_unit('{"dependencies": {"c-pkg": "1.0.0"}}', role="manifest", unit_id="package.json"),
    ]
    assert collect_package_names(units, ruleset) == ["a-pkg", "b-pkg", "c-pkg"]
