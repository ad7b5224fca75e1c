"""Tests for finding classification, confidence and ordering."""

from __future__ import annotations

from dataclasses import replace

import pytest

from conftest import by_package, make_unit

from phantomscan.classifier import (
    Classifier,
    bounded_levenshtein,
    is_risky,
    nearest_popular,
    severity_rank,
    sort_findings,
)
from phantomscan.models import (
    CATEGORY_MISSING,
    CATEGORY_RESOLVED,
    CATEGORY_TYPOSQUAT,
    CATEGORY_UNCLAIMED,
    CATEGORY_UNVERIFIED,
    CATEGORY_VULNERABLE,
    DETECTOR_SYNC_CALL,
    ROLE_CONFIG,
    ROLE_FREE_TEXT,
    ROLE_LOAD_BEARING,
    UNIT_CONFIG,
    UNIT_MANIFEST,
    Finding,
    PackageIdentifier,
    RawReference,
)
from phantomscan.results import FindingRecord
from phantomscan.scanner import scan


def scan_text(text, registry, ruleset, role="module-source", unit_id="unit.js"):
    return by_package(scan([make_unit(text, role=role, unit_id=unit_id)], registry, ruleset, threads=1))


def test_missing_name_next_to_a_popular_one(small_registry, ruleset):
    findings = scan_text("const t = require('missing-dev-tool');", small_registry, ruleset)
    finding = findings["missing-dev-tool"]
    assert finding.categories == {CATEGORY_MISSING, CATEGORY_UNCLAIMED, CATEGORY_TYPOSQUAT}
    assert finding.nearest_popular == "missing-dev-tools"
    assert finding.confidence == 1.0
    assert any("edit distance 1" in step for step in finding.rule_trail)


def test_minified_chain_gives_one_finding_per_name(small_registry, ruleset):
    findings = scan_text("import('x');import('y');import('potential-typosquat')", small_registry, ruleset)
    assert set(findings) == {"x", "y", "potential-typosquat"}
    assert all(len(f.references) == 1 for f in findings.values())


def test_config_alias_scores_below_a_load_bearing_call(small_registry, ruleset):
    config = "export default { resolve: { alias: { 'missing-alias': 'missing-package-target' } } };"
    from_config = scan_text(config, small_registry, ruleset, role=UNIT_CONFIG, unit_id="vite.config.js")
    finding = from_config["missing-package-target"]
    assert finding.roles == {ROLE_CONFIG}
    from_code = scan_text("require('missing-package-target')", small_registry, ruleset)
    assert finding.confidence < from_code["missing-package-target"].confidence


def test_comment_cdn_link_is_a_capped_mention(small_registry, ruleset):
    findings = scan_text("// see https://cdn.example/npm/chart.js@1.2.3\nrun();", small_registry, ruleset)
    finding = findings["chart.js"]
    assert finding.roles == {ROLE_FREE_TEXT}
    assert finding.confidence <= ruleset.free_text_cap


def test_partially_scanned_unit_is_penalized(small_registry, ruleset):
    broken = scan_text("const s = 'unterminated\nrequire('late-pkg');", small_registry, ruleset)
    clean = scan_text("const s = 'fine';\nrequire('late-pkg');", small_registry, ruleset)
    assert broken["late-pkg"].confidence < clean["late-pkg"].confidence
    assert broken["late-pkg"].confidence == clean["late-pkg"].confidence * ruleset.partial_penalty


def test_scanning_twice_gives_identical_findings(small_registry, ruleset):
    units = [
        make_unit("require('reakt'); import x from 'lodash';", unit_id="a.js"),
        make_unit("require('abandoned-pkg'); require('@acme/ui/button')", unit_id="b.js"),
    ]
    first = scan(units, small_registry, ruleset, threads=4)
    second = scan(units, small_registry, ruleset, threads=1)
    assert first == second


def test_resolved_excludes_every_other_category(small_registry, ruleset):
    findings = scan_text("require('react'); require('@acme/ui/button');", small_registry, ruleset)
    assert findings["react"].categories == {CATEGORY_RESOLVED}
    assert findings["@acme/ui"].categories == {CATEGORY_RESOLVED}
    assert not is_risky(findings["react"])


def test_typosquat_of_a_popular_name(small_registry, ruleset):
    finding = scan_text("require('reakt')", small_registry, ruleset)["reakt"]
    assert CATEGORY_TYPOSQUAT in finding.categories
    assert finding.nearest_popular == "react"
    assert finding.categories >= {CATEGORY_MISSING, CATEGORY_UNCLAIMED}


def test_claimed_scope_is_not_unclaimed(small_registry, ruleset):
    finding = scan_text("require('@acme/missing-widget')", small_registry, ruleset)["@acme/missing-widget"]
    assert finding.categories == {CATEGORY_MISSING}


def test_unregistrable_name_is_missing_only(small_registry, ruleset):
    finding = scan_text("require('Shouting-Name')", small_registry, ruleset)["Shouting-Name"]
    assert CATEGORY_UNCLAIMED not in finding.categories
    assert CATEGORY_MISSING in finding.categories


def test_unverified_when_present_but_unclaimed(small_registry, ruleset):
    finding = scan_text("require('abandoned-pkg')", small_registry, ruleset)["abandoned-pkg"]
    assert finding.categories == {CATEGORY_UNVERIFIED}
    assert finding.confidence == ruleset.category_weight(CATEGORY_UNVERIFIED)


def test_vulnerable_versions(registry, fixture_ruleset):
    manifest = '{"dependencies": {"event-stream": "3.3.6", "@evil/pkg": "^1.0.0"}}'
    findings = scan_text(manifest, registry, fixture_ruleset, role=UNIT_MANIFEST, unit_id="package.json")
    stream = findings["event-stream"]
    assert stream.categories == {CATEGORY_VULNERABLE}
    assert any("GHSA-mh6f-8j2x-4483" in step for step in stream.rule_trail)
    evil = findings["@evil/pkg"]
    assert CATEGORY_VULNERABLE in evil.categories and CATEGORY_MISSING in evil.categories


def test_registry_advisory_lifted_by_safe_version(registry, fixture_ruleset):
    manifest = '{"dependencies": {"event-stream": "4.0.1"}}'
    findings = scan_text(manifest, registry, fixture_ruleset, role=UNIT_MANIFEST, unit_id="package.json")
    assert findings["event-stream"].categories == {CATEGORY_RESOLVED}


def test_free_text_cap_applies_to_each_mention(small_registry, ruleset):
    mention_only = scan_text("// require('lodash')\n", small_registry, replace(ruleset, free_text_cap=0.1))
    assert mention_only["lodash"].confidence == 0.1
    both = scan_text("// require('lodash')\nrequire('lodash');", small_registry, replace(ruleset, free_text_cap=0.1))
    assert both["lodash"].confidence == 1.0


def test_heavy_mention_cannot_outweigh_cap(small_registry, ruleset):
    tuned = replace(
        ruleset,
        role_weights={**ruleset.role_weights, ROLE_FREE_TEXT: 0.5},
        detector_weights={**ruleset.detector_weights, DETECTOR_SYNC_CALL: 0.1},
        free_text_cap=0.3,
    )
    text = "// https://cdn.example/npm/foo-pkg@1.0.0\nrequire('foo-pkg');"
    finding = scan_text(text, small_registry, tuned)["foo-pkg"]
    assert {ref.role for ref in finding.references} == {ROLE_FREE_TEXT, ROLE_LOAD_BEARING}
    assert finding.confidence <= 0.3
    assert finding.confidence == pytest.approx(0.3)


def test_confidence_takes_the_strongest_reference(small_registry, ruleset):
    identifier = PackageIdentifier(None, "lodash")
    refs = [
        RawReference("a.js", 0, 8, 1, "lodash", DETECTOR_SYNC_CALL, ROLE_LOAD_BEARING),
        RawReference("b.js", 0, 8, 1, "lodash", DETECTOR_SYNC_CALL, ROLE_CONFIG),
    ]
    record = FindingRecord(identifier=identifier, references=refs, partial_refs={0})
    finding = Classifier(small_registry, ruleset).classify(record)
    assert finding.confidence == max(1.0 * ruleset.partial_penalty, 0.6)
    assert finding.finding_id == Classifier(small_registry, ruleset).classify(record).finding_id


def test_bounded_levenshtein():
    assert bounded_levenshtein("kitten", "sitting", 5) == 3
    assert bounded_levenshtein("kitten", "sitting", 1) == 2
    assert bounded_levenshtein("same", "same", 0) == 0
    assert bounded_levenshtein("a", "abcd", 1) == 2
    assert bounded_levenshtein("react", "reakt", 1) == 1


def test_nearest_popular_ties_and_threshold():
    assert nearest_popular("react", ("reacx", "reacd"), 1) == ("reacd", 1)
    assert nearest_popular("react", ("react",), 1) is None
    assert nearest_popular("reakt", ("react",), 0) is None
    assert nearest_popular("totally-new", ("react",), 2) is None


def test_sort_order():
    def finding(name, *categories):
        return Finding(PackageIdentifier(None, name), (), frozenset(categories), 1.0)

    findings = [
        finding("a-resolved", CATEGORY_RESOLVED),
        finding("b-unverified", CATEGORY_UNVERIFIED),
        finding("c-typo", CATEGORY_TYPOSQUAT, CATEGORY_RESOLVED),
        finding("d-missing", CATEGORY_MISSING),
        finding("e-unclaimed", CATEGORY_MISSING, CATEGORY_UNCLAIMED),
        finding("f-vulnerable", CATEGORY_VULNERABLE),
        finding("a-missing", CATEGORY_MISSING),
    ]
    ordered = [f.package for f in sort_findings(findings)]
    assert ordered == [
        "f-vulnerable",
        "e-unclaimed",
        "a-missing",
        "d-missing",
        "c-typo",
        "b-unverified",
        "a-resolved",
    ]
    assert severity_rank(frozenset({CATEGORY_RESOLVED})) == 5
