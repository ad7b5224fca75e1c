"""Shared fixtures for phantomscan tests."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List

import pytest

from phantomscan.models import UNIT_MODULE, Finding, RegistryRecord, SourceUnit
from phantomscan.registry import RegistrySnapshot, load_registry
from phantomscan.ruleset import RiskRuleset, default_ruleset, load_ruleset

FIXTURES = Path(__file__).parent / "fixtures"
PROJECT = FIXTURES / "project"


def make_unit(text: str, role: str = UNIT_MODULE, unit_id: str = "unit.js") -> SourceUnit:
    return SourceUnit(unit_id=unit_id, text=text, role=role, hints=(role,))


def by_package(findings) -> Dict[str, Finding]:
    return {finding.package: finding for finding in findings}


def texts(refs) -> List[str]:
    return [ref.text for ref in refs]


@pytest.fixture
def fixtures_dir() -> Path:
    return FIXTURES


@pytest.fixture
def project_dir() -> Path:
    return PROJECT


@pytest.fixture
def registry() -> RegistrySnapshot:
    """Registry snapshot loaded from the JSON fixture."""
    return load_registry(FIXTURES / "registry.json")


@pytest.fixture
def small_registry() -> RegistrySnapshot:
    return RegistrySnapshot(
        records={
            "react": RegistryRecord(popularity_rank=1),
            "lodash": RegistryRecord(popularity_rank=2),
            "express": RegistryRecord(),
            "missing-dev-tools": RegistryRecord(popularity_rank=500),
            "abandoned-pkg": RegistryRecord(claimed=False),
            "@acme/ui": RegistryRecord(),
        },
        popular=frozenset({"chart.js"}),
    )


@pytest.fixture
def ruleset() -> RiskRuleset:
    return default_ruleset()


@pytest.fixture
def fixture_ruleset() -> RiskRuleset:
    return load_ruleset(FIXTURES / "ruleset.json")
