from __future__ import annotations

import fnmatch
import json
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, FrozenSet, Optional, Tuple

from .models import (
    CATEGORIES,
    CATEGORY_MISSING,
    CATEGORY_RESOLVED,
    CATEGORY_TYPOSQUAT,
    CATEGORY_UNCLAIMED,
    CATEGORY_UNVERIFIED,
    CATEGORY_VULNERABLE,
    DETECTOR_KINDS,
    REFERENCE_ROLES,
    ROLE_CONFIG,
    ROLE_DECLARATIVE,
    ROLE_FREE_TEXT,
    ROLE_LOAD_BEARING,
    ROLE_TYPE_ONLY,
    PackageIdentifier,
)
from .semver import parse_range, satisfies

RULESET_VERSION = "1"

DEFAULT_ROLE_WEIGHTS = {
    ROLE_LOAD_BEARING: 1.0,
    ROLE_DECLARATIVE: 0.95,
    ROLE_TYPE_ONLY: 0.6,
    ROLE_CONFIG: 0.6,
    ROLE_FREE_TEXT: 0.3,
}
DEFAULT_CATEGORY_WEIGHTS = {
    CATEGORY_VULNERABLE: 1.0,
    CATEGORY_MISSING: 1.0,
    CATEGORY_UNCLAIMED: 1.0,
    CATEGORY_TYPOSQUAT: 0.9,
    CATEGORY_UNVERIFIED: 0.8,
    CATEGORY_RESOLVED: 1.0,
}
DEFAULT_POPULAR_NAMES = (
    "react",
    "react-dom",
    "vue",
    "angular",
    "@angular/core",
    "svelte",
    "next",
    "express",
    "lodash",
    "underscore",
    "jquery",
    "axios",
    "request",
    "moment",
    "dayjs",
    "chalk",
    "commander",
    "debug",
    "dotenv",
    "typescript",
    "webpack",
    "vite",
    "rollup",
    "esbuild",
    "babel-core",
    "@babel/core",
    "eslint",
    "prettier",
    "jest",
    "mocha",
    "chai",
    "electron",
    "socket.io",
    "mongoose",
    "redux",
    "rxjs",
    "uuid",
    "yargs",
    "colors",
    "cross-env",
    "node-fetch",
    "bluebird",
    "async",
    "classnames",
    "body-parser",
    "cors",
    "chart.js",
    "d3",
    "three",
    "tslib",
)


class RulesetError(ValueError):
    pass


@dataclass(frozen=True)
class VulnerablePattern:
    name: str
    range: Optional[str] = None
    advisory: str = ""

    def matches(self, identifier: PackageIdentifier) -> bool:
        if not fnmatch.fnmatchcase(identifier.key, self.name):
            return False
        if self.range is None or self.range.strip() in ("", "*"):
            return True
        return satisfies(identifier.version, self.range)


@dataclass(frozen=True)
class RiskRuleset:
    version: str = RULESET_VERSION
    edit_distance_threshold: int = 1
    popular_names: FrozenSet[str] = frozenset(DEFAULT_POPULAR_NAMES)
    role_weights: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_ROLE_WEIGHTS))
    detector_weights: Dict[str, float] = field(default_factory=lambda: {kind: 1.0 for kind in DETECTOR_KINDS})
    category_weights: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_CATEGORY_WEIGHTS))
    free_text_cap: float = 0.3
    partial_penalty: float = 0.7
    vulnerable: Tuple[VulnerablePattern, ...] = ()

    def role_weight(self, role: str) -> float:
        return self.role_weights.get(role, 0.0)

    def detector_weight(self, kind: str) -> float:
        return self.detector_weights.get(kind, 1.0)

    def category_weight(self, category: str) -> float:
        return self.category_weights.get(category, 1.0)

    def vulnerable_match(self, identifier: PackageIdentifier) -> Optional[VulnerablePattern]:
        for pattern in self.vulnerable:
            if pattern.matches(identifier):
                return pattern
        return None

    def validate(self) -> None:
        if self.edit_distance_threshold < 0:
            raise RulesetError("edit_distance_threshold must be >= 0")
        _check_weights("role_weights", self.role_weights, REFERENCE_ROLES)
        _check_weights("detector_weights", self.detector_weights, DETECTOR_KINDS)
        _check_weights("category_weights", self.category_weights, CATEGORIES)
        for role in REFERENCE_ROLES:
            if role not in self.role_weights:
                raise RulesetError(f"role_weights is missing '{role}'")
        for name, value in (("free_text_cap", self.free_text_cap), ("partial_penalty", self.partial_penalty)):
            if not 0.0 <= value <= 1.0:
                raise RulesetError(f"{name} must be within [0, 1], got {value}")
        for pattern in self.vulnerable:
            if not pattern.name:
                raise RulesetError("vulnerable pattern without a name")
            if not pattern.range or pattern.range.strip() in ("", "*"):
                continue
            try:
                parse_range(pattern.range)
            except ValueError as exc:
                raise RulesetError(f"unreadable version range for {pattern.name}: {pattern.range!r}") from exc


def _check_weights(label: str, weights: Dict[str, float], allowed) -> None:
    for key, value in weights.items():
        if key not in allowed:
            raise RulesetError(f"{label}: unknown key '{key}'")
        if not isinstance(value, (int, float)) or not 0.0 <= float(value) <= 1.0:
            raise RulesetError(f"{label}: weight for '{key}' must be within [0, 1], got {value!r}")


def default_ruleset() -> RiskRuleset:
    return RiskRuleset()


def ruleset_from_dict(data: dict) -> RiskRuleset:
    if not isinstance(data, dict):
        raise RulesetError("ruleset document must be a JSON object")
    base = default_ruleset()
    updates: dict = {}
    try:
        if "version" in data:
            updates["version"] = str(data["version"])
        if "edit_distance_threshold" in data:
            updates["edit_distance_threshold"] = int(data["edit_distance_threshold"])
        if "popular_names" in data:
            updates["popular_names"] = frozenset(str(n) for n in data["popular_names"])
        for key in ("role_weights", "detector_weights", "category_weights"):
            if key in data:
                merged = dict(getattr(base, key))
                merged.update({str(k): float(v) for k, v in dict(data[key]).items()})
                updates[key] = merged
        for key in ("free_text_cap", "partial_penalty"):
            if key in data:
                updates[key] = float(data[key])
        if "vulnerable" in data:
            updates["vulnerable"] = tuple(
                VulnerablePattern(
                    name=str(item["name"]),
                    range=item.get("range"),
                    advisory=str(item.get("advisory") or ""),
                )
                for item in data["vulnerable"]
            )
    except (TypeError, ValueError, KeyError, AttributeError) as exc:
        raise RulesetError(f"invalid ruleset: {exc}") from exc
    ruleset = replace(base, **updates)
    ruleset.validate()
    return ruleset


def load_ruleset(path: Path) -> RiskRuleset:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as exc:
        raise RulesetError(f"ruleset not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise RulesetError(f"ruleset is not valid JSON: {path}: {exc}") from exc
    return ruleset_from_dict(data)
