from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import FrozenSet, Iterable, List, Optional, Sequence, Tuple

from .models import (
    CATEGORY_MISSING,
    CATEGORY_RESOLVED,
    CATEGORY_TYPOSQUAT,
    CATEGORY_UNCLAIMED,
    CATEGORY_UNVERIFIED,
    CATEGORY_VULNERABLE,
    ROLE_FREE_TEXT,
    Finding,
    PackageIdentifier,
    RegistryRecord,
)
from .normalize import is_registrable_name, stable_key
from .registry import RegistrySnapshot
from .results import FindingRecord
from .ruleset import RiskRuleset
from .semver import parse_version

# Most severe first; the confidence uses the weight of the first one present.
CATEGORY_SEVERITY = (
    CATEGORY_VULNERABLE,
    CATEGORY_MISSING,
    CATEGORY_UNCLAIMED,
    CATEGORY_TYPOSQUAT,
    CATEGORY_UNVERIFIED,
    CATEGORY_RESOLVED,
)
RISKY_CATEGORIES = frozenset(
    {CATEGORY_VULNERABLE, CATEGORY_MISSING, CATEGORY_UNCLAIMED, CATEGORY_TYPOSQUAT, CATEGORY_UNVERIFIED}
)


def bounded_levenshtein(a: str, b: str, limit: int) -> int:
    """Edit distance between a and b, or limit + 1 as soon as it must exceed limit."""
    if a == b:
        return 0
    if abs(len(a) - len(b)) > limit:
        return limit + 1
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        row_min = i
        for j, cb in enumerate(b, start=1):
            cost = previous[j - 1] + (ca != cb)
            value = min(previous[j] + 1, current[j - 1] + 1, cost)
            current.append(value)
            if value < row_min:
                row_min = value
        if row_min > limit:
            return limit + 1
        previous = current
    return min(previous[-1], limit + 1)


def nearest_popular(name: str, corpus: Sequence[str], threshold: int) -> Optional[Tuple[str, int]]:
    """Closest corpus entry within threshold; ties go to the alphabetically first."""
    if threshold <= 0:
        return None
    best: Optional[Tuple[int, str]] = None
    for candidate in corpus:
        if candidate == name:
            continue
        limit = threshold if best is None else min(threshold, best[0])
        distance = bounded_levenshtein(name, candidate, limit)
        if distance > limit:
            continue
        if best is None or (distance, candidate) < best:
            best = (distance, candidate)
    if best is None:
        return None
    return best[1], best[0]


def severity_rank(categories: FrozenSet[str]) -> int:
    if CATEGORY_VULNERABLE in categories:
        return 0
    if CATEGORY_MISSING in categories and CATEGORY_UNCLAIMED in categories:
        return 1
    if CATEGORY_MISSING in categories:
        return 2
    if CATEGORY_TYPOSQUAT in categories:
        return 3
    if CATEGORY_UNVERIFIED in categories:
        return 4
    return 5


def sort_findings(findings: Iterable[Finding]) -> List[Finding]:
    return sorted(findings, key=lambda f: (severity_rank(f.categories), f.identifier.key))


def is_risky(finding: Finding) -> bool:
    return bool(finding.categories & RISKY_CATEGORIES)


class Classifier:
    def __init__(self, registry: RegistrySnapshot, ruleset: RiskRuleset):
        self.registry = registry
        self.ruleset = ruleset
        corpus = set(ruleset.popular_names) | set(registry.popularity_corpus())
        self.corpus = tuple(sorted(corpus))
        self._corpus_set = frozenset(corpus)

    def classify(self, record: FindingRecord) -> Finding:
        identifier = record.identifier
        categories = set()
        trail: List[str] = []

        vulnerable = self._vulnerable(record, trail)
        entry = self.registry.exists(identifier)
        if entry is not None and self._advisory_applies(entry, record.versions):
            vulnerable = True
            fixed = f" (fixed in {entry.latest_safe_version})" if entry.latest_safe_version else ""
            trail.append(f"vulnerable: registry advisory{fixed}")
        if vulnerable:
            categories.add(CATEGORY_VULNERABLE)

        if entry is None:
            categories.add(CATEGORY_MISSING)
            trail.append("missing: not present in registry snapshot")
            if self._is_unclaimed(identifier):
                categories.add(CATEGORY_UNCLAIMED)
                trail.append("unclaimed: name is available for registration")
        elif entry.claimed and not vulnerable:
            categories.add(CATEGORY_RESOLVED)
            trail.append("resolved: present and claimed")
        elif not entry.claimed:
            categories.add(CATEGORY_UNVERIFIED)
            trail.append("unverified: present but not claimed by a known owner")

        nearest = None
        if identifier.key not in self._corpus_set:
            match = nearest_popular(identifier.key, self.corpus, self.ruleset.edit_distance_threshold)
            if match is not None:
                nearest, distance = match
                categories.add(CATEGORY_TYPOSQUAT)
                trail.append(f"typosquat-candidate: edit distance {distance} from '{nearest}'")

        frozen = frozenset(categories)
        return Finding(
            identifier=identifier,
            references=tuple(record.references),
            categories=frozen,
            confidence=self._confidence(record, frozen),
            rule_trail=tuple(trail),
            nearest_popular=nearest,
            finding_id=stable_key("finding", identifier.key),
        )

    def _vulnerable(self, record: FindingRecord, trail: List[str]) -> bool:
        identifier = record.identifier
        versions = sorted(record.versions) or [None]
        for version in versions:
            versioned = PackageIdentifier(identifier.scope, identifier.name, version=version)
            pattern = self.ruleset.vulnerable_match(versioned)
            if pattern is None:
                continue
            label = pattern.advisory or pattern.name
            at = f"@{version}" if version else ""
            trail.append(f"vulnerable: {label} matches {identifier.key}{at}")
            return True
        return False

    def _advisory_applies(self, entry: RegistryRecord, versions) -> bool:
        if not entry.advisory_flagged:
            return False
        safe = parse_version(entry.latest_safe_version)
        parsed = [parse_version(v) for v in versions]
        parsed = [v for v in parsed if v is not None]
        if safe is None or not parsed:
            return True
        return any(v < safe for v in parsed)

    def _is_unclaimed(self, identifier: PackageIdentifier) -> bool:
        if not is_registrable_name(identifier):
            return False
        if identifier.scope is not None and self.registry.scope_claimed(identifier.scope):
            return False
        return True

    def _confidence(self, record: FindingRecord, categories: FrozenSet[str]) -> float:
        ruleset = self.ruleset
        best = 0.0
        for index, ref in enumerate(record.references):
            weight = ruleset.role_weight(ref.role) * ruleset.detector_weight(ref.detector)
            if record.is_partial(index):
                weight *= ruleset.partial_penalty
            if ref.role == ROLE_FREE_TEXT:
                weight = min(weight, ruleset.free_text_cap)
            best = max(best, weight)
        for category in CATEGORY_SEVERITY:
            if category in categories:
                best *= ruleset.category_weight(category)
                break
        return min(1.0, max(0.0, best))

    def classify_all(self, records: Sequence[FindingRecord], threads: int = 1) -> List[Finding]:
        if threads <= 1 or len(records) < 2:
            findings = [self.classify(record) for record in records]
        else:
            with ThreadPoolExecutor(max_workers=threads) as pool:
                findings = list(pool.map(self.classify, records))
        return sort_findings(findings)
