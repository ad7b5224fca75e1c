from __future__ import annotations

import os
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Set, Tuple

from .classifier import Classifier
from .config_walker import ConfigWalker, is_text_lockfile
from .console import RichLogger, silent_logger
from .detectors import CODE_DETECTORS, TEXT_DETECTORS, Detector
from .free_text import FreeTextScanner
from .lexer import lex
from .models import UNIT_CI_SCRIPT, UNIT_DOCUMENT, Finding, RawReference, SourceUnit
from .normalize import normalize_reference
from .registry import RegistrySnapshot, RegistryUnavailableError
from .results import ResultStore
from .ruleset import RiskRuleset, RulesetError

UNLEXED_ROLES = frozenset({UNIT_CI_SCRIPT, UNIT_DOCUMENT})
MAX_CHILD_DEPTH = 2


def default_thread_count() -> int:
    cpu = os.cpu_count() or 1
    return min(32, cpu + 4)


@dataclass
class UnitResult:
    unit_id: str
    references: List[RawReference] = field(default_factory=list)
    partial_units: Set[str] = field(default_factory=set)
    units_scanned: int = 0
    skipped: bool = False

    @property
    def partial(self) -> bool:
        return bool(self.partial_units)


class Scanner:
    """Runs every applicable detector over one unit at a time."""

    def __init__(
        self,
        logger: Optional[RichLogger] = None,
        detectors: Sequence[Detector] = CODE_DETECTORS + TEXT_DETECTORS,
        walker: Optional[ConfigWalker] = None,
        free_text: Optional[FreeTextScanner] = None,
    ):
        self.logger = logger or silent_logger()
        self.detectors = tuple(detectors)
        self.walker = walker or ConfigWalker()
        self.free_text = free_text or FreeTextScanner()

    def scan_unit(self, unit: SourceUnit) -> UnitResult:
        result = UnitResult(unit_id=unit.unit_id)
        try:
            self._run(unit, 0, result)
        except Exception as e:
            self.logger.warn(f"Failed to scan {unit.unit_id}: {e}")
            return UnitResult(unit_id=unit.unit_id, skipped=True)
        return result

    def _run(self, unit: SourceUnit, depth: int, result: UnitResult) -> None:
        lexed = unit.role not in UNLEXED_ROLES and not is_text_lockfile(unit)
        source = lex(unit.text) if lexed else None
        partial = bool(source is not None and source.partial)
        result.units_scanned += 1

        for detector in self.detectors:
            if detector.applies_to(unit):
                result.references.extend(detector.detect(unit, source))

        children: List[SourceUnit] = []
        if self.walker.applies_to(unit):
            walked = self.walker.walk(unit, source)
            result.references.extend(walked.references)
            children = walked.children
            partial = partial or walked.partial

        if self.free_text.applies_to(unit):
            result.references.extend(self.free_text.detect(unit, source))

        if partial:
            self.logger.debug(f"Partially scanned: {unit.unit_id}")
            result.partial_units.add(unit.unit_id)

        for child in children:
            if depth >= MAX_CHILD_DEPTH:
                self.logger.debug(f"Not expanding nested unit {child.unit_id}")
                break
            self._run(child, depth + 1, result)

    def scan_units(
        self,
        units: Sequence[SourceUnit],
        threads: int = 1,
        cancel: Optional[threading.Event] = None,
        on_unit: Optional[Callable[[UnitResult], None]] = None,
    ) -> List[UnitResult]:
        """Per-unit results in input order, whatever order workers finish in."""

        def work(unit: SourceUnit) -> UnitResult:
            if cancel is not None and cancel.is_set():
                return UnitResult(unit_id=unit.unit_id, skipped=True)
            return self.scan_unit(unit)

        results: List[Optional[UnitResult]] = [None] * len(units)
        if threads <= 1:
            for idx, unit in enumerate(units):
                results[idx] = work(unit)
                if on_unit is not None:
                    on_unit(results[idx])
        else:
            with ThreadPoolExecutor(max_workers=threads) as executor:
                futures = {executor.submit(work, unit): idx for idx, unit in enumerate(units)}
                for fut in as_completed(futures):
                    idx = futures[fut]
                    results[idx] = fut.result()
                    if on_unit is not None:
                        on_unit(results[idx])
        return [r for r in results if r is not None]


def check_collaborators(registry: Optional[RegistrySnapshot], ruleset: Optional[RiskRuleset]) -> None:
    if registry is None:
        raise RegistryUnavailableError("No registry snapshot supplied")
    if registry.is_empty():
        raise RegistryUnavailableError("Registry snapshot is empty")
    if ruleset is None:
        raise RulesetError("No risk ruleset supplied")
    ruleset.validate()


def aggregate(results: Sequence[UnitResult], ruleset: RiskRuleset) -> ResultStore:
    store = ResultStore()
    for result in results:
        for ref in result.references:
            identifier = normalize_reference(ref)
            if identifier is None:
                continue
            store.add(ref, identifier, partial=ref.unit_id in result.partial_units)
    return store


def scan(
    units: Sequence[SourceUnit],
    registry: RegistrySnapshot,
    ruleset: RiskRuleset,
    threads: Optional[int] = None,
    logger: Optional[RichLogger] = None,
    cancel: Optional[threading.Event] = None,
    on_unit: Optional[Callable[[UnitResult], None]] = None,
) -> Tuple[Finding, ...]:
    """Extract, aggregate and classify package references across ``units``.

    Raises RegistryUnavailableError or RulesetError before any unit is read
    when a collaborator is missing or empty. Malformed units never raise.
    """
    check_collaborators(registry, ruleset)
    logger = logger or silent_logger()
    threads = default_thread_count() if threads is None else max(1, threads)

    scanner = Scanner(logger=logger)
    results = scanner.scan_units(list(units), threads=threads, cancel=cancel, on_unit=on_unit)
    if cancel is not None and cancel.is_set():
        logger.warn("Scan cancelled; classifying the units finished so far")
    skipped = sum(1 for r in results if r.skipped)
    if skipped:
        logger.warn(f"{skipped} unit(s) skipped")

    store = aggregate(results, ruleset)
    logger.debug(f"Aggregated {store.count_total} references into {len(store.records)} packages")
    classifier = Classifier(registry, ruleset)
    return tuple(classifier.classify_all(store.ordered(), threads=threads))


def collect_package_names(
    units: Sequence[SourceUnit],
    ruleset: RiskRuleset,
    threads: int = 1,
    logger: Optional[RichLogger] = None,
) -> List[str]:
    """Package names referenced by ``units``, for pre-fetching registry records."""
    results = Scanner(logger=logger).scan_units(list(units), threads=threads)
    store = aggregate(results, ruleset)
    return sorted(identifier.key for identifier in store.records)
