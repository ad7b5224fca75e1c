from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Set

from .console import RichLogger
from .models import CATEGORIES, Finding, PackageIdentifier, RawReference


@dataclass
class FindingRecord:
    """A finding while references are still being folded in."""

    identifier: PackageIdentifier
    references: List[RawReference] = field(default_factory=list)
    partial_refs: Set[int] = field(default_factory=set)
    versions: Set[str] = field(default_factory=set)

    def is_partial(self, index: int) -> bool:
        return index in self.partial_refs


class ResultStore:
    """Groups references by package identifier across every scanned unit."""

    def __init__(self):
        self._lock = threading.Lock()
        self.records: Dict[PackageIdentifier, FindingRecord] = {}
        self.count_total = 0

    def add(self, ref: RawReference, identifier: PackageIdentifier, partial: bool = False) -> bool:
        with self._lock:
            self.count_total += 1
            record = self.records.get(identifier)
            created = record is None
            if record is None:
                record = FindingRecord(identifier=identifier)
                self.records[identifier] = record
            if partial:
                record.partial_refs.add(len(record.references))
            record.references.append(ref)
            if identifier.version:
                record.versions.add(identifier.version)
            return created

    def ordered(self) -> List[FindingRecord]:
        with self._lock:
            return list(self.records.values())


def summarize(findings: Iterable[Finding]) -> Dict[str, object]:
    counts = {category: 0 for category in CATEGORIES}
    total = 0
    references = 0
    for finding in findings:
        total += 1
        references += len(finding.references)
        for category in finding.categories:
            counts[category] = counts.get(category, 0) + 1
    return {"findings": total, "references": references, "categories": counts}


class ResultWriter:
    def __init__(self, out_dir: Path, logger: RichLogger):
        self.out_dir = out_dir
        self.logger = logger
        self.out_dir.mkdir(parents=True, exist_ok=True)

    def write_all(self, findings: Iterable[Finding], run_metadata: Dict[str, object]) -> None:
        findings = list(findings)
        with open(self.out_dir / "findings.jsonl", "w", encoding="utf-8") as f:
            for finding in findings:
                f.write(json.dumps(finding.to_dict(), ensure_ascii=False) + "\n")

        with open(self.out_dir / "summary.json", "w", encoding="utf-8") as f:
            json.dump(summarize(findings), f, indent=2)

        with open(self.out_dir / "run_metadata.json", "w", encoding="utf-8") as f:
            json.dump(run_metadata, f, indent=2)

        self.logger.done(f"Results written to: {self.out_dir}")
