from __future__ import annotations

from dataclasses import dataclass, field
from typing import FrozenSet, Optional, Tuple

# Unit roles (file role hints supplied by the tree walker)
UNIT_MODULE = "module-source"
UNIT_CONFIG = "build-config"
UNIT_MANIFEST = "manifest"
UNIT_LOCKFILE = "lockfile"
UNIT_SOURCE_MAP = "source-map"
UNIT_CI_SCRIPT = "ci-script"
UNIT_DOCUMENT = "document"

# Syntactic roles of a reference
ROLE_LOAD_BEARING = "load-bearing-call"
ROLE_DECLARATIVE = "declarative-import"
ROLE_TYPE_ONLY = "type-only-import"
ROLE_CONFIG = "config-structural-value"
ROLE_FREE_TEXT = "free-text-mention"

REFERENCE_ROLES = (
    ROLE_LOAD_BEARING,
    ROLE_DECLARATIVE,
    ROLE_TYPE_ONLY,
    ROLE_CONFIG,
    ROLE_FREE_TEXT,
)

# Detector kinds
DETECTOR_SYNC_CALL = "sync-call"
DETECTOR_CALLBACK_LIST = "callback-list"
DETECTOR_UNIVERSAL_WRAPPER = "universal-wrapper"
DETECTOR_STATIC_IMPORT = "static-import"
DETECTOR_DYNAMIC_IMPORT = "dynamic-import"
DETECTOR_INSTALL_COMMAND = "install-command"
DETECTOR_CONFIG_WALKER = "config-walker"
DETECTOR_FREE_TEXT = "free-text"

DETECTOR_KINDS = (
    DETECTOR_SYNC_CALL,
    DETECTOR_CALLBACK_LIST,
    DETECTOR_UNIVERSAL_WRAPPER,
    DETECTOR_STATIC_IMPORT,
    DETECTOR_DYNAMIC_IMPORT,
    DETECTOR_INSTALL_COMMAND,
    DETECTOR_CONFIG_WALKER,
    DETECTOR_FREE_TEXT,
)

# Finding categories
CATEGORY_RESOLVED = "resolved"
CATEGORY_VULNERABLE = "vulnerable"
CATEGORY_MISSING = "missing"
CATEGORY_UNCLAIMED = "unclaimed"
CATEGORY_TYPOSQUAT = "typosquat-candidate"
CATEGORY_UNVERIFIED = "unverified"

CATEGORIES = (
    CATEGORY_RESOLVED,
    CATEGORY_VULNERABLE,
    CATEGORY_MISSING,
    CATEGORY_UNCLAIMED,
    CATEGORY_TYPOSQUAT,
    CATEGORY_UNVERIFIED,
)


@dataclass(frozen=True)
class SourceUnit:
    unit_id: str
    text: str
    role: str = UNIT_MODULE
    hints: Tuple[str, ...] = ()


@dataclass(frozen=True)
class RawReference:
    unit_id: str
    start: int
    end: int
    line_no: int
    text: str
    detector: str
    role: str
    snippet: str = ""

    def to_dict(self) -> dict:
        return {
            "unit": self.unit_id,
            "line_no": self.line_no,
            "start": self.start,
            "end": self.end,
            "text": self.text,
            "detector": self.detector,
            "role": self.role,
            "snippet": self.snippet,
        }


@dataclass(frozen=True)
class PackageIdentifier:
    """Canonical package name. Subpath and version ride along but do not
    take part in equality or hashing. Order by ``key``."""

    scope: Optional[str]
    name: str
    subpath: Optional[str] = field(default=None, compare=False)
    version: Optional[str] = field(default=None, compare=False)

    @property
    def key(self) -> str:
        if self.scope:
            return f"@{self.scope}/{self.name}"
        return self.name

    def __str__(self) -> str:
        return self.key


@dataclass(frozen=True)
class RegistryRecord:
    exists: bool = True
    claimed: bool = True
    advisory_flagged: bool = False
    popularity_rank: Optional[int] = None
    latest_safe_version: Optional[str] = None


@dataclass(frozen=True)
class Finding:
    identifier: PackageIdentifier
    references: Tuple[RawReference, ...]
    categories: FrozenSet[str]
    confidence: float
    rule_trail: Tuple[str, ...] = ()
    nearest_popular: Optional[str] = None
    finding_id: str = ""

    @property
    def package(self) -> str:
        return self.identifier.key

    @property
    def roles(self) -> FrozenSet[str]:
        return frozenset(ref.role for ref in self.references)

    def to_dict(self) -> dict:
        return {
            "id": self.finding_id,
            "package": self.package,
            "categories": sorted(self.categories),
            "confidence": round(self.confidence, 4),
            "nearest_popular": self.nearest_popular,
            "rule_trail": list(self.rule_trail),
            "references": [ref.to_dict() for ref in self.references],
        }
