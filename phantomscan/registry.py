from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, Optional
from urllib.parse import quote

import requests

from .console import RichLogger
from .models import PackageIdentifier, RegistryRecord

DEFAULT_REGISTRY_URL = "https://registry.npmjs.org"
DEFAULT_USER_AGENT = "phantomscan/1.0"
DEFAULT_RATE_LIMIT_SECONDS = 0.1
SECURITY_PLACEHOLDER_SUFFIX = "-security"


class RegistryUnavailableError(RuntimeError):
    pass


class RegistryFetchError(RegistryUnavailableError):
    pass


@dataclass(frozen=True)
class RegistrySnapshot:
    """Read-only view of which package names exist and who holds them."""

    records: Dict[str, RegistryRecord] = field(default_factory=dict)
    popular: FrozenSet[str] = frozenset()

    def exists(self, identifier: PackageIdentifier) -> Optional[RegistryRecord]:
        """The record for a present package, None when the name is absent."""
        record = self.records.get(identifier.key)
        if record is None or not record.exists:
            return None
        return record

    def popularity_corpus(self) -> FrozenSet[str]:
        ranked = {name for name, rec in self.records.items() if rec.exists and rec.popularity_rank is not None}
        return frozenset(self.popular | ranked)

    def scope_claimed(self, scope: str) -> bool:
        prefix = f"@{scope}/"
        return any(name.startswith(prefix) and rec.exists for name, rec in self.records.items())

    def is_empty(self) -> bool:
        return not self.records and not self.popular

    def merged(self, other: "RegistrySnapshot") -> "RegistrySnapshot":
        records = dict(self.records)
        records.update(other.records)
        return RegistrySnapshot(records=records, popular=self.popular | other.popular)


def snapshot_from_data(data) -> RegistrySnapshot:
    if isinstance(data, list):
        return RegistrySnapshot(records={str(name): RegistryRecord() for name in data})
    if not isinstance(data, dict):
        raise RegistryUnavailableError("registry snapshot must be a JSON object or a list of names")
    records: Dict[str, RegistryRecord] = {}
    for name, raw in (data.get("packages") or {}).items():
        raw = raw if isinstance(raw, dict) else {}
        rank = raw.get("rank")
        records[str(name)] = RegistryRecord(
            exists=bool(raw.get("exists", True)),
            claimed=bool(raw.get("claimed", True)),
            advisory_flagged=bool(raw.get("advisory", False)),
            popularity_rank=int(rank) if rank is not None else None,
            latest_safe_version=raw.get("latest_safe"),
        )
    popular = frozenset(str(name) for name in data.get("popular") or [])
    return RegistrySnapshot(records=records, popular=popular)


def load_registry(path: Path) -> RegistrySnapshot:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as exc:
        raise RegistryUnavailableError(f"registry snapshot not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise RegistryUnavailableError(f"registry snapshot is not valid JSON: {path}: {exc}") from exc
    return snapshot_from_data(data)


class NpmRegistryClient:
    """Pre-fetches registry records over HTTP before a scan."""

    def __init__(
        self,
        base_url: str = DEFAULT_REGISTRY_URL,
        user_agent: str = DEFAULT_USER_AGENT,
        rate_limit_seconds: float = DEFAULT_RATE_LIMIT_SECONDS,
        timeout: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.user_agent = user_agent.strip() or DEFAULT_USER_AGENT
        self.rate_limit_seconds = max(0.0, rate_limit_seconds)
        self.timeout = timeout
        self.session = requests.Session()
        self._last_request = 0.0

    def _wait_rate_limit(self) -> None:
        if self.rate_limit_seconds <= 0:
            return
        delta = time.time() - self._last_request
        if delta < self.rate_limit_seconds:
            time.sleep(self.rate_limit_seconds - delta)
        self._last_request = time.time()

    def fetch(self, name: str) -> Optional[RegistryRecord]:
        self._wait_rate_limit()
        url = f"{self.base_url}/{quote(name, safe='@')}"
        headers = {"User-Agent": self.user_agent, "Accept": "application/json"}
        try:
            resp = self.session.get(url, headers=headers, timeout=self.timeout)
        except requests.RequestException as exc:
            raise RegistryFetchError(f"Network error contacting registry for {name}: {exc}") from exc

        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            raise RegistryFetchError(f"Registry error {resp.status_code} for {name}: {resp.text[:200]}")
        try:
            doc = resp.json()
        except ValueError as exc:
            raise RegistryFetchError(f"Registry returned invalid JSON for {name}") from exc

        latest = (doc.get("dist-tags") or {}).get("latest")
        if not doc.get("versions") and (doc.get("time") or {}).get("unpublished"):
            return RegistryRecord(exists=True, claimed=False)
        return RegistryRecord(
            exists=True,
            claimed=True,
            advisory_flagged=bool(latest and latest.endswith(SECURITY_PLACEHOLDER_SUFFIX)),
            latest_safe_version=latest,
        )

    def fetch_snapshot(
        self,
        names: Iterable[str],
        logger: RichLogger,
        base: Optional[RegistrySnapshot] = None,
    ) -> RegistrySnapshot:
        records: Dict[str, RegistryRecord] = {}
        for name in sorted(set(names)):
            record = self.fetch(name)
            if record is None:
                logger.debug(f"Registry: {name} not found")
                records[name] = RegistryRecord(exists=False, claimed=False)
            else:
                records[name] = record
        fetched = RegistrySnapshot(records=records)
        logger.info(f"Registry: fetched {len(records)} package records")
        return fetched if base is None else base.merged(fetched)
