"""
Issue catalog: which catalog/annex documents make up one issue for one age bracket.

The catalog file is keyed by issue (``YYYY-MM``) then by age bracket:

    {"2025-03": {"6-9": {"catalog": "https://...", "annexes": ["https://..."]}}}

Lookups run against an immutable ``CatalogSnapshot``. The ``CatalogRegistry``
publishes new snapshots when the file changes; readers keep whichever snapshot
they were handed for the duration of one event.
"""
import json
import logging
import os
import re
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from .errors import CatalogError

logger = logging.getLogger(__name__)

ISSUE_KEY_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


@dataclass(frozen=True)
class Entitlement:
    catalog_ref: str
    annex_refs: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {"catalog": self.catalog_ref, "annexes": list(self.annex_refs)}


@dataclass(frozen=True)
class CatalogSnapshot:
    entries: Mapping[str, Mapping[str, Entitlement]] = field(default_factory=lambda: MappingProxyType({}))
    source: Optional[str] = None
    loaded_at: Optional[datetime] = None

    @classmethod
    def from_mapping(cls, raw: Any, *, source: Optional[str] = None) -> "CatalogSnapshot":
        if not isinstance(raw, dict):
            raise CatalogError("Catalog must be an object keyed by issue (YYYY-MM)")

        issues: Dict[str, Mapping[str, Entitlement]] = {}
        for issue_key, by_age in raw.items():
            if not ISSUE_KEY_RE.match(str(issue_key)):
                raise CatalogError(f"Invalid issue key {issue_key!r}, expected YYYY-MM")
            if not isinstance(by_age, dict):
                raise CatalogError(f"Issue {issue_key} must map age brackets to entries")
            ages: Dict[str, Entitlement] = {}
            for age_bracket, entry in by_age.items():
                ages[str(age_bracket)] = _parse_entry(issue_key, age_bracket, entry)
            issues[issue_key] = MappingProxyType(ages)

        return cls(
            entries=MappingProxyType(issues),
            source=source,
            loaded_at=datetime.now(timezone.utc),
        )

    def lookup(self, age_bracket: str, issue_key: str) -> Optional[Entitlement]:
        return (self.entries.get(issue_key) or {}).get(age_bracket)

    def issue_keys(self) -> Tuple[str, ...]:
        return tuple(sorted(self.entries))

    def to_dict(self) -> Dict[str, Dict[str, Dict[str, Any]]]:
        return {
            issue_key: {age: ent.to_dict() for age, ent in by_age.items()}
            for issue_key, by_age in self.entries.items()
        }


def _parse_entry(issue_key, age_bracket, entry) -> Entitlement:
    where = f"{issue_key}/{age_bracket}"
    if not isinstance(entry, dict):
        raise CatalogError(f"Entry {where} must be an object")
    catalog_ref = entry.get("catalog")
    if not isinstance(catalog_ref, str) or not catalog_ref.strip():
        raise CatalogError(f"Entry {where} is missing 'catalog'")
    annexes = entry.get("annexes") or []
    if not isinstance(annexes, list) or not all(isinstance(a, str) for a in annexes):
        raise CatalogError(f"Entry {where}: 'annexes' must be a list of strings")
    return Entitlement(catalog_ref=catalog_ref, annex_refs=tuple(annexes))


def current_issue_key(now: Optional[datetime] = None) -> str:
    """UTC year-month of ``now`` (defaults to the current time), e.g. ``2025-03``."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    return f"{now.year:04d}-{now.month:02d}"


def lookup(snapshot: CatalogSnapshot, age_bracket: str, issue_key: Optional[str] = None) -> Optional[Entitlement]:
    if issue_key is None:
        issue_key = current_issue_key()
    return snapshot.lookup(age_bracket, issue_key)


def load_catalog_file(path: str) -> CatalogSnapshot:
    try:
        with open(path, encoding="utf-8") as fh:
            raw = json.load(fh)
    except OSError as exc:
        raise CatalogError(f"Cannot read catalog {path}: {exc}") from exc
    except ValueError as exc:
        raise CatalogError(f"Catalog {path} is not valid JSON: {exc}") from exc
    return CatalogSnapshot.from_mapping(raw, source=path)


class CatalogRegistry:
    """Holds the latest published snapshot."""

    def __init__(self, snapshot: Optional[CatalogSnapshot] = None):
        self._lock = threading.Lock()
        self._snapshot = snapshot or CatalogSnapshot()

    def current(self) -> CatalogSnapshot:
        with self._lock:
            return self._snapshot

    def publish(self, snapshot: CatalogSnapshot) -> None:
        with self._lock:
            self._snapshot = snapshot

    def reload_from(self, path: str) -> CatalogSnapshot:
        """
        Load, validate and publish ``path``. On failure the previously
        published snapshot stays in place and the CatalogError propagates.
        """
        snapshot = load_catalog_file(path)
        self.publish(snapshot)
        logger.info(
            "catalog.loaded path=%s issues=%d", path, len(snapshot.entries)
        )
        return snapshot


class CatalogWatcher(threading.Thread):
    """Polls the catalog file's mtime and republishes it when it changes."""

    def __init__(self, registry: CatalogRegistry, path: str, interval: float = 2.0):
        super().__init__(name="catalog-watcher", daemon=True)
        self.registry = registry
        self.path = path
        self.interval = interval
        self._stop_event = threading.Event()
        self._last_mtime = self._mtime()

    def _mtime(self) -> Optional[float]:
        try:
            return os.stat(self.path).st_mtime
        except OSError:
            return None

    def poll_once(self) -> bool:
        """Reload if the file changed since the last poll. Returns True on a successful reload."""
        mtime = self._mtime()
        if mtime is None or mtime == self._last_mtime:
            return False
        self._last_mtime = mtime
        try:
            self.registry.reload_from(self.path)
        except CatalogError:
            logger.exception("catalog.reload_failed path=%s; keeping previous snapshot", self.path)
            return False
        return True

    def run(self) -> None:
        while not self._stop_event.wait(self.interval):
            self.poll_once()

    def stop(self) -> None:
        self._stop_event.set()
