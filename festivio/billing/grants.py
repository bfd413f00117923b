"""Owned issues, stored as one JSON list in the customer's ``owned_numbers`` metafield."""
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from .catalog import Entitlement

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EntitlementRecord:
    issue_key: str
    age_bracket: str
    catalog_ref: str
    annex_refs: Tuple[str, ...] = ()

    @property
    def pair(self) -> Tuple[str, str]:
        return (self.issue_key, self.age_bracket)

    @classmethod
    def granted(cls, issue_key: str, age_bracket: str, entitlement: Entitlement) -> "EntitlementRecord":
        return cls(issue_key, age_bracket, entitlement.catalog_ref, entitlement.annex_refs)

    @classmethod
    def from_stored(cls, raw: Dict[str, Any]) -> "EntitlementRecord":
        return cls(
            issue_key=str(raw.get("key") or ""),
            age_bracket=str(raw.get("age") or ""),
            catalog_ref=str(raw.get("catalog") or ""),
            annex_refs=tuple(raw.get("annexes") or ()),
        )

    def to_stored(self) -> Dict[str, Any]:
        return {
            "key": self.issue_key,
            "age": self.age_bracket,
            "catalog": self.catalog_ref,
            "annexes": list(self.annex_refs),
        }


def parse_owned(value: Optional[str]) -> List[EntitlementRecord]:
    """Decode the stored list. Unreadable values count as owning nothing."""
    if not value:
        return []
    try:
        raw = json.loads(value)
    except ValueError:
        logger.warning("owned_numbers is not valid JSON; treating as empty")
        return []
    if not isinstance(raw, list):
        logger.warning("owned_numbers is not a list; treating as empty")
        return []
    return [EntitlementRecord.from_stored(r) for r in raw if isinstance(r, dict)]


def dump_owned(records: List[EntitlementRecord]) -> str:
    return json.dumps([r.to_stored() for r in records], ensure_ascii=False)


def merge_grant(owned: List[EntitlementRecord], record: EntitlementRecord) -> Tuple[List[EntitlementRecord], bool]:
    """
    Append ``record`` unless its (issue, age bracket) pair is already owned.
    Returns the new list and whether it changed.
    """
    if any(r.pair == record.pair for r in owned):
        return list(owned), False
    return [*owned, record], True
