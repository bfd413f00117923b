"""
Subscription reconciliation: turns one SEAL event into metafield writes on
the matching Shopify customer.

created / billing_succeeded:  status=active, expiry=now+N months, grant current issue
cancelled:                    status=cancelled (grants are kept)
"""
import calendar
import logging
from dataclasses import asdict, dataclass
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from flask import current_app

from festivio.billing.catalog import CatalogSnapshot, current_issue_key
from festivio.billing.entitlements import extract_email, months_for, resolve_event
from festivio.billing.errors import CustomerNotFound, NoMapping, RemoteStoreError
from festivio.billing.grants import EntitlementRecord, dump_owned, merge_grant, parse_owned
from .metafields import TYPE_DATE, TYPE_JSON, TYPE_TEXT, customer_metafields, upsert_metafield
from .record_store import get_record_store

logger = logging.getLogger(__name__)

STATUS_ACTIVE = "active"
STATUS_CANCELLED = "cancelled"

KEY_STATUS = "subscription_status"
KEY_EXPIRY = "subscription_expiry"
KEY_OWNED = "owned_numbers"

EVENT_CREATED = "subscription_created"
EVENT_BILLING_SUCCEEDED = "billing_succeeded"
EVENT_CANCELLED = "subscription_cancelled"
HANDLED_EVENTS = (EVENT_CREATED, EVENT_BILLING_SUCCEEDED, EVENT_CANCELLED)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def add_months(start: datetime, months: int) -> date:
    """Calendar-month addition; the day is clamped to the target month's length."""
    index = start.month - 1 + months
    year, month = start.year + index // 12, index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


@dataclass(frozen=True)
class ReconcileResult:
    email: str
    customer_id: Any
    display_name: str
    age_bracket: str
    age_source: str
    billing_interval: str
    issue_key: str
    expiry: str
    granted: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class Reconciler:
    def __init__(
        self,
        store,
        catalog: CatalogSnapshot,
        *,
        namespace: str = "festivio",
        default_age: str = "6-9",
        default_display_name: str = "Enfant",
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.catalog = catalog
        self.namespace = namespace
        self.default_age = default_age
        self.default_display_name = default_display_name
        self.clock = clock

    # --- lookups ---

    def find_customer(self, email: str) -> Dict[str, Any]:
        """
        First customer whose email matches exactly (case-insensitive), in the
        order the store returns them.
        """
        wanted = email.strip().lower()
        for customer in self.store.search_customers(email):
            if (customer.get("email") or "").strip().lower() == wanted:
                return customer
        raise CustomerNotFound(email)

    def product_age(self, product_id) -> Optional[str]:
        """The product's ``age`` metafield, or None when absent or unreadable."""
        try:
            fields = self.store.list_product_metafields(product_id)
        except RemoteStoreError as exc:
            logger.error("product_age.lookup_failed product_id=%s: %s", product_id, exc)
            return None
        for m in fields:
            if m.get("namespace") == self.namespace and m.get("key") == "age":
                logger.info("product_age product_id=%s age=%s", product_id, m.get("value"))
                return m.get("value")
        logger.warning("product_age.missing product_id=%s has no %s.age metafield", product_id, self.namespace)
        return None

    def describe_customer(self, email: str) -> Dict[str, Any]:
        customer = self.find_customer(email)
        fields = customer_metafields(self.store, customer["id"], self.namespace)
        owned = parse_owned((fields.get(KEY_OWNED) or {}).get("value"))
        return {
            "customer_id": customer["id"],
            "email": customer.get("email"),
            "metafields_keys": sorted(fields),
            "subscription_status": (fields.get(KEY_STATUS) or {}).get("value"),
            "subscription_expiry": (fields.get(KEY_EXPIRY) or {}).get("value"),
            "owned_numbers_count": len(owned),
            "owned_numbers": [r.to_stored() for r in owned],
        }

    # --- writes ---

    def set_status(self, customer_id, status: str, *, fields: Optional[Dict[str, Dict[str, Any]]] = None):
        existing = fields.get(KEY_STATUS) if fields is not None else None
        return upsert_metafield(self.store, customer_id, self.namespace, KEY_STATUS, TYPE_TEXT, status, existing=existing)

    def set_expiry(self, customer_id, months: int, *, fields: Optional[Dict[str, Dict[str, Any]]] = None) -> date:
        # Always now + months, never extended from the stored expiry
        expiry = add_months(self.clock(), months)
        existing = fields.get(KEY_EXPIRY) if fields is not None else None
        upsert_metafield(
            self.store, customer_id, self.namespace, KEY_EXPIRY, TYPE_DATE, expiry.isoformat(), existing=existing
        )
        return expiry

    def grant_issue(
        self,
        customer_id,
        age_bracket: str,
        issue_key: Optional[str] = None,
        *,
        fields: Optional[Dict[str, Dict[str, Any]]] = None,
    ) -> bool:
        """
        Add the (issue, age bracket) entitlement to the customer's owned list.
        Returns False when it was already owned (nothing is written).
        """
        issue_key = issue_key or current_issue_key(self.clock())
        entitlement = self.catalog.lookup(age_bracket, issue_key)
        if entitlement is None:
            raise NoMapping(issue_key, age_bracket)

        if fields is None:
            fields = customer_metafields(self.store, customer_id, self.namespace)
        stored = fields.get(KEY_OWNED)
        owned: List[EntitlementRecord] = parse_owned((stored or {}).get("value"))

        owned, changed = merge_grant(owned, EntitlementRecord.granted(issue_key, age_bracket, entitlement))
        if not changed:
            logger.info("grant.already_owned customer=%s issue=%s age=%s", customer_id, issue_key, age_bracket)
            return False

        upsert_metafield(
            self.store, customer_id, self.namespace, KEY_OWNED, TYPE_JSON, dump_owned(owned), existing=stored
        )
        logger.info("grant.added customer=%s issue=%s age=%s total=%d", customer_id, issue_key, age_bracket, len(owned))
        return True

    # --- event flows ---

    def reconcile_subscription(self, payload: Dict[str, Any]) -> ReconcileResult:
        """
        subscription_created / billing_succeeded. CustomerNotFound aborts
        before any write; NoMapping aborts after status and expiry are written.
        """
        subscriber = resolve_event(
            payload,
            default_age=self.default_age,
            default_display_name=self.default_display_name,
            product_age_lookup=self.product_age,
        )
        customer = self.find_customer(subscriber.email)
        customer_id = customer["id"]
        fields = customer_metafields(self.store, customer_id, self.namespace)
        issue_key = current_issue_key(self.clock())

        self.set_status(customer_id, STATUS_ACTIVE, fields=fields)
        expiry = self.set_expiry(customer_id, months_for(subscriber.billing_interval), fields=fields)
        granted = self.grant_issue(customer_id, subscriber.age_bracket, issue_key, fields=fields)

        return ReconcileResult(
            email=subscriber.email,
            customer_id=customer_id,
            display_name=subscriber.display_name,
            age_bracket=subscriber.age_bracket,
            age_source=subscriber.age_source,
            billing_interval=subscriber.billing_interval,
            issue_key=issue_key,
            expiry=expiry.isoformat(),
            granted=granted,
        )

    def cancel_subscription(self, payload: Dict[str, Any]):
        email = extract_email(payload)
        customer = self.find_customer(email)
        self.set_status(customer["id"], STATUS_CANCELLED)
        return customer["id"]

    def handle(self, event_type: str, payload: Dict[str, Any]):
        if event_type == EVENT_CANCELLED:
            return self.cancel_subscription(payload)
        if event_type in (EVENT_CREATED, EVENT_BILLING_SUCCEEDED):
            return self.reconcile_subscription(payload)
        raise ValueError(f"Unhandled event type: {event_type}")


def get_reconciler() -> Reconciler:
    """Reconciler bound to the app's record store and the latest catalog snapshot."""
    cfg = current_app.config
    return Reconciler(
        get_record_store(),
        current_app.extensions["catalog"].current(),
        namespace=cfg.get("METAFIELD_NAMESPACE", "festivio"),
        default_age=cfg.get("NUM_DEFAULT_AGE", "6-9"),
        default_display_name=cfg.get("DEFAULT_DISPLAY_NAME", "Enfant"),
    )
