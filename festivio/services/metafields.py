import logging
from typing import Any, Dict, Optional

from festivio.billing.errors import FieldNotFound, RemoteStoreError

logger = logging.getLogger(__name__)

TYPE_TEXT = "single_line_text_field"
TYPE_DATE = "date"
TYPE_JSON = "json"


def customer_metafields(store, customer_id, namespace: str) -> Dict[str, Dict[str, Any]]:
    """Customer metafields in ``namespace``, keyed by metafield key."""
    return {
        m["key"]: m
        for m in store.list_customer_metafields(customer_id)
        if m.get("namespace") == namespace and m.get("key")
    }


def upsert_metafield(
    store,
    customer_id,
    namespace: str,
    key: str,
    field_type: str,
    value: str,
    *,
    existing: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Create or update one customer metafield.

    ``existing`` is the caller's already-fetched copy of the field, if any;
    without it the customer's fields are listed first. The store has no
    atomic upsert: when a create is rejected (usually because a concurrent
    delivery created the field in between), the fields are listed again and
    the match is updated. No match at that point raises FieldNotFound.
    """
    if existing is None:
        existing = customer_metafields(store, customer_id, namespace).get(key)

    if existing is not None:
        return store.update_metafield(existing["id"], field_type, value)

    try:
        return store.create_metafield(customer_id, namespace, key, field_type, value)
    except RemoteStoreError as exc:
        logger.warning(
            "metafield.create_rejected customer=%s key=%s.%s status=%s; retrying as update",
            customer_id, namespace, key, exc.status,
        )
        found = customer_metafields(store, customer_id, namespace).get(key)
        if found is None:
            raise FieldNotFound(customer_id, namespace, key) from exc
        return store.update_metafield(found["id"], field_type, value)
