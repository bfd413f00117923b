import logging
import unicodedata
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Optional

from .errors import MissingEmail

logger = logging.getLogger(__name__)

INTERVAL_MONTH = "month"
INTERVAL_YEAR = "year"

_MONTHS = {INTERVAL_MONTH: 1, INTERVAL_YEAR: 12}

# Where the age bracket came from
AGE_FROM_LINE_ITEM = "line_item"
AGE_FROM_METADATA = "metadata"
AGE_FROM_PRODUCT = "product"
AGE_FROM_DEFAULT = "default"

ProductAgeLookup = Callable[[str], Optional[str]]


@dataclass(frozen=True)
class ResolvedSubscriber:
    email: str
    display_name: str
    last_name: str
    age_bracket: str
    age_source: str
    billing_interval: str
    product_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def months_for(billing_interval: str) -> int:
    return _MONTHS.get(billing_interval, 1)


def _text(value) -> Optional[str]:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def _fold(name) -> str:
    # "Prénom" -> "prenom", "ÂGE" -> "age"
    decomposed = unicodedata.normalize("NFKD", str(name or ""))
    return "".join(c for c in decomposed if not unicodedata.combining(c)).strip().lower()


def _first_item(payload: Dict[str, Any]) -> Dict[str, Any]:
    items = payload.get("items")
    if isinstance(items, list) and items and isinstance(items[0], dict):
        return items[0]
    return {}


def extract_email(payload: Dict[str, Any]) -> str:
    """Email from ``email``, ``customer.email`` or ``customer_email``, in that order."""
    customer = payload.get("customer")
    candidates = (
        payload.get("email"),
        customer.get("email") if isinstance(customer, dict) else None,
        payload.get("customer_email"),
    )
    for candidate in candidates:
        email = _text(candidate)
        if email and "@" in email:
            return email
    raise MissingEmail()


def extract_product_id(payload: Dict[str, Any]) -> Optional[str]:
    item = _first_item(payload)
    product = item.get("product")
    return _text(
        item.get("product_id")
        or item.get("shopify_product_id")
        or (product.get("id") if isinstance(product, dict) else None)
    )


def billing_interval_of(payload: Dict[str, Any]) -> str:
    for name in ("billing_interval", "plan_interval", "plan_type"):
        value = _text(payload.get(name))
        if value:
            return INTERVAL_YEAR if value.lower() == INTERVAL_YEAR else INTERVAL_MONTH
    return INTERVAL_MONTH


def resolve_event(
    payload: Dict[str, Any],
    *,
    default_age: str,
    default_display_name: str,
    product_age_lookup: Optional[ProductAgeLookup] = None,
) -> ResolvedSubscriber:
    """
    Normalize a SEAL payload into who the subscriber is and which age bracket
    they should receive.

    Age bracket precedence (first hit wins):
      1. ``age`` property on the first line item (checkout personalisation)
      2. ``metadata.age``
      3. the product's ``age`` metafield, via ``product_age_lookup``
      4. ``default_age``
    """
    email = extract_email(payload)

    display_name = _text(payload.get("first_name")) or _text(payload.get("s_first_name")) or default_display_name
    last_name = _text(payload.get("last_name")) or _text(payload.get("s_last_name")) or ""

    age: Optional[str] = None
    source = AGE_FROM_DEFAULT

    properties = _first_item(payload).get("properties")
    if isinstance(properties, list):
        for prop in properties:
            if not isinstance(prop, dict):
                continue
            name = _fold(prop.get("name"))
            value = _text(prop.get("value"))
            if not value:
                continue
            if name == "prenom":
                display_name = value
            elif name == "age":
                age = value
                source = AGE_FROM_LINE_ITEM

    metadata = payload.get("metadata")
    if age is None and isinstance(metadata, dict) and _text(metadata.get("age")):
        age = _text(metadata.get("age"))
        source = AGE_FROM_METADATA
        display_name = _text(metadata.get("prenom")) or display_name

    product_id = extract_product_id(payload)
    if age is None and product_age_lookup is not None:
        if not product_id:
            logger.info("resolver.no_product_id email=%s; using default age %s", email, default_age)
        else:
            product_age = _text(product_age_lookup(product_id))
            if product_age:
                age = product_age
                source = AGE_FROM_PRODUCT
            else:
                logger.warning("resolver.no_product_age product_id=%s; using default age %s", product_id, default_age)

    return ResolvedSubscriber(
        email=email,
        display_name=display_name,
        last_name=last_name,
        age_bracket=age or default_age,
        age_source=source,
        billing_interval=billing_interval_of(payload),
        product_id=product_id,
    )
