import logging
import time
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests
from flask import current_app

from festivio.billing.errors import RemoteStoreError

logger = logging.getLogger(__name__)


class ShopifyClient:
    """
    Minimal Shopify Admin REST client: customers and their metafields.
    Every non-2xx answer (or transport failure) raises RemoteStoreError.
    """

    def __init__(
        self,
        store: str,
        token: str,
        *,
        api_version: str = "2024-10",
        timeout: float = 30,
        max_retries: int = 2,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = f"https://{store}/admin/api/{api_version}/"
        self.timeout = timeout
        self.max_retries = max_retries
        self.session = session or requests.Session()
        self.session.headers.update({
            "X-Shopify-Access-Token": token,
            "Content-Type": "application/json",
            "Accept": "application/json",
        })

    @classmethod
    def from_config(cls, cfg) -> "ShopifyClient":
        store = cfg.get("SHOPIFY_STORE")
        token = cfg.get("SHOPIFY_ADMIN_TOKEN")
        if not store or not token:
            raise RuntimeError("SHOPIFY_STORE / SHOPIFY_ADMIN_TOKEN are not configured")
        return cls(
            store,
            token,
            api_version=cfg.get("SHOPIFY_API_VERSION", "2024-10"),
            timeout=float(cfg.get("SHOPIFY_HTTP_TIMEOUT", 30)),
            max_retries=int(cfg.get("SHOPIFY_MAX_RETRIES", 2)),
        )

    def _request(self, method: str, path: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = self.base_url + path
        for attempt in range(self.max_retries + 1):
            try:
                resp = self.session.request(method, url, json=body, timeout=self.timeout)
            except requests.RequestException as exc:
                raise RemoteStoreError(method, path, None, str(exc)) from exc

            # Throttled: honour Retry-After, then give up after max_retries
            if resp.status_code == 429 and attempt < self.max_retries:
                try:
                    delay = float(resp.headers.get("Retry-After", "1"))
                except ValueError:
                    delay = 1.0
                logger.warning("shopify.throttled %s %s retry_in=%.1fs", method, path, delay)
                time.sleep(min(delay, 10.0))
                continue

            if not resp.ok:
                raise RemoteStoreError(method, path, resp.status_code, resp.text)
            if not resp.content:
                return {}
            return resp.json()
        raise RemoteStoreError(method, path, 429, "retries exhausted")

    # --- customers ---

    def search_customers(self, email: str) -> List[Dict[str, Any]]:
        data = self._request("GET", f"customers/search.json?query=email:{quote(email, safe='')}")
        return data.get("customers") or []

    def list_customer_metafields(self, customer_id) -> List[Dict[str, Any]]:
        data = self._request("GET", f"customers/{customer_id}/metafields.json")
        return data.get("metafields") or []

    def create_metafield(self, customer_id, namespace: str, key: str, field_type: str, value: str) -> Dict[str, Any]:
        data = self._request("POST", "metafields.json", {
            "metafield": {
                "namespace": namespace,
                "key": key,
                "type": field_type,
                "value": value,
                "owner_resource": "customer",
                "owner_id": customer_id,
            }
        })
        return data.get("metafield") or {}

    def update_metafield(self, metafield_id, field_type: str, value: str) -> Dict[str, Any]:
        data = self._request("PUT", f"metafields/{metafield_id}.json", {
            "metafield": {"id": metafield_id, "type": field_type, "value": value}
        })
        return data.get("metafield") or {}

    # --- products ---

    def list_product_metafields(self, product_id) -> List[Dict[str, Any]]:
        data = self._request("GET", f"products/{product_id}/metafields.json")
        return data.get("metafields") or []


def get_record_store():
    """The app-wide record store client; built from config on first use."""
    store = current_app.extensions.get("record_store")
    if store is None:
        store = ShopifyClient.from_config(current_app.config)
        current_app.extensions["record_store"] = store
    return store
