import os
# Ensure the app factory picks the Testing config and never touches a real shop
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("CATALOG_PATH", os.path.join(os.path.dirname(__file__), "..", "data", "catalog.json"))

import pytest
from festivio import create_app
from festivio.billing.catalog import CatalogSnapshot, current_issue_key
from festivio.billing.errors import RemoteStoreError


class FakeRecordStore:
    """In-memory stand-in for ShopifyClient with the same method surface."""

    def __init__(self):
        self.customers = []
        self.metafields = {}          # customer_id -> [metafield dicts]
        self.product_metafields = {}  # product_id -> [metafield dicts] | Exception
        self.calls = []
        self._next_id = 9000

    def add_customer(self, email, customer_id=None):
        customer_id = customer_id or 100 + len(self.customers)
        self.customers.append({"id": customer_id, "email": email})
        self.metafields.setdefault(customer_id, [])
        return customer_id

    def add_metafield(self, customer_id, key, value, namespace="festivio", field_type="single_line_text_field"):
        self._next_id += 1
        m = {"id": self._next_id, "namespace": namespace, "key": key, "type": field_type, "value": value}
        self.metafields.setdefault(customer_id, []).append(m)
        return m

    def value(self, customer_id, key, namespace="festivio"):
        for m in self.metafields.get(customer_id, []):
            if m["namespace"] == namespace and m["key"] == key:
                return m["value"]
        return None

    def writes(self):
        return [c for c in self.calls if c[0] in ("create", "update")]

    # --- ShopifyClient surface ---

    def search_customers(self, email):
        self.calls.append(("search", email))
        return [dict(c) for c in self.customers if email.lower() in c["email"].lower()]

    def list_customer_metafields(self, customer_id):
        self.calls.append(("list", customer_id))
        return [dict(m) for m in self.metafields.get(customer_id, [])]

    def create_metafield(self, customer_id, namespace, key, field_type, value):
        self.calls.append(("create", customer_id, key))
        if self.value(customer_id, key, namespace) is not None:
            raise RemoteStoreError("POST", "metafields.json", 422, '{"errors":{"key":["must be unique within this namespace"]}}')
        return dict(self.add_metafield(customer_id, key, value, namespace, field_type))

    def update_metafield(self, metafield_id, field_type, value):
        self.calls.append(("update", metafield_id))
        for fields in self.metafields.values():
            for m in fields:
                if m["id"] == metafield_id:
                    m.update(type=field_type, value=value)
                    return dict(m)
        raise RemoteStoreError("PUT", f"metafields/{metafield_id}.json", 404, "Not Found")

    def list_product_metafields(self, product_id):
        self.calls.append(("product", product_id))
        found = self.product_metafields.get(str(product_id), [])
        if isinstance(found, Exception):
            raise found
        return found


def make_snapshot(issue_key=None, brackets=("3-5", "6-9")):
    issue_key = issue_key or current_issue_key()
    return CatalogSnapshot.from_mapping({
        issue_key: {
            age: {"catalog": f"https://cdn.test/{issue_key}/{age}/catalogue.pdf",
                  "annexes": [f"https://cdn.test/{issue_key}/{age}/jeux.pdf"]}
            for age in brackets
        }
    }, source="tests")


@pytest.fixture(scope="session")
def app():
    app = create_app()
    app.config.update(TESTING=True)
    yield app


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def store(app):
    fake = FakeRecordStore()
    app.extensions["record_store"] = fake
    yield fake
    app.extensions.pop("record_store", None)


@pytest.fixture()
def catalog(app):
    registry = app.extensions["catalog"]
    previous = registry.current()
    snapshot = make_snapshot()
    registry.publish(snapshot)
    yield snapshot
    registry.publish(previous)
