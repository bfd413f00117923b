import pytest

from conftest import FakeRecordStore
from festivio.billing.errors import FieldNotFound, RemoteStoreError
from festivio.services.metafields import TYPE_TEXT, customer_metafields, upsert_metafield


def test_creates_field_when_absent():
    store = FakeRecordStore()
    cid = store.add_customer("a@x.com")

    stored = upsert_metafield(store, cid, "festivio", "subscription_status", TYPE_TEXT, "active")

    assert stored["value"] == "active"
    assert store.value(cid, "subscription_status") == "active"
    assert [c[0] for c in store.writes()] == ["create"]


def test_updates_existing_field_by_id():
    store = FakeRecordStore()
    cid = store.add_customer("a@x.com")
    existing = store.add_metafield(cid, "subscription_status", "cancelled")

    upsert_metafield(store, cid, "festivio", "subscription_status", TYPE_TEXT, "active")

    assert store.value(cid, "subscription_status") == "active"
    assert store.writes() == [("update", existing["id"])]


def test_uses_callers_copy_without_listing_again():
    store = FakeRecordStore()
    cid = store.add_customer("a@x.com")
    existing = store.add_metafield(cid, "subscription_status", "cancelled")

    upsert_metafield(store, cid, "festivio", "subscription_status", TYPE_TEXT, "active", existing=existing)

    assert ("list", cid) not in store.calls
    assert store.value(cid, "subscription_status") == "active"


def test_same_key_in_another_namespace_is_not_ours():
    store = FakeRecordStore()
    cid = store.add_customer("a@x.com")
    store.add_metafield(cid, "subscription_status", "foreign", namespace="custom")

    upsert_metafield(store, cid, "festivio", "subscription_status", TYPE_TEXT, "active")

    assert store.value(cid, "subscription_status", namespace="custom") == "foreign"
    assert store.value(cid, "subscription_status") == "active"


class RacingStore(FakeRecordStore):
    """Another delivery creates the field between our listing and our create."""

    def create_metafield(self, customer_id, namespace, key, field_type, value):
        if self.value(customer_id, key, namespace) is None:
            self.add_metafield(customer_id, key, "written-by-other-delivery", namespace, field_type)
        return super().create_metafield(customer_id, namespace, key, field_type, value)


def test_rejected_create_falls_back_to_update():
    store = RacingStore()
    cid = store.add_customer("a@x.com")

    stored = upsert_metafield(store, cid, "festivio", "subscription_status", TYPE_TEXT, "active")

    assert stored["value"] == "active"
    assert store.value(cid, "subscription_status") == "active"
    assert [c[0] for c in store.writes()] == ["create", "update"]


class RejectingStore(FakeRecordStore):
    def create_metafield(self, customer_id, namespace, key, field_type, value):
        self.calls.append(("create", customer_id, key))
        raise RemoteStoreError("POST", "metafields.json", 500, "Internal Server Error")


def test_rejected_create_without_existing_field_raises_field_not_found():
    store = RejectingStore()
    cid = store.add_customer("a@x.com")

    with pytest.raises(FieldNotFound) as excinfo:
        upsert_metafield(store, cid, "festivio", "subscription_status", TYPE_TEXT, "active")

    assert isinstance(excinfo.value.__cause__, RemoteStoreError)
    assert excinfo.value.key == "subscription_status"
    assert customer_metafields(store, cid, "festivio") == {}
