import json

from festivio.billing.catalog import current_issue_key


def test_healthz(client):
    resp = client.get("/healthz")
    assert resp.status_code == 200
    assert resp.get_json() == {"status": "ok"}


def test_grant_adds_issue(client, store, catalog):
    cid = store.add_customer("a@x.com")

    resp = client.get("/grant", query_string={"email": "a@x.com", "age": "3-5"})

    assert resp.status_code == 200
    assert resp.get_data(as_text=True) == "granted"
    owned = json.loads(store.value(cid, "owned_numbers"))
    assert [(r["key"], r["age"]) for r in owned] == [(current_issue_key(), "3-5")]


def test_grant_surfaces_errors(client, store, catalog):
    store.add_customer("a@x.com")

    missing = client.get("/grant")
    unknown = client.get("/grant", query_string={"email": "ghost@x.com"})
    unmapped = client.get("/grant", query_string={"email": "a@x.com", "age": "6-9", "issue": "1999-01"})

    assert missing.status_code == 400
    assert unknown.status_code == 404
    assert "Customer not found: ghost@x.com" in unknown.get_data(as_text=True)
    assert unmapped.status_code == 422
    assert "No mapping for 1999-01/6-9" in unmapped.get_data(as_text=True)


def test_debug_customer(client, store, catalog):
    cid = store.add_customer("a@x.com")
    store.add_metafield(cid, "subscription_status", "active")
    store.add_metafield(cid, "subscription_expiry", "2026-01-01", field_type="date")

    resp = client.get("/debug/customer", query_string={"email": "a@x.com"})

    assert resp.status_code == 200
    body = resp.get_json()
    assert body["customer_id"] == cid
    assert body["subscription_status"] == "active"
    assert body["subscription_expiry"] == "2026-01-01"
    assert body["owned_numbers"] == []


def test_debug_customer_unknown_is_404(client, store):
    resp = client.get("/debug/customer", query_string={"email": "ghost@x.com"})
    assert resp.status_code == 404
    assert resp.get_json() == {"error": "Customer not found: ghost@x.com"}


def test_debug_catalog_shows_current_snapshot(client, catalog):
    body = client.get("/debug/catalog").get_json()
    assert set(body[current_issue_key()]) == {"3-5", "6-9"}


def test_catalog_reload_publishes_file(app, client, tmp_path):
    registry = app.extensions["catalog"]
    previous = registry.current()
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps({"2031-07": {"6-9": {"catalog": "jul-69"}}}), encoding="utf-8")
    old_path = app.config["CATALOG_PATH"]
    app.config["CATALOG_PATH"] = str(path)
    try:
        resp = client.post("/debug/catalog/reload")
        assert resp.status_code == 200
        assert resp.get_json() == {"ok": True, "issues": ["2031-07"]}
        assert registry.current().lookup("6-9", "2031-07").catalog_ref == "jul-69"

        path.write_text("{ broken", encoding="utf-8")
        failed = client.post("/debug/catalog/reload")
        assert failed.status_code == 500
        assert registry.current().lookup("6-9", "2031-07") is not None
    finally:
        app.config["CATALOG_PATH"] = old_path
        registry.publish(previous)


def test_simulate_seal_runs_full_reconciliation(client, store, catalog):
    cid = store.add_customer("parent@x.com")

    resp = client.post("/simulate-seal", json={"email": "parent@x.com", "prenom": "Léa", "age": "3-5", "billing_interval": "year"})

    assert resp.status_code == 200
    body = resp.get_json()
    assert body["message"] == "Simulation OK"
    assert body["info"]["display_name"] == "Léa"
    assert body["info"]["age_bracket"] == "3-5"
    assert body["info"]["billing_interval"] == "year"
    assert store.value(cid, "subscription_status") == "active"


def test_simulate_seal_surfaces_error(client, store, catalog):
    resp = client.post("/simulate-seal", json={"email": "ghost@x.com"})
    assert resp.status_code == 404
    assert resp.get_json() == {"error": "Customer not found: ghost@x.com"}
