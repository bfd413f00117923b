from flask import request, jsonify, current_app
from . import bp
from festivio.extensions import limiter
from festivio.billing.catalog import CatalogError, current_issue_key
from festivio.billing.errors import (
    CustomerNotFound,
    FieldNotFound,
    MissingEmail,
    NoMapping,
    RemoteStoreError,
)
from festivio.services.reconciler import get_reconciler

_STATUS = {
    MissingEmail: 400,
    CustomerNotFound: 404,
    NoMapping: 422,
    RemoteStoreError: 502,
    FieldNotFound: 502,
    CatalogError: 500,
}


def _status_for(exc: Exception) -> int:
    for kind, code in _STATUS.items():
        if isinstance(exc, kind):
            return code
    return 500


# Manual flows: no retry-suppression concern, so the real error is returned.
@bp.errorhandler(MissingEmail)
@bp.errorhandler(CustomerNotFound)
@bp.errorhandler(NoMapping)
@bp.errorhandler(RemoteStoreError)
@bp.errorhandler(FieldNotFound)
@bp.errorhandler(CatalogError)
def _surface_error(e):
    code = _status_for(e)
    current_app.logger.warning("debug_route_failed %s: %s", type(e).__name__, e)
    if request.path == "/simulate-seal" or request.path.startswith("/debug/"):
        return jsonify({"error": str(e)}), code
    return (str(e), code)


@bp.get("/grant")
@limiter.limit("30/minute")
def grant():
    email = (request.args.get("email") or "").strip()
    if not email:
        raise MissingEmail("email is required")
    reconciler = get_reconciler()
    age = request.args.get("age") or current_app.config.get("NUM_DEFAULT_AGE", "6-9")
    issue = request.args.get("issue") or current_issue_key()

    customer = reconciler.find_customer(email)
    reconciler.grant_issue(customer["id"], age, issue)
    return "granted"


@bp.get("/debug/customer")
@limiter.limit("60/minute")
def debug_customer():
    email = (request.args.get("email") or "").strip()
    if not email:
        raise MissingEmail("email is required")
    return jsonify(get_reconciler().describe_customer(email))


@bp.get("/debug/catalog")
def debug_catalog():
    return jsonify(current_app.extensions["catalog"].current().to_dict())


@bp.post("/debug/catalog/reload")
@limiter.limit("10/minute")
def debug_catalog_reload():
    snapshot = current_app.extensions["catalog"].reload_from(current_app.config["CATALOG_PATH"])
    return jsonify({"ok": True, "issues": list(snapshot.issue_keys())})


@bp.post("/simulate-seal")
@limiter.limit("10/minute")
def simulate_seal():
    """Run the created/renewed flow on a SEAL-shaped payload built from a few fields."""
    body = request.get_json(force=True, silent=True) or {}
    prenom = body.get("prenom") or current_app.config.get("DEFAULT_DISPLAY_NAME", "Enfant")
    payload = {
        "email": body.get("email") or "test@sealsubscriptions.com",
        "first_name": prenom,
        "last_name": body.get("nom") or "Test",
        "billing_interval": body.get("billing_interval") or "month",
        "items": [
            {
                "product_id": body.get("product_id"),
                "properties": [
                    {"name": "prenom", "value": prenom},
                    {"name": "age", "value": body.get("age") or current_app.config.get("NUM_DEFAULT_AGE", "6-9")},
                ],
            }
        ],
    }
    result = get_reconciler().reconcile_subscription(payload)
    return jsonify({"message": "Simulation OK", "info": result.to_dict()})
