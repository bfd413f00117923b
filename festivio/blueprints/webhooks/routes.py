import json
from flask import request, jsonify, abort, current_app
from . import bp
from festivio.observability import report_failure
from festivio.services.reconciler import HANDLED_EVENTS, EVENT_CANCELLED, get_reconciler


# ----- SEAL Webhooks (subscription lifecycle) -----
@bp.post("/seal/<event_type>")
def seal_webhook(event_type):
    """
    SEAL → /webhooks/seal/<event_type>
    Always answers 200 so SEAL never retries; failures go to report_failure.
    """
    if event_type not in HANDLED_EVENTS:
        abort(404)

    payload = request.get_json(force=True, silent=True)
    if not isinstance(payload, dict):
        payload = {}

    current_app.logger.info(json.dumps({
        "event": "seal_webhook_received",
        "type": event_type,
        "keys": sorted(payload),
    }))

    try:
        outcome = get_reconciler().handle(event_type, payload)
    except Exception as e:
        report_failure(event_type, e)
    else:
        if event_type == EVENT_CANCELLED:
            fields = {"customer_id": outcome}
        else:
            fields = outcome.to_dict()
        current_app.logger.info(json.dumps({"event": "seal_webhook_processed", "type": event_type, **fields}, default=str))

    return jsonify({"ok": True}), 200
