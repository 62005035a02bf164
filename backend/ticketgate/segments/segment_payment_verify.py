from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from ticketgate.container import EXTENSION_KEY
from ticketgate.providers.dispatcher import METHODS, VerificationFailed, infer_method, normalize_transaction_id
from ticketgate.services.payments import result_payload
from ticketgate.services.reconciliation import ReconciliationError

payments_bp = Blueprint("payments_bp", __name__, url_prefix="/api/payments")


def _services():
    return current_app.extensions[EXTENSION_KEY]


@payments_bp.errorhandler(VerificationFailed)
def _verification_failed(e: VerificationFailed):
    return jsonify(e.to_dict()), e.status_code


@payments_bp.errorhandler(ReconciliationError)
def _reconciliation_failed(e: ReconciliationError):
    current_app.logger.info("Reconciliation rejected: %s %s", e.code, e.context)
    return jsonify(e.to_dict()), e.status_code


def _bad_request(message: str):
    return jsonify({"success": False, "error": "validation_error", "message": message}), 400


@payments_bp.post("/verify")
def verify_payment():
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return _bad_request("Request body must be a JSON object")

    raw_tx = data.get("transactionId") or ""
    if not isinstance(raw_tx, (str, int)) or isinstance(raw_tx, bool):
        return _bad_request("transactionId must be a string")
    transaction_id = normalize_transaction_id(raw_tx)
    if not transaction_id:
        return _bad_request("transactionId is required")

    raw_user = data.get("userId")
    if isinstance(raw_user, bool):
        return _bad_request("userId must be an integer")
    try:
        user_id = int(raw_user)
    except (TypeError, ValueError):
        return _bad_request("userId must be an integer")

    raw_method = data.get("method") or ""
    if not isinstance(raw_method, str):
        return _bad_request(f"method must be one of {', '.join(METHODS)}")
    method = raw_method.strip().lower() or None
    if method and method not in METHODS:
        return _bad_request(f"method must be one of {', '.join(METHODS)}")

    raw_hint = data.get("eventHint") or ""
    if not isinstance(raw_hint, str):
        return _bad_request("eventHint must be a string")
    event_hint = raw_hint.strip() or None

    result = _services().payments.verify_payment(transaction_id, user_id, method=method, event_hint=event_hint)
    return jsonify(result_payload(result)), 200


@payments_bp.get("/detect-method/<transaction_id>")
def detect_method(transaction_id: str):
    tx = normalize_transaction_id(transaction_id)
    return jsonify({"ok": True, "transactionId": tx, "method": infer_method(tx)}), 200
