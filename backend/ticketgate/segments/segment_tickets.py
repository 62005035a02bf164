from __future__ import annotations

from io import BytesIO

from flask import Blueprint, current_app, jsonify, send_file

from ticketgate.container import EXTENSION_KEY
from ticketgate.utils.tickets import InvalidTicketSignature, TicketError

tickets_bp = Blueprint("tickets_bp", __name__, url_prefix="/ticket")


def _tickets():
    return current_app.extensions[EXTENSION_KEY].tickets


@tickets_bp.errorhandler(TicketError)
def _ticket_error(e: TicketError):
    if isinstance(e, InvalidTicketSignature):
        current_app.logger.error("Tampered or forged ticket presented: %s", e.message)
    return jsonify(e.to_dict()), e.status_code


@tickets_bp.get("/<reference>")
def verify_ticket(reference: str):
    view = _tickets().verify(reference)
    body = {"success": view.status != "expired", **view.to_dict()}
    if view.status == "expired":
        body.update({"error": "expired", "message": "This ticket has expired and is no longer valid."})
        return jsonify(body), 410
    return jsonify(body), 200


@tickets_bp.get("/<reference>/status")
def ticket_status(reference: str):
    view = _tickets().verify(reference)
    t = view.ticket
    return jsonify({
        "success": True,
        "data": {
            "status": t.status,
            "eventName": t.event_name,
            "amount": str(t.amount),
            "createdAt": t.created_at.isoformat(),
        },
    }), 200


@tickets_bp.get("/<reference>/qr")
def ticket_qr(reference: str):
    png = _tickets().render_for(reference)
    return send_file(BytesIO(png), mimetype="image/png", as_attachment=False, download_name="ticket.png")


@tickets_bp.post("/<reference>/use")
def use_ticket(reference: str):
    view, at = _tickets().check_in(reference)
    current_app.logger.info("Checked in invoice %s", view.invoice.invoice_id)
    return jsonify({
        "success": True,
        "message": "Checked in successfully!",
        "checkedInAt": at.isoformat(),
        "ticket": view.ticket.to_dict(),
    }), 200


@tickets_bp.post("/checkin/<int:registration_id>")
def manual_check_in(registration_id: int):
    registration, at = _tickets().check_in_registration(registration_id)
    return jsonify({
        "success": True,
        "message": "Manual check-in successful",
        "registration": registration.to_dict(),
        "checkedInAt": at.isoformat(),
    }), 200
