from __future__ import annotations

import logging

from apscheduler.schedulers.background import BackgroundScheduler

from ticketgate.services.store import PaymentStore

log = logging.getLogger(__name__)


def confirm_paid_registrations(store: PaymentStore, *, limit: int = 200) -> dict:
    """Retry registration confirmation for paid invoices.

    Confirmation after a payment is best-effort, so this picks up any that
    were missed. Safe to run repeatedly.
    """
    checked = 0
    confirmed = 0
    missing = 0

    for invoice in store.paid_invoices_with_event(limit=limit):
        checked += 1
        try:
            reg = store.registration_for_invoice(invoice)
            if reg is None:
                missing += 1
                continue
            if store.confirm_registration(reg):
                confirmed += 1
                log.info("Confirmed registration %s for invoice %s", reg.id, invoice.invoice_id)
        except Exception:
            store.rollback()
            log.exception("Sweep failed for invoice %s", invoice.invoice_id)

    return {"checked": checked, "confirmed": confirmed, "missing": missing}


def start_registration_sweeper(app, store: PaymentStore, minutes: int) -> BackgroundScheduler:
    scheduler = BackgroundScheduler(daemon=True)

    def _run():
        with app.app_context():
            summary = confirm_paid_registrations(store)
            log.info("Registration sweep: %s", summary)

    scheduler.add_job(_run, "interval", minutes=int(minutes), id="registration_sweep", max_instances=1, coalesce=True)
    scheduler.start()
    return scheduler
