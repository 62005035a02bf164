from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Optional

from ticketgate.providers.base import Receipt
from ticketgate.providers.dispatcher import VerificationDispatcher, VerificationTimedOut
from ticketgate.services.reconciliation import ReconciliationEngine, ReconciliationResult

log = logging.getLogger(__name__)


class PaymentVerificationService:
    """verify-payment: confirm the transfer first, then reconcile it.

    Nothing is written until the provider has answered, so a timeout here is
    always safe for the caller to retry.
    """

    def __init__(self, dispatcher: VerificationDispatcher, engine: ReconciliationEngine, *, timeout: Optional[float] = None):
        self.dispatcher = dispatcher
        self.engine = engine
        self.timeout = timeout if timeout and timeout > 0 else None

    def verify_payment(
        self,
        transaction_id: str,
        user_id: int,
        method: Optional[str] = None,
        event_hint: Optional[str] = None,
    ) -> ReconciliationResult:
        receipt = self._dispatch(transaction_id, method)
        log.info("Receipt %s confirmed via %s: amount=%s sender=%s", receipt.transaction_id, receipt.method or method, receipt.amount, receipt.sender_name)
        return self.engine.reconcile(receipt, int(user_id), receipt.method or (method or ""), event_hint)

    def _dispatch(self, transaction_id: str, method: Optional[str]) -> Receipt:
        if self.timeout is None:
            return self.dispatcher.dispatch(transaction_id, method)

        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="verify")
        try:
            future = pool.submit(self.dispatcher.dispatch, transaction_id, method)
            try:
                return future.result(timeout=self.timeout)
            except FutureTimeout:
                log.warning("Verification of %s exceeded %ss", transaction_id, self.timeout)
                raise VerificationTimedOut(transaction_id=str(transaction_id or ""), method=method or "")
        finally:
            pool.shutdown(wait=False, cancel_futures=True)


def result_payload(result: ReconciliationResult) -> dict:
    if result.duplicate:
        message = "This payment was already verified. Here is your ticket again."
    else:
        message = "Payment verified successfully"
    out = {
        "success": True,
        "message": message,
        "duplicate": result.duplicate,
        "invoice": result.invoice.to_dict(),
        "ticketIssued": result.ticket_issued,
        "ticketUrl": result.ticket_url,
        "registrationConfirmed": result.registration_confirmed,
    }
    if result.warnings:
        out["warnings"] = list(result.warnings)
    return out
