from __future__ import annotations

from ticketgate.providers.base import FieldLabels, Receipt, ReceiptNotFound, ReceiptProvider, TransientProviderError
from ticketgate.providers.document import ReceiptDocument

NOT_FOUND_MARKERS = (
    "transaction not found",
    "invalid receipt",
    "no record found",
)


class TelebirrProvider(ReceiptProvider):
    """Scrapes the public Telebirr receipt page for a transaction id."""

    name = "telebirr"
    labels = FieldLabels(
        sender=("Payer Name", "Payer", "Sender Name", "Sender"),
        receiver=("Credited Party name", "Credited Party", "Receiver Name", "Receiver", "Payee"),
        amount=("Settled Amount", "Total Paid Amount", "Transferred Amount", "Amount"),
        date=("Payment date", "Transaction Date", "Date", "Time"),
        other=(
            "Invoice No.",
            "Transaction ID",
            "Transaction Status",
            "Payment Mode",
            "Payment Reason",
            "Payment Channel",
            "Service fee",
            "Service fee VAT",
            "Total Amount in word",
        ),
    )

    def fetch_receipt(self, transaction_id: str) -> Receipt:
        resp = self._get(self.receipt_url(transaction_id))
        html = resp.text or ""
        doc = ReceiptDocument.from_html(html)

        if any(doc.contains(marker) for marker in NOT_FOUND_MARKERS):
            raise ReceiptNotFound("Telebirr transaction not found")
        if not doc.fragments:
            raise TransientProviderError("Telebirr returned an empty page")

        return self.build_receipt(transaction_id, doc)
