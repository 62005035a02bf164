from __future__ import annotations

from ticketgate.providers.base import FieldLabels, Receipt, ReceiptNotFound, ReceiptProvider, TransientProviderError
from ticketgate.providers.document import ReceiptDocument


class BOAProvider(ReceiptProvider):
    """Bank of Abyssinia online slip lookup (JSON document endpoint)."""

    name = "boa"
    labels = FieldLabels(
        sender=("Source Account Name", "Sender Name", "Payer"),
        receiver=("Receiver's Name", "Beneficiary Name", "Receiver Name"),
        amount=("Transferred Amount", "Amount"),
        date=("Transaction Date", "Date"),
        reference=("Transaction Reference",),
    )

    def fetch_receipt(self, transaction_id: str) -> Receipt:
        resp = self._get(self.receipt_url(transaction_id), headers={"Accept": "application/json"})
        try:
            data = resp.json()
        except ValueError as e:
            raise TransientProviderError("BOA returned a non-JSON document") from e
        if not isinstance(data, dict):
            raise TransientProviderError("BOA returned an unexpected document")

        header = data.get("header") or {}
        body = data.get("body") or []
        if (header.get("status") or "").lower() != "success" or not body:
            raise ReceiptNotFound("Invalid BOA transaction ID or receipt not found")

        slip = body[0] if isinstance(body, list) else body
        if not isinstance(slip, dict):
            raise TransientProviderError("BOA slip has an unexpected shape")
        return self.build_receipt(transaction_id, ReceiptDocument.from_mapping(slip))
