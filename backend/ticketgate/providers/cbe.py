from __future__ import annotations

import os
import shutil
import subprocess
import tempfile
from typing import Callable, Optional

from ticketgate.providers.base import (
    FieldLabels,
    ProviderUnavailable,
    Receipt,
    ReceiptNotFound,
    ReceiptProvider,
    TransientProviderError,
)
from ticketgate.providers.document import ReceiptDocument

# Real CBE receipts are well above this; anything smaller is an error page
MIN_PDF_BYTES = 5000


def pdftotext_extractor(binary: str = "pdftotext", timeout: float = 30.0) -> Callable[[str, str], str]:
    """Return an extractor that runs ``pdftotext -layout`` and reads the result."""

    def extract(pdf_path: str, workdir: str) -> str:
        txt_path = os.path.join(workdir, "receipt.txt")
        try:
            subprocess.run(
                [binary, "-layout", pdf_path, txt_path],
                check=True,
                timeout=timeout,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise ProviderUnavailable(f"{binary} is not installed") from e
        except subprocess.TimeoutExpired as e:
            raise TransientProviderError("PDF text extraction timed out") from e
        except subprocess.CalledProcessError as e:
            raise TransientProviderError("Failed to extract text from CBE PDF") from e
        if not os.path.exists(txt_path):
            raise TransientProviderError("Failed to extract text from CBE PDF")
        with open(txt_path, "r", encoding="utf-8", errors="replace") as fh:
            return fh.read()

    return extract


class CBEProvider(ReceiptProvider):
    """Commercial Bank of Ethiopia: PDF receipt download, then text extraction."""

    name = "cbe"
    labels = FieldLabels(
        sender=("Payer", "Payer Name"),
        receiver=("Receiver", "Receiver Name"),
        amount=("Transferred Amount", "Total amount debited from customers account", "Amount"),
        date=("Payment Date & Time", "Payment Date", "Date"),
        reference=("Reference No. (VAT Invoice No)", "Reference No."),
        other=("Customer Name", "Region", "City", "Reason / Type of service", "Commission or Service Charge", "Total VAT"),
    )

    def __init__(
        self,
        url_template: str,
        *,
        extract_text: Optional[Callable[[str, str], str]] = None,
        verify_tls: bool = True,
        **kwargs,
    ):
        super().__init__(url_template, **kwargs)
        self.extract_text = extract_text or pdftotext_extractor()
        self.verify_tls = verify_tls

    def fetch_receipt(self, transaction_id: str) -> Receipt:
        workdir = tempfile.mkdtemp(prefix=f"cbe_{transaction_id}_")
        try:
            pdf_path = os.path.join(workdir, "receipt.pdf")
            self._download(transaction_id, pdf_path)
            text = self.extract_text(pdf_path, workdir)
            doc = ReceiptDocument.from_layout_text(text)
            if doc.contains("not found") and not self._field(doc, self.labels.amount):
                raise ReceiptNotFound("CBE transaction not found")
            return self.build_receipt(transaction_id, doc)
        finally:
            shutil.rmtree(workdir, ignore_errors=True)

    def _download(self, transaction_id: str, pdf_path: str) -> None:
        resp = self._get(self.receipt_url(transaction_id), stream=True, verify=self.verify_tls)
        size = 0
        try:
            with open(pdf_path, "wb") as fh:
                for chunk in resp.iter_content(chunk_size=64 * 1024):
                    if chunk:
                        fh.write(chunk)
                        size += len(chunk)
        except OSError as e:
            raise TransientProviderError(f"CBE download interrupted: {e}") from e
        finally:
            resp.close()

        with open(pdf_path, "rb") as fh:
            magic = fh.read(5)
        if size < MIN_PDF_BYTES or magic != b"%PDF-":
            raise TransientProviderError("CBE PDF download failed or file is not a valid PDF")
