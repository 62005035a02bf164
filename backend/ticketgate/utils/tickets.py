from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone


class TicketError(Exception):
    code = "ticket_error"
    status_code = 400

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        out = {"success": False, "error": self.code, "message": self.message}
        out.update(self.context)
        return out


class InvalidTicketSignature(TicketError):
    """The reference was altered or forged. Reported separately from lookups."""

    code = "invalid_signature"
    status_code = 400


class TicketNotFound(TicketError):
    code = "not_found"
    status_code = 404


class TicketAlreadyUsed(TicketError):
    code = "already_used"
    status_code = 409


class TicketExpired(TicketError):
    code = "expired"
    status_code = 410


_FIELD = re.compile(r"^[A-Za-z0-9_-]+$")


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


def _b64url_decode(raw: str) -> bytes:
    padding = "=" * (-len(raw) % 4)
    return base64.urlsafe_b64decode(raw + padding)


def normalize_base_url(url: str) -> str:
    base = (url or "").strip().rstrip("/")
    base = re.sub(r"/ticket$", "", base)
    return base


@dataclass(frozen=True)
class SignedReference:
    reference: str
    invoice_id: str
    transaction_id: str
    issued_ms: int
    nonce: str
    signature: str

    @property
    def issued_at(self) -> datetime:
        return datetime.fromtimestamp(self.issued_ms / 1000.0, tz=timezone.utc).replace(tzinfo=None)


class TicketSigner:
    """Issues and unpacks opaque ticket references.

    A reference is ``base64url("invoice:tx:issued_ms:nonce:hmac")``. Only the
    server secret can produce a matching HMAC, so nothing in the token is
    trusted until the signature checks out.
    """

    def __init__(self, secret: str, base_url: str = ""):
        if not secret:
            raise ValueError("ticket secret must not be empty")
        self._secret = str(secret).encode()
        self.base_url = normalize_base_url(base_url)

    def _sign(self, data: str) -> str:
        return hmac.new(self._secret, data.encode(), hashlib.sha256).hexdigest()

    def issue(self, invoice_id: str, transaction_id: str, *, issued_ms: int | None = None, nonce: str | None = None) -> str:
        for value in (invoice_id, transaction_id):
            if not value or not _FIELD.match(str(value)):
                raise ValueError(f"cannot sign ticket field {value!r}")
        if issued_ms is None:
            issued_ms = int(datetime.now(timezone.utc).timestamp() * 1000)
        nonce = nonce or secrets.token_hex(16)
        data = f"{invoice_id}:{transaction_id}:{int(issued_ms)}:{nonce}"
        return _b64url_encode(f"{data}:{self._sign(data)}".encode())

    def url_for(self, reference: str) -> str:
        return f"{self.base_url}/ticket/{reference}"

    def unpack(self, reference: str) -> SignedReference:
        ref = (reference or "").strip()
        if not ref or not _FIELD.match(ref):
            raise InvalidTicketSignature("Malformed ticket reference")
        try:
            raw = _b64url_decode(ref)
            decoded = raw.decode("utf-8")
        except (binascii.Error, ValueError):
            raise InvalidTicketSignature("Malformed ticket reference")
        # Unused padding bits would let several strings decode to the same bytes
        if _b64url_encode(raw) != ref:
            raise InvalidTicketSignature("Malformed ticket reference")

        parts = decoded.split(":")
        if len(parts) != 5:
            raise InvalidTicketSignature("Malformed ticket reference")
        invoice_id, transaction_id, issued, nonce, signature = parts

        expected = self._sign(f"{invoice_id}:{transaction_id}:{issued}:{nonce}")
        if not hmac.compare_digest(signature.encode(), expected.encode()):
            raise InvalidTicketSignature("Invalid signature - possible fraud")
        try:
            issued_ms = int(issued)
        except ValueError:
            raise InvalidTicketSignature("Malformed ticket reference")

        return SignedReference(
            reference=ref,
            invoice_id=invoice_id,
            transaction_id=transaction_id,
            issued_ms=issued_ms,
            nonce=nonce,
            signature=signature,
        )
