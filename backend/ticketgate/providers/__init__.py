from .base import (  # noqa: F401
    ProviderUnavailable,
    Receipt,
    ReceiptFormatError,
    ReceiptNotFound,
    ReceiptProvider,
    TransientProviderError,
    VerificationError,
)
from .boa import BOAProvider  # noqa: F401
from .cbe import CBEProvider  # noqa: F401
from .telebirr import TelebirrProvider  # noqa: F401
from .dispatcher import (  # noqa: F401
    VerificationDispatcher,
    VerificationFailed,
    VerificationTimedOut,
    infer_method,
    normalize_transaction_id,
)
