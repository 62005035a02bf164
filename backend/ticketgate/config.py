import os


def _normalize_database_url(url: str) -> str:
    # Render/Heroku sometimes provide postgres:// which SQLAlchemy expects as postgresql://
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    try:
        return float(raw) if raw else default
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


class Config:
    # Base directory of the backend (one level above this `ticketgate` package)
    BACKEND_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
    INSTANCE_DIR = os.path.join(BACKEND_DIR, 'instance')

    ENV = (os.getenv("TICKETGATE_ENV", "dev") or "dev").strip().lower()
    SECRET_KEY = os.getenv("SECRET_KEY", "change-me")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    _default_sqlite_path = os.path.join(INSTANCE_DIR, 'ticketgate.db').replace('\\', '/')
    _db_url = os.getenv("DATABASE_URL", f"sqlite:///{_default_sqlite_path}")
    SQLALCHEMY_DATABASE_URI = _normalize_database_url(_db_url)
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # CORS: comma-separated origins for the gate-check web app
    ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "*")

    # Ticket signing and the scannable URL
    TICKET_SECRET_KEY = os.getenv("TICKET_SECRET_KEY", "dev-ticket-secret")
    QR_BASE_URL = os.getenv("QR_BASE_URL", "http://localhost:5000")

    # Receipt providers. `{transaction_id}` is substituted per lookup.
    TELEBIRR_RECEIPT_URL = os.getenv(
        "TELEBIRR_RECEIPT_URL", "https://transactioninfo.ethiotelecom.et/receipt/{transaction_id}"
    )
    TELEBIRR_TIMEOUT = _env_float("TELEBIRR_TIMEOUT", 15.0)
    TELEBIRR_MAX_ATTEMPTS = _env_int("TELEBIRR_MAX_ATTEMPTS", 2)
    TELEBIRR_RETRY_DELAY = _env_float("TELEBIRR_RETRY_DELAY", 2.0)

    CBE_RECEIPT_URL = os.getenv("CBE_RECEIPT_URL", "https://apps.cbe.com.et:100/?id={transaction_id}")
    CBE_TIMEOUT = _env_float("CBE_TIMEOUT", 60.0)
    CBE_MAX_ATTEMPTS = _env_int("CBE_MAX_ATTEMPTS", 3)
    CBE_RETRY_DELAY = _env_float("CBE_RETRY_DELAY", 3.0)
    CBE_VERIFY_TLS = _env_bool("CBE_VERIFY_TLS", True)
    PDFTOTEXT_BIN = os.getenv("PDFTOTEXT_BIN", "pdftotext")

    BOA_RECEIPT_URL = os.getenv(
        "BOA_RECEIPT_URL", "https://cs.bankofabyssinia.com/api/onlineSlip/getDetails/?id={transaction_id}"
    )
    BOA_TIMEOUT = _env_float("BOA_TIMEOUT", 15.0)
    BOA_MAX_ATTEMPTS = _env_int("BOA_MAX_ATTEMPTS", 2)
    BOA_RETRY_DELAY = _env_float("BOA_RETRY_DELAY", 2.0)

    # Outer bound for a synchronous verify-payment request (seconds, 0 disables)
    VERIFY_REQUEST_TIMEOUT = _env_float("VERIFY_REQUEST_TIMEOUT", 90.0)

    # Ticket delivery
    TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN", "")
    TELEGRAM_API_BASE = os.getenv("TELEGRAM_API_BASE", "https://api.telegram.org")

    # Background retry of best-effort registration confirmation (minutes, 0 disables)
    REGISTRATION_SWEEP_MINUTES = _env_int("REGISTRATION_SWEEP_MINUTES", 0)
