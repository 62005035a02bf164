from .user import User  # noqa: F401
from .event import Event  # noqa: F401
from .event_registration import EventRegistration  # noqa: F401
from .invoice import Invoice  # noqa: F401
from .audit_log import AuditLog  # noqa: F401
