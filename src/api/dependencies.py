"""FastAPI dependencies for injection."""
from core.auth import get_request_context
from core.config import get_settings
from db.session import get_async_session, get_unit_of_work

__all__ = [
    "get_async_session",
    "get_request_context",
    "get_settings",
    "get_unit_of_work",
]
