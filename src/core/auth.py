"""
Caller identity resolution.

Access control happens upstream: the gateway authorizes every request for the
target whiteboard and forwards the caller's id in the X-User-Id header. This
module only turns those headers into a RequestContext.
"""
import logging
from uuid import UUID

from fastapi import Header, HTTPException, status

from core.request_context import RequestContext, RequestSource

logger = logging.getLogger(__name__)


def _parse_request_source(value: str | None) -> RequestSource:
    """Map the X-Request-Source header to a known source, defaulting to UNKNOWN."""
    if not value:
        return RequestSource.UNKNOWN
    try:
        return RequestSource(value.strip().lower())
    except ValueError:
        return RequestSource.UNKNOWN


async def get_request_context(
    x_user_id: str | None = Header(default=None),
    x_request_source: str | None = Header(default=None),
) -> RequestContext:
    """
    Build the request context from upstream identity headers.

    Raises:
        HTTPException: 401 if the user header is missing or not a UUID.
    """
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    try:
        user_id = UUID(x_user_id)
    except ValueError:
        logger.warning("Rejected malformed X-User-Id header: %r", x_user_id)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid X-User-Id header",
        ) from None
    return RequestContext(user_id=user_id, source=_parse_request_source(x_request_source))
