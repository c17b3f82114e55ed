"""Request context types for tracking the caller and request source."""
from dataclasses import dataclass
from enum import StrEnum
from uuid import UUID


class RequestSource(StrEnum):
    """Source of the API request, determined by X-Request-Source header."""

    WEB = "web"
    API = "api"
    SOCKET = "socket"  # Forwarded by the realtime layer (autosave ticks)
    SYSTEM = "system"  # Internal jobs, e.g. rollback backups
    UNKNOWN = "unknown"  # Default when header missing/unrecognized


@dataclass
class RequestContext:
    """
    Identity and source of a request, as forwarded by the upstream authorizer.

    Recorded in version metadata for audit trails.
    """

    user_id: UUID
    source: RequestSource = RequestSource.UNKNOWN
