"""Error hierarchy for the preview server.

Every request-level failure carries the HTTP status it should be reported
with so the router can render one templated error page for all of them.
"""


class PreviewError(Exception):
    """Base error for all preview operations."""

    status = 500
    title = "Internal Server Error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.title)
        self.message = message or self.title


class ProtocolError(PreviewError):
    """Malformed reload channel upgrade request."""

    status = 400
    title = "Bad Request"


class ForbiddenError(PreviewError):
    """Request from a peer that is not allowed to talk to the server."""

    status = 403
    title = "Forbidden"


class NotFoundError(PreviewError):
    status = 404
    title = "Not Found"


class MethodNotAllowedError(PreviewError):
    status = 405
    title = "Method Not Allowed"


class InternalError(PreviewError):
    """I/O failure other than a missing file, or a template failure."""

    status = 500
    title = "Internal Server Error"


class HubClosedError(Exception):
    """The broadcast hub shut down while a subscriber was waiting."""


class SubscriptionClosedError(Exception):
    """A single-use subscription was used after it was consumed or closed."""
