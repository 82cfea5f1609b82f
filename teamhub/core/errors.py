from __future__ import annotations


class TeamhubError(Exception):
    """Base error for TeamHub services."""

    status_code = 500
    public_message = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.public_message)
        self.message = message or self.public_message


class UnauthenticatedError(TeamhubError):
    """Missing, invalid or expired credential at a trust boundary."""

    status_code = 401
    public_message = "Unauthorized"


class InvalidTokenError(UnauthenticatedError):
    """Internal token failed signature, structure or expiry checks."""

    public_message = "Invalid internal token"


class ForbiddenError(TeamhubError):
    """Authenticated caller is not allowed to touch the resource."""

    status_code = 403
    public_message = "Forbidden"


class NotFoundError(TeamhubError):
    """Requested resource does not exist."""

    status_code = 404
    public_message = "Resource not found"


class ConflictError(TeamhubError):
    """Uniqueness violation reported by a persistence collaborator."""

    status_code = 409
    public_message = "Resource already exists"


class InvalidRequestError(TeamhubError):
    """Missing or malformed request fields."""

    status_code = 400
    public_message = "Invalid request"


class UpstreamUnavailableError(TeamhubError):
    """Peer service unreachable, timed out or guarded by an open circuit."""

    status_code = 500
    public_message = "Service unavailable"

    def __init__(self, service: str, message: str | None = None) -> None:
        super().__init__(message or f"{service} is unavailable")
        self.service = service


class CircuitOpenError(UpstreamUnavailableError):
    """Circuit breaker rejected the call without touching the network."""

    def __init__(self, service: str) -> None:
        super().__init__(service, f"Circuit breaker open for {service}")


class UpstreamHTTPError(TeamhubError):
    """Peer service answered with a structured error response."""

    def __init__(self, service: str, status_code: int, body: object) -> None:
        super().__init__(f"{service} responded with {status_code}")
        self.service = service
        self.status_code = status_code
        self.body = body
