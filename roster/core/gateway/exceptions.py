"""Gateway-level exceptions for the hosted backend HTTP APIs."""
from __future__ import annotations
from typing import Optional

# Postgres unique_violation, as reported in REST error bodies
UNIQUE_VIOLATION = "23505"


class GatewayError(Exception):
    """Base exception for all backend gateway operations."""
    pass


class GatewayAPIError(GatewayError):
    """HTTP error from one of the backend APIs.

    Attributes:
        status_code: HTTP status code (503 for transport failures)
        message: Error message from response
        endpoint: URL that failed
        code: Backend error code when the body carried one (e.g. ``23505``)
    """

    def __init__(self, status_code: int, message: str, endpoint: str, code: Optional[str] = None):
        self.status_code = status_code
        self.message = message
        self.endpoint = endpoint
        self.code = code
        super().__init__(f"[{status_code}] {endpoint}: {message}")

    @property
    def is_conflict(self) -> bool:
        return self.status_code == 409 or self.code == UNIQUE_VIOLATION

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404
