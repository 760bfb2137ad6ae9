"""Exception types for the spinwheel service.

Per-event failures (identity lookups, upstream API errors) are raised with
these types and contained at the redemption handler boundary. Configuration
errors are the only ones allowed to stop the process.
"""

from typing import Any


class SpinwheelError(Exception):
    """Base exception for spinwheel errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.context = context or {}


class ConfigurationError(SpinwheelError):
    """Raised when required configuration is missing or invalid."""

    def __init__(self, errors: list[str]):
        super().__init__("; ".join(errors), {"errors": errors})
        self.errors = errors


class IdentityNotFound(SpinwheelError):
    """Raised when the platform reports no account for a login name."""

    def __init__(self, login: str):
        super().__init__(f"User not found: {login}", {"login": login})
        self.login = login


class UpstreamError(SpinwheelError):
    """Raised when a platform API call fails at the network or protocol level."""

    def __init__(self, message: str, status: int | None = None, context: dict[str, Any] | None = None):
        super().__init__(message, context)
        self.status = status


class ConnectionLost(SpinwheelError):
    """Raised by a long-lived connection's listen loop when the peer goes away."""
