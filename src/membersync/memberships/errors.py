"""Exceptions raised by the membership flows.

The HTTP layer maps each class to a status code; the flows themselves never
build responses.
"""

from typing import Optional


class MembershipError(Exception):
    """Base class for membership sync errors."""


class AuthError(MembershipError):
    """Missing or invalid bearer token, or a webhook signature that fails verification."""


class NotFoundError(MembershipError):
    """No membership matched. A valid negative result, not a failure."""


class InvalidEvent(MembershipError):
    """Webhook payload cannot be merged (e.g. no membership id)."""


class StorageError(MembershipError):
    """Persistence layer failed."""


class ProviderError(MembershipError):
    """Payment provider rejected a request or could not be reached."""

    def __init__(self, message: str, status: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body
