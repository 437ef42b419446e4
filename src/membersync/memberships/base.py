"""Abstract collaborator interfaces shared by the membership flows."""

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Optional

from membersync.db.models import MembershipStatus
from membersync.memberships.model import Membership, MembershipFields


@dataclass(frozen=True)
class UserIdentity:
    """Authenticated identity-system user."""

    id: str
    email: str = ""


class MembershipStore(ABC):
    """Persistence contract for membership records.

    Implementations raise StorageError on transport or database failure.
    """

    @abstractmethod
    async def find_latest_by_user(
        self,
        internal_user_id: str,
        statuses: Optional[Sequence[MembershipStatus]] = None,
    ) -> Optional[Membership]:
        """Most recent (by created_at) membership linked to the user."""
        pass

    @abstractmethod
    async def find_latest_unlinked_by_email(self, email: str) -> Optional[Membership]:
        """Most recent unlinked membership with a matching provider email."""
        pass

    @abstractmethod
    async def upsert_by_provider_membership_id(
        self,
        provider_membership_id: str,
        fields: MembershipFields,
    ) -> None:
        """Atomic insert-or-merge keyed on the provider membership id."""
        pass

    @abstractmethod
    async def link_user(self, membership_id: str, internal_user_id: str) -> bool:
        """Set internal_user_id on an unlinked record; True if this call linked it."""
        pass

    @abstractmethod
    async def set_cancellation(
        self,
        membership_id: str,
        cancel_at_period_end: bool = True,
        status: MembershipStatus = MembershipStatus.CANCELING,
    ) -> None:
        """Point update of cancel_at_period_end and status."""
        pass


class IdentityDirectory(ABC):
    """Identity-system lookups."""

    @abstractmethod
    async def verify_token(self, token: str) -> UserIdentity:
        """
        Resolve a bearer token to its user.

        Raises:
            AuthError: If the token is missing, invalid or expired
        """
        pass

    @abstractmethod
    async def find_user_by_email(self, email: str) -> Optional[UserIdentity]:
        """Indexed lookup of a user by (case-insensitive) email."""
        pass


class ProviderClient(ABC):
    """Payment-provider operations."""

    @abstractmethod
    async def request_cancellation(self, provider_membership_id: str) -> dict[str, Any]:
        """
        Ask the provider to cancel a membership at the end of its period.

        Returns:
            Provider response body

        Raises:
            ProviderError: On rejection or transport failure
        """
        pass
