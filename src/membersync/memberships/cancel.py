"""End-of-period cancellation."""

import logging
from dataclasses import replace

from membersync.db.models import CANCELLABLE_STATUSES, MembershipStatus
from membersync.memberships.base import MembershipStore, ProviderClient, UserIdentity
from membersync.memberships.errors import NotFoundError, StorageError
from membersync.memberships.model import CancelResult, WriteOutcome

logger = logging.getLogger(__name__)


class MembershipCanceller:
    """Cancels a user's active membership with Whop, then mirrors it locally."""

    def __init__(self, store: MembershipStore, provider: ProviderClient):
        self.store = store
        self.provider = provider

    async def cancel(self, user: UserIdentity) -> CancelResult:
        """Request end-of-period cancellation for the user's active membership.

        Local state changes only after Whop accepts the request. If the local
        write then fails the call still succeeds: Whop already holds the
        cancellation and its follow-up webhook resyncs the record.

        Args:
            user: Authenticated identity

        Returns:
            CancelResult with the membership carrying the cancellation flags

        Raises:
            NotFoundError: No active or trialing membership for the user
            ProviderError: Whop rejected the request or was unreachable
            StorageError: The membership lookup failed
        """
        membership = await self.store.find_latest_by_user(
            user.id, statuses=CANCELLABLE_STATUSES
        )
        if membership is None:
            raise NotFoundError("No active subscription found")

        response = await self.provider.request_cancellation(membership.provider_membership_id)
        provider_status = response.get("status")
        logger.info(
            f"Whop cancel success for membership {membership.provider_membership_id}: "
            f"{provider_status}"
        )

        try:
            await self.store.set_cancellation(
                membership.id,
                cancel_at_period_end=True,
                status=MembershipStatus.CANCELING,
            )
        except StorageError as e:
            logger.error(f"Failed to update local membership {membership.id}: {e}")
            outcome = WriteOutcome.FAILED
        else:
            outcome = WriteOutcome.SUCCEEDED

        return CancelResult(
            membership=replace(
                membership,
                cancel_at_period_end=True,
                status=MembershipStatus.CANCELING,
            ),
            local_write=outcome,
            provider_status=provider_status,
        )
