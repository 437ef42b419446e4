"""Subscription lookup with lazy identity linking."""

import logging
from dataclasses import replace

from membersync.memberships.base import MembershipStore, UserIdentity
from membersync.memberships.errors import StorageError
from membersync.memberships.model import ReadResult, WriteOutcome

logger = logging.getLogger(__name__)


class MembershipReader:
    """Returns a user's current membership.

    A webhook can arrive before the buyer has ever signed in, leaving the
    membership keyed only by the Whop account email. The first read by a
    user with that email claims the record.
    """

    def __init__(self, store: MembershipStore):
        self.store = store

    async def read(self, user: UserIdentity) -> ReadResult:
        """Look up the user's membership, linking an unlinked match by email.

        Args:
            user: Authenticated identity

        Returns:
            ReadResult. ``membership`` is None when nothing matches.
            ``link_write`` reports the best-effort link: SKIPPED when no
            link was needed, FAILED when the write errored (the membership
            is still returned and the link is retried on the next read).
            If another read claims the record first, the linked lookup is
            repeated and its result returned with SKIPPED.

        Raises:
            StorageError: If either lookup fails
        """
        linked = await self.store.find_latest_by_user(user.id)
        if linked is not None:
            return ReadResult(membership=linked)

        if not user.email:
            return ReadResult(membership=None)

        unlinked = await self.store.find_latest_unlinked_by_email(user.email.lower())
        if unlinked is None:
            return ReadResult(membership=None)

        try:
            claimed = await self.store.link_user(unlinked.id, user.id)
        except StorageError as e:
            logger.error(f"Failed to link membership {unlinked.provider_membership_id}: {e}")
            outcome = WriteOutcome.FAILED
        else:
            if not claimed:
                # Linked by a concurrent read between lookup and write
                logger.info(
                    f"Membership {unlinked.provider_membership_id} was already linked"
                )
                linked = await self.store.find_latest_by_user(user.id)
                return ReadResult(membership=linked)
            logger.info(
                f"Lazy-linked membership {unlinked.provider_membership_id} to user {user.id}"
            )
            outcome = WriteOutcome.SUCCEEDED

        return ReadResult(
            membership=replace(unlinked, internal_user_id=user.id),
            link_write=outcome,
        )
