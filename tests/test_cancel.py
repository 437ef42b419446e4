"""Tests for end-of-period cancellation."""

from datetime import datetime, timezone

import pytest

from conftest import membership_event
from membersync.db.models import MembershipStatus
from membersync.memberships.base import UserIdentity
from membersync.memberships.cancel import MembershipCanceller
from membersync.memberships.errors import NotFoundError, ProviderError, StorageError
from membersync.memberships.model import WriteOutcome
from membersync.memberships.webhooks import MembershipIngestor

USER = UserIdentity(id="user-1", email="a@x.com")


@pytest.fixture
def canceller(store, provider) -> MembershipCanceller:
    return MembershipCanceller(store, provider)


@pytest.fixture
def linked_membership(store, identity, catalog):
    """Ingest one membership already linked to USER."""

    async def _create(status="active", membership_id="m1"):
        identity.add_user(USER.id, USER.email)
        ingestor = MembershipIngestor(store, identity, catalog)
        await ingestor.ingest(membership_event(membership_id=membership_id, status=status))
        return store.by_provider_id(membership_id)

    return _create


class TestCancel:
    """Cancellation of an eligible membership."""

    @pytest.mark.asyncio
    async def test_active_membership_marked_canceling(self, canceller, store, provider, linked_membership):
        """Provider accepts: local record shows cancel_at_period_end and canceling."""
        membership = await linked_membership()

        result = await canceller.cancel(USER)

        assert provider.cancelled == ["m1"]
        row = store.by_provider_id("m1")
        assert row.cancel_at_period_end is True
        assert row.status == MembershipStatus.CANCELING
        assert result.local_write == WriteOutcome.SUCCEEDED
        assert result.membership.renewal_period_end == membership.renewal_period_end
        assert result.membership.renewal_period_end == datetime(2026, 2, 1, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_trialing_membership_is_cancellable(self, canceller, provider, linked_membership):
        """Trialing memberships can be cancelled too."""
        await linked_membership(status="trialing")

        await canceller.cancel(USER)

        assert provider.cancelled == ["m1"]

    @pytest.mark.asyncio
    async def test_provider_failure_leaves_local_state(self, canceller, store, provider, linked_membership):
        """A provider rejection writes nothing locally."""
        await linked_membership()
        provider.error = ProviderError("rejected", status=422, body="{}")

        with pytest.raises(ProviderError):
            await canceller.cancel(USER)

        row = store.by_provider_id("m1")
        assert row.status == MembershipStatus.ACTIVE
        assert row.cancel_at_period_end is False
        assert store.calls_to("set_cancellation") == []

    @pytest.mark.asyncio
    async def test_local_write_failure_still_succeeds(self, canceller, store, provider, linked_membership):
        """A failed local write is reported, not raised."""
        await linked_membership()
        store.fail_on.add("set_cancellation")

        result = await canceller.cancel(USER)

        assert provider.cancelled == ["m1"]
        assert result.local_write == WriteOutcome.FAILED
        assert store.by_provider_id("m1").status == MembershipStatus.ACTIVE


class TestNothingToCancel:
    """Users without an eligible membership."""

    @pytest.mark.asyncio
    async def test_no_membership_raises_not_found(self, canceller, provider):
        """No membership at all is a not-found error."""
        with pytest.raises(NotFoundError, match="No active subscription found"):
            await canceller.cancel(USER)

        assert provider.cancelled == []

    @pytest.mark.asyncio
    async def test_already_canceling_is_not_cancellable(self, canceller, provider, linked_membership):
        """A pending cancellation is not cancelled again."""
        await linked_membership(status="canceling")

        with pytest.raises(NotFoundError):
            await canceller.cancel(USER)

        assert provider.cancelled == []

    @pytest.mark.asyncio
    async def test_lookup_failure_propagates(self, canceller, store, provider):
        """Storage errors on lookup surface before any provider call."""
        store.fail_on.add("find_latest_by_user")

        with pytest.raises(StorageError):
            await canceller.cancel(USER)

        assert provider.cancelled == []
