"""Postgres-backed membership store."""

import asyncio
import logging
from collections.abc import Sequence
from typing import Optional

import asyncpg

from membersync.db.models import MembershipStatus, Table
from membersync.memberships.base import MembershipStore
from membersync.memberships.errors import StorageError
from membersync.memberships.model import Membership, MembershipFields

logger = logging.getLogger(__name__)

# Failures surfaced to callers as StorageError
_DB_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)

_LATEST_BY_USER_SQL = f"""
    SELECT * FROM {Table.MEMBERSHIPS}
    WHERE internal_user_id = $1
    ORDER BY created_at DESC
    LIMIT 1
"""

_LATEST_BY_USER_WITH_STATUS_SQL = f"""
    SELECT * FROM {Table.MEMBERSHIPS}
    WHERE internal_user_id = $1 AND status = ANY($2::text[])
    ORDER BY created_at DESC
    LIMIT 1
"""

_LATEST_UNLINKED_BY_EMAIL_SQL = f"""
    SELECT * FROM {Table.MEMBERSHIPS}
    WHERE provider_user_email = $1 AND internal_user_id IS NULL
    ORDER BY created_at DESC
    LIMIT 1
"""

# internal_user_id keeps an existing link; created_at is never rewritten
_UPSERT_SQL = f"""
    INSERT INTO {Table.MEMBERSHIPS} (
        provider_membership_id, provider_plan_id, provider_user_email,
        provider_user_id, internal_user_id, status, plan_name,
        plan_price_cents, plan_interval, renewal_period_start,
        renewal_period_end, cancel_at_period_end, canceled_at
    )
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)
    ON CONFLICT (provider_membership_id) DO UPDATE SET
        provider_plan_id = EXCLUDED.provider_plan_id,
        provider_user_email = EXCLUDED.provider_user_email,
        provider_user_id = EXCLUDED.provider_user_id,
        internal_user_id = COALESCE({Table.MEMBERSHIPS}.internal_user_id, EXCLUDED.internal_user_id),
        status = EXCLUDED.status,
        plan_name = EXCLUDED.plan_name,
        plan_price_cents = EXCLUDED.plan_price_cents,
        plan_interval = EXCLUDED.plan_interval,
        renewal_period_start = EXCLUDED.renewal_period_start,
        renewal_period_end = EXCLUDED.renewal_period_end,
        cancel_at_period_end = EXCLUDED.cancel_at_period_end,
        canceled_at = EXCLUDED.canceled_at,
        updated_at = now()
"""

_LINK_USER_SQL = f"""
    UPDATE {Table.MEMBERSHIPS}
    SET internal_user_id = $2, updated_at = now()
    WHERE id = $1::uuid AND internal_user_id IS NULL
"""

_SET_CANCELLATION_SQL = f"""
    UPDATE {Table.MEMBERSHIPS}
    SET cancel_at_period_end = $2, status = $3, updated_at = now()
    WHERE id = $1::uuid
"""


class PostgresMembershipStore(MembershipStore):
    """Read/write contract over the memberships table.

    Every method raises StorageError when the database call fails.
    """

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def find_latest_by_user(
        self,
        internal_user_id: str,
        statuses: Optional[Sequence[MembershipStatus]] = None,
    ) -> Optional[Membership]:
        """Most recent membership linked to a user, optionally filtered by status."""
        if statuses is None:
            row = await self._fetchrow(_LATEST_BY_USER_SQL, internal_user_id)
        else:
            row = await self._fetchrow(
                _LATEST_BY_USER_WITH_STATUS_SQL,
                internal_user_id,
                [MembershipStatus(s).value for s in statuses],
            )
        return Membership.from_record(row) if row is not None else None

    async def find_latest_unlinked_by_email(self, email: str) -> Optional[Membership]:
        """Most recent unlinked membership whose provider email matches."""
        if not email:
            return None
        row = await self._fetchrow(_LATEST_UNLINKED_BY_EMAIL_SQL, email.strip().lower())
        return Membership.from_record(row) if row is not None else None

    async def upsert_by_provider_membership_id(
        self,
        provider_membership_id: str,
        fields: MembershipFields,
    ) -> None:
        """Insert or overwrite the provider-owned fields of one membership.

        A single INSERT ... ON CONFLICT statement; no prior read.
        """
        await self._execute(
            _UPSERT_SQL,
            provider_membership_id,
            fields.provider_plan_id,
            fields.provider_user_email.lower(),
            fields.provider_user_id,
            fields.internal_user_id,
            MembershipStatus(fields.status).value,
            fields.plan_name,
            fields.plan_price_cents,
            fields.plan_interval,
            fields.renewal_period_start,
            fields.renewal_period_end,
            fields.cancel_at_period_end,
            fields.canceled_at,
        )

    async def link_user(self, membership_id: str, internal_user_id: str) -> bool:
        """Claim an unlinked membership for a user.

        Returns:
            True if the row was linked by this call, False if it was already linked
        """
        result = await self._execute(_LINK_USER_SQL, membership_id, internal_user_id)
        return result == "UPDATE 1"

    async def set_cancellation(
        self,
        membership_id: str,
        cancel_at_period_end: bool = True,
        status: MembershipStatus = MembershipStatus.CANCELING,
    ) -> None:
        """Point update of the local cancellation flags."""
        await self._execute(
            _SET_CANCELLATION_SQL,
            membership_id,
            cancel_at_period_end,
            MembershipStatus(status).value,
        )

    async def _fetchrow(self, sql: str, *args) -> Optional[asyncpg.Record]:
        try:
            async with self.pool.acquire() as conn:
                return await conn.fetchrow(sql, *args)
        except _DB_ERRORS as e:
            logger.error(f"Membership query failed: {e}")
            raise StorageError(f"Membership query failed: {e}") from e

    async def _execute(self, sql: str, *args) -> str:
        try:
            async with self.pool.acquire() as conn:
                return await conn.execute(sql, *args)
        except _DB_ERRORS as e:
            logger.error(f"Membership write failed: {e}")
            raise StorageError(f"Membership write failed: {e}") from e
