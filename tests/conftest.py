"""Shared fixtures: in-memory collaborators and webhook signing helpers."""

import base64
import hashlib
import hmac
import time
import uuid
from dataclasses import asdict, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import pytest

from membersync.db.models import MembershipStatus
from membersync.memberships.base import (
    IdentityDirectory,
    MembershipStore,
    ProviderClient,
    UserIdentity,
)
from membersync.memberships.catalog import Plan, PlanCatalog
from membersync.memberships.errors import AuthError, ProviderError, StorageError
from membersync.memberships.model import Membership

WEBHOOK_SECRET_BYTES = b"membersync-test-signing-secret"
WEBHOOK_SECRET = "whsec_" + base64.b64encode(WEBHOOK_SECRET_BYTES).decode()


class InMemoryMembershipStore(MembershipStore):
    """Dict-backed store with the same merge rules as the Postgres store.

    ``fail_on`` names methods that raise StorageError; ``calls`` records every
    method invocation for write-count assertions.
    """

    def __init__(self):
        self.rows: dict[str, Membership] = {}
        self.fail_on: set[str] = set()
        self.calls: list[tuple[str, tuple]] = []
        self._clock = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def _record(self, name: str, *args) -> None:
        self.calls.append((name, args))
        if name in self.fail_on:
            raise StorageError(f"{name} failed")

    def calls_to(self, name: str) -> list[tuple]:
        return [args for call, args in self.calls if call == name]

    def _tick(self) -> datetime:
        self._clock += timedelta(seconds=1)
        return self._clock

    def by_provider_id(self, provider_membership_id: str) -> Optional[Membership]:
        for row in self.rows.values():
            if row.provider_membership_id == provider_membership_id:
                return row
        return None

    async def find_latest_by_user(self, internal_user_id, statuses=None):
        self._record("find_latest_by_user", internal_user_id, statuses)
        matches = [
            row for row in self.rows.values()
            if row.internal_user_id == internal_user_id
            and (statuses is None or row.status in statuses)
        ]
        return max(matches, key=lambda r: r.created_at, default=None)

    async def find_latest_unlinked_by_email(self, email):
        self._record("find_latest_unlinked_by_email", email)
        matches = [
            row for row in self.rows.values()
            if row.internal_user_id is None and row.provider_user_email == email.lower()
        ]
        return max(matches, key=lambda r: r.created_at, default=None)

    async def upsert_by_provider_membership_id(self, provider_membership_id, fields):
        self._record("upsert_by_provider_membership_id", provider_membership_id, fields)
        values = asdict(fields)
        values["provider_user_email"] = values["provider_user_email"].lower()
        existing = self.by_provider_id(provider_membership_id)
        if existing is None:
            now = self._tick()
            row = Membership(
                id=str(uuid.uuid4()),
                provider_membership_id=provider_membership_id,
                created_at=now,
                updated_at=now,
                **values,
            )
        else:
            values["internal_user_id"] = existing.internal_user_id or values["internal_user_id"]
            row = replace(existing, updated_at=self._tick(), **values)
        self.rows[row.id] = row

    async def link_user(self, membership_id, internal_user_id):
        self._record("link_user", membership_id, internal_user_id)
        row = self.rows[membership_id]
        if row.internal_user_id is not None:
            return False
        self.rows[membership_id] = replace(row, internal_user_id=internal_user_id)
        return True

    async def set_cancellation(
        self,
        membership_id,
        cancel_at_period_end=True,
        status=MembershipStatus.CANCELING,
    ):
        self._record("set_cancellation", membership_id, cancel_at_period_end, status)
        self.rows[membership_id] = replace(
            self.rows[membership_id],
            cancel_at_period_end=cancel_at_period_end,
            status=status,
        )


class FakeIdentity(IdentityDirectory):
    """Token → user and email → user maps."""

    def __init__(self):
        self.users_by_token: dict[str, UserIdentity] = {}
        self.users_by_email: dict[str, UserIdentity] = {}
        self.lookup_error: Optional[Exception] = None

    def add_user(self, user_id: str, email: str, token: Optional[str] = None) -> UserIdentity:
        user = UserIdentity(id=user_id, email=email.lower())
        self.users_by_email[user.email] = user
        if token:
            self.users_by_token[token] = user
        return user

    async def verify_token(self, token):
        if token not in self.users_by_token:
            raise AuthError("Invalid or expired token")
        return self.users_by_token[token]

    async def find_user_by_email(self, email):
        if self.lookup_error is not None:
            raise self.lookup_error
        return self.users_by_email.get(email.lower())


class FakeProvider(ProviderClient):
    """Records cancellation requests; set ``error`` to make them fail."""

    def __init__(self):
        self.cancelled: list[str] = []
        self.error: Optional[ProviderError] = None

    async def request_cancellation(self, provider_membership_id):
        if self.error is not None:
            raise self.error
        self.cancelled.append(provider_membership_id)
        return {"id": provider_membership_id, "status": "active", "cancel_at_period_end": True}


TEST_PLANS = {
    "planA": Plan(name="Plan A", price_cents=1000, interval="month"),
    "planB": Plan(name="Plan B", price_cents=2500, interval="3-months"),
}


@pytest.fixture
def store() -> InMemoryMembershipStore:
    return InMemoryMembershipStore()


@pytest.fixture
def identity() -> FakeIdentity:
    return FakeIdentity()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def catalog() -> PlanCatalog:
    return PlanCatalog(TEST_PLANS)


def membership_event(
    membership_id: Optional[str] = "m1",
    plan_id: str = "planA",
    status: Optional[str] = "active",
    email: str = "a@x.com",
    event_type: str = "membership.went_valid",
    **extra: Any,
) -> dict[str, Any]:
    """Build a Whop membership webhook body."""
    data: dict[str, Any] = {
        "plan": {"id": plan_id},
        "user": {"id": "user_whop_1", "email": email},
        "renewal_period_start": 1767225600,  # 2026-01-01
        "renewal_period_end": 1769904000,  # 2026-02-01
        "cancel_at_period_end": False,
        "canceled_at": None,
    }
    if membership_id is not None:
        data["id"] = membership_id
    if status is not None:
        data["status"] = status
    data.update(extra)
    return {"type": event_type, "data": data}


def signed_headers(body: bytes, msg_id: str = "msg_1", timestamp: Optional[int] = None) -> dict[str, str]:
    """Svix signature headers for ``body`` under WEBHOOK_SECRET."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    to_sign = f"{msg_id}.{timestamp}.".encode() + body
    digest = hmac.new(WEBHOOK_SECRET_BYTES, to_sign, hashlib.sha256).digest()
    return {
        "svix-id": msg_id,
        "svix-timestamp": str(timestamp),
        "svix-signature": f"v1,{base64.b64encode(digest).decode()}",
    }
