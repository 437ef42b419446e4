"""Membership record and flow result types."""

from dataclasses import asdict, dataclass, fields
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional

from membersync.db.models import MembershipStatus


@dataclass
class MembershipFields:
    """Provider-derived fields written by a webhook merge.

    ``internal_user_id`` is only a candidate: the store keeps an existing link.
    """

    provider_plan_id: str
    provider_user_email: str
    provider_user_id: Optional[str]
    internal_user_id: Optional[str]
    status: MembershipStatus
    plan_name: str
    plan_price_cents: int
    plan_interval: str
    renewal_period_start: Optional[datetime]
    renewal_period_end: Optional[datetime]
    cancel_at_period_end: bool
    canceled_at: Optional[datetime]


@dataclass
class Membership:
    """Canonical membership row."""

    id: str
    provider_membership_id: str
    provider_plan_id: str
    provider_user_email: str
    provider_user_id: Optional[str]
    internal_user_id: Optional[str]
    status: MembershipStatus
    plan_name: str
    plan_price_cents: int
    plan_interval: str
    renewal_period_start: Optional[datetime]
    renewal_period_end: Optional[datetime]
    cancel_at_period_end: bool
    canceled_at: Optional[datetime]
    created_at: datetime
    updated_at: Optional[datetime] = None

    @property
    def is_linked(self) -> bool:
        return self.internal_user_id is not None

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Membership":
        """Build from an asyncpg Record (or any mapping with column keys)."""
        row = dict(record)
        values = {f.name: row[f.name] for f in fields(cls) if f.name in row}
        values["id"] = str(values["id"])
        try:
            values["status"] = MembershipStatus(values["status"])
        except ValueError:
            values["status"] = MembershipStatus.UNKNOWN
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready dict: enum values unwrapped, timestamps as ISO-8601."""
        out = asdict(self)
        out["status"] = self.status.value
        for key, value in out.items():
            if isinstance(value, datetime):
                out[key] = value.isoformat()
        return out


class WriteOutcome(str, Enum):
    """Outcome of a best-effort secondary write."""

    SKIPPED = "skipped"  # no write was needed
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class ReadResult:
    """Reader result. ``membership`` is None when the user has no subscription."""

    membership: Optional[Membership]
    link_write: WriteOutcome = WriteOutcome.SKIPPED


@dataclass
class CancelResult:
    """Canceller result; the provider-side cancellation always succeeded."""

    membership: Membership
    local_write: WriteOutcome
    provider_status: Optional[str] = None
