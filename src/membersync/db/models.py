"""Table-name constants and column-value enums."""

from enum import Enum


class Table:
    """Database table names."""

    MEMBERSHIPS = "memberships"
    SCHEMA_MIGRATIONS = "schema_migrations"


class MembershipStatus(str, Enum):
    """Local membership status.

    Provider statuses outside this set are stored as UNKNOWN.
    """

    ACTIVE = "active"
    TRIALING = "trialing"
    CANCELING = "canceling"
    CANCELED = "canceled"
    UNKNOWN = "unknown"


# Statuses a user may request cancellation from
CANCELLABLE_STATUSES = (MembershipStatus.ACTIVE, MembershipStatus.TRIALING)
