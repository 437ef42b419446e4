"""Whop membership ingestion, lookup and cancellation.

Webhooks merge provider state into one record per Whop membership; reads
lazily link that record to the Supabase user with the same email; cancels go
to Whop first and are mirrored locally only once Whop accepts them.
"""

from membersync.memberships.base import (
    IdentityDirectory,
    MembershipStore,
    ProviderClient,
    UserIdentity,
)
from membersync.memberships.cancel import MembershipCanceller
from membersync.memberships.catalog import UNKNOWN_PLAN, Plan, PlanCatalog
from membersync.memberships.errors import (
    AuthError,
    InvalidEvent,
    MembershipError,
    NotFoundError,
    ProviderError,
    StorageError,
)
from membersync.memberships.model import (
    CancelResult,
    Membership,
    MembershipFields,
    ReadResult,
    WriteOutcome,
)
from membersync.memberships.reader import MembershipReader
from membersync.memberships.webhooks import MembershipIngestor, handle_webhook

__all__ = [
    # Flows
    "MembershipIngestor",
    "MembershipReader",
    "MembershipCanceller",
    "handle_webhook",
    # Collaborator interfaces
    "MembershipStore",
    "IdentityDirectory",
    "ProviderClient",
    "UserIdentity",
    # Records and results
    "Membership",
    "MembershipFields",
    "ReadResult",
    "CancelResult",
    "WriteOutcome",
    # Plans
    "Plan",
    "PlanCatalog",
    "UNKNOWN_PLAN",
    # Errors
    "MembershipError",
    "AuthError",
    "NotFoundError",
    "InvalidEvent",
    "ProviderError",
    "StorageError",
]
