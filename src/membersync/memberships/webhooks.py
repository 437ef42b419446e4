"""Whop webhook verification and membership merge."""

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from aiohttp import web
from svix.webhooks import Webhook, WebhookVerificationError

from membersync.db.models import MembershipStatus
from membersync.memberships.base import IdentityDirectory, MembershipStore
from membersync.memberships.catalog import PlanCatalog
from membersync.memberships.errors import AuthError, InvalidEvent, StorageError
from membersync.memberships.model import MembershipFields

logger = logging.getLogger(__name__)

SIGNATURE_HEADERS = (
    "svix-id",
    "svix-timestamp",
    "svix-signature",
    "webhook-id",
    "webhook-timestamp",
    "webhook-signature",
)


def verify_webhook(payload: bytes, headers: Mapping[str, str], secret: str) -> dict[str, Any]:
    """Verify a Whop (Svix-signed) webhook and decode its body.

    The signature covers the message id, timestamp and the raw body, so
    ``payload`` must be the bytes exactly as received.

    Args:
        payload: Raw request body
        headers: Request headers (svix-* or webhook-* signature headers)
        secret: Webhook signing secret

    Returns:
        Decoded event dict

    Raises:
        AuthError: Missing secret, missing headers or bad signature
        InvalidEvent: Body verified but is not a JSON object
    """
    if not secret:
        raise AuthError("Webhook secret not configured")

    signature_headers = {
        name: headers[name] for name in SIGNATURE_HEADERS if headers.get(name)
    }
    try:
        webhook = Webhook(secret)
    except ValueError as e:
        raise AuthError("Webhook secret is not a valid signing secret") from e

    try:
        webhook.verify(payload, signature_headers)
    except WebhookVerificationError as e:
        raise AuthError(f"Invalid webhook signature: {e}") from e
    except ValueError as e:
        raise InvalidEvent(f"Invalid webhook payload: {e}") from e

    # svix 2.x verify() returns None; decode the authenticated bytes here
    try:
        event = json.loads(payload)
    except ValueError as e:
        raise InvalidEvent(f"Invalid webhook payload: {e}") from e

    if not isinstance(event, dict):
        raise InvalidEvent("Webhook payload is not a JSON object")
    return event


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a provider timestamp given as unix seconds or ISO-8601 text."""
    if value in (None, ""):
        return None
    if isinstance(value, bool):
        raise InvalidEvent(f"Unsupported timestamp value: {value!r}")
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str):
        if value.isdigit():
            return datetime.fromtimestamp(int(value), tz=timezone.utc)
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise InvalidEvent(f"Unsupported timestamp value: {value!r}")


def derive_status(reported: Optional[str], cancel_at_period_end: bool) -> MembershipStatus:
    """Map the provider's status to the local one.

    Whop reports a pending cancellation as ``active`` plus the
    ``cancel_at_period_end`` flag; that combination becomes CANCELING.
    A missing status counts as active.
    """
    reported = reported or MembershipStatus.ACTIVE.value
    try:
        status = MembershipStatus(reported)
    except ValueError:
        logger.warning(f"Unrecognized membership status from provider: {reported!r}")
        return MembershipStatus.UNKNOWN

    if status == MembershipStatus.ACTIVE and cancel_at_period_end:
        return MembershipStatus.CANCELING
    return status


def _nested(data: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = data.get(key)
    return value if isinstance(value, Mapping) else {}


def _account_email(data: Mapping[str, Any]) -> str:
    """Provider account email, lower-cased ('' if absent)."""
    return (_nested(data, "user").get("email") or data.get("email") or "").strip().lower()


def is_membership_event(event_type: Optional[str]) -> bool:
    """Whether an event carries a membership object in ``data``."""
    return not event_type or event_type.startswith("membership")


@dataclass
class IngestResult:
    """Outcome of one ingested webhook event."""

    event_type: str
    provider_membership_id: Optional[str] = None
    status: Optional[MembershipStatus] = None
    internal_user_id: Optional[str] = None
    merged: bool = False


class MembershipIngestor:
    """Merges verified provider events into the membership store."""

    def __init__(
        self,
        store: MembershipStore,
        identity: IdentityDirectory,
        catalog: PlanCatalog,
    ):
        self.store = store
        self.identity = identity
        self.catalog = catalog

    async def ingest(self, event: Mapping[str, Any]) -> IngestResult:
        """Merge one verified event.

        Replaying an event, or receiving events for one membership out of
        order, overwrites the same provider-owned fields; an existing
        internal_user_id is never replaced.

        Args:
            event: Decoded webhook body ``{"type": ..., "data": {...}}``

        Returns:
            IngestResult (merged=False for non-membership events)

        Raises:
            InvalidEvent: Membership id missing or payload malformed
            StorageError: The upsert failed
        """
        event_type = event.get("type") or "unknown"
        if not is_membership_event(event.get("type")):
            logger.info(f"Unhandled event type: {event_type}")
            return IngestResult(event_type=event_type)

        data = event.get("data") or {}
        if not isinstance(data, Mapping):
            raise InvalidEvent("Webhook data is not an object")

        membership_id = data.get("id")
        email = _account_email(data)

        logger.info(
            f"Webhook received: {event_type}, membership: {membership_id}, email: {email}"
        )

        if not membership_id:
            raise InvalidEvent("Missing membership ID")

        try:
            fields = self.derive_fields(data)
        except ValueError as e:
            raise InvalidEvent(f"Malformed membership payload: {e}") from e
        fields.internal_user_id = await self._resolve_user_id(email)

        await self.store.upsert_by_provider_membership_id(str(membership_id), fields)

        logger.info(
            f"Membership {membership_id} upserted successfully (status: {fields.status.value})"
        )
        if fields.internal_user_id is None:
            logger.warning(
                f"Membership {membership_id} has no matching identity for {email or '<no email>'}; "
                "it stays unlinked until that user signs in"
            )

        return IngestResult(
            event_type=event_type,
            provider_membership_id=str(membership_id),
            status=fields.status,
            internal_user_id=fields.internal_user_id,
            merged=True,
        )

    def derive_fields(self, data: Mapping[str, Any]) -> MembershipFields:
        """Build the provider-owned field set from a membership payload.

        internal_user_id is left unset; the caller resolves it.
        """
        plan_id = _nested(data, "plan").get("id") or data.get("plan_id") or ""
        plan = self.catalog.resolve(plan_id)
        cancel_at_period_end = bool(data.get("cancel_at_period_end"))
        status = derive_status(data.get("status"), cancel_at_period_end)
        provider_user_id = _nested(data, "user").get("id")

        return MembershipFields(
            provider_plan_id=plan_id,
            provider_user_email=_account_email(data),
            provider_user_id=str(provider_user_id) if provider_user_id else None,
            internal_user_id=None,
            status=status,
            plan_name=plan.name,
            plan_price_cents=plan.price_cents,
            plan_interval=plan.interval,
            renewal_period_start=parse_timestamp(data.get("renewal_period_start")),
            renewal_period_end=parse_timestamp(data.get("renewal_period_end")),
            # canceling always carries the flag, even if the provider omitted it
            cancel_at_period_end=cancel_at_period_end or status == MembershipStatus.CANCELING,
            canceled_at=parse_timestamp(data.get("canceled_at")),
        )

    async def _resolve_user_id(self, email: str) -> Optional[str]:
        """Best-effort identity match; failures leave the membership unlinked."""
        if not email:
            return None
        try:
            user = await self.identity.find_user_by_email(email)
        except Exception as e:
            # Lazy linking on read will catch it later
            logger.error(f"Failed to look up user by email {email}: {e}")
            return None
        return user.id if user else None


async def handle_webhook(
    payload: bytes,
    headers: Mapping[str, str],
    ingestor: MembershipIngestor,
    secret: str,
) -> web.Response:
    """Verify and ingest a Whop webhook.

    Args:
        payload: Raw request body bytes
        headers: Request headers carrying the signature
        ingestor: Configured MembershipIngestor
        secret: Webhook signing secret

    Returns:
        aiohttp.web.Response (200 success, 400 rejected, 500 storage failure)
    """
    try:
        event = verify_webhook(payload, headers, secret)
        result = await ingestor.ingest(event)
    except AuthError as e:
        logger.error(f"Webhook signature verification failed: {e}")
        return web.json_response({"error": "Invalid webhook signature"}, status=400)
    except InvalidEvent as e:
        logger.error(f"Rejected webhook: {e}")
        return web.json_response({"error": str(e)}, status=400)
    except StorageError as e:
        logger.error(f"Membership upsert error: {e}")
        # 500 so Whop redelivers
        return web.json_response({"error": "Database error"}, status=500)

    return web.json_response({"success": True, "merged": result.merged})
