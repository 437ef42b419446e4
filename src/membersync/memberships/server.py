"""aiohttp HTTP surface for the webhook, subscription and cancel endpoints."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import asyncpg
from aiohttp import web

from membersync.config import AppConfig
from membersync.memberships.base import IdentityDirectory, UserIdentity
from membersync.memberships.cancel import MembershipCanceller
from membersync.memberships.catalog import PlanCatalog
from membersync.memberships.errors import AuthError, NotFoundError, ProviderError, StorageError
from membersync.memberships.identity import SupabaseIdentity
from membersync.memberships.provider import WhopClient
from membersync.memberships.reader import MembershipReader
from membersync.memberships.store import PostgresMembershipStore
from membersync.memberships.webhooks import MembershipIngestor, handle_webhook

logger = logging.getLogger(__name__)

WEBHOOK_PATH = "/api/whop-webhook"
SUBSCRIPTION_PATH = "/api/subscription"
CANCEL_PATH = "/api/cancel-subscription"

CANCEL_MESSAGE = "Subscription will cancel at the end of your billing period"


@dataclass
class Services:
    """Wired collaborators for one application instance."""

    ingestor: MembershipIngestor
    reader: MembershipReader
    canceller: MembershipCanceller
    identity: IdentityDirectory
    webhook_secret: str


SERVICES = web.AppKey("services", Services)


def build_services(
    config: AppConfig,
    pool: asyncpg.Pool,
    catalog: Optional[PlanCatalog] = None,
) -> Services:
    """Wire the production collaborators from configuration.

    Args:
        config: Loaded AppConfig
        pool: Open asyncpg pool shared by store and identity lookups
        catalog: Plan catalog; defaults to the built-in Whop plans
    """
    store = PostgresMembershipStore(pool)
    identity = SupabaseIdentity.from_config(config, pool)
    return Services(
        ingestor=MembershipIngestor(store, identity, catalog or PlanCatalog()),
        reader=MembershipReader(store),
        canceller=MembershipCanceller(store, WhopClient.from_config(config)),
        identity=identity,
        webhook_secret=config.whop_webhook_secret.get_secret_value(),
    )


def _bearer_token(request: web.Request) -> str:
    header = request.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        raise AuthError("Missing authorization token")
    return header[len("Bearer "):].strip()


async def _authenticate(request: web.Request) -> UserIdentity:
    token = _bearer_token(request)
    return await request.app[SERVICES].identity.verify_token(token)


async def webhook_endpoint(request: web.Request) -> web.Response:
    """Handle POST /api/whop-webhook."""
    if not (request.headers.get("svix-signature") or request.headers.get("webhook-signature")):
        logger.error("Missing webhook signature header")
        return web.json_response({"error": "Missing signature"}, status=400)

    # Raw bytes: the signature covers the body exactly as sent
    payload = await request.read()
    services = request.app[SERVICES]
    return await handle_webhook(payload, request.headers, services.ingestor, services.webhook_secret)


async def subscription_endpoint(request: web.Request) -> web.Response:
    """Handle GET /api/subscription."""
    try:
        user = await _authenticate(request)
        result = await request.app[SERVICES].reader.read(user)
    except AuthError as e:
        return web.json_response({"error": str(e)}, status=401)
    except StorageError:
        return web.json_response({"error": "Database error"}, status=500)

    subscription = result.membership.to_dict() if result.membership else None
    return web.json_response({"subscription": subscription})


async def cancel_endpoint(request: web.Request) -> web.Response:
    """Handle POST /api/cancel-subscription."""
    try:
        user = await _authenticate(request)
        result = await request.app[SERVICES].canceller.cancel(user)
    except AuthError as e:
        return web.json_response({"error": str(e)}, status=401)
    except NotFoundError as e:
        return web.json_response({"error": str(e)}, status=404)
    except ProviderError:
        return web.json_response(
            {"error": "Failed to cancel subscription with payment provider"}, status=502
        )
    except StorageError:
        return web.json_response({"error": "Database error"}, status=500)

    period_end = result.membership.renewal_period_end
    return web.json_response({
        "success": True,
        "message": CANCEL_MESSAGE,
        "renewal_period_end": period_end.isoformat() if period_end else None,
    })


def create_app(services: Services) -> web.Application:
    """Create the aiohttp application.

    Args:
        services: Wired collaborators (see build_services)

    Returns:
        Configured Application
    """
    app = web.Application()
    app[SERVICES] = services
    app.router.add_post(WEBHOOK_PATH, webhook_endpoint)
    app.router.add_get(SUBSCRIPTION_PATH, subscription_endpoint)
    app.router.add_post(CANCEL_PATH, cancel_endpoint)
    return app


async def run_server(
    app: web.Application,
    host: str,
    port: int,
    shutdown_event: Optional[asyncio.Event] = None,
) -> None:
    """Serve ``app`` until ``shutdown_event`` is set (forever if None)."""
    runner = web.AppRunner(app)
    await runner.setup()

    site = web.TCPSite(runner, host, port)
    await site.start()

    logger.info(f"HTTP server listening on {host}:{port}")

    try:
        await (shutdown_event or asyncio.Event()).wait()
    finally:
        logger.info("Shutting down HTTP server...")
        await runner.cleanup()
