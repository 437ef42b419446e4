"""Whop REST client for membership cancellation."""

import asyncio
import logging
from typing import Any

import aiohttp

from membersync.config import AppConfig
from membersync.memberships.base import ProviderClient
from membersync.memberships.errors import ProviderError

logger = logging.getLogger(__name__)


class WhopClient(ProviderClient):
    """Minimal Whop API client."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.whop.com/api/v1",
        timeout_seconds: float = 10.0,
    ):
        self._api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    @classmethod
    def from_config(cls, config: AppConfig) -> "WhopClient":
        return cls(
            api_key=config.whop_api_key.get_secret_value(),
            base_url=config.whop_api_base_url,
            timeout_seconds=config.http_timeout_seconds,
        )

    async def request_cancellation(self, provider_membership_id: str) -> dict[str, Any]:
        """Cancel a membership at the end of its current billing period.

        Args:
            provider_membership_id: Whop membership id (mem_...)

        Returns:
            Decoded Whop response body (empty dict if not JSON)

        Raises:
            ProviderError: If Whop returns a non-2xx status or cannot be reached
        """
        if not self._api_key:
            raise ProviderError("whop_api_key not configured")

        url = f"{self.base_url}/memberships/{provider_membership_id}/cancel"
        headers = {"Authorization": f"Bearer {self._api_key}"}

        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(
                    url,
                    headers=headers,
                    json={"cancellation_mode": "at_period_end"},
                ) as resp:
                    body = await resp.text()
                    if not 200 <= resp.status < 300:
                        logger.error(
                            f"Whop cancel error for {provider_membership_id}: "
                            f"{resp.status} {body[:500]}"
                        )
                        raise ProviderError(
                            "Failed to cancel subscription with payment provider",
                            status=resp.status,
                            body=body,
                        )
                    try:
                        data = await resp.json(content_type=None)
                    except ValueError:
                        data = None
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Whop cancel request failed for {provider_membership_id}: {e}")
            raise ProviderError(f"Whop request failed: {e}") from e

        return data if isinstance(data, dict) else {}
