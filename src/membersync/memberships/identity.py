"""Supabase Auth identity directory.

Bearer tokens are verified against the GoTrue ``/auth/v1/user`` endpoint.
Email lookups go straight to the auth users table over the shared asyncpg
pool, so matching a webhook email costs one indexed query instead of a
listing of every user.
"""

import asyncio
import logging
from typing import Optional

import aiohttp
import asyncpg

from membersync.config import AppConfig
from membersync.memberships.base import IdentityDirectory, UserIdentity
from membersync.memberships.errors import AuthError, StorageError

logger = logging.getLogger(__name__)


class SupabaseIdentity(IdentityDirectory):
    """Identity directory backed by a Supabase project."""

    def __init__(
        self,
        supabase_url: str,
        service_role_key: str,
        pool: asyncpg.Pool,
        users_table: str = "auth.users",
        timeout_seconds: float = 10.0,
    ):
        self.supabase_url = supabase_url.rstrip("/")
        self._service_role_key = service_role_key
        self.pool = pool
        self.users_table = users_table
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    @classmethod
    def from_config(cls, config: AppConfig, pool: asyncpg.Pool) -> "SupabaseIdentity":
        return cls(
            supabase_url=config.supabase_url,
            service_role_key=config.supabase_service_role_key.get_secret_value(),
            pool=pool,
            users_table=config.identity_users_table,
            timeout_seconds=config.http_timeout_seconds,
        )

    async def verify_token(self, token: str) -> UserIdentity:
        """Resolve a Supabase access token to its user.

        Args:
            token: JWT taken from the Authorization header

        Returns:
            UserIdentity with the user's id and lower-cased email

        Raises:
            AuthError: Token missing, rejected, or Supabase unreachable
        """
        if not token:
            raise AuthError("Missing authorization token")

        url = f"{self.supabase_url}/auth/v1/user"
        headers = {
            "Authorization": f"Bearer {token}",
            "apikey": self._service_role_key,
        }

        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.get(url, headers=headers) as resp:
                    if resp.status != 200:
                        logger.info(f"Token rejected by Supabase (status {resp.status})")
                        raise AuthError("Invalid or expired token")
                    user = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Supabase token verification failed: {e}")
            raise AuthError("Invalid or expired token") from e

        if not isinstance(user, dict) or not user.get("id"):
            raise AuthError("Invalid or expired token")

        return UserIdentity(id=str(user["id"]), email=(user.get("email") or "").lower())

    async def find_user_by_email(self, email: str) -> Optional[UserIdentity]:
        """Look up an auth user by email.

        GoTrue stores emails lower-cased, so the lookup lower-cases its input
        and compares directly, keeping the email index usable.

        Raises:
            StorageError: On database failure
        """
        if not email:
            return None

        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    f"""
                    SELECT id::text AS id, email
                    FROM {self.users_table}
                    WHERE email = $1
                    LIMIT 1
                    """,
                    email.strip().lower(),
                )
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError) as e:
            raise StorageError(f"Identity lookup failed: {e}") from e

        if row is None:
            return None
        return UserIdentity(id=row["id"], email=(row["email"] or "").lower())
