"""Forward-only migration runner and schema version helper."""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import asyncpg

from membersync.db.models import Table
from membersync.db.pool import close_pool, get_pool

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"

# Advisory lock key held while migrations run
MIGRATION_LOCK_ID = 742_001


async def _ensure_migrations_table(conn: asyncpg.Connection) -> None:
    """Ensure schema_migrations table exists."""
    await conn.execute(f"""
        CREATE TABLE IF NOT EXISTS {Table.SCHEMA_MIGRATIONS} (
            version INTEGER PRIMARY KEY,
            filename TEXT NOT NULL DEFAULT '',
            applied_at TIMESTAMPTZ DEFAULT now()
        )
    """)


def pending_migrations(migrations_dir: Path, applied: set[int]) -> list[tuple[int, Path]]:
    """
    List migration files not yet applied, ordered by version.

    Files are named ``NNN_description.sql``; anything without a numeric
    prefix is ignored.
    """
    pending = []
    for sql_file in migrations_dir.glob("*.sql"):
        try:
            version = int(sql_file.stem.split("_")[0])
        except ValueError:
            continue
        if version not in applied:
            pending.append((version, sql_file))
    return sorted(pending, key=lambda item: item[0])


async def migrate(migrations_dir: Path = MIGRATIONS_DIR) -> int:
    """
    Apply all pending migrations in order, each in its own transaction.

    An advisory lock keeps two processes from migrating at once.

    Returns:
        int: Number of migrations applied in this run

    Raises:
        FileNotFoundError: If migrations directory not found
        RuntimeError: If another migration run holds the lock
        asyncpg.PostgresError: On database errors
    """
    if not migrations_dir.is_dir():
        raise FileNotFoundError(f"Migrations directory not found: {migrations_dir}")

    pool = await get_pool()
    applied_count = 0

    async with pool.acquire() as conn:
        if not await conn.fetchval("SELECT pg_try_advisory_lock($1)", MIGRATION_LOCK_ID):
            raise RuntimeError(
                "Another migration is currently running. "
                "Wait for it to complete and try again."
            )

        try:
            await _ensure_migrations_table(conn)
            rows = await conn.fetch(f"SELECT version FROM {Table.SCHEMA_MIGRATIONS}")
            applied = {row["version"] for row in rows}

            for version, sql_path in pending_migrations(migrations_dir, applied):
                async with conn.transaction():
                    # Simple-query protocol: multiple statements per call are allowed
                    await conn.execute(sql_path.read_text(encoding="utf-8"))
                    await conn.execute(
                        f"INSERT INTO {Table.SCHEMA_MIGRATIONS} (version, filename) VALUES ($1, $2)",
                        version,
                        sql_path.name,
                    )
                applied_count += 1
                logger.info(f"Applied migration {version:03d}: {sql_path.name}")

            return applied_count

        finally:
            await conn.execute("SELECT pg_advisory_unlock($1)", MIGRATION_LOCK_ID)


async def schema_version() -> Optional[int]:
    """
    Get the highest applied migration version.

    Returns:
        int: Highest applied version number, or None if no migrations applied
    """
    pool = await get_pool()

    async with pool.acquire() as conn:
        await _ensure_migrations_table(conn)
        return await conn.fetchval(f"SELECT MAX(version) FROM {Table.SCHEMA_MIGRATIONS}")


def main() -> None:
    """CLI entry point for running migrations."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    async def _run():
        try:
            applied = await migrate()
            version = await schema_version()
        finally:
            await close_pool()

        if applied == 0:
            print(f"No pending migrations. Current schema version: {version}")
        else:
            print(f"Applied {applied} migration(s). Current schema version: {version}")

    asyncio.run(_run())


if __name__ == "__main__":
    main()
