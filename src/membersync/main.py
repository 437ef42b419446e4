"""Application entry point."""

import asyncio
import logging
import signal
import sys

from membersync.config import get_config
from membersync.db import close_pool, get_pool
from membersync.memberships.server import build_services, create_app, run_server


async def serve(shutdown_event: asyncio.Event) -> None:
    """
    Boot sequence: load config → open pool → serve HTTP → close pool.

    Raises:
        SystemExit: On configuration or database errors
    """
    logger = logging.getLogger(__name__)

    try:
        config = get_config()
        logger.info(f"Configuration loaded: env={config.env}")
        pool = await get_pool(config)
    except Exception as e:
        logger.error(f"Boot sequence failed: {e}")
        raise SystemExit(1) from e

    try:
        app = create_app(build_services(config, pool))
        await run_server(
            app,
            config.webhook_server_host,
            config.webhook_server_port,
            shutdown_event=shutdown_event,
        )
    finally:
        await close_pool()
        logger.info("Application shutdown complete")


def main() -> None:
    """Run the service until SIGTERM/SIGINT."""
    config = get_config()
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    async def _run():
        shutdown_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, shutdown_event.set)
        await serve(shutdown_event)

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        sys.exit(0)
    except SystemExit:
        raise
    except Exception as e:
        logging.error(f"Unexpected error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
