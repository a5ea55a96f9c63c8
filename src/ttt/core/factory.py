"""
Client selection for CLI commands.

Commands ask for a StoreClient and never care which one they get: the daemon
proxy is preferred because it skips the connect-and-sync cost, and a direct
connection is the fallback whenever the daemon cannot be reached.
"""

import logging
from typing import Awaitable, Callable, Optional, TypeVar

from ..config import Settings, settings as default_settings
from ..errors import ConnectionClosedError, TttError
from .interfaces import StoreClient
from .store import DirectStoreClient

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def get_direct_client(settings: Optional[Settings] = None) -> StoreClient:
    client = DirectStoreClient(settings or default_settings)
    await client.connect()
    return client


async def get_client(settings: Optional[Settings] = None) -> StoreClient:
    """Connect through the daemon if possible, otherwise directly."""
    settings = settings or default_settings

    if settings.daemon_enabled:
        from ..daemon.client import DaemonClient

        daemon = DaemonClient(settings)
        try:
            await daemon.connect()
            return daemon
        except (TttError, OSError) as e:
            logger.debug(f"Daemon unavailable, falling back to direct connection: {e}")
            await daemon.disconnect()

    return await get_direct_client(settings)


async def run_with_client(
    operation: Callable[[StoreClient], Awaitable[T]],
    settings: Optional[Settings] = None,
) -> T:
    """
    Run `operation` against a connected client and disconnect afterwards.

    If the daemon connection drops mid-operation, the operation is retried
    once over a direct connection.
    """
    settings = settings or default_settings
    client = await get_client(settings)
    try:
        return await operation(client)
    except ConnectionClosedError as e:
        if isinstance(client, DirectStoreClient):
            raise
        logger.warning(f"Daemon connection lost ({e}), retrying with a direct connection")
    finally:
        await client.disconnect()

    direct = await get_direct_client(settings)
    try:
        return await operation(direct)
    finally:
        await direct.disconnect()
