# backend/tripdesk/db/prisma_client.py
# Holds the shared Prisma client. The generated client is imported lazily so
# that modules can be imported before ``prisma generate`` has run.
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, AsyncIterator

from tripdesk.core.config import settings

if TYPE_CHECKING:  # pragma: no cover
    from prisma import Prisma

logger = logging.getLogger(__name__)

_client: Any = None


def get_client() -> "Prisma":
    global _client
    if _client is None:
        from prisma import Prisma

        datasource = {"url": settings.database_url} if settings.database_url else None
        _client = Prisma(datasource=datasource)
    return _client


def set_client(client: Any) -> None:
    """Replace the shared client, mainly for scripts and tests."""
    global _client
    _client = client


async def connect() -> None:
    client = get_client()
    if not client.is_connected():
        await client.connect()
        logger.info("Connected to database")


async def disconnect() -> None:
    if _client is not None and _client.is_connected():
        await _client.disconnect()
        logger.info("Disconnected from database")


async def get_db() -> AsyncIterator["Prisma"]:
    await connect()
    yield get_client()
