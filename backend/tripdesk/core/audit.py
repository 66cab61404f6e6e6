# backend/tripdesk/core/audit.py

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.types import ASGIApp

from tripdesk.core.security import decode_token
from tripdesk.db.prisma_client import get_client

logger = logging.getLogger(__name__)


class AuditLogMiddleware(BaseHTTPMiddleware):
    """Persist one ``audit_logs`` row per authenticated request."""

    def __init__(self, app: ASGIApp, prisma_client: Any | None = None) -> None:
        super().__init__(app)
        self._prisma = prisma_client

    @asynccontextmanager
    async def _prisma_session(self) -> AsyncIterator[Any]:
        prisma = self._prisma if self._prisma is not None else get_client()
        should_disconnect = False
        if not prisma.is_connected():
            await prisma.connect()
            should_disconnect = True
        try:
            yield prisma
        finally:
            if should_disconnect:
                await prisma.disconnect()

    @staticmethod
    def _token_from(request: Request) -> Optional[str]:
        auth_header = request.headers.get("authorization")
        if auth_header and auth_header.startswith("Bearer "):
            return auth_header[7:]
        return request.cookies.get("accessToken")

    async def dispatch(self, request: Request, call_next):
        start_time = time.perf_counter()
        response = await call_next(request)
        latency_ms = (time.perf_counter() - start_time) * 1000

        token = self._token_from(request)
        if not token:
            return response

        try:
            payload = decode_token(token)
        except Exception:
            logger.debug("Skipping audit entry for undecodable token on %s", request.url.path)
            return response

        user_id = payload.get("sub") if isinstance(payload, dict) else None
        if not user_id:
            return response

        try:
            async with self._prisma_session() as prisma:
                await prisma.auditlog.create(
                    data={
                        "action": f"{request.method} {request.url.path}",
                        "user_id": user_id,
                        "latency_ms": latency_ms,
                        "client_ip": request.client.host if request.client else None,
                        "user_agent": request.headers.get("user-agent"),
                    }
                )
        except Exception:
            logger.exception("Failed to persist audit log entry")

        return response
