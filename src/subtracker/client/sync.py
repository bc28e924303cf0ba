"""Sync payloads and delivery targets.

Learn: The session manager only gathers, timestamps and records a sync.
Delivery is a pluggable SyncTarget with a single coroutine,
push(payload) -> SyncResult, so the gathering logic can be tested
without a network:
- LoggingSyncTarget: logs the payload, delivers nothing (default)
- HttpSyncTarget: POSTs the payload as JSON with httpx
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

import httpx
import structlog

from subtracker.client.profile import ClientModel

logger = structlog.get_logger()


class SyncPayload(ClientModel):
    user_id: str
    timestamp: datetime
    data: dict[str, Any]


@dataclass
class SyncResult:
    delivered: bool
    status_code: Optional[int] = None
    error: Optional[str] = None


class SyncTarget:
    async def push(self, payload: SyncPayload) -> SyncResult:
        raise NotImplementedError


class LoggingSyncTarget(SyncTarget):
    """No remote store configured: record what would have been sent."""

    async def push(self, payload: SyncPayload) -> SyncResult:
        logger.info(
            "sync.payload_not_delivered",
            user_id=payload.user_id,
            buckets={name: len(value) for name, value in payload.data.items()},
        )
        return SyncResult(delivered=False, error="No sync target configured")


class HttpSyncTarget(SyncTarget):
    def __init__(
        self,
        url: str,
        token: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.token = token
        self.timeout = timeout
        self.transport = transport

    async def push(self, payload: SyncPayload) -> SyncResult:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self.transport
            ) as client:
                r = await client.post(self.url, json=payload.to_json(), headers=headers)
        except httpx.HTTPError as e:
            return SyncResult(delivered=False, error=str(e))

        if r.is_success:
            return SyncResult(delivered=True, status_code=r.status_code)
        return SyncResult(
            delivered=False,
            status_code=r.status_code,
            error=f"Sync endpoint answered {r.status_code}",
        )
