"""Mobile push delivery for flight change notifications."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx
from tenacity import before_sleep_log, retry, retry_if_exception_type, stop_after_attempt, wait_fixed

from freshness.core.errors import TransientUpstreamError

logger = logging.getLogger(__name__)

EXPO_PUSH_URL = "https://exp.host/--/api/v2/push/send"


class PushClient(ABC):
    @abstractmethod
    async def send(self, messages: List[Dict[str, Any]]) -> None:
        """Deliver a batch of push messages. Raises ``TransientUpstreamError`` on failure."""

    async def close(self) -> None:
        return None


class ExpoPushClient(PushClient):
    """Sends message batches to the Expo push API (one POST per batch)."""

    def __init__(
        self,
        url: str = EXPO_PUSH_URL,
        *,
        access_token: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.url = url
        self.access_token = access_token
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    async def close(self) -> None:
        await self.client.aclose()

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(2),
        wait=wait_fixed(1),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _post(self, messages: List[Dict[str, Any]]) -> httpx.Response:
        headers = {"Accept": "application/json"}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return await self.client.post(self.url, json=messages, headers=headers)

    async def send(self, messages: List[Dict[str, Any]]) -> None:
        if not messages:
            return
        try:
            response = await self._post(messages)
        except httpx.TransportError as exc:
            raise TransientUpstreamError(f"Push service unreachable: {exc}", source="push") from exc

        if not response.is_success:
            raise TransientUpstreamError(
                f"Push service rejected batch ({response.status_code})",
                source="push",
                status_code=response.status_code,
            )
        logger.info("Sent %d push notification(s)", len(messages))


__all__ = ["PushClient", "ExpoPushClient", "EXPO_PUSH_URL"]
