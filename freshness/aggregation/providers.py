"""Upstream flight status providers.

The aggregation service only ever talks to a ``FlightStatusProvider``. The
HTTP provider calls a status relay that already answers in the freshness
record wire shape; translating a vendor payload is the relay's job.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx
from tenacity import before_sleep_log, retry, retry_if_exception_type, stop_after_attempt, wait_fixed

from freshness.core.errors import MalformedDataError, TransientUpstreamError, UpstreamUnavailableError
from freshness.status.record import FreshnessRecord

logger = logging.getLogger(__name__)


class FlightStatusProvider(ABC):
    name: str = "provider"

    @abstractmethod
    async def lookup(self, flight_iata: str, *, scheduled_start: Optional[datetime] = None) -> Optional[FreshnessRecord]:
        """Return the live record for ``flight_iata`` or ``None`` when the flight is unknown."""

    async def close(self) -> None:
        return None


class HttpFlightStatusProvider(FlightStatusProvider):
    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        *,
        name: str = "airlabs",
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.name = name
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
    async def _get(self, params: Dict[str, Any]) -> httpx.Response:
        return await self.client.get(f"{self.base_url}/flight", params=params)

    async def lookup(self, flight_iata: str, *, scheduled_start: Optional[datetime] = None) -> Optional[FreshnessRecord]:
        params: Dict[str, Any] = {"flight_iata": flight_iata}
        if self.api_key:
            params["api_key"] = self.api_key
        if scheduled_start is not None:
            params["date"] = scheduled_start.date().isoformat()

        try:
            response = await self._get(params)
        except httpx.TransportError as exc:
            raise UpstreamUnavailableError(f"Status provider unreachable: {exc}", source=self.name) from exc

        if response.status_code == 404:
            return None
        if response.status_code == 429:
            raise TransientUpstreamError("Status provider throttled the request", source=self.name, status_code=429)
        if response.status_code >= 500:
            raise UpstreamUnavailableError(
                f"Status provider error {response.status_code}", source=self.name, status_code=response.status_code
            )
        if response.status_code >= 400:
            raise TransientUpstreamError(
                f"Status provider rejected lookup ({response.status_code})",
                source=self.name,
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise MalformedDataError(f"Status provider returned invalid JSON for {flight_iata}") from exc

        flight = body.get("response") if isinstance(body, dict) else None
        if not flight:
            logger.info("No flight data found for %s", flight_iata)
            return None
        if not isinstance(flight, dict):
            raise MalformedDataError("Status provider response is not an object", field="response")

        payload = {
            **flight,
            "flight_iata": flight.get("flight_iata") or flight_iata,
            "last_checked": datetime.now(timezone.utc).isoformat(),
            "source": self.name,
        }
        return FreshnessRecord.from_dict(payload)


__all__ = ["FlightStatusProvider", "HttpFlightStatusProvider"]
