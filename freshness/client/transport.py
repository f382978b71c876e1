"""HTTP transports used by the client side.

``AggregationClient`` calls the server aggregation entry point and
``InboxScanClient`` calls the inbox scan job. Both map HTTP failures onto the
freshness error hierarchy so callers never look at status codes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Mapping, Optional

import httpx
from tenacity import before_sleep_log, retry, retry_if_exception_type, stop_after_attempt, wait_fixed

from freshness.core.config import Config
from freshness.core.errors import (
    AuthExpiredError,
    ClientTimeoutError,
    MalformedDataError,
    NotFoundError,
    RateLimitedError,
    TransientUpstreamError,
    UpstreamUnavailableError,
)
from freshness.status.record import FreshnessRecord, parse_timestamp

logger = logging.getLogger(__name__)

# Only failures where the request never reached the server are retried.
_RETRYABLE = (httpx.ConnectError, httpx.ConnectTimeout)


def _retry_after(response: httpx.Response, body: Mapping[str, Any]) -> float:
    value = body.get("retry_after_seconds")
    if value is None:
        value = response.headers.get("Retry-After")
    try:
        return float(value) if value is not None else 0.0
    except (TypeError, ValueError):
        return 0.0


def _json_body(response: httpx.Response) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def raise_for_response(response: httpx.Response, *, account_id: Optional[str] = None) -> None:
    """Translate a non-2xx response into the matching freshness error."""
    if response.is_success:
        return

    body = _json_body(response)
    message = str(body.get("message") or body.get("detail") or response.reason_phrase or "request failed")

    if response.status_code == 429:
        raise RateLimitedError(message, retry_after_seconds=_retry_after(response, body))
    if response.status_code in (401, 403) or body.get("needs_reconnect"):
        raise AuthExpiredError(message, account_id=account_id)
    if response.status_code == 404:
        raise NotFoundError(message)
    if response.status_code >= 500:
        raise UpstreamUnavailableError(message, source="server", status_code=response.status_code)
    raise TransientUpstreamError(message, source="server", status_code=response.status_code)


@dataclass(slots=True)
class AggregationResponse:
    per_entity: Dict[str, FreshnessRecord] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)
    has_more: bool = False
    checked_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "AggregationResponse":
        raw_entities = payload.get("per_entity") or {}
        if not isinstance(raw_entities, Mapping):
            raise MalformedDataError("per_entity must be an object", field="per_entity")

        per_entity: Dict[str, FreshnessRecord] = {}
        for entity_id, raw in raw_entities.items():
            try:
                per_entity[str(entity_id)] = FreshnessRecord.from_dict(raw)
            except MalformedDataError as exc:
                logger.warning("Dropping malformed record for %s: %s", entity_id, exc)

        errors = payload.get("errors") or {}
        return cls(
            per_entity=per_entity,
            errors={str(k): str(v) for k, v in errors.items()} if isinstance(errors, Mapping) else {},
            has_more=bool(payload.get("has_more", False)),
            checked_at=parse_timestamp(payload.get("checked_at")),
        )


class AggregationClient:
    """Calls ``POST /aggregate`` for one owner."""

    def __init__(
        self,
        base_url: str,
        owner_id: str,
        *,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.owner_id = owner_id
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    async def close(self) -> None:
        await self.client.aclose()

    @retry(
        retry=retry_if_exception_type(_RETRYABLE),
        stop=stop_after_attempt(2),
        wait=wait_fixed(1),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _post(self, payload: Dict[str, Any]) -> httpx.Response:
        return await self.client.post(f"{self.base_url}/aggregate", json=payload)

    async def aggregate(self, scope: str = "trip", *, trip_id: Optional[str] = None, reservation_id: Optional[str] = None) -> AggregationResponse:
        payload: Dict[str, Any] = {"owner_id": self.owner_id, "scope": scope}
        if trip_id is not None:
            payload["trip_id"] = trip_id
        if reservation_id is not None:
            payload["reservation_id"] = reservation_id

        try:
            response = await self._post(payload)
        except httpx.TimeoutException as exc:
            raise ClientTimeoutError("Aggregation request timed out", phase="aggregate") from exc
        except httpx.TransportError as exc:
            raise TransientUpstreamError(f"Aggregation request failed: {exc}", source="server") from exc

        raise_for_response(response)
        body = _json_body(response)
        if not body:
            raise MalformedDataError("Aggregation response is not a JSON object")
        return AggregationResponse.from_dict(body)

    async def aggregate_trip(self, trip_id: str) -> AggregationResponse:
        return await self.aggregate("trip", trip_id=trip_id)


@dataclass(slots=True)
class ScanSummary:
    trips_created: int = 0
    reservations_created: int = 0
    emails_processed: int = 0
    has_more: bool = False
    rounds: int = 0

    def add(self, summary: Mapping[str, Any]) -> None:
        self.emails_processed += int(summary.get("emails_processed") or summary.get("emailsProcessed") or 0)
        self.trips_created += int(summary.get("trips_created") or summary.get("tripsCreated") or 0)
        self.reservations_created += int(
            summary.get("reservations_created") or summary.get("reservationsCreated") or 0
        )
        self.has_more = bool(summary.get("has_more", False))
        self.rounds += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trips_created": self.trips_created,
            "reservations_created": self.reservations_created,
            "emails_processed": self.emails_processed,
            "has_more": self.has_more,
            "rounds": self.rounds,
        }


class InboxScanClient:
    """Runs the inbox scan job, continuing while the server reports ``has_more``.

    Each server round is bounded by its own time budget; the client keeps
    calling until the backlog is drained or ``max_rounds`` is reached.
    """

    def __init__(
        self,
        base_url: str,
        *,
        max_rounds: Optional[int] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.max_rounds = max_rounds or int(Config.get("sync", "max_rounds", default=4))
        request_timeout = timeout or float(Config.get("sync", "request_timeout_seconds", default=150))
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(request_timeout))

    async def close(self) -> None:
        await self.client.aclose()

    @retry(
        retry=retry_if_exception_type(_RETRYABLE),
        stop=stop_after_attempt(2),
        wait=wait_fixed(1),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _post(self, account_id: str) -> httpx.Response:
        return await self.client.post(f"{self.base_url}/scan-inbox", json={"account_id": account_id})

    async def scan(
        self,
        account_id: str,
        *,
        on_progress: Optional[Callable[[ScanSummary], None]] = None,
    ) -> ScanSummary:
        summary = ScanSummary()
        for round_number in range(1, self.max_rounds + 1):
            logger.info("[inbox-scan] round %d/%d account=%s", round_number, self.max_rounds, account_id)
            try:
                response = await self._post(account_id)
            except httpx.TimeoutException as exc:
                raise ClientTimeoutError("Inbox scan request timed out", phase="sync") from exc
            except httpx.TransportError as exc:
                raise TransientUpstreamError(f"Inbox scan request failed: {exc}", source="server") from exc

            raise_for_response(response, account_id=account_id)
            body = _json_body(response)
            round_summary = body.get("summary", body)
            if not isinstance(round_summary, Mapping):
                raise MalformedDataError("Inbox scan summary is not an object", field="summary")

            summary.add(round_summary)
            if on_progress is not None:
                on_progress(summary)

            if not summary.has_more:
                logger.info("[inbox-scan] complete after %d round(s)", round_number)
                break
            logger.info("[inbox-scan] has_more=true, continuing to round %d", round_number + 1)

        return summary


__all__ = [
    "AggregationClient",
    "AggregationResponse",
    "InboxScanClient",
    "ScanSummary",
    "raise_for_response",
]
