"""Read and write the freshness record embedded in a reservation's ``details`` bag.

The reserved key is owned by this module alone; the rest of the bag belongs to
whoever else writes reservations and is copied through untouched.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from freshness.core.errors import MalformedDataError
from freshness.status.record import FreshnessRecord
from models.reservation import WatchedEntity

logger = logging.getLogger(__name__)

RESERVED_KEY = "_flight_status"


def decode(entity: WatchedEntity) -> Optional[FreshnessRecord]:
    """Return the cached record, or ``None`` when absent or malformed."""
    details = entity.details if isinstance(entity.details, dict) else {}
    raw = details.get(RESERVED_KEY)
    if raw is None:
        return None
    try:
        return FreshnessRecord.from_dict(raw)
    except (MalformedDataError, ValueError, TypeError) as exc:
        logger.warning("Ignoring malformed freshness cache on %s: %s", entity.id, exc)
        return None


def encode(entity: WatchedEntity, record: FreshnessRecord) -> Dict[str, Any]:
    """Return a new details bag with the reserved key replaced wholesale."""
    details = dict(entity.details) if isinstance(entity.details, dict) else {}
    details[RESERVED_KEY] = record.to_dict()
    return details


def apply(entity: WatchedEntity, record: FreshnessRecord) -> WatchedEntity:
    return entity.with_details(encode(entity, record))


def storage_update(record: FreshnessRecord, *, prefix: str = "details") -> Dict[str, Any]:
    """Field-path update replacing only the reserved key of a stored bag."""
    return {f"{prefix}.{RESERVED_KEY}": record.to_dict()}


def has_record(entity: WatchedEntity) -> bool:
    return entity.is_flight and decode(entity) is not None


__all__ = ["RESERVED_KEY", "decode", "encode", "apply", "storage_update", "has_record"]
