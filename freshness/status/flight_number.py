"""Flight number extraction from free-form reservation text."""

from __future__ import annotations

import re
from typing import Optional

from models.reservation import WatchedEntity

_IATA_EXACT = re.compile(r"^([A-Z0-9]{2})\s*-?\s*(\d{1,4})$")
_IATA_PARTIAL = re.compile(r"\b([A-Z]{2})\s*-?\s*(\d{1,4})\b")
_ICAO_EXACT = re.compile(r"^([A-Z]{3})\s*(\d{1,4})$")

_DETAIL_KEYS = ("Flight Number", "Flight", "flight_iata", "flight_number")


def extract_flight_number(text: Optional[str]) -> Optional[str]:
    """Return a compact flight number such as ``AA182``, or ``None``."""
    if not text:
        return None
    cleaned = text.strip().upper()

    match = _IATA_EXACT.match(cleaned)
    if match:
        return f"{match.group(1)}{match.group(2)}"

    match = _IATA_PARTIAL.search(cleaned)
    if match:
        return f"{match.group(1)}{match.group(2)}"

    match = _ICAO_EXACT.match(cleaned)
    if match:
        return f"{match.group(1)}{match.group(2)}"

    return None


def flight_number_for(entity: WatchedEntity) -> Optional[str]:
    for key in _DETAIL_KEYS:
        value = entity.details.get(key)
        if value:
            found = extract_flight_number(str(value))
            if found:
                return found
    for text in (entity.title, entity.subtitle):
        found = extract_flight_number(text)
        if found:
            return found
    return None


__all__ = ["extract_flight_number", "flight_number_for"]
