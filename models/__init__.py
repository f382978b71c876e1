"""Model exports for the itinerary freshness backend."""

from .notification import Notification, NotificationPreferences
from .reservation import FLIGHT_TYPE, Trip, WatchedEntity, flights_only

__all__ = [
    "FLIGHT_TYPE",
    "Notification",
    "NotificationPreferences",
    "Trip",
    "WatchedEntity",
    "flights_only",
]
