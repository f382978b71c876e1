"""Inbox and push notifications for significant flight changes.

Only ``warning`` and ``critical`` changes notify. Inbox rows are always
written; push delivery honours the owner's ``flight_updates`` preference and
needs a registered push token.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from freshness.core.errors import TransientUpstreamError
from freshness.core.repository import NotificationStore
from freshness.notifications.push import PushClient
from freshness.status.changes import CRITICAL, INFO, FlightChange, most_severe
from models.notification import CONFIRMATION, DELAY, GATE_CHANGE, Notification
from models.reservation import WatchedEntity

logger = logging.getLogger(__name__)

_NOTIFICATION_TYPES = {
    "gate_change": GATE_CHANGE,
    "terminal_change": GATE_CHANGE,
    "delay_change": DELAY,
    "time_change": DELAY,
    "cancellation": DELAY,
    "diversion": DELAY,
}


def build_notifications(
    owner_id: str,
    entity: WatchedEntity,
    flight_iata: str,
    changes: List[FlightChange],
) -> List[Notification]:
    label = entity.title or flight_iata
    return [
        Notification(
            owner_id=owner_id,
            type=_NOTIFICATION_TYPES.get(change.type, CONFIRMATION),
            title=f"{flight_iata}: {change.message}",
            message=f"{label}: {change.message}",
            trip_id=entity.trip_id,
            reservation_id=entity.id,
            severity=change.severity,
        )
        for change in changes
        if change.severity != INFO
    ]


def build_push_messages(
    token: str,
    entity: WatchedEntity,
    notifications: List[Notification],
    changes: List[FlightChange],
) -> List[Dict[str, Any]]:
    top = most_severe(changes)
    critical = top is not None and top.severity == CRITICAL
    messages = []
    for notification in notifications:
        message: Dict[str, Any] = {
            "to": token,
            "title": notification.title,
            "body": notification.message,
            "data": {"tripId": entity.trip_id, "reservationId": entity.id, "type": "flight_update"},
            "sound": "default",
            "priority": "high",
        }
        if critical:
            # Cancellations and diversions bypass silent mode on Android.
            message["channelId"] = "critical"
        messages.append(message)
    return messages


class ChangeNotifier:
    def __init__(self, store: NotificationStore, push: Optional[PushClient] = None) -> None:
        self.store = store
        self.push = push

    async def close(self) -> None:
        if self.push is not None:
            await self.push.close()

    async def notify(
        self,
        owner_id: str,
        entity: WatchedEntity,
        flight_iata: str,
        changes: List[FlightChange],
    ) -> List[Notification]:
        """Record and push the significant ``changes``; returns the inbox rows written."""
        notifications = build_notifications(owner_id, entity, flight_iata, changes)
        if not notifications:
            return []

        await self.store.save_notifications(notifications)

        if self.push is None:
            return notifications

        preferences = await self.store.get_preferences(owner_id)
        if not preferences.flight_updates:
            logger.info("[notify] push disabled for owner=%s, inbox only", owner_id)
            return notifications

        token = await self.store.get_push_token(owner_id)
        if not token:
            logger.debug("[notify] owner=%s has no push token", owner_id)
            return notifications

        try:
            await self.push.send(build_push_messages(token, entity, notifications, changes))
        except TransientUpstreamError as exc:
            logger.warning("[notify] push failed for owner=%s entity=%s: %s", owner_id, entity.id, exc)
        return notifications


__all__ = ["ChangeNotifier", "build_notifications", "build_push_messages"]
