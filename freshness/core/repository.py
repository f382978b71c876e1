"""
Reservation storage - Data Access Layer

Every path that reads flight reservations or writes freshness records goes
through a ``ReservationStore``. ``MongoReservationStore`` backs the server;
``InMemoryReservationStore`` serves tests and single-process tooling.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from freshness.status.codec import encode, storage_update
from freshness.status.record import FreshnessRecord
from models.notification import Notification, NotificationPreferences
from models.reservation import FLIGHT_TYPE, Trip, WatchedEntity

logger = logging.getLogger(__name__)


class ReservationStore(ABC):
    @abstractmethod
    async def get_trip(self, trip_id: str) -> Optional[Trip]:
        ...

    @abstractmethod
    async def get_reservation(self, reservation_id: str) -> Optional[WatchedEntity]:
        ...

    @abstractmethod
    async def list_flights_for_trip(self, trip_id: str) -> List[WatchedEntity]:
        ...

    @abstractmethod
    async def list_flights_in_window(
        self,
        start: datetime,
        end: datetime,
        *,
        owner_id: Optional[str] = None,
    ) -> List[WatchedEntity]:
        """Flights whose scheduled start lies in ``[start, end]``, owner resolved via the trip."""

    @abstractmethod
    async def save_freshness(self, reservation_id: str, record: FreshnessRecord) -> None:
        """Replace the reservation's freshness record, leaving other details untouched."""


class LastSyncStore(ABC):
    @abstractmethod
    async def get_last_sync(self, account_id: str) -> Optional[datetime]:
        ...

    @abstractmethod
    async def set_last_sync(self, account_id: str, timestamp: datetime) -> None:
        ...


class NotificationStore(ABC):
    @abstractmethod
    async def get_preferences(self, owner_id: str) -> NotificationPreferences:
        ...

    @abstractmethod
    async def get_push_token(self, owner_id: str) -> Optional[str]:
        ...

    @abstractmethod
    async def save_notifications(self, notifications: List[Notification]) -> None:
        ...


class InMemoryReservationStore(ReservationStore):
    def __init__(self, trips: Iterable[Trip] = (), reservations: Iterable[WatchedEntity] = ()) -> None:
        self._trips: Dict[str, Trip] = {trip.id: trip for trip in trips}
        self._reservations: Dict[str, WatchedEntity] = {}
        for reservation in reservations:
            self.add_reservation(reservation)

    def add_trip(self, trip: Trip) -> None:
        self._trips[trip.id] = trip

    def add_reservation(self, reservation: WatchedEntity) -> None:
        self._reservations[reservation.id] = reservation

    def _with_owner(self, entity: WatchedEntity) -> WatchedEntity:
        trip = self._trips.get(entity.trip_id)
        if trip is not None and entity.owner_id != trip.owner_id:
            entity.owner_id = trip.owner_id
        return entity

    async def get_trip(self, trip_id: str) -> Optional[Trip]:
        return self._trips.get(trip_id)

    async def get_reservation(self, reservation_id: str) -> Optional[WatchedEntity]:
        entity = self._reservations.get(reservation_id)
        return self._with_owner(entity) if entity else None

    async def list_flights_for_trip(self, trip_id: str) -> List[WatchedEntity]:
        flights = [
            self._with_owner(entity)
            for entity in self._reservations.values()
            if entity.trip_id == trip_id and entity.type == FLIGHT_TYPE
        ]
        return sorted(flights, key=lambda entity: entity.start_time)

    async def list_flights_in_window(
        self,
        start: datetime,
        end: datetime,
        *,
        owner_id: Optional[str] = None,
    ) -> List[WatchedEntity]:
        matches = []
        for entity in self._reservations.values():
            if entity.type != FLIGHT_TYPE or not (start <= entity.start_time <= end):
                continue
            entity = self._with_owner(entity)
            if entity.owner_id is None:
                continue
            if owner_id is not None and entity.owner_id != owner_id:
                continue
            matches.append(entity)
        return sorted(matches, key=lambda entity: entity.start_time)

    async def save_freshness(self, reservation_id: str, record: FreshnessRecord) -> None:
        entity = self._reservations.get(reservation_id)
        if entity is None:
            logger.warning("Cannot store freshness for unknown reservation %s", reservation_id)
            return
        entity.details = encode(entity, record)


class InMemoryLastSyncStore(LastSyncStore):
    def __init__(self) -> None:
        self._last_sync: Dict[str, datetime] = {}

    async def get_last_sync(self, account_id: str) -> Optional[datetime]:
        return self._last_sync.get(account_id)

    async def set_last_sync(self, account_id: str, timestamp: datetime) -> None:
        self._last_sync[account_id] = timestamp


class InMemoryNotificationStore(NotificationStore):
    def __init__(
        self,
        preferences: Optional[Dict[str, NotificationPreferences]] = None,
        push_tokens: Optional[Dict[str, str]] = None,
    ) -> None:
        self.preferences = dict(preferences or {})
        self.push_tokens = dict(push_tokens or {})
        self.notifications: List[Notification] = []

    async def get_preferences(self, owner_id: str) -> NotificationPreferences:
        return self.preferences.get(owner_id) or NotificationPreferences()

    async def get_push_token(self, owner_id: str) -> Optional[str]:
        return self.push_tokens.get(owner_id)

    async def save_notifications(self, notifications: List[Notification]) -> None:
        self.notifications.extend(notifications)


class MongoReservationStore(ReservationStore):
    def __init__(self, db) -> None:
        self._db = db
        self._reservations = db["reservations"]
        self._trips = db["trips"]

    @staticmethod
    def _to_entity(doc: Dict, owner_id: Optional[str] = None) -> WatchedEntity:
        payload = dict(doc)
        payload.setdefault("id", str(doc.get("_id")))
        if owner_id is not None:
            payload["owner_id"] = owner_id
        return WatchedEntity.from_dict(payload)

    async def _owners_for(self, trip_ids: Iterable[str]) -> Dict[str, str]:
        ids = list({trip_id for trip_id in trip_ids if trip_id})
        if not ids:
            return {}
        cursor = self._trips.find({"_id": {"$in": ids}}, {"owner_id": 1})
        return {str(doc["_id"]): str(doc["owner_id"]) async for doc in cursor if doc.get("owner_id")}

    async def get_trip(self, trip_id: str) -> Optional[Trip]:
        doc = await self._trips.find_one({"_id": trip_id})
        return Trip.from_dict(doc) if doc else None

    async def get_reservation(self, reservation_id: str) -> Optional[WatchedEntity]:
        doc = await self._reservations.find_one({"_id": reservation_id})
        if not doc:
            return None
        owners = await self._owners_for([doc.get("trip_id")])
        return self._to_entity(doc, owners.get(doc.get("trip_id")))

    async def list_flights_for_trip(self, trip_id: str) -> List[WatchedEntity]:
        owners = await self._owners_for([trip_id])
        cursor = self._reservations.find({"trip_id": trip_id, "type": FLIGHT_TYPE}).sort("start_time", 1)
        return [self._to_entity(doc, owners.get(trip_id)) async for doc in cursor]

    async def list_flights_in_window(
        self,
        start: datetime,
        end: datetime,
        *,
        owner_id: Optional[str] = None,
    ) -> List[WatchedEntity]:
        query: Dict = {"type": FLIGHT_TYPE, "start_time": {"$gte": start, "$lte": end}}
        if owner_id is not None:
            trip_ids = [str(doc["_id"]) async for doc in self._trips.find({"owner_id": owner_id}, {"_id": 1})]
            if not trip_ids:
                return []
            query["trip_id"] = {"$in": trip_ids}

        docs = [doc async for doc in self._reservations.find(query).sort("start_time", 1)]
        owners = await self._owners_for(doc.get("trip_id") for doc in docs)

        entities = []
        for doc in docs:
            owner = owners.get(doc.get("trip_id"))
            if owner is None:
                logger.debug("Skipping reservation %s with no owning trip", doc.get("_id"))
                continue
            entities.append(self._to_entity(doc, owner))
        return entities

    async def save_freshness(self, reservation_id: str, record: FreshnessRecord) -> None:
        update = storage_update(record)
        update["updated_at"] = datetime.now(timezone.utc)
        await self._reservations.update_one({"_id": reservation_id}, {"$set": update})


class MongoNotificationStore(NotificationStore):
    def __init__(self, db) -> None:
        self._notifications = db["notifications"]
        self._preferences = db["notification_preferences"]
        self._profiles = db["profiles"]

    async def get_preferences(self, owner_id: str) -> NotificationPreferences:
        doc = await self._preferences.find_one({"owner_id": owner_id})
        return NotificationPreferences.from_dict(doc)

    async def get_push_token(self, owner_id: str) -> Optional[str]:
        doc = await self._profiles.find_one({"_id": owner_id}, {"push_token": 1})
        return doc.get("push_token") if doc else None

    async def save_notifications(self, notifications: List[Notification]) -> None:
        if notifications:
            await self._notifications.insert_many([notification.to_dict() for notification in notifications])


__all__ = [
    "ReservationStore",
    "LastSyncStore",
    "InMemoryReservationStore",
    "InMemoryLastSyncStore",
    "MongoReservationStore",
    "NotificationStore",
    "InMemoryNotificationStore",
    "MongoNotificationStore",
]
