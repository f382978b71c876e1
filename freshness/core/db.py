"""
MongoDB Database Connection and Collections

This module provides the async MongoDB client and collection references
shared by the aggregation service, the fan-out job and change notifications.
"""

import logging
import os
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING

from freshness.core.config import Config

logger = logging.getLogger(__name__)

_client: Optional[AsyncIOMotorClient] = None
_db = None


def get_mongo_uri() -> str:
    """Get MongoDB URI from environment"""
    uri = os.getenv("MONGO_URI") or os.getenv("MONGODB_URI") or os.getenv("MONGODB_URL")
    if not uri:
        logger.error("MongoDB environment variable (MONGO_URI, MONGODB_URI, or MONGODB_URL) not set!")
        raise ValueError("MongoDB connection string is required in environment variables")
    return uri


def get_client() -> AsyncIOMotorClient:
    """Get MongoDB client (singleton)"""
    global _client
    if _client is None:
        _client = AsyncIOMotorClient(get_mongo_uri(), tz_aware=True)
        logger.info("MongoDB client initialized")
    return _client


def get_db():
    global _db
    if _db is None:
        name = Config.get("storage", "database", default="itinerary")
        _db = get_client()[name]
        logger.info("Connected to %s database", name)
    return _db


def get_reservations_col():
    return get_db()["reservations"]


def get_trips_col():
    return get_db()["trips"]


def get_notifications_col():
    return get_db()["notifications"]


def get_notification_preferences_col():
    return get_db()["notification_preferences"]


async def init_indexes():
    """Create the indexes the fan-out window query and trip lookups rely on."""
    logger.info("Creating MongoDB indexes...")

    reservations = get_reservations_col()
    await reservations.create_index([("type", ASCENDING), ("start_time", ASCENDING)])
    await reservations.create_index("trip_id")

    trips = get_trips_col()
    await trips.create_index("owner_id")

    notifications = get_notifications_col()
    await notifications.create_index([("owner_id", ASCENDING), ("created_at", ASCENDING)])

    preferences = get_notification_preferences_col()
    await preferences.create_index("owner_id", unique=True)
    logger.info("MongoDB indexes created")


async def close_client() -> None:
    global _client, _db
    if _client is not None:
        _client.close()
        _client = None
        _db = None
