"""Data-freshness subsystem for the itinerary backend."""

__version__ = "1.0.0"
