"""FastAPI surface for the aggregation entry point."""
