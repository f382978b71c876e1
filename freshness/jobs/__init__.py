"""Scheduled server-side jobs."""
