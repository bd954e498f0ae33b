"""Timestamp helpers."""

import pendulum


def get_timestamp() -> str:
    """Get current timestamp in ISO 8601 format."""
    return pendulum.now("UTC").to_iso8601_string()
