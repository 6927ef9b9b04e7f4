"""Shared utilities used across the booking engine."""

import uuid
from datetime import datetime, timezone


def generate_ref(prefix: str) -> str:
    """Generate a short, human-readable identifier.

    Examples:
        >>> generate_ref("BK").startswith("BK-")
        True
    """
    return f"{prefix}-{uuid.uuid4().hex[:10].upper()}"


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)
