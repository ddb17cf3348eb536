"""
Utility helpers for the curriculum coach

Simple utility functions for ID and filename generation.
"""

import uuid
from datetime import datetime


def generate_session_id(short=True):
    """
    Generate unique authoring-session identifier

    Args:
        short (bool): If True, return 8-char hex. If False, return full UUID.

    Returns:
        str: Session ID

    Examples:
        >>> generate_session_id()
        'a3f7e2b9'

        >>> generate_session_id(short=False)
        'a3f7e2b9c1d2e3f4a5b6c7d8e9f0a1b2'
    """
    full_id = uuid.uuid4().hex
    return full_id[:8] if short else full_id


def generate_session_filename(prefix="blueprint", extension="json"):
    """
    Generate timestamped filename with unique ID

    Format: {prefix}_{YYYYMMDD_HHMMSS}_{short_uuid}.{extension}

    Examples:
        >>> generate_session_filename()
        'blueprint_20251126_153045_a3f7e2b9.json'

        >>> generate_session_filename(prefix="trace")
        'trace_20251126_153045_b4c8d1e2.json'
    """
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    short_id = generate_session_id(short=True)
    return f"{prefix}_{timestamp}_{short_id}.{extension}"
