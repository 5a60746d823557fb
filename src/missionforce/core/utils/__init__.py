"""
Core utilities module.

Provides shared utility functions used across all layers.
"""

from missionforce.core.utils.time import (
    days_between,
    local_hour,
    parse_timestamp,
    utc_now,
)

__all__ = ["days_between", "local_hour", "parse_timestamp", "utc_now"]
