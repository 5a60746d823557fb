"""Patch and version handling shared by the mission stores."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from missionforce.core.domain.errors import ConcurrencyConflictError
from missionforce.core.utils.time import format_timestamp

PROTECTED_FIELDS = frozenset({"id", "owner_id", "created_at", "version"})


def apply_patch(
    stored: dict[str, Any],
    patch: dict[str, Any],
    *,
    expected_version: int | None,
    now: datetime,
) -> dict[str, Any]:
    """Return the stored record with ``patch`` applied and its version bumped.

    Raises:
        ConcurrencyConflictError: ``expected_version`` does not match.
    """
    current = int(stored.get("version", 0))
    if expected_version is not None and expected_version != current:
        raise ConcurrencyConflictError(
            f"Mission {stored.get('id')} changed concurrently "
            f"(expected version {expected_version}, found {current})",
            details={
                "mission_id": stored.get("id"),
                "expected_version": expected_version,
                "actual_version": current,
            },
        )
    updated = dict(stored)
    updated.update({k: v for k, v in patch.items() if k not in PROTECTED_FIELDS})
    updated["version"] = current + 1
    updated["updated_at"] = format_timestamp(now)
    return updated
