"""Risk scanning for proposed replies.

Any flag returned here forces a human to look at the reply before it is sent,
regardless of the autopilot rules.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from missionforce.core.domain.enums import RiskFlag

_MONEY = re.compile(
    r"(?:[$€£]\s?\d[\d,.]*|\b\d[\d,.]*\s?(?:usd|eur|gbp|dollars?|euros?|pounds?)\b|\bwire transfer\b)",
    re.IGNORECASE,
)
_LEGAL = re.compile(
    r"\b(?:lawsuit|attorney|lawyer|litigation|legal action|subpoena|indemnif\w*|liabilit\w*|breach of)\b",
    re.IGNORECASE,
)
_MEDICAL = re.compile(
    r"\b(?:diagnos\w*|prescription|medical|patient|symptom\w*|treatment|hospital)\b",
    re.IGNORECASE,
)
_ADDRESS = re.compile(r"[\w.+-]+@([\w-]+(?:\.[\w-]+)+)")


def email_domain(address: str) -> str | None:
    match = _ADDRESS.search(address or "")
    return match.group(1).lower() if match else None


def normalize_address(address: str) -> str:
    """Bare lowercase address from ``"Name <a@b.c>"`` or ``"a@b.c"``."""
    match = _ADDRESS.search(address or "")
    return match.group(0).lower() if match else (address or "").strip().lower()


def scan_reply(
    recipients: Iterable[str],
    subject: str,
    body: str,
    *,
    known_participants: Iterable[str] = (),
    owner_domain: str | None = None,
    large_recipient_threshold: int = 5,
) -> list[RiskFlag]:
    """Flags for a proposed reply, in taxonomy order."""
    recipients = [normalize_address(r) for r in recipients if r]
    known = {normalize_address(p) for p in known_participants if p}
    text = f"{subject}\n{body}"
    flags: list[RiskFlag] = []

    if any(r not in known for r in recipients):
        flags.append(RiskFlag.NEW_RECIPIENT)
    if owner_domain and any(
        email_domain(r) not in (None, owner_domain.lower()) for r in recipients
    ):
        flags.append(RiskFlag.EXTERNAL_DOMAIN)
    if _MONEY.search(text):
        flags.append(RiskFlag.MENTIONS_MONEY)
    if _LEGAL.search(text):
        flags.append(RiskFlag.MENTIONS_LEGAL)
    if _MEDICAL.search(text):
        flags.append(RiskFlag.MENTIONS_MEDICAL)
    if len(recipients) > large_recipient_threshold:
        flags.append(RiskFlag.LARGE_RECIPIENT_LIST)
    return flags


def merge_flags(*groups: Iterable[RiskFlag]) -> list[RiskFlag]:
    """Union of flag groups, ordered as in :class:`RiskFlag`."""
    seen = {flag for group in groups for flag in group}
    return [flag for flag in RiskFlag if flag in seen]
