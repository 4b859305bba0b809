"""
backend/pitchside/services/audit_service.py

Purpose:
    Append-only trail of lifecycle decisions: sessions opening and closing,
    reservations confirmed, matches started, finalized or cancelled, booking
    payments, and the MVP vote result. Entries are only ever inserted;
    nothing here updates or removes them.

Dependencies:
    - ipaddress
    - pitchside.database
"""

import ipaddress
import logging
from typing import Literal, Optional

from fastapi import Request

import pitchside.database as _db
from pitchside.utils import utcnow

logger = logging.getLogger("pitchside.audit")

AuditAction = Literal[
    "SESSION_OPENED",
    "SESSION_CLOSED",
    "RESERVATION_CONFIRMED",
    "MATCH_STARTED",
    "MATCH_FINALIZED",
    "MATCH_CANCELLED",
    "SPLIT_INITIATED",
    "BOOKING_PAID_IN_FULL",
    "MVP_VOTES_FINALIZED",
]


def anonymize_ip(raw: str) -> str:
    """Keep the network part only: /24 for IPv4, /48 for IPv6."""
    try:
        addr = ipaddress.ip_address(raw.strip())
    except ValueError:
        return ""
    prefix = 24 if addr.version == 4 else 48
    return str(ipaddress.ip_network(f"{addr}/{prefix}", strict=False).network_address)


def _caller_address(request: Optional[Request]) -> str:
    if request is None:
        return ""
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded:
        return forwarded.split(",", 1)[0]
    return request.client.host if request.client else ""


async def log_audit(
    *,
    actor_id: str,
    target_id: str,
    action: AuditAction,
    metadata: Optional[dict] = None,
    request: Optional[Request] = None,
) -> None:
    """Record who did what to which match, reservation or account.

    Called after the decision has committed. A failed insert is logged and
    does not fail the request that made the decision.
    """
    entry = {
        "timestamp": utcnow(),
        "actor_id": actor_id,
        "target_id": target_id,
        "action": action,
        "metadata": metadata or {},
        "ip_truncated": anonymize_ip(_caller_address(request)),
    }
    try:
        await _db.db.audit_logs.insert_one(entry)
    except Exception:
        logger.exception("Audit entry %s for %s by %s was not stored", action, target_id, actor_id)
