# app/x402/audit.py
"""
Audit logging for x402 payment decisions.

This module records every decision the payment gate makes, for:
- Dispute resolution
- Financial reconciliation
- Debugging rejected payments

Log format: JSON lines (one event per line)
Log location: Configured via X402_AUDIT_LOG_PATH
Enabled by: X402_AUDIT_ENABLED

Events logged:
- 402 returned (required amount, network, recipient, expiry)
- Malformed payment header
- Payment rejected (error code, payer, nonce)
- Payment accepted (payer, amount, nonce)
- Nonce sweep (evicted count)

Audit failures are logged and swallowed: they never change the outcome of a
request.
"""
import json
import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from app.core.config import settings

logger = logging.getLogger(__name__)


class AuditEventType(Enum):
    """Types of audit events that can be logged."""
    PAYMENT_REQUIRED_SENT = "payment_required_sent"
    PAYMENT_MALFORMED = "payment_malformed"
    PAYMENT_REJECTED = "payment_rejected"
    PAYMENT_ACCEPTED = "payment_accepted"
    NONCE_SWEEP = "nonce_sweep"


def generate_request_id() -> str:
    """Generate a unique request ID for tracking."""
    return str(uuid.uuid4())[:8]


def get_audit_log_path() -> Path:
    """Get the path to the audit log file."""
    return Path(settings.X402_AUDIT_LOG_PATH)


def create_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    client_ip: Optional[str] = None,
    wallet_address: Optional[str] = None,
    request_id: Optional[str] = None
) -> Dict[str, Any]:
    """
    Create an audit event dictionary.

    Args:
        event_type: Type of event to log
        data: Event-specific data
        client_ip: Client IP address (if available)
        wallet_address: Payer address (if available)
        request_id: Unique request identifier (if available)

    Returns:
        A structured event ready to be written to the audit log
    """
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event_type": event_type.value,
        "request_id": request_id or generate_request_id(),
        "client_ip": client_ip,
        "wallet_address": wallet_address,
        "data": data
    }


def log_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    client_ip: Optional[str] = None,
    wallet_address: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """
    Append an audit event to the audit log if auditing is enabled.

    Returns:
        The request_id used for this event, or None if disabled or on error
    """
    if not settings.X402_AUDIT_ENABLED:
        return None

    event = create_audit_event(
        event_type=event_type,
        data=data,
        client_ip=client_ip,
        wallet_address=wallet_address,
        request_id=request_id
    )

    try:
        log_path = get_audit_log_path()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(log_path, "a") as f:
            f.write(json.dumps(event) + "\n")

        logger.debug(f"Audit event logged: {event_type.value} [{event['request_id']}]")
        return event["request_id"]

    except OSError as e:
        logger.error(f"Failed to write audit event: {e}")
        return None


def log_payment_required_sent(
    client_ip: str,
    path: str,
    amount: str,
    network: str,
    pay_to: str,
    valid_until: int,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a 402 Payment Required response event."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_REQUIRED_SENT,
        data={
            "path": path,
            "amount": amount,
            "network": network,
            "pay_to": pay_to,
            "valid_until": valid_until,
        },
        client_ip=client_ip,
        request_id=request_id
    )


def log_payment_malformed(
    client_ip: str,
    path: str,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log an undecodable payment header."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_MALFORMED,
        data={"path": path},
        client_ip=client_ip,
        request_id=request_id
    )


def log_payment_rejected(
    client_ip: str,
    path: str,
    code: str,
    payer: str,
    nonce: str,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a payment that failed a business rule."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_REJECTED,
        data={
            "path": path,
            "code": code,
            "nonce": nonce,
        },
        client_ip=client_ip,
        wallet_address=payer,
        request_id=request_id
    )


def log_payment_accepted(
    client_ip: str,
    path: str,
    payer: str,
    amount: str,
    network: str,
    nonce: str,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log an accepted payment."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_ACCEPTED,
        data={
            "path": path,
            "amount": amount,
            "network": network,
            "nonce": nonce,
        },
        client_ip=client_ip,
        wallet_address=payer,
        request_id=request_id
    )


def log_nonce_sweep(evicted: int, remaining: int) -> Optional[str]:
    """Log a nonce ledger eviction sweep."""
    return log_audit_event(
        event_type=AuditEventType.NONCE_SWEEP,
        data={"evicted": evicted, "remaining": remaining},
    )


def read_audit_log(
    max_entries: int = 100,
    event_type: Optional[AuditEventType] = None,
    client_ip: Optional[str] = None
) -> list:
    """
    Read entries from the audit log.

    Args:
        max_entries: Maximum number of entries to return
        event_type: Filter by event type (optional)
        client_ip: Filter by client IP (optional)

    Returns:
        List of audit events (most recent first)
    """
    log_path = get_audit_log_path()
    if not log_path.exists():
        return []

    events = []
    try:
        with open(log_path, "r") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    event = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if event_type and event.get("event_type") != event_type.value:
                    continue
                if client_ip and event.get("client_ip") != client_ip:
                    continue
                events.append(event)
    except OSError as e:
        logger.error(f"Failed to read audit log: {e}")
        return []

    # Most recent first, limited to max_entries
    return list(reversed(events))[:max_entries]


def get_audit_stats() -> Dict[str, Any]:
    """
    Get statistics from the audit log.

    Returns:
        Dict with event counts and date range
    """
    log_path = get_audit_log_path()
    stats: Dict[str, Any] = {
        "total_events": 0,
        "events_by_type": {},
        "first_event": None,
        "last_event": None,
        "log_path": str(log_path),
        "log_exists": log_path.exists(),
    }
    if not stats["log_exists"]:
        return stats

    for event in reversed(read_audit_log(max_entries=2 ** 31)):
        stats["total_events"] += 1
        kind = event.get("event_type", "unknown")
        stats["events_by_type"][kind] = stats["events_by_type"].get(kind, 0) + 1
        timestamp = event.get("timestamp")
        if timestamp:
            if stats["first_event"] is None:
                stats["first_event"] = timestamp
            stats["last_event"] = timestamp

    return stats
