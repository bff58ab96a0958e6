"""Audit trail helpers.

add_event() stages an event inside the caller's store transaction so it
commits (or rolls back) together with the change it describes.
log_event() opens its own transaction, for events that have no other
state change attached (failed previews, failed webhooks).
"""

import logging

from soulcross.extensions import db, store
from soulcross.models.audit import AuditEvent

logger = logging.getLogger(__name__)


def add_event(event_type, reading_request_id=None, order_id=None, payload=None):
    """Append an audit event to the current session and flush it."""
    event = AuditEvent(
        event_type=event_type,
        reading_request_id=reading_request_id,
        order_id=order_id,
        payload=payload or {},
    )
    db.session.add(event)
    db.session.flush()
    return event


def log_event(event_type, reading_request_id=None, order_id=None, payload=None):
    """Append a standalone audit event in its own transaction.

    Used on failure paths, so a failure to write the audit row is logged
    and swallowed rather than masking the original error.
    """
    try:
        with store.transaction():
            add_event(event_type, reading_request_id, order_id, payload)
    except Exception as e:
        logger.error(f"Failed to record audit event {event_type}: {e}")


def list_events(reading_request_id=None, order_id=None, limit=50):
    """Most recent audit events, oldest first, optionally filtered."""
    query = AuditEvent.query
    if reading_request_id:
        query = query.filter_by(reading_request_id=reading_request_id)
    if order_id:
        query = query.filter_by(order_id=order_id)
    events = query.order_by(AuditEvent.id.desc()).limit(limit).all()
    return list(reversed(events))
