"""Reading service — reading request lifecycle and content materialization.

Responsible for:
- Creating preview readings (content generated up front)
- Creating full readings that wait for payment (used by order_service)
- Looking readings up together with the order that governs unlocking
- Materializing full content after payment (the second stage of webhook
  reconciliation) and retrying it for readings left pending

Helpers that take no transaction of their own flush but do NOT commit —
the enclosing store transaction commits.
"""

import logging
from datetime import datetime, timezone

from soulcross.errors import NotFoundError
from soulcross.extensions import db, store
from soulcross.models.order import Order
from soulcross.models.reading import ReadingRequest
from soulcross.services.audit_service import add_event, log_event
from soulcross.services.reading_generator import (
    generate_full_reading,
    generate_preview_reading,
)

logger = logging.getLogger(__name__)


def _new_reading(reading_input, mode):
    reading = ReadingRequest(
        mode=mode,
        person_a=reading_input["person_a"],
        person_b=reading_input["person_b"],
        preview_result=generate_preview_reading(reading_input),
        full_result=None,
    )
    db.session.add(reading)
    db.session.flush()
    return reading


def create_preview(reading_input):
    """Persist a new preview reading for already-validated input."""
    with store.transaction():
        reading = _new_reading(reading_input, "preview")
        add_event("preview.requested", reading.id, payload={"mode": "preview"})

    logger.info(f"Preview reading {reading.id} created")
    return reading


def create_full_pending(reading_input):
    """Stage a full-mode reading with no full content yet.

    Must be called inside a store transaction; the caller adds the order
    and the audit event and commits all of it together.
    """
    return _new_reading(reading_input, "full")


def lookup(reading_id):
    """Return the reading or raise NotFoundError."""
    reading = db.session.get(ReadingRequest, reading_id)
    if reading is None:
        raise NotFoundError("Reading not found")
    return reading


def governing_order(reading):
    """The order that decides whether a reading is unlocked.

    A paid order wins; otherwise the most recently created one.
    """
    orders = list(reading.orders)
    for order in orders:
        if order.is_paid:
            return order
    return orders[-1] if orders else None


def get_reading_with_order(reading_id):
    """Return (reading, order, is_full_unlocked) for a reading id.

    Full content counts as unlocked only when a paid order exists AND the
    content has been attached.
    """
    reading = lookup(reading_id)
    order = governing_order(reading)
    is_full_unlocked = bool(
        order is not None and order.is_paid and reading.full_result
    )
    return reading, order, is_full_unlocked


# ──────────────────────────────────────────────
# Full content stage
# ──────────────────────────────────────────────

def complete_pending_content(reading_id):
    """Generate and attach full content for a paid reading.

    Runs after the payment transaction has committed. Safe to call any
    number of times: a reading that already has content, or has no paid
    order, is left untouched.

    Returns True if content was attached by this call. On generator or
    store failure, logs, records reading.generation_failed and returns
    False; the pending marker stays so the retry job picks it up.
    """
    try:
        with store.transaction(f"reading:{reading_id}"):
            reading = db.session.get(ReadingRequest, reading_id)
            if reading is None:
                raise NotFoundError("Reading not found")

            if reading.full_result:
                if reading.content_status == ReadingRequest.CONTENT_PENDING:
                    reading.content_status = ReadingRequest.CONTENT_READY
                return False

            paid = Order.query.filter_by(
                reading_request_id=reading.id, status="paid"
            ).first()
            if paid is None:
                logger.warning(f"Reading {reading_id} has no paid order, not generating")
                return False

            reading.full_result = generate_full_reading(reading.reading_input)
            reading.mode = "full"
            reading.content_status = ReadingRequest.CONTENT_READY
            reading.updated_at = datetime.now(timezone.utc)

            add_event("reading.full_generated", reading.id, paid.id, {
                "trigger": "payment",
            })
    except NotFoundError:
        raise
    except Exception as e:
        logger.error(f"Full content generation failed for reading {reading_id}: {e}", exc_info=True)
        log_event("reading.generation_failed", reading_id, payload={
            "message": str(e),
        })
        return False

    logger.info(f"Full content attached to reading {reading_id}")
    return True


def pending_content_reading_ids(limit=100):
    """Ids of readings paid for but still waiting on full content."""
    rows = (
        db.session.query(ReadingRequest.id)
        .filter(ReadingRequest.content_status == ReadingRequest.CONTENT_PENDING)
        .order_by(ReadingRequest.updated_at)
        .limit(limit)
        .all()
    )
    return [row[0] for row in rows]


def retry_pending_content(limit=100):
    """Retry the content stage for stuck readings.

    Returns (attempted, completed).
    """
    reading_ids = pending_content_reading_ids(limit)
    completed = 0
    for reading_id in reading_ids:
        if complete_pending_content(reading_id):
            completed += 1
    return len(reading_ids), completed
