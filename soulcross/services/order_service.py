"""Order service — idempotency keys and order create-or-reuse.

Responsible for:
- Deriving deterministic checkout idempotency keys
- Creating or reusing an order from raw birth details
- Creating or reusing an order for a reading created via preview
- Attaching the Stripe Checkout Session id to an order (first write wins)
- Replacing a session Stripe has expired

The idempotency key is the only checkout deduplication mechanism: the same
logical reading at the same price always maps to the same order, and the
same key is passed to Stripe so a retried session create returns the
original session instead of a second one.
"""

import hashlib
import json
import logging
from collections import namedtuple
from datetime import datetime, timezone

from soulcross.errors import ConflictError, NotFoundError, PaywallError
from soulcross.extensions import db, store
from soulcross.models.order import Order
from soulcross.models.reading import ReadingRequest
from soulcross.services.audit_service import add_event
from soulcross.services.reading_service import create_full_pending

logger = logging.getLogger(__name__)

OrderResult = namedtuple("OrderResult", ["reading", "order", "reused"])

PERSON_FIELDS = (
    "name",
    "birthday",
    "birthtime",
    "birthtime_unknown",
    "gender",
    "birthplace",
)


# ──────────────────────────────────────────────
# Idempotency keys
# ──────────────────────────────────────────────

def _canonical_person(person):
    canonical = {field: person.get(field) for field in PERSON_FIELDS}
    canonical["name"] = (canonical["name"] or "").lower()
    return canonical


def build_checkout_idempotency_key(reading_input, amount_cents, currency):
    """SHA-256 hex digest of the sanitized input plus price.

    Names are lower-cased so "Alice" and "alice" are the same request;
    every other field is taken as-is.
    """
    canonical = json.dumps(
        {
            "person_a": _canonical_person(reading_input["person_a"]),
            "person_b": _canonical_person(reading_input["person_b"]),
        },
        sort_keys=True,
        separators=(",", ":"),
    )
    raw = f"{canonical}|{int(amount_cents)}|{currency}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def build_reading_idempotency_key(reading_id, amount_cents, currency):
    """Key for checking out a reading that already exists."""
    raw = f"{reading_id}|{int(amount_cents)}|{currency}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def find_order_by_key(idempotency_key):
    return Order.query.filter_by(idempotency_key=idempotency_key).first()


def find_order_by_session(stripe_session_id):
    return Order.query.filter_by(stripe_session_id=stripe_session_id).first()


# ──────────────────────────────────────────────
# Create or reuse
# ──────────────────────────────────────────────

def _reuse(order, extra_payload):
    """Record the reuse of an existing order and wrap it as a result."""
    reading = db.session.get(ReadingRequest, order.reading_request_id)
    if reading is None:
        raise PaywallError("Order exists without reading request")

    payload = {
        "idempotencyKey": order.idempotency_key,
        "orderStatus": order.status,
    }
    payload.update(extra_payload)
    add_event("checkout.reused", reading.id, order.id, payload)
    return OrderResult(reading, order, True)


def _with_conflict_retry(fn):
    """Run a create-or-reuse unit, retrying once if a concurrent writer won.

    A ConflictError means another process inserted the same idempotency
    key between our lookup and our commit; the retry takes the reuse path.
    """
    try:
        return fn()
    except ConflictError:
        logger.info("Idempotency key conflict, retrying as reuse")
        return fn()


def create_or_reuse_full_order(reading_input, idempotency_key, amount_cents, currency):
    """Return the order for this key, creating reading + order if needed.

    Returns:
        OrderResult(reading, order, reused).
    """

    def _unit():
        with store.transaction(f"order-key:{idempotency_key}"):
            existing = find_order_by_key(idempotency_key)
            if existing:
                return _reuse(existing, {})

            reading = create_full_pending(reading_input)
            order = Order(
                reading_request_id=reading.id,
                status="pending",
                idempotency_key=idempotency_key,
                amount_cents=amount_cents,
                currency=currency,
            )
            db.session.add(order)
            db.session.flush()

            add_event("checkout.requested", reading.id, order.id, {
                "idempotencyKey": idempotency_key,
                "amountCents": amount_cents,
                "currency": currency,
            })
            return OrderResult(reading, order, False)

    result = _with_conflict_retry(_unit)
    logger.info(
        f"Order {result.order.id} for reading {result.reading.id} "
        f"({'reused' if result.reused else 'created'})"
    )
    return result


def create_or_reuse_order_for_existing_reading(reading_id, amount_cents, currency):
    """Return the order for an existing reading at this price.

    A reading that already carries full content gets its new order
    created as paid, so the caller can skip Stripe entirely.

    Raises:
        NotFoundError: if the reading does not exist. A missing reading is
        never created here.
    """
    idempotency_key = build_reading_idempotency_key(reading_id, amount_cents, currency)

    def _unit():
        with store.transaction(f"reading:{reading_id}", f"order-key:{idempotency_key}"):
            reading = db.session.get(ReadingRequest, reading_id)
            if reading is None:
                raise NotFoundError("Reading request not found")

            existing = find_order_by_key(idempotency_key)
            if existing:
                return _reuse(existing, {"fromReadingId": True})

            order = Order(
                reading_request_id=reading.id,
                status="paid" if reading.full_result else "pending",
                idempotency_key=idempotency_key,
                amount_cents=amount_cents,
                currency=currency,
            )
            db.session.add(order)
            db.session.flush()

            add_event("checkout.requested", reading.id, order.id, {
                "idempotencyKey": idempotency_key,
                "amountCents": amount_cents,
                "currency": currency,
                "fromReadingId": True,
            })
            return OrderResult(reading, order, False)

    return _with_conflict_retry(_unit)


# ──────────────────────────────────────────────
# Session attachment
# ──────────────────────────────────────────────

def attach_session(order_id, stripe_session_id):
    """Attach a Stripe Checkout Session id to an order.

    First write wins: if the order already carries a session id (two
    near-simultaneous checkouts both reached Stripe), the stored id is
    kept and returned.

    Returns the session id now stored on the order.
    """
    with store.transaction(f"order:{order_id}"):
        order = db.session.get(Order, order_id)
        if order is None:
            raise NotFoundError("Order not found")

        if order.stripe_session_id == stripe_session_id:
            return stripe_session_id

        if order.stripe_session_id:
            add_event("checkout.session.superseded", order.reading_request_id, order.id, {
                "stripeSessionId": order.stripe_session_id,
                "discardedSessionId": stripe_session_id,
            })
            logger.warning(
                f"Order {order_id} already has session {order.stripe_session_id}, "
                f"discarding {stripe_session_id}"
            )
            return order.stripe_session_id

        order.stripe_session_id = stripe_session_id
        order.updated_at = datetime.now(timezone.utc)
        add_event("checkout.session.created", order.reading_request_id, order.id, {
            "stripeSessionId": stripe_session_id,
        })
        return stripe_session_id


def replace_expired_session(order_id, expired_session_id, stripe_session_id):
    """Swap an expired Checkout Session for a fresh one.

    Only replaces when the order still carries the expired id; if another
    request already swapped it, that stored id wins and is returned.
    """
    with store.transaction(f"order:{order_id}"):
        order = db.session.get(Order, order_id)
        if order is None:
            raise NotFoundError("Order not found")

        if order.stripe_session_id != expired_session_id:
            return order.stripe_session_id

        order.stripe_session_id = stripe_session_id
        order.updated_at = datetime.now(timezone.utc)
        add_event("checkout.session.superseded", order.reading_request_id, order.id, {
            "stripeSessionId": stripe_session_id,
            "expiredSessionId": expired_session_id,
        })
        logger.info(
            f"Order {order_id}: expired session {expired_session_id} "
            f"replaced by {stripe_session_id}"
        )
        return stripe_session_id
