"""Webhook reconciliation — turn Stripe payment events into paid orders.

Stripe delivers events at least once and retries freely, so every entry
point here starts by checking the stripe_events table. The event id is
recorded in the same transaction as the state change it causes, which
makes the whole effect of an event happen exactly once.

Reconciling a payment is two stages:

1. Payment (one transaction): record the event id, mark the order paid,
   set the reading's content_status marker to "pending".
2. Content (after commit): reading_service.complete_pending_content()
   generates and attaches the full reading.

A crash or generator failure between the stages leaves the marker in
place for `flask generate-pending-content` to pick up. Readers unlock
only when the order is paid AND full content exists, so no intermediate
state ever exposes content without payment.
"""

import logging
from collections import namedtuple

from soulcross.errors import ConflictError
from soulcross.extensions import db, store
from soulcross.models.order import Order
from soulcross.models.reading import ReadingRequest
from soulcross.models.stripe_event import StripeEvent
from soulcross.services.audit_service import add_event
from soulcross.services.reading_service import complete_pending_content

logger = logging.getLogger(__name__)

ReconcileResult = namedtuple(
    "ReconcileResult", ["already_processed", "updated", "reading_id"]
)


def is_processed(webhook_event_id):
    return (
        StripeEvent.query.filter_by(stripe_event_id=webhook_event_id).first()
        is not None
    )


def _record_processed(webhook_event_id, event_type, outcome):
    db.session.add(StripeEvent(
        stripe_event_id=webhook_event_id,
        event_type=event_type,
        outcome=outcome,
    ))
    db.session.flush()


def _mark_paid(webhook_event_id, stripe_session_id, payment_intent_id, event_type):
    """Stage 1. Returns a ReconcileResult; commits on exit."""
    with store.transaction(f"webhook:{webhook_event_id}", f"session:{stripe_session_id}"):
        if is_processed(webhook_event_id):
            logger.info(f"Duplicate webhook event {webhook_event_id}, skipping")
            return ReconcileResult(True, False, None)

        order = (
            Order.query
            .filter_by(stripe_session_id=stripe_session_id)
            .with_for_update()
            .first()
        )
        if order is None:
            _record_processed(webhook_event_id, event_type, "session_not_found")
            add_event("webhook.session.not_found", payload={
                "stripeSessionId": stripe_session_id,
                "webhookEventId": webhook_event_id,
            })
            logger.warning(
                f"Webhook {webhook_event_id}: no order for session {stripe_session_id}"
            )
            return ReconcileResult(False, False, None)

        _record_processed(webhook_event_id, event_type, "processed")

        reading = db.session.get(ReadingRequest, order.reading_request_id)
        transitioned = order.mark_paid(payment_intent_id)

        if reading.full_result is None:
            reading.content_status = ReadingRequest.CONTENT_PENDING

        add_event("webhook.checkout.completed", reading.id, order.id, {
            "stripeSessionId": stripe_session_id,
            "webhookEventId": webhook_event_id,
            "stripePaymentIntentId": payment_intent_id,
            "transitioned": transitioned,
        })
        return ReconcileResult(False, True, reading.id)


def mark_order_paid_from_session(webhook_event_id, stripe_session_id,
                                 payment_intent_id=None,
                                 event_type="checkout.session.completed"):
    """Reconcile one payment-confirmation event.

    Returns:
        ReconcileResult(already_processed, updated, reading_id).
        already_processed=True for replays; updated=False when no order
        matches the session (the webhook raced ahead of attach_session).
    """
    try:
        result = _mark_paid(
            webhook_event_id, stripe_session_id, payment_intent_id, event_type
        )
    except ConflictError:
        # Another worker recorded this event id between our check and commit.
        logger.info(f"Webhook event {webhook_event_id} recorded concurrently, skipping")
        return ReconcileResult(True, False, None)

    if result.updated:
        logger.info(f"Order for session {stripe_session_id} marked paid")
        complete_pending_content(result.reading_id)

    return result


def record_unpaid_checkout(webhook_event_id, event_type, stripe_session_id, payment_status):
    """Record a completed Checkout Session whose payment has not settled.

    Delayed payment methods complete the session first and send
    checkout.session.async_payment_succeeded later; nothing unlocks yet.
    Returns False if the event was a replay.
    """
    with store.transaction(f"webhook:{webhook_event_id}"):
        if is_processed(webhook_event_id):
            return False
        _record_processed(webhook_event_id, event_type, "unpaid")
        order = Order.query.filter_by(stripe_session_id=stripe_session_id).first()
        add_event(
            "webhook.checkout.unpaid",
            order.reading_request_id if order else None,
            order.id if order else None,
            {
                "stripeSessionId": stripe_session_id,
                "webhookEventId": webhook_event_id,
                "paymentStatus": payment_status,
            },
        )
        return True


def record_ignored_event(webhook_event_id, event_type):
    """Acknowledge a verified event type the paywall does not act on.

    Returns False if the event was a replay.
    """
    with store.transaction(f"webhook:{webhook_event_id}"):
        if is_processed(webhook_event_id):
            return False
        _record_processed(webhook_event_id, event_type, "ignored")
        add_event("webhook.ignored", payload={
            "eventId": webhook_event_id,
            "eventType": event_type,
        })
        return True
