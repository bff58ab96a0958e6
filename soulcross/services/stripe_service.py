"""Stripe service — all Stripe API calls and webhook handling.

Responsible for:
- Creating Stripe Checkout Sessions for full readings
- Retrieving sessions for the checkout-status polling fallback
- Verifying webhook signatures
- Dispatching verified events to the reconciliation service
- Idempotency via the stripe_events table (see reconciliation_service)

Outbound calls use a bounded HTTP timeout (OUTBOUND_TIMEOUT_SECONDS) and
a small retry budget; any Stripe failure surfaces as UpstreamError.
"""

import logging

import stripe
from flask import current_app

from soulcross.errors import UpstreamError
from soulcross.services.audit_service import log_event
from soulcross.services.order_service import find_order_by_session
from soulcross.services.reconciliation_service import (
    mark_order_paid_from_session,
    record_ignored_event,
    record_unpaid_checkout,
)

logger = logging.getLogger(__name__)

PAID_STATUSES = ("paid", "no_payment_required")


def _configure_stripe():
    """Point the Stripe SDK at our key, timeout and retry budget."""
    config = current_app.config
    stripe.api_key = config["STRIPE_SECRET_KEY"]
    stripe.max_network_retries = config["STRIPE_MAX_NETWORK_RETRIES"]
    stripe.default_http_client = stripe.RequestsClient(
        timeout=config["OUTBOUND_TIMEOUT_SECONDS"]
    )


def _payment_intent_id(session):
    """payment_intent is an id string, an expanded object, or None."""
    payment_intent = session.get("payment_intent")
    if isinstance(payment_intent, str):
        return payment_intent
    if payment_intent is not None:
        return payment_intent.get("id")
    return None


# ──────────────────────────────────────────────
# Checkout Sessions
# ──────────────────────────────────────────────

def create_checkout_session(reading, order, replacing_session_id=None):
    """Create a Stripe Checkout Session for an order.

    The order's idempotency key is sent as Stripe's Idempotency-Key, so a
    retry after a lost response returns the original session. A session
    that replaces an expired one gets its own key, derived from the
    expired session id, since Stripe would otherwise hand back the
    expired session.

    Returns the Stripe session id.
    Raises UpstreamError on any Stripe failure.
    """
    _configure_stripe()
    app_base_url = current_app.config["APP_BASE_URL"]
    idempotency_key = order.idempotency_key
    if replacing_session_id:
        idempotency_key = f"{order.idempotency_key}:{replacing_session_id}"

    try:
        session = stripe.checkout.Session.create(
            mode="payment",
            payment_method_types=["card"],
            line_items=[
                {
                    "price_data": {
                        "currency": order.currency,
                        "product_data": {
                            "name": current_app.config["FULL_READING_PRODUCT_NAME"],
                        },
                        "unit_amount": order.amount_cents,
                    },
                    "quantity": 1,
                },
            ],
            success_url=(
                f"{app_base_url}/reading/{reading.id}"
                f"?checkout=success&session_id={{CHECKOUT_SESSION_ID}}"
            ),
            cancel_url=f"{app_base_url}/reading/{reading.id}?checkout=canceled",
            metadata={
                "readingRequestId": reading.id,
                "orderId": order.id,
                "idempotencyKey": order.idempotency_key,
            },
            idempotency_key=idempotency_key,
        )
    except stripe.StripeError as e:
        logger.error(f"Stripe session create failed for order {order.id}: {e}")
        log_event("checkout.session_failed", reading.id, order.id, {
            "message": str(e),
        })
        raise UpstreamError("Payment provider unavailable, please try again") from e

    return session.id


def retrieve_checkout_session(session_id):
    """Fetch a Checkout Session from Stripe. Raises UpstreamError."""
    _configure_stripe()
    try:
        return stripe.checkout.Session.retrieve(session_id)
    except stripe.StripeError as e:
        logger.warning(f"Failed to retrieve Stripe session {session_id}: {e}")
        raise UpstreamError("Payment provider unavailable, please try again") from e


def checkout_session_expired(session_id):
    """True once Stripe has expired the session (24h after creation by default)."""
    return retrieve_checkout_session(session_id).get("status") == "expired"


def sync_checkout_session(session_id):
    """Polling fallback: reconcile a session without waiting for the webhook.

    Uses the synthetic event id "sync:<session_id>", so repeated polls are
    replays and a later real webhook finds the order already paid. A
    session no order carries yet is not recorded at all, so a poll after
    attach_session can still reconcile it.

    Returns True if the session's order is paid.
    """
    session = retrieve_checkout_session(session_id)
    if session.get("payment_status") not in PAID_STATUSES:
        return False

    if find_order_by_session(session_id) is None:
        logger.info(f"Session {session_id} is paid but not attached to an order yet")
        return False

    result = mark_order_paid_from_session(
        webhook_event_id=f"sync:{session_id}",
        stripe_session_id=session_id,
        payment_intent_id=_payment_intent_id(session),
        event_type="checkout.session.sync",
    )
    return result.updated or result.already_processed


# ──────────────────────────────────────────────
# Webhook Handling
# ──────────────────────────────────────────────

def verify_webhook_signature(payload, sig_header):
    """Verify Stripe webhook signature and construct the event.

    Returns the verified Stripe event object.
    Raises stripe.SignatureVerificationError on invalid signature.
    """
    webhook_secret = current_app.config["STRIPE_WEBHOOK_SECRET"]
    return stripe.Webhook.construct_event(payload, sig_header, webhook_secret)


def handle_webhook_event(event):
    """Process a verified Stripe webhook event.

    Idempotency: every handler checks the stripe_events table before
    changing anything, so replays return "already_processed".

    Returns (success: bool, message: str).
    """
    event_id = event["id"]
    event_type = event["type"]

    handlers = {
        "checkout.session.completed": _handle_checkout_completed,
        "checkout.session.async_payment_succeeded": _handle_checkout_completed,
    }

    handler = handlers.get(event_type)
    try:
        if handler:
            message = handler(event)
        elif record_ignored_event(event_id, event_type):
            message = "ignored"
        else:
            message = "already_processed"
    except Exception as e:
        logger.error(f"Error handling {event_type}: {e}", exc_info=True)
        log_event("webhook.failed", payload={
            "eventId": event_id,
            "eventType": event_type,
            "message": str(e),
        })
        return False, str(e)

    return True, message


# ──────────────────────────────────────────────
# Event Handlers
# ──────────────────────────────────────────────

def _handle_checkout_completed(event):
    """Handle checkout.session.completed / async_payment_succeeded.

    Unlocks only when Stripe reports the payment as settled.
    """
    event_id = event["id"]
    event_type = event["type"]
    session = event["data"]["object"]
    session_id = session.get("id")
    payment_status = session.get("payment_status", "paid")

    if payment_status not in PAID_STATUSES:
        logger.info(f"{event_type} for session {session_id} is {payment_status}, waiting")
        if record_unpaid_checkout(event_id, event_type, session_id, payment_status):
            return "awaiting_payment"
        return "already_processed"

    result = mark_order_paid_from_session(
        webhook_event_id=event_id,
        stripe_session_id=session_id,
        payment_intent_id=_payment_intent_id(session),
        event_type=event_type,
    )

    if result.already_processed:
        return "already_processed"
    if not result.updated:
        return "session_not_found"
    return "processed"
