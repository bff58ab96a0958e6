"""API blueprint — /api/*

JSON endpoints consumed by the reading UI.

Routes:
- POST /api/preview           — validate input, create a preview reading
- POST /api/checkout          — create/reuse an order, return a Stripe session
- GET  /api/checkout/status   — poll a session, reconcile if Stripe says paid
- GET  /api/reading/<id>      — fetch a reading, full content only if paid

PaywallErrors raised here are rendered by the app-level error handler.
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from soulcross.errors import ValidationError
from soulcross.extensions import limiter
from soulcross.services.audit_service import log_event
from soulcross.services.order_service import (
    attach_session,
    build_checkout_idempotency_key,
    create_or_reuse_full_order,
    create_or_reuse_order_for_existing_reading,
    replace_expired_session,
)
from soulcross.services.reading_service import create_preview, get_reading_with_order
from soulcross.services.reading_validation import validate_reading_input
from soulcross.services.stripe_service import (
    checkout_session_expired,
    create_checkout_session,
    sync_checkout_session,
)

logger = logging.getLogger(__name__)

api_bp = Blueprint("api", __name__, url_prefix="/api")


def _json_body():
    return request.get_json(silent=True) or {}


def _isoformat(value):
    return value.isoformat() if value else None


# ──────────────────────────────────────────────
# POST /api/preview
# ──────────────────────────────────────────────

@api_bp.route("/preview", methods=["POST"])
@limiter.limit(lambda: current_app.config["PREVIEW_RATE_LIMIT"])
def preview():
    """Create a preview reading from the submitted birth details."""
    body = _json_body()
    try:
        reading_input = validate_reading_input(body.get("data"))
    except ValidationError as e:
        log_event("preview.request_failed", payload={"message": e.message})
        raise

    reading = create_preview(reading_input)

    return jsonify({
        "readingId": reading.id,
        "mode": "preview",
        "previewResult": reading.preview_result,
    })


# ──────────────────────────────────────────────
# POST /api/checkout
# ──────────────────────────────────────────────

@api_bp.route("/checkout", methods=["POST"])
@limiter.limit(lambda: current_app.config["CHECKOUT_RATE_LIMIT"])
def checkout():
    """Create or reuse an order and hand back a Stripe Checkout Session id.

    Body is either {"readingRequestId": "..."} for a reading created via
    preview, or {"data": {personA, personB}} for a fresh reading. Repeated
    calls for the same logical request reuse the same order and session,
    until Stripe expires that session and a fresh one takes its place.
    """
    body = _json_body()
    amount_cents = current_app.config["FULL_READING_PRICE_CENTS"]
    currency = current_app.config["FULL_READING_CURRENCY"]

    if body.get("readingRequestId"):
        result = create_or_reuse_order_for_existing_reading(
            reading_id=str(body["readingRequestId"]),
            amount_cents=amount_cents,
            currency=currency,
        )
    else:
        reading_input = validate_reading_input(body.get("data"))
        idempotency_key = build_checkout_idempotency_key(
            reading_input, amount_cents, currency
        )
        result = create_or_reuse_full_order(
            reading_input=reading_input,
            idempotency_key=idempotency_key,
            amount_cents=amount_cents,
            currency=currency,
        )

    reading, order = result.reading, result.order

    # Paid but content still generating: the reading page polls until unlocked.
    if order.is_paid:
        return jsonify({"alreadyPaid": True, "readingId": reading.id})

    # Stripe calls happen outside any store transaction.
    if order.stripe_session_id:
        session_id = order.stripe_session_id
        if checkout_session_expired(session_id):
            fresh_id = create_checkout_session(
                reading, order, replacing_session_id=session_id
            )
            session_id = replace_expired_session(order.id, session_id, fresh_id)
    else:
        session_id = create_checkout_session(reading, order)
        session_id = attach_session(order.id, session_id)
        logger.info(f"Checkout session {session_id} attached to order {order.id}")

    return jsonify({
        "sessionId": session_id,
        "readingId": reading.id,
        "alreadyPaid": False,
    })


# ──────────────────────────────────────────────
# GET /api/checkout/status
# ──────────────────────────────────────────────

@api_bp.route("/checkout/status")
def checkout_status():
    """Polled by the success page until the reading unlocks.

    If the webhook hasn't arrived yet, ask Stripe about the session
    directly and reconcile it ourselves — works even without webhooks.
    """
    session_id = request.args.get("session_id", "").strip()
    if not session_id:
        raise ValidationError("Missing session_id", fields=["session_id"])

    paid = sync_checkout_session(session_id)
    return jsonify({"sessionId": session_id, "paid": paid})


# ──────────────────────────────────────────────
# GET /api/reading/<id>
# ──────────────────────────────────────────────

@api_bp.route("/reading/<reading_id>")
def get_reading(reading_id):
    """Fetch a reading. fullResult is null unless the reading is unlocked."""
    reading, order, is_full_unlocked = get_reading_with_order(reading_id)

    return jsonify({
        "reading": {
            "id": reading.id,
            "mode": reading.mode,
            "createdAt": _isoformat(reading.created_at),
            "updatedAt": _isoformat(reading.updated_at),
            "previewResult": reading.preview_result,
            "fullResult": reading.full_result if is_full_unlocked else None,
        },
        "order": {
            "id": order.id,
            "status": order.status,
            "amountCents": order.amount_cents,
            "currency": order.currency,
        } if order else None,
        "isFullUnlocked": is_full_unlocked,
    })
