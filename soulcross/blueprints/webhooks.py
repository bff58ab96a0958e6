"""Webhooks blueprint — /api/webhook/stripe

Stripe's only way into the paywall. Nothing in the body is trusted until
the Stripe-Signature header checks out against STRIPE_WEBHOOK_SECRET, so
the raw body is read before any JSON parsing.

Responses:
- 400 missing_signature / invalid_signature / invalid_payload: rejected,
  nothing recorded. Stripe does not retry a 4xx usefully, which is fine
  for forged or corrupt requests.
- 200 {"received": true, "status": ...}: processed, replayed, ignored, or
  waiting on payment. The status says which.
- 500 webhook_failed: the event was not recorded, so Stripe's redelivery
  gets a fresh attempt.
"""

import logging

import stripe
from flask import Blueprint, jsonify, request

from soulcross.services.stripe_service import handle_webhook_event, verify_webhook_signature

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/api/webhook")


def _reject(message, code):
    return jsonify({"error": message, "code": code}), 400


@webhooks_bp.route("/stripe", methods=["POST"])
def stripe_webhook():
    """Verify a Stripe event and hand it to the reconciler."""
    payload = request.get_data(as_text=True)
    sig_header = request.headers.get("Stripe-Signature")

    if not sig_header:
        logger.warning("Webhook received without Stripe-Signature header")
        return _reject("Missing signature", "missing_signature")

    try:
        event = verify_webhook_signature(payload, sig_header)
    except stripe.SignatureVerificationError as e:
        logger.warning(f"Webhook signature verification failed: {e}")
        return _reject("Invalid signature", "invalid_signature")
    except ValueError as e:
        logger.warning(f"Webhook payload could not be parsed: {e}")
        return _reject("Invalid payload", "invalid_payload")

    success, message = handle_webhook_event(event)
    if not success:
        logger.error(f"Webhook {event['id']} failed: {message}")
        return jsonify({"error": message, "code": "webhook_failed"}), 500

    return jsonify({"received": True, "status": message})
