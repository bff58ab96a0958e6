"""Tests for the API blueprint.

Covers:
- POST /api/preview (valid, missing fields)
- POST /api/checkout from raw data (session created once, reuse, upstream failure)
- POST /api/checkout from an existing reading (session, unknown reading, already paid)
- POST /api/checkout on a reused order whose session Stripe expired
- GET /api/reading/<id> (preview only, locked, unlocked, unknown)
- GET /api/checkout/status (polling fallback, unattached sessions)
"""

import json
from unittest.mock import MagicMock, patch

import stripe

from soulcross.extensions import db
from soulcross.models.order import Order
from soulcross.models.stripe_event import StripeEvent
from soulcross.services.order_service import (
    attach_session,
    create_or_reuse_order_for_existing_reading,
)
from soulcross.services.reconciliation_service import mark_order_paid_from_session


class TestPreview:

    def test_creates_preview(self, client, reading_payload, audit_types):
        resp = client.post("/api/preview", json={"data": reading_payload})

        assert resp.status_code == 200
        data = resp.get_json()
        assert data["mode"] == "preview"
        assert data["readingId"]
        assert data["previewResult"]["title"] == "Alice & Bob: Relationship Preview"
        assert audit_types() == ["preview.requested"]

    def test_missing_fields_returns_400(self, client, audit_types):
        resp = client.post("/api/preview", json={"data": {"personA": {"name": "Alice"}}})

        assert resp.status_code == 400
        data = resp.get_json()
        assert data["code"] == "validation_error"
        assert "personA.birthday" in data["fields"]
        assert audit_types() == ["preview.request_failed"]

    def test_non_json_body_returns_400(self, client):
        resp = client.post("/api/preview", data="not json", content_type="text/plain")
        assert resp.status_code == 400


class TestCheckout:

    @patch("soulcross.services.stripe_service.stripe")
    def test_creates_session(self, mock_stripe, client, reading_payload):
        mock_stripe.checkout.Session.create.return_value = MagicMock(id="cs_test_1")

        resp = client.post("/api/checkout", json={"data": reading_payload})

        assert resp.status_code == 200
        data = resp.get_json()
        assert data["sessionId"] == "cs_test_1"
        assert data["alreadyPaid"] is False

        order = Order.query.one()
        assert order.stripe_session_id == "cs_test_1"
        assert order.reading_request_id == data["readingId"]

        kwargs = mock_stripe.checkout.Session.create.call_args.kwargs
        assert kwargs["idempotency_key"] == order.idempotency_key
        assert kwargs["line_items"][0]["price_data"]["unit_amount"] == 999
        assert kwargs["line_items"][0]["price_data"]["currency"] == "usd"
        assert kwargs["metadata"]["orderId"] == order.id

    @patch("soulcross.services.stripe_service.stripe")
    def test_repeat_checkout_reuses_session(self, mock_stripe, client, reading_payload, audit_types):
        """Same input twice -> one order, one Stripe session."""
        mock_stripe.checkout.Session.create.return_value = MagicMock(id="cs_test_1")

        first = client.post("/api/checkout", json={"data": reading_payload}).get_json()
        second = client.post("/api/checkout", json={"data": reading_payload}).get_json()

        assert first["sessionId"] == second["sessionId"] == "cs_test_1"
        assert first["readingId"] == second["readingId"]
        assert mock_stripe.checkout.Session.create.call_count == 1
        assert Order.query.count() == 1
        assert audit_types() == [
            "checkout.requested",
            "checkout.session.created",
            "checkout.reused",
        ]

    @patch("soulcross.services.stripe_service.stripe")
    def test_stripe_failure_returns_502(self, mock_stripe, client, reading_payload, audit_types):
        mock_stripe.StripeError = stripe.StripeError
        mock_stripe.checkout.Session.create.side_effect = stripe.APIConnectionError(
            "connection reset"
        )

        resp = client.post("/api/checkout", json={"data": reading_payload})

        assert resp.status_code == 502
        data = resp.get_json()
        assert data["code"] == "upstream_error"
        assert data["retryable"] is True

        # Order stays pending without a session and is reused on retry.
        order = Order.query.one()
        assert order.stripe_session_id is None
        assert audit_types()[-1] == "checkout.session_failed"

        mock_stripe.checkout.Session.create.side_effect = None
        mock_stripe.checkout.Session.create.return_value = MagicMock(id="cs_retry")
        resp = client.post("/api/checkout", json={"data": reading_payload})

        assert resp.status_code == 200
        assert resp.get_json()["sessionId"] == "cs_retry"
        assert Order.query.count() == 1

    def test_invalid_data_returns_400(self, client):
        resp = client.post("/api/checkout", json={"data": {}})

        assert resp.status_code == 400
        assert Order.query.count() == 0

    @patch("soulcross.services.stripe_service.stripe")
    def test_checkout_existing_reading(self, mock_stripe, client, preview_reading):
        mock_stripe.checkout.Session.create.return_value = MagicMock(id="cs_from_preview")

        resp = client.post("/api/checkout", json={"readingRequestId": preview_reading.id})

        assert resp.status_code == 200
        data = resp.get_json()
        assert data["sessionId"] == "cs_from_preview"
        assert data["readingId"] == preview_reading.id

    def test_checkout_unknown_reading_returns_404(self, client):
        resp = client.post("/api/checkout", json={"readingRequestId": "does-not-exist"})

        assert resp.status_code == 404
        assert resp.get_json()["code"] == "not_found"
        assert Order.query.count() == 0

    @patch("soulcross.services.stripe_service.stripe")
    def test_already_paid_shortcut(self, mock_stripe, client, pending_order):
        mark_order_paid_from_session("evt_1", "cs_1", "pi_1")

        resp = client.post(
            "/api/checkout", json={"readingRequestId": pending_order["reading_id"]}
        )

        assert resp.status_code == 200
        assert resp.get_json() == {
            "alreadyPaid": True,
            "readingId": pending_order["reading_id"],
        }
        mock_stripe.checkout.Session.create.assert_not_called()

    @patch("soulcross.services.stripe_service.stripe")
    def test_expired_session_is_replaced(self, mock_stripe, client, reading_payload,
                                         pending_order, audit_types):
        mock_stripe.checkout.Session.retrieve.return_value = {
            "id": "cs_1",
            "status": "expired",
        }
        mock_stripe.checkout.Session.create.return_value = MagicMock(id="cs_fresh")

        resp = client.post("/api/checkout", json={"data": reading_payload})

        assert resp.status_code == 200
        assert resp.get_json()["sessionId"] == "cs_fresh"
        order = db.session.get(Order, pending_order["order_id"])
        assert order.stripe_session_id == "cs_fresh"
        kwargs = mock_stripe.checkout.Session.create.call_args.kwargs
        assert kwargs["idempotency_key"] == f"{pending_order['idempotency_key']}:cs_1"
        assert audit_types()[-1] == "checkout.session.superseded"

    @patch("soulcross.services.stripe_service.stripe")
    def test_open_session_is_reused(self, mock_stripe, client, reading_payload, pending_order):
        mock_stripe.checkout.Session.retrieve.return_value = {
            "id": "cs_1",
            "status": "open",
        }

        resp = client.post("/api/checkout", json={"data": reading_payload})

        assert resp.get_json()["sessionId"] == "cs_1"
        mock_stripe.checkout.Session.create.assert_not_called()


class TestGetReading:

    def test_preview_only(self, client, preview_reading):
        """Fetch right after preview -> preview set, full null, locked."""
        resp = client.get(f"/api/reading/{preview_reading.id}")

        assert resp.status_code == 200
        data = resp.get_json()
        assert data["reading"]["previewResult"] is not None
        assert data["reading"]["fullResult"] is None
        assert data["order"] is None
        assert data["isFullUnlocked"] is False

    def test_pending_order_is_locked(self, client, pending_order):
        resp = client.get(f"/api/reading/{pending_order['reading_id']}")

        data = resp.get_json()
        assert data["order"]["status"] == "pending"
        assert data["order"]["amountCents"] == 999
        assert data["reading"]["fullResult"] is None
        assert data["isFullUnlocked"] is False

    def test_paid_order_is_unlocked(self, client, pending_order):
        mark_order_paid_from_session("evt_1", "cs_1", "pi_1")

        resp = client.get(f"/api/reading/{pending_order['reading_id']}")

        data = resp.get_json()
        assert data["isFullUnlocked"] is True
        assert data["reading"]["mode"] == "full"
        assert data["reading"]["fullResult"]["finalMessage"]
        assert data["order"]["status"] == "paid"

    def test_unknown_reading_returns_404(self, client):
        resp = client.get("/api/reading/nope")

        assert resp.status_code == 404
        assert json.loads(resp.data)["error"] == "Reading not found"


class TestCheckoutStatus:

    @patch("soulcross.services.stripe_service.stripe")
    def test_paid_session_is_reconciled(self, mock_stripe, client, pending_order):
        mock_stripe.checkout.Session.retrieve.return_value = {
            "id": "cs_1",
            "payment_status": "paid",
            "payment_intent": "pi_sync",
        }

        resp = client.get("/api/checkout/status?session_id=cs_1")

        assert resp.status_code == 200
        assert resp.get_json()["paid"] is True
        order = db.session.get(Order, pending_order["order_id"])
        assert order.status == "paid"
        assert order.stripe_payment_intent_id == "pi_sync"

        # Polling again is a replay of the synthetic event.
        resp = client.get("/api/checkout/status?session_id=cs_1")
        assert resp.get_json()["paid"] is True

    @patch("soulcross.services.stripe_service.stripe")
    def test_unpaid_session(self, mock_stripe, client, pending_order):
        mock_stripe.checkout.Session.retrieve.return_value = {
            "id": "cs_1",
            "payment_status": "unpaid",
        }

        resp = client.get("/api/checkout/status?session_id=cs_1")

        assert resp.get_json()["paid"] is False
        assert db.session.get(Order, pending_order["order_id"]).status == "pending"

    @patch("soulcross.services.stripe_service.stripe")
    def test_unattached_session_is_not_recorded(self, mock_stripe, client, pending_order):
        """A paid session no order carries yet reconciles once it is attached."""
        mock_stripe.checkout.Session.retrieve.return_value = {
            "id": "cs_late",
            "payment_status": "paid",
            "payment_intent": "pi_late",
        }

        resp = client.get("/api/checkout/status?session_id=cs_late")

        assert resp.get_json()["paid"] is False
        assert StripeEvent.query.count() == 0

        order = create_or_reuse_order_for_existing_reading(
            pending_order["reading_id"], 999, "usd"
        ).order
        attach_session(order.id, "cs_late")

        resp = client.get("/api/checkout/status?session_id=cs_late")

        assert resp.get_json()["paid"] is True
        assert db.session.get(Order, order.id).status == "paid"

    def test_missing_session_id_returns_400(self, client):
        resp = client.get("/api/checkout/status")
        assert resp.status_code == 400


class TestSecurityHeaders:

    def test_headers_present(self, client):
        resp = client.get("/api/reading/nope")

        assert resp.headers.get("X-Content-Type-Options") == "nosniff"
        assert resp.headers.get("X-Frame-Options") == "DENY"
        assert "default-src 'none'" in resp.headers.get("Content-Security-Policy")
