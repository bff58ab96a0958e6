"""Shared test fixtures for the paywall test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, no rate limits)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- reading_payload: raw {"personA", "personB"} body as the forms send it
- reading_input: the same payload after validation
- preview_reading: a persisted preview reading
- pending_order: a full reading + pending order with a Stripe session attached
"""

import pytest

from soulcross import create_app
from soulcross.extensions import db as _db
from soulcross.models.audit import AuditEvent
from soulcross.services.order_service import (
    attach_session,
    build_checkout_idempotency_key,
    create_or_reuse_full_order,
)
from soulcross.services.reading_service import create_preview
from soulcross.services.reading_validation import validate_reading_input


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def reading_payload():
    return {
        "personA": {
            "name": "Alice",
            "birthday": "1990-01-01",
            "birthtime": "08:30",
            "birthtimeUnknown": False,
            "gender": "female",
            "birthplace": "Lisbon",
        },
        "personB": {
            "name": "Bob",
            "birthday": "1992-02-02",
            "birthtime": "",
            "birthtimeUnknown": True,
            "gender": "male",
            "birthplace": "Porto",
        },
    }


@pytest.fixture
def reading_input(reading_payload):
    return validate_reading_input(reading_payload)


@pytest.fixture
def preview_reading(reading_input):
    return create_preview(reading_input)


@pytest.fixture
def pending_order(reading_input):
    """Full reading + pending order with session cs_1 attached.

    Returns a dict of plain ids so tests don't depend on object state.
    """
    key = build_checkout_idempotency_key(reading_input, 999, "usd")
    result = create_or_reuse_full_order(reading_input, key, 999, "usd")
    attach_session(result.order.id, "cs_1")
    return {
        "reading_id": result.reading.id,
        "order_id": result.order.id,
        "idempotency_key": key,
        "session_id": "cs_1",
    }


@pytest.fixture
def audit_types():
    """Audit event types in insertion order, optionally filtered."""

    def _types(**filters):
        query = AuditEvent.query.filter_by(**filters) if filters else AuditEvent.query
        return [e.event_type for e in query.order_by(AuditEvent.id).all()]

    return _types
