"""Order model.

One payment attempt for a reading. idempotency_key is the natural key
used to deduplicate checkout requests; stripe_session_id is attached once
a Checkout Session exists and is how webhooks find the order again.

Status only moves forward: pending -> paid.
"""

import uuid
from datetime import datetime, timezone

from soulcross.extensions import db


class Order(db.Model):
    __tablename__ = "orders"

    STATUSES = ["pending", "paid"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    reading_request_id = db.Column(
        db.String(36),
        db.ForeignKey("reading_requests.id"),
        nullable=False,
        index=True,
    )
    stripe_session_id = db.Column(
        db.String(255), unique=True, nullable=True
    )  # e.g. "cs_test_a1B2..."
    stripe_payment_intent_id = db.Column(
        db.String(255), nullable=True
    )  # e.g. "pi_3Abc..."
    status = db.Column(db.String(20), nullable=False, default="pending")
    idempotency_key = db.Column(db.String(64), unique=True, nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(10), nullable=False)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    reading = db.relationship("ReadingRequest", back_populates="orders")

    @property
    def is_paid(self):
        return self.status == "paid"

    def mark_paid(self, payment_intent_id=None):
        """Transition to paid. Returns False if the order was already paid."""
        if self.is_paid:
            return False
        self.status = "paid"
        if payment_intent_id:
            self.stripe_payment_intent_id = payment_intent_id
        self.updated_at = datetime.now(timezone.utc)
        return True

    def __repr__(self):
        return f"<Order {self.id} {self.amount_cents} {self.currency} ({self.status})>"
