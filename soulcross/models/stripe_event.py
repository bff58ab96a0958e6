"""Stripe event model (processed-webhook set).

Every verified webhook event is recorded by its Stripe event ID in the
same transaction as the state change it caused. Before touching any
state, the reconciler checks this table; if the event_id is already
present the delivery is a replay and is acknowledged without side effects.
"""

import uuid

from soulcross.extensions import db


class StripeEvent(db.Model):
    __tablename__ = "stripe_events"

    OUTCOMES = ["processed", "ignored", "session_not_found", "unpaid"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    stripe_event_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "evt_1Abc..." or "sync:cs_..." for polling reconciliation
    event_type = db.Column(
        db.String(255), nullable=False
    )  # e.g. "checkout.session.completed"
    outcome = db.Column(db.String(50), nullable=False, default="processed")
    processed_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<StripeEvent {self.stripe_event_id} ({self.outcome})>"
