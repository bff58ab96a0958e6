"""Reading request model.

One row per analysis request. person_a / person_b hold the sanitized
birth details produced by services.reading_validation. preview_result is
written at creation; full_result is written once, by the content stage of
webhook reconciliation, and is only ever shown to callers when a paid
order exists for the reading.
"""

import uuid

from soulcross.extensions import db


class ReadingRequest(db.Model):
    __tablename__ = "reading_requests"

    MODES = ["preview", "full"]

    # -- Durable "pending content generation" marker --
    CONTENT_PENDING = "pending"
    CONTENT_READY = "ready"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    mode = db.Column(db.String(20), nullable=False)  # preview | full
    person_a = db.Column(db.JSON, nullable=False)
    person_b = db.Column(db.JSON, nullable=False)
    preview_result = db.Column(db.JSON, nullable=True)
    full_result = db.Column(db.JSON, nullable=True)
    content_status = db.Column(
        db.String(20), nullable=True, index=True
    )  # None | pending | ready
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    orders = db.relationship(
        "Order",
        back_populates="reading",
        order_by="Order.created_at",
    )

    @property
    def reading_input(self):
        """The sanitized input in the shape the content generator takes."""
        return {"person_a": self.person_a, "person_b": self.person_b}

    def __repr__(self):
        return f"<ReadingRequest {self.id} ({self.mode})>"
