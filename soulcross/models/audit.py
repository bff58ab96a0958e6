"""Audit event model.

Append-only trail of every paywall state change (preview created, order
created/reused, session attached, order paid, webhook ignored/failed...).
Business logic never reads it back; the `flask show-events` command does.

The integer primary key is assigned at insert, so ordering by id gives
the order in which the causing writes were admitted.
"""

from soulcross.extensions import db


class AuditEvent(db.Model):
    __tablename__ = "paywall_events"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    event_type = db.Column(
        db.String(255), nullable=False, index=True
    )  # e.g. "checkout.requested"
    reading_request_id = db.Column(
        db.String(36), db.ForeignKey("reading_requests.id"), nullable=True
    )
    order_id = db.Column(
        db.String(36), db.ForeignKey("orders.id"), nullable=True
    )
    payload = db.Column(db.JSON, default=dict)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def to_dict(self):
        return {
            "id": self.id,
            "type": self.event_type,
            "readingRequestId": self.reading_request_id,
            "orderId": self.order_id,
            "payload": self.payload or {},
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<AuditEvent {self.event_type}>"
