"""Stripe event model (webhook dedupe table).

Each verified webhook event is recorded by its Stripe event ID once it has
been handled. A redelivered event is acknowledged with 200 and not handled
again. Gift confirmation is idempotent on its own, so this table only
saves work and keeps a delivery log.
"""

import uuid

from lovewheel.extensions import db


class StripeEvent(db.Model):
    __tablename__ = "stripe_events"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    stripe_event_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "evt_1Abc..."
    event_type = db.Column(
        db.String(255), nullable=False
    )  # e.g. "checkout.session.completed"
    gift_id = db.Column(db.String(36), nullable=True)  # from metadata, if any
    outcome = db.Column(db.String(50), nullable=True)  # confirmation outcome
    processed_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<StripeEvent {self.stripe_event_id} ({self.event_type})>"
