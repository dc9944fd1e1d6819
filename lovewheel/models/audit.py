"""Audit event model.

Append-only log of gift lifecycle actions (created, photo uploaded,
checkout started, paid, mismatch, disabled) for debugging payment issues.
"""

import uuid

from lovewheel.extensions import db


class AuditEvent(db.Model):
    __tablename__ = "audit_events"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    gift_id = db.Column(
        db.String(36), db.ForeignKey("gifts.id"), nullable=True, index=True
    )
    action = db.Column(db.String(255), nullable=False)  # e.g. "gift.paid"
    metadata_ = db.Column(
        "metadata", db.JSON, default=dict
    )  # extra context, named metadata_ to avoid the declarative attribute clash
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    gift = db.relationship("Gift", back_populates="audit_events")

    def __repr__(self):
        return f"<AuditEvent {self.action}>"
