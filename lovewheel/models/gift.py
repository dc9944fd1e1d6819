"""Gift model.

One row per personalized gift page. ``status`` is the single source of
truth for visibility on the public read path:

    draft     -> payment required (content stays locked)
    paid      -> readable by slug
    disabled  -> gone (soft delete, terminal)

Status only moves forward. The draft -> paid transition is applied by
gift_service.mark_paid_if_draft() as a conditional UPDATE, never by
assigning ``status`` on a loaded instance.
"""

import uuid

from lovewheel.extensions import db


class Gift(db.Model):
    __tablename__ = "gifts"

    STATUS_DRAFT = "draft"
    STATUS_PAID = "paid"
    STATUS_DISABLED = "disabled"
    STATUSES = [STATUS_DRAFT, STATUS_PAID, STATUS_DISABLED]

    __table_args__ = (
        db.CheckConstraint(
            "status IN (" + ", ".join(f"'{s}'" for s in STATUSES) + ")",
            name="ck_gifts_status",
        ),
    )

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    slug = db.Column(db.String(16), unique=True, nullable=False, index=True)
    status = db.Column(
        db.String(20), default=STATUS_DRAFT, nullable=False, index=True
    )  # draft | paid | disabled

    # --- Content ---
    phrase = db.Column(db.String(80), nullable=True)
    relationship_start_date = db.Column(db.Date, nullable=True)
    letter = db.Column(db.Text, nullable=True)
    photo_url = db.Column(db.String(1000), nullable=True)
    photo_path = db.Column(db.String(500), nullable=True)  # <gift_id>/cover.<ext>

    # --- Payment ---
    checkout_session_id = db.Column(
        db.String(255), nullable=True, index=True
    )  # last Checkout Session created, e.g. "cs_test_..."
    payment_reference = db.Column(
        db.String(255), nullable=True
    )  # payment intent id ("pi_...") or the session id when there is none
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    disabled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    audit_events = db.relationship(
        "AuditEvent", back_populates="gift", lazy="dynamic"
    )

    @property
    def is_paid(self):
        return self.status == self.STATUS_PAID

    @property
    def is_disabled(self):
        return self.status == self.STATUS_DISABLED

    def teaser_dict(self):
        """Fields safe to show before payment (no letter, no photo).

        Addressed by slug only; the internal id stays server-side.
        """
        return {
            "slug": self.slug,
            "phrase": self.phrase,
            "relationship_start_date": (
                self.relationship_start_date.isoformat()
                if self.relationship_start_date else None
            ),
        }

    def to_public_dict(self):
        """Full content for the reveal page. Only served for paid gifts."""
        data = self.teaser_dict()
        data.update({
            "status": self.status,
            "letter": self.letter,
            "photo_url": self.photo_url,
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
        })
        return data

    def __repr__(self):
        return f"<Gift {self.slug} ({self.status})>"
