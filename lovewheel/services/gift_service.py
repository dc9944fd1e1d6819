"""Gift service — persistence helpers for the gift record.

Responsible for:
- Slug generation (cryptographically random, URL-safe)
- Validating and sanitizing draft content (bleach strips all HTML)
- Creating drafts and last-write-wins updates of content fields
- The atomic draft -> paid compare-and-set used by payment confirmation
- Soft-deleting gifts (-> disabled)
- Audit rows for lifecycle actions

Status is never assigned on a loaded instance outside this module.
"""

import html
import logging
import secrets
from datetime import date, datetime, timezone

import bleach
from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from lovewheel.extensions import db
from lovewheel.models.audit import AuditEvent
from lovewheel.models.gift import Gift

logger = logging.getLogger(__name__)

SLUG_LENGTH = 12
SLUG_ATTEMPTS = 5

PHRASE_MIN, PHRASE_MAX = 3, 80
LETTER_MIN, LETTER_MAX = 30, 4000

# Fields only this module's transition functions may write
PROTECTED_FIELDS = {"id", "slug", "status", "paid_at", "payment_reference", "disabled_at"}


class GiftValidationError(ValueError):
    """Malformed client input. Carries one message per failed field."""

    def __init__(self, errors):
        self.errors = list(errors)
        super().__init__(" ".join(self.errors))


def generate_slug(length=SLUG_LENGTH):
    """Random URL-safe token (A-Z a-z 0-9 - _), never sequential."""
    return secrets.token_urlsafe(length)[:length]


def _sanitize(text):
    """Strip all HTML tags from user input and return plain text.

    bleach escapes ``&``/``<``/``>`` in what it keeps; this API stores and
    returns plain text, so entities are decoded again.
    """
    return html.unescape(bleach.clean(text, tags=[], strip=True)).strip()


def _text_field(data, name, errors):
    """Sanitized text for ``name``, or None (with an error) if it isn't a string."""
    value = data.get(name)
    if value is None:
        return ""
    if not isinstance(value, str):
        errors.append(f"{name.capitalize()} must be text.")
        return None
    return _sanitize(value)


def _parse_start_date(value):
    """Accept "YYYY-MM-DD" or a full ISO timestamp; return a date or None."""
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    try:
        if len(value) == 10:
            return date.fromisoformat(value)
        return datetime.fromisoformat(value).date()
    except ValueError:
        return None


def validate_gift_fields(data):
    """Validate draft content from a request body.

    Returns a dict of cleaned values ready for the model.
    Raises GiftValidationError listing every problem found.
    """
    if not isinstance(data, dict):
        raise GiftValidationError(["Invalid request."])

    errors = []
    phrase = _text_field(data, "phrase", errors)
    letter = _text_field(data, "letter", errors)
    start_date = _parse_start_date(data.get("relationship_start_date"))

    if phrase is not None and not PHRASE_MIN <= len(phrase) <= PHRASE_MAX:
        errors.append(f"Phrase must be {PHRASE_MIN}-{PHRASE_MAX} characters.")
    if letter is not None and not LETTER_MIN <= len(letter) <= LETTER_MAX:
        errors.append(f"Letter must be {LETTER_MIN}-{LETTER_MAX} characters.")
    if start_date is None:
        errors.append("Relationship start date must be a valid date (YYYY-MM-DD).")
    elif start_date > datetime.now(timezone.utc).date():
        errors.append("Relationship start date cannot be in the future.")
    elif start_date.year < 1900:
        errors.append("Relationship start date is too far in the past.")

    if errors:
        raise GiftValidationError(errors)

    return {
        "phrase": phrase,
        "letter": letter,
        "relationship_start_date": start_date,
    }


def log_gift_audit(gift_id, action, metadata=None):
    """Add an audit row. Flushes; the caller commits."""
    event = AuditEvent(
        gift_id=gift_id,
        action=action,
        metadata_=metadata or {},
    )
    db.session.add(event)
    db.session.flush()


def create_draft(data):
    """Validate content and insert a new draft gift with a fresh slug.

    Returns the committed Gift.
    Raises GiftValidationError on bad input.
    """
    fields = validate_gift_fields(data)

    for _ in range(SLUG_ATTEMPTS):
        gift = Gift(slug=generate_slug(), status=Gift.STATUS_DRAFT, **fields)
        db.session.add(gift)
        try:
            db.session.flush()
        except IntegrityError:
            # Slug collision, astronomically rare: draw again
            db.session.rollback()
            logger.warning("Slug collision on gift insert, retrying")
            continue

        log_gift_audit(gift.id, "gift.created", {"slug": gift.slug})
        db.session.commit()
        logger.info(f"Created draft gift {gift.id} ({gift.slug})")
        return gift

    raise RuntimeError("Could not allocate a unique gift slug")


def get_gift(ref):
    """Look up a gift by id, falling back to slug. Returns Gift or None."""
    if not ref or not isinstance(ref, str) or len(ref) > 36:
        return None
    gift = db.session.get(Gift, ref)
    if gift is None:
        gift = Gift.query.filter_by(slug=ref).first()
    return gift


def update_gift(gift_id, **fields):
    """Last-write-wins update of non-status fields.

    Used by the photo upload (photo_url/photo_path) and by checkout
    (checkout_session_id). Returns the Gift, or None if it doesn't exist.
    """
    blocked = PROTECTED_FIELDS.intersection(fields)
    if blocked:
        raise ValueError(f"Cannot update protected fields: {', '.join(sorted(blocked))}")

    gift = db.session.get(Gift, gift_id)
    if gift is None:
        return None

    for name, value in fields.items():
        setattr(gift, name, value)
    db.session.commit()
    return gift


def mark_paid_if_draft(gift_id, payment_reference, paid_at=None, session_id=None):
    """Atomically move a gift from draft to paid.

    Issues a single ``UPDATE gifts ... WHERE id = :id AND status = 'draft'``
    so two confirmation paths racing on the same gift can't both apply.
    Returns True only for the caller whose write landed; that caller owns
    the side effects of the transition (audit row, email).
    """
    paid_at = paid_at or datetime.now(timezone.utc)
    values = {
        "status": Gift.STATUS_PAID,
        "paid_at": paid_at,
        "payment_reference": payment_reference,
        "updated_at": paid_at,
    }
    if session_id:
        values["checkout_session_id"] = session_id

    result = db.session.execute(
        update(Gift)
        .where(Gift.id == gift_id, Gift.status == Gift.STATUS_DRAFT)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()

    applied = result.rowcount == 1
    if applied:
        logger.info(f"Gift {gift_id} transitioned draft -> paid ({payment_reference})")
    return applied


def disable_gift(ref, reason=None):
    """Soft-delete a gift (draft|paid -> disabled). Idempotent.

    Returns the Gift, or None if it doesn't exist. paid_at is kept as
    payment history.
    """
    gift = get_gift(ref)
    if gift is None:
        return None
    if gift.is_disabled:
        return gift

    now = datetime.now(timezone.utc)
    result = db.session.execute(
        update(Gift)
        .where(Gift.id == gift.id, Gift.status != Gift.STATUS_DISABLED)
        .values(status=Gift.STATUS_DISABLED, disabled_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        log_gift_audit(gift.id, "gift.disabled", {"reason": reason} if reason else {})
    db.session.commit()
    logger.info(f"Gift {gift.id} disabled")
    return db.session.get(Gift, gift.id)


def is_complete(gift):
    """True when every content field is filled in (required before checkout)."""
    return bool(
        gift.phrase
        and gift.relationship_start_date
        and gift.letter
        and gift.photo_url
    )


def gift_url(gift):
    """Public share URL of the reveal page."""
    base_url = current_app.config["APP_BASE_URL"].rstrip("/")
    return f"{base_url}/g/{gift.slug}"
