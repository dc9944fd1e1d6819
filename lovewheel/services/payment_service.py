"""Payment service — gift lifecycle and payment confirmation.

Single place that decides whether a gift is paid. Three signals can say
so, in any order, more than once, or never:

1. A signed Stripe webhook (checkout.session.completed /
   checkout.session.async_payment_succeeded).
2. The buyer's browser coming back from Checkout with a session_id and
   asking us to resolve it.
3. The checkout session id stored on the gift (operator sync).

All of them end up in confirm_payment(). The only write it performs is
gift_service.mark_paid_if_draft(), a compare-and-set on status, so
whichever signal lands first wins and every later one sees already_paid.
A payment is only ever applied to the gift named in the Checkout
Session's metadata.

load_public() is the read guard for the reveal page and never writes.
"""

import logging
import time
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy.exc import IntegrityError

from lovewheel.extensions import db
from lovewheel.models.gift import Gift
from lovewheel.models.stripe_event import StripeEvent
from lovewheel.services import gift_service, stripe_service
from lovewheel.services.email_service import send_gift_ready_email
from lovewheel.services.stripe_service import (
    CONFIRMING_EVENTS,
    GatewayError,
    InvalidSignatureError,
    WebhookNotConfiguredError,
)

logger = logging.getLogger(__name__)

# -- Confirmation outcomes --
ALREADY_PAID = "already_paid"
CONFIRMED = "confirmed"
PENDING = "pending"
MISMATCH = "mismatch"
NOT_FOUND = "not_found"
INVALID_SIGNATURE = "invalid_signature"
GONE = "gone"  # disabled gifts never transition

# Outcomes a poller should stop on
TERMINAL_OUTCOMES = {ALREADY_PAID, CONFIRMED, MISMATCH, NOT_FOUND, INVALID_SIGNATURE, GONE}

# -- Read guard outcomes --
PUBLIC_OK = "ok"
PUBLIC_PAYMENT_REQUIRED = "payment_required"
PUBLIC_GONE = "gone"
PUBLIC_NOT_FOUND = "not_found"


# ──────────────────────────────────────────────
# Evidence & results
# ──────────────────────────────────────────────

class WebhookEvidence:
    """Raw webhook body + Stripe-Signature header, not yet trusted."""

    kind = "webhook_event"

    def __init__(self, payload, signature):
        self.payload = payload
        self.signature = signature


class SessionEvidence:
    """A Checkout Session id handed to us by the client or stored on the gift."""

    kind = "session_id"

    def __init__(self, session_id):
        self.value = session_id


class NoEvidence:
    """Status query only; never transitions."""

    kind = "none"


class ConfirmationResult:
    def __init__(self, outcome, gift=None, paid_at=None,
                 payment_reference=None, reason=None):
        self.outcome = outcome
        self.gift = gift
        self.paid_at = paid_at
        self.payment_reference = payment_reference
        self.reason = reason

    @property
    def is_paid(self):
        return self.outcome in (ALREADY_PAID, CONFIRMED)

    def to_dict(self):
        """Client-facing view. The payment reference stays server-side."""
        data = {
            "outcome": self.outcome,
            "paid": self.is_paid,
        }
        if self.gift is not None:
            data["slug"] = self.gift.slug
        if self.paid_at is not None:
            data["paid_at"] = self.paid_at.isoformat()
        if self.reason:
            data["reason"] = self.reason
        return data

    def __repr__(self):
        return f"<ConfirmationResult {self.outcome} reason={self.reason}>"


class PublicGiftResult:
    def __init__(self, outcome, gift=None):
        self.outcome = outcome
        self.gift = gift

    def to_dict(self):
        if self.outcome == PUBLIC_OK:
            return self.gift.to_public_dict()
        if self.outcome == PUBLIC_PAYMENT_REQUIRED:
            return {
                "error": "Payment required",
                "needs_payment": True,
                "preview": self.gift.teaser_dict(),
            }
        if self.outcome == PUBLIC_GONE:
            return {"error": "This gift is no longer available"}
        return {"error": "Gift not found"}


# ──────────────────────────────────────────────
# Confirmation
# ──────────────────────────────────────────────

def confirm_payment(gift_ref, evidence):
    """Reconcile one piece of payment evidence against a gift.

    Args:
        gift_ref: gift id or slug.
        evidence: WebhookEvidence | SessionEvidence | NoEvidence.

    Returns a ConfirmationResult. Gateway failures come back as pending
    (retryable), never as an exception and never as paid.
    """
    if evidence.kind == WebhookEvidence.kind:
        try:
            event = stripe_service.verify_webhook_signature(
                evidence.payload, evidence.signature
            )
        except InvalidSignatureError as e:
            logger.warning(f"Rejected webhook evidence for {gift_ref}: {e}")
            return ConfirmationResult(INVALID_SIGNATURE, reason=str(e))
        except WebhookNotConfiguredError:
            return ConfirmationResult(PENDING, reason="webhook_not_configured")
        gift = gift_service.get_gift(gift_ref)
        if gift is None:
            return ConfirmationResult(NOT_FOUND)
        return _confirm_with_event(gift, event)

    gift = gift_service.get_gift(gift_ref)
    if gift is None:
        return ConfirmationResult(NOT_FOUND)

    stored = _stored_status_result(gift)
    if stored is not None:
        return stored

    if evidence.kind == SessionEvidence.kind:
        return _confirm_with_session(gift, evidence.value)

    return ConfirmationResult(PENDING, gift=gift, reason="awaiting_payment")


def _stored_status_result(gift):
    """Short-circuit for gifts that can no longer transition."""
    if gift.status == Gift.STATUS_PAID:
        return ConfirmationResult(
            ALREADY_PAID,
            gift=gift,
            paid_at=gift.paid_at,
            payment_reference=gift.payment_reference,
        )
    if gift.status == Gift.STATUS_DISABLED:
        return ConfirmationResult(GONE, gift=gift)
    return None


def _confirm_with_event(gift, event):
    """Apply a signature-verified webhook event to ``gift``."""
    stored = _stored_status_result(gift)
    if stored is not None:
        return stored

    event_type = event["type"]
    if event_type not in CONFIRMING_EVENTS:
        return ConfirmationResult(PENDING, gift=gift, reason="unsupported_event")

    session = stripe_service.session_to_dict(event["data"]["object"])

    if session["metadata"].get("gift_id") != gift.id:
        logger.warning(
            f"{event_type} {event.get('id')} names gift "
            f"{session['metadata'].get('gift_id')!r}, not {gift.id}; ignoring"
        )
        return ConfirmationResult(MISMATCH, gift=gift, reason="metadata_mismatch")

    # Delayed payment methods complete the session before the money settles;
    # async_payment_succeeded follows once it does.
    if session["payment_status"] != "paid":
        return ConfirmationResult(PENDING, gift=gift, reason="awaiting_async_payment")

    return _transition(gift, session, source=event_type)


def _confirm_with_session(gift, session_id):
    """Ask Stripe about a Checkout Session and apply it to ``gift``."""
    try:
        session = stripe_service.retrieve_session(session_id)
    except GatewayError:
        return ConfirmationResult(PENDING, gift=gift, reason="gateway_unavailable")

    if session["status"] != "complete" or session["payment_status"] != "paid":
        return ConfirmationResult(PENDING, gift=gift, reason="awaiting_payment")

    if session["metadata"].get("gift_id") != gift.id:
        logger.warning(
            f"Session {session_id} belongs to gift "
            f"{session['metadata'].get('gift_id')!r}, not {gift.id}"
        )
        gift_service.log_gift_audit(gift.id, "gift.payment_mismatch", {
            "session_id": session_id,
            "session_gift_id": session["metadata"].get("gift_id"),
        })
        db.session.commit()
        return ConfirmationResult(MISMATCH, gift=gift, reason="session_gift_mismatch")

    return _transition(gift, session, source="session")


def _transition(gift, session, source):
    """Run the compare-and-set and, if this caller won, its side effects."""
    gift_id = gift.id
    paid_at = datetime.now(timezone.utc)
    reference = session["payment_intent"] or session["id"]

    applied = gift_service.mark_paid_if_draft(
        gift_id, reference, paid_at=paid_at, session_id=session["id"]
    )
    if not applied:
        # Another path got there first (or the gift was disabled meanwhile)
        current = db.session.get(Gift, gift_id)
        logger.info(f"Gift {gift_id} already transitioned; {source} is a no-op")
        return _stored_status_result(current) or ConfirmationResult(
            PENDING, gift=current, reason="conflict"
        )

    gift_service.log_gift_audit(gift_id, "gift.paid", {
        "source": source,
        "payment_reference": reference,
        "session_id": session["id"],
    })
    db.session.commit()

    gift = db.session.get(Gift, gift_id)
    _notify_buyer(gift, session.get("customer_email"))

    return ConfirmationResult(
        CONFIRMED, gift=gift, paid_at=paid_at, payment_reference=reference
    )


def _notify_buyer(gift, email):
    """Send the "gift ready" email. Never lets a mail failure undo a payment."""
    if not email:
        return
    try:
        send_gift_ready_email(email, gift, gift_service.gift_url(gift))
    except Exception as e:
        logger.error(f"Failed to send gift-ready email for gift {gift.id}: {e}")


# ──────────────────────────────────────────────
# Webhook entry point
# ──────────────────────────────────────────────

def handle_webhook_event(event):
    """Process a verified Stripe webhook event.

    Dedupes on the stripe_events table, then routes checkout events to
    the same confirmation path as every other signal. The target gift is
    taken from the session metadata.

    Returns (success: bool, message: str).
    """
    event_id = event["id"]
    event_type = event["type"]

    existing = StripeEvent.query.filter_by(stripe_event_id=event_id).first()
    if existing:
        logger.info(f"Duplicate webhook event {event_id}, skipping")
        return True, "already_processed"

    gift_id = None
    outcome = "ignored"

    if event_type in CONFIRMING_EVENTS:
        session = event["data"]["object"]
        gift_id = (session.get("metadata") or {}).get("gift_id")
        if not gift_id:
            logger.warning(f"{event_type} {event_id} has no gift_id in metadata")
            outcome = "no_gift"
        else:
            try:
                gift = gift_service.get_gift(gift_id)
                if gift is None:
                    logger.warning(f"{event_type} {event_id}: unknown gift {gift_id}")
                    outcome = NOT_FOUND
                else:
                    outcome = _confirm_with_event(gift, event).outcome
            except Exception as e:
                logger.error(f"Error handling {event_type}: {e}", exc_info=True)
                db.session.rollback()
                return False, str(e)
    else:
        logger.info(f"Ignoring webhook event type {event_type}")

    db.session.add(StripeEvent(
        stripe_event_id=event_id,
        event_type=event_type,
        gift_id=gift_id,
        outcome=outcome,
    ))
    try:
        db.session.commit()
    except IntegrityError:
        # Concurrent redelivery recorded it first
        db.session.rollback()
        return True, "already_processed"

    return True, outcome


# ──────────────────────────────────────────────
# Checkout
# ──────────────────────────────────────────────

def start_checkout(gift):
    """Return a Checkout URL for a draft gift.

    Reuses the gift's open session when there is one. A paid gift gets
    its own share URL back instead.

    Returns dict(url, session_id, slug, already_paid).
    Raises GatewayError if Stripe can't create the session.
    """
    if gift.is_paid:
        return {
            "url": gift_service.gift_url(gift),
            "session_id": None,
            "slug": gift.slug,
            "already_paid": True,
        }

    session = stripe_service.reuse_open_session(gift.checkout_session_id)
    if session is None:
        session = stripe_service.create_checkout_session(gift)
        gift_service.log_gift_audit(gift.id, "gift.checkout_started", {
            "session_id": session["session_id"],
        })
        gift_service.update_gift(gift.id, checkout_session_id=session["session_id"])

    return {
        "url": session["url"],
        "session_id": session["session_id"],
        "slug": gift.slug,
        "already_paid": False,
    }


# ──────────────────────────────────────────────
# Read guard
# ──────────────────────────────────────────────

def load_public(slug):
    """Resolve the public reveal page for ``slug``. Read-only.

    disabled wins over paid; draft never exposes the letter or photo.
    """
    gift = None
    if slug and isinstance(slug, str) and len(slug) <= 36:
        gift = Gift.query.filter_by(slug=slug).first()

    if gift is None:
        return PublicGiftResult(PUBLIC_NOT_FOUND)
    if gift.status == Gift.STATUS_DISABLED:
        return PublicGiftResult(PUBLIC_GONE, gift)
    if gift.status == Gift.STATUS_PAID:
        return PublicGiftResult(PUBLIC_OK, gift)
    return PublicGiftResult(PUBLIC_PAYMENT_REQUIRED, gift)


# ──────────────────────────────────────────────
# Bounded polling & operator sync
# ──────────────────────────────────────────────

def poll_confirmation(gift_ref, session_id, max_attempts=None, interval=None,
                      sleep=time.sleep):
    """Resolve a session repeatedly until it settles or attempts run out.

    Stops on the first terminal outcome. After ``max_attempts`` pending
    answers returns pending with reason "timeout" ("still confirming").
    """
    config = current_app.config
    if max_attempts is None:
        max_attempts = config["CONFIRM_POLL_MAX_ATTEMPTS"]
    if interval is None:
        interval = config["CONFIRM_POLL_INTERVAL_SECONDS"]

    result = None
    for attempt in range(1, max_attempts + 1):
        result = confirm_payment(gift_ref, SessionEvidence(session_id))
        if result.outcome in TERMINAL_OUTCOMES:
            return result
        logger.debug(f"Gift {gift_ref} still pending ({result.reason}), attempt {attempt}")
        if attempt < max_attempts:
            sleep(interval)

    logger.info(f"Gift {gift_ref} still confirming after {max_attempts} attempts")
    return ConfirmationResult(
        PENDING, gift=result.gift if result else None, reason="timeout"
    )


def sync_pending_payments(limit=50):
    """Re-check drafts that have a stored Checkout Session.

    Fallback for missed webhooks. Uses the same session verification
    (including the metadata check) as the client resolve path.

    Returns {gift_id: outcome}.
    """
    candidates = [
        (gift.id, gift.checkout_session_id)
        for gift in (
            Gift.query
            .filter(
                Gift.status == Gift.STATUS_DRAFT,
                Gift.checkout_session_id.isnot(None),
            )
            .order_by(Gift.created_at.desc())
            .limit(limit)
            .all()
        )
    ]

    results = {}
    for gift_id, session_id in candidates:
        result = confirm_payment(gift_id, SessionEvidence(session_id))
        results[gift_id] = result.outcome
        if result.outcome == CONFIRMED:
            logger.info(f"Synced payment for gift {gift_id} from session {session_id}")
    return results
