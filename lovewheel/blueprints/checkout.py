"""Checkout blueprint — Stripe Checkout start + post-checkout resolve.

Route Map:
  POST /api/checkout              — create (or reuse) a Checkout Session
  GET  /api/resolve/<gift_ref>    — existence check, or confirm a session_id

The resolve endpoint is what the post-checkout landing page polls. The
client loop is bounded by the ``max_attempts`` / ``interval_ms`` it gets
back; after that it shows "still confirming" instead of spinning forever.
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from lovewheel.extensions import limiter
from lovewheel.services import gift_service, payment_service
from lovewheel.services.stripe_service import GatewayError

logger = logging.getLogger(__name__)

checkout_bp = Blueprint("checkout", __name__, url_prefix="/api")

RESOLVE_STATUS_CODES = {
    payment_service.CONFIRMED: 200,
    payment_service.ALREADY_PAID: 200,
    payment_service.PENDING: 202,
    payment_service.MISMATCH: 409,
    payment_service.GONE: 410,
    payment_service.NOT_FOUND: 404,
}


def _poll_limits():
    config = current_app.config
    return {
        "max_attempts": config["CONFIRM_POLL_MAX_ATTEMPTS"],
        "interval_ms": int(config["CONFIRM_POLL_INTERVAL_SECONDS"] * 1000),
    }


def _valid_session_id(value):
    return (
        isinstance(value, str)
        and value.startswith("cs_")
        and 3 < len(value) <= 255
    )


# ──────────────────────────────────────────────
# POST /api/checkout
# ──────────────────────────────────────────────

@checkout_bp.route("/checkout", methods=["POST"])
@limiter.limit("30 per hour")
def checkout():
    """Start payment for a gift.

    Body: { gift_id }
    Returns: { url, session_id, slug, already_paid }
    """
    data = request.get_json(silent=True) or {}
    gift_id = data.get("gift_id") if isinstance(data, dict) else None
    if not isinstance(gift_id, str) or not gift_id.strip():
        return jsonify(error="Missing gift_id"), 400

    gift = gift_service.get_gift(gift_id.strip())
    if gift is None:
        return jsonify(error="Gift not found"), 404
    if gift.is_disabled:
        return jsonify(error="This gift is no longer available"), 410
    if not gift.is_paid and not gift_service.is_complete(gift):
        return jsonify(error="Gift is incomplete. Add the phrase, date, photo and letter first."), 422

    try:
        session = payment_service.start_checkout(gift)
    except GatewayError:
        return jsonify(error="Payment provider unavailable. Please try again."), 502

    return jsonify(session)


# ──────────────────────────────────────────────
# GET /api/resolve/<gift_ref>
# ──────────────────────────────────────────────

@checkout_bp.route("/resolve/<gift_ref>", methods=["GET"])
@limiter.limit("120 per minute")
def resolve(gift_ref):
    """Resolve a gift after the Checkout redirect.

    Without ``session_id``: bare existence acknowledgment (unblocks the
    "preparing checkout" screen).
    With ``session_id``: confirm the session against this gift.
        200 confirmed / already paid
        202 pending, poll again
        409 session belongs to another gift
        410 gift disabled
    """
    session_id = request.args.get("session_id")

    if session_id is None:
        gift = gift_service.get_gift(gift_ref)
        if gift is None:
            return jsonify(error="Gift not found"), 404
        return jsonify(exists=True, slug=gift.slug)

    if not _valid_session_id(session_id):
        return jsonify(error="Invalid session_id"), 400

    result = payment_service.confirm_payment(
        gift_ref, payment_service.SessionEvidence(session_id)
    )
    if result.outcome == payment_service.MISMATCH:
        logger.warning(f"Resolve mismatch: session {session_id} vs gift {gift_ref}")

    body = result.to_dict()
    if result.outcome == payment_service.PENDING:
        body.update(_poll_limits())

    response = jsonify(body)
    response.status_code = RESOLVE_STATUS_CODES[result.outcome]
    response.headers["Cache-Control"] = "no-store, max-age=0"
    return response
