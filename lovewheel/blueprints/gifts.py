"""Gifts blueprint — /api/gifts/*

Route Map:
  POST /api/gifts                    — create a draft gift
  POST /api/gifts/<gift_ref>/photo   — upload / replace the cover photo
  GET  /api/gifts/<slug>             — public reveal payload (paid gifts only)
  GET  /api/gifts/<gift_ref>/status  — stored payment status, no gateway call
"""

import logging

from flask import Blueprint, g, jsonify, request

from lovewheel.decorators import draft_required
from lovewheel.extensions import limiter
from lovewheel.services import gift_service, payment_service, storage_service
from lovewheel.services.gift_service import GiftValidationError
from lovewheel.services.storage_service import StorageError

logger = logging.getLogger(__name__)

gifts_bp = Blueprint("gifts", __name__, url_prefix="/api/gifts")

PUBLIC_STATUS_CODES = {
    payment_service.PUBLIC_OK: 200,
    payment_service.PUBLIC_PAYMENT_REQUIRED: 402,
    payment_service.PUBLIC_GONE: 410,
    payment_service.PUBLIC_NOT_FOUND: 404,
}


def _no_store(response):
    """Payment status can change at any moment; never cache gift reads."""
    response.headers["Cache-Control"] = "no-store, max-age=0"
    return response


# ──────────────────────────────────────────────
# POST /api/gifts
# ──────────────────────────────────────────────

@gifts_bp.route("", methods=["POST"])
@limiter.limit("30 per hour")
def create_gift():
    """Create a draft gift from the builder's phrase, date and letter.

    Returns: { id, slug, status } with 201.
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not data:
        return jsonify(error="Invalid request."), 400

    try:
        gift = gift_service.create_draft(data)
    except GiftValidationError as e:
        return jsonify(error=str(e), errors=e.errors), 422

    return jsonify(id=gift.id, slug=gift.slug, status=gift.status), 201


# ──────────────────────────────────────────────
# POST /api/gifts/<gift_ref>/photo
# ──────────────────────────────────────────────

@gifts_bp.route("/<gift_ref>/photo", methods=["POST"])
@limiter.limit("60 per hour")
@draft_required
def upload_photo(gift_ref):
    """Store the cover photo under <gift_id>/cover.<ext>, replacing any previous one.

    Expects multipart/form-data with a ``file`` field.
    Returns: { url, path }.
    """
    file = request.files.get("file")
    ok, error = storage_service.validate_image(file)
    if not ok:
        return jsonify(error=error), 422

    gift = g.gift
    previous_path = gift.photo_path

    try:
        stored = storage_service.upload_cover(file, gift.id)
    except StorageError:
        return jsonify(error="Upload failed. Please try again."), 502

    # Same slot, different extension: the old object would be orphaned
    if previous_path and previous_path != stored["storage_path"]:
        storage_service.delete_file(previous_path)

    gift_service.log_gift_audit(gift.id, "gift.photo_uploaded", {
        "path": stored["storage_path"],
        "content_type": stored["content_type"],
        "file_size": stored["file_size"],
    })
    gift_service.update_gift(
        gift.id,
        photo_url=stored["public_url"],
        photo_path=stored["storage_path"],
    )

    return jsonify(url=stored["public_url"], path=stored["storage_path"])


# ──────────────────────────────────────────────
# GET /api/gifts/<slug>
# ──────────────────────────────────────────────

@gifts_bp.route("/<slug>", methods=["GET"])
def public_gift(slug):
    """Reveal payload for the wheel page.

    200 with full content when paid, 402 with a teaser when still a draft,
    410 when disabled, 404 when unknown.
    """
    result = payment_service.load_public(slug)
    response = jsonify(result.to_dict())
    response.status_code = PUBLIC_STATUS_CODES[result.outcome]
    return _no_store(response)


# ──────────────────────────────────────────────
# GET /api/gifts/<gift_ref>/status
# ──────────────────────────────────────────────

@gifts_bp.route("/<gift_ref>/status", methods=["GET"])
def gift_status(gift_ref):
    """Stored payment status by id or slug. Never contacts Stripe."""
    result = payment_service.confirm_payment(gift_ref, payment_service.NoEvidence())
    if result.outcome == payment_service.NOT_FOUND:
        return jsonify(error="Gift not found"), 404

    body = result.to_dict()
    body["status"] = result.gift.status
    return _no_store(jsonify(body))
