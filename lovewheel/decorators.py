"""
Custom route decorators.

- gift_required: resolves the ``gift_ref`` URL parameter (id or slug) to a
  Gift and stores it on ``g.gift``; 404 if it doesn't exist.
- draft_required: like gift_required, but 410 for disabled gifts and 409
  for gifts that are already paid (content is frozen after payment).
"""

from functools import wraps

from flask import abort, g, jsonify

from lovewheel.services.gift_service import get_gift


def gift_required(f):
    """Load the gift named by the ``gift_ref`` URL parameter into g.gift."""

    @wraps(f)
    def decorated(*args, **kwargs):
        gift = get_gift(kwargs.get("gift_ref"))
        if gift is None:
            abort(404)
        g.gift = gift
        return f(*args, **kwargs)

    return decorated


def draft_required(f):
    """Require an editable (draft) gift."""

    @wraps(f)
    @gift_required
    def decorated(*args, **kwargs):
        if g.gift.is_disabled:
            abort(410)
        if g.gift.is_paid:
            return jsonify(error="Gift is already paid and can no longer be edited."), 409
        return f(*args, **kwargs)

    return decorated
