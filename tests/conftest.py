"""Shared test fixtures for the LoveWheel test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, no storage/email)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- seed_data: a complete draft, a bare draft, a paid gift and a disabled gift
- checkout_event / signed_webhook: build Stripe webhook payloads signed
  with the test STRIPE_WEBHOOK_SECRET (real Stripe signing scheme)
- stripe_session: build Checkout Session API responses
"""

import hashlib
import hmac
import json
import time
from datetime import date, datetime, timezone

import pytest

from lovewheel import create_app
from lovewheel.extensions import db as _db
from lovewheel.models.gift import Gift

LETTER = (
    "Every ordinary Tuesday with you turned into a small celebration, "
    "and I would choose all of them again."
)


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def upload_dir(app, tmp_path, monkeypatch):
    """Point local (dev) uploads at a temp dir."""
    monkeypatch.setattr(app, "instance_path", str(tmp_path))
    return tmp_path / "uploads"


@pytest.fixture
def seed_data(app, db_session):
    """Seed one gift per lifecycle state.

    Returns a dict of plain ids/slugs so tests can use them across
    app contexts.
    """
    with app.app_context():
        # --- Complete draft (ready for checkout) ---
        draft = Gift(
            slug="draftGift001",
            status=Gift.STATUS_DRAFT,
            phrase="You are my favorite",
            relationship_start_date=date(2019, 6, 14),
            letter=LETTER,
            photo_url="/uploads/draft/cover.jpg",
            photo_path="draft/cover.jpg",
        )
        _db.session.add(draft)

        # --- Draft without a photo yet ---
        bare = Gift(
            slug="bareGift0001",
            status=Gift.STATUS_DRAFT,
            phrase="Still counting",
            relationship_start_date=date(2021, 2, 1),
            letter=LETTER,
        )
        _db.session.add(bare)

        # --- Paid ---
        paid = Gift(
            slug="paidGift0001",
            status=Gift.STATUS_PAID,
            phrase="Always you",
            relationship_start_date=date(2015, 9, 3),
            letter=LETTER,
            photo_url="/uploads/paid/cover.png",
            photo_path="paid/cover.png",
            checkout_session_id="cs_test_paid",
            payment_reference="pi_test_paid",
            paid_at=datetime(2026, 2, 14, 12, 0, tzinfo=timezone.utc),
        )
        _db.session.add(paid)

        # --- Disabled after payment ---
        disabled = Gift(
            slug="goneGift0001",
            status=Gift.STATUS_DISABLED,
            phrase="Was lovely",
            relationship_start_date=date(2018, 1, 1),
            letter=LETTER,
            photo_url="/uploads/gone/cover.jpg",
            photo_path="gone/cover.jpg",
            payment_reference="pi_test_gone",
            paid_at=datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc),
            disabled_at=datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc),
        )
        _db.session.add(disabled)

        _db.session.commit()

        return {
            "draft_id": draft.id,
            "draft_slug": draft.slug,
            "bare_id": bare.id,
            "bare_slug": bare.slug,
            "paid_id": paid.id,
            "paid_slug": paid.slug,
            "disabled_id": disabled.id,
            "disabled_slug": disabled.slug,
        }


@pytest.fixture
def stripe_session():
    """Factory for Checkout Session objects as Session.retrieve returns them."""

    def _make(gift_id, session_id="cs_test_abc123", status="complete",
              payment_status="paid", payment_intent="pi_test_abc123",
              email="buyer@example.com"):
        return {
            "id": session_id,
            "object": "checkout.session",
            "status": status,
            "payment_status": payment_status,
            "payment_intent": payment_intent,
            "metadata": {"gift_id": gift_id} if gift_id else {},
            "customer_details": {"email": email} if email else None,
            "url": None if status != "open" else f"https://checkout.stripe.com/c/pay/{session_id}",
        }

    return _make


@pytest.fixture
def checkout_event(stripe_session):
    """Factory for checkout.session.* webhook event dicts."""

    def _make(gift_id, event_id="evt_test_001",
              event_type="checkout.session.completed", **session_kwargs):
        return {
            "id": event_id,
            "object": "event",
            "type": event_type,
            "data": {"object": stripe_session(gift_id, **session_kwargs)},
        }

    return _make


@pytest.fixture
def signed_webhook(app):
    """Serialize an event and sign it the way Stripe does.

    Returns (payload, Stripe-Signature header value).
    """

    def _sign(event, secret=None, timestamp=None):
        secret = secret or app.config["STRIPE_WEBHOOK_SECRET"]
        timestamp = timestamp or int(time.time())
        payload = json.dumps(event)
        signed = f"{timestamp}.{payload}".encode("utf-8")
        signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
        return payload, f"t={timestamp},v1={signature}"

    return _sign


@pytest.fixture
def check_paid_invariant(app):
    """Assert paid_at is set exactly when the gift is paid.

    Disabled gifts keep paid_at as history and are skipped.
    """

    def _check(gift_id):
        with app.app_context():
            gift = _db.session.get(Gift, gift_id)
            if gift.status != Gift.STATUS_DISABLED:
                assert (gift.paid_at is not None) == (gift.status == Gift.STATUS_PAID)
            return gift.status

    return _check
