"""Tests for the gifts blueprint.

Covers:
- Draft creation (validation, sanitization, slug allocation)
- Cover photo upload (local dev storage, Supabase, replacement, rejects)
- Public reveal read (200 / 402 / 410 / 404, never cached)
- Stored status endpoint
"""

import io
from unittest.mock import MagicMock, patch

import requests

from lovewheel.extensions import db
from lovewheel.models.audit import AuditEvent
from lovewheel.models.gift import Gift

VALID_GIFT = {
    "phrase": "You are my person",
    "relationship_start_date": "2020-02-14",
    "letter": "Five years of terrible puns and perfect mornings. Here is to fifty more.",
}


def _image(name="cover.jpg", content_type="image/jpeg", data=b"\xff\xd8\xff\xe0fakejpeg"):
    return {"file": (io.BytesIO(data), name, content_type)}


class TestCreateGift:
    """POST /api/gifts"""

    def test_creates_draft(self, client, app):
        resp = client.post("/api/gifts", json=VALID_GIFT)
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["status"] == "draft"
        assert len(body["slug"]) == 12

        with app.app_context():
            gift = db.session.get(Gift, body["id"])
            assert gift.slug == body["slug"]
            assert gift.paid_at is None
            assert gift.payment_reference is None
            assert gift.relationship_start_date.isoformat() == "2020-02-14"
            assert AuditEvent.query.filter_by(
                gift_id=gift.id, action="gift.created"
            ).count() == 1

    def test_slugs_are_unique_and_url_safe(self, client):
        slugs = set()
        for _ in range(5):
            body = client.post("/api/gifts", json=VALID_GIFT).get_json()
            slugs.add(body["slug"])
            assert all(c.isalnum() or c in "-_" for c in body["slug"])
        assert len(slugs) == 5

    def test_slug_collision_draws_again(self, client, seed_data):
        with patch(
            "lovewheel.services.gift_service.generate_slug",
            side_effect=[seed_data["draft_slug"], "freshSlug123"],
        ):
            resp = client.post("/api/gifts", json=VALID_GIFT)

        assert resp.status_code == 201
        assert resp.get_json()["slug"] == "freshSlug123"

    def test_strips_html(self, client, app):
        data = dict(VALID_GIFT, letter="<script>alert(1)</script>" + VALID_GIFT["letter"])
        body = client.post("/api/gifts", json=data).get_json()

        with app.app_context():
            gift = db.session.get(Gift, body["id"])
            assert "<script>" not in gift.letter
            assert gift.letter.endswith("fifty more.")

    def test_invalid_fields_return_422(self, client):
        resp = client.post("/api/gifts", json={
            "phrase": "hi",
            "relationship_start_date": "not-a-date",
            "letter": "too short",
        })
        assert resp.status_code == 422
        errors = resp.get_json()["errors"]
        assert len(errors) == 3

    def test_future_start_date_rejected(self, client):
        resp = client.post("/api/gifts", json=dict(
            VALID_GIFT, relationship_start_date="2999-01-01"
        ))
        assert resp.status_code == 422
        assert "future" in resp.get_json()["error"]

    def test_non_json_body_returns_400(self, client):
        resp = client.post("/api/gifts", data="phrase=hi")
        assert resp.status_code == 400

    def test_ampersand_and_angle_bracket_round_trip(self, client, app):
        """Plain-text punctuation is stored and returned as typed."""
        body = client.post("/api/gifts", json=dict(VALID_GIFT, phrase="Me & you <3")).get_json()

        with app.app_context():
            gift = db.session.get(Gift, body["id"])
            assert gift.phrase == "Me & you <3"

    def test_phrase_length_counts_plain_text(self, client):
        """An 80-character phrase with "&" is within bounds."""
        phrase = "A" * 78 + " &"
        assert len(phrase) == 80

        resp = client.post("/api/gifts", json=dict(VALID_GIFT, phrase=phrase))
        assert resp.status_code == 201

        too_long = client.post("/api/gifts", json=dict(VALID_GIFT, phrase=phrase + "!"))
        assert too_long.status_code == 422

    def test_non_string_fields_rejected(self, client, app):
        resp = client.post("/api/gifts", json={
            "phrase": 12345,
            "relationship_start_date": "2020-01-01",
            "letter": ["x" * 40],
        })

        assert resp.status_code == 422
        errors = resp.get_json()["errors"]
        assert "Phrase must be text." in errors
        assert "Letter must be text." in errors
        with app.app_context():
            assert Gift.query.count() == 0

    def test_trailing_garbage_in_date_rejected(self, client):
        resp = client.post("/api/gifts", json=dict(
            VALID_GIFT, relationship_start_date="2020-01-01xyz"
        ))
        assert resp.status_code == 422
        assert "valid date" in resp.get_json()["error"]

    def test_iso_timestamp_date_accepted(self, client, app):
        body = client.post("/api/gifts", json=dict(
            VALID_GIFT, relationship_start_date="2020-02-14T18:30:00"
        )).get_json()

        with app.app_context():
            gift = db.session.get(Gift, body["id"])
            assert gift.relationship_start_date.isoformat() == "2020-02-14"


class TestUploadPhoto:
    """POST /api/gifts/<gift_ref>/photo"""

    def test_local_upload(self, client, app, seed_data, upload_dir):
        resp = client.post(
            f"/api/gifts/{seed_data['bare_id']}/photo",
            data=_image(),
            content_type="multipart/form-data",
        )
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["path"] == f"{seed_data['bare_id']}/cover.jpg"
        assert body["url"] == f"/uploads/{seed_data['bare_id']}/cover.jpg"
        assert (upload_dir / seed_data["bare_id"] / "cover.jpg").exists()

        with app.app_context():
            gift = db.session.get(Gift, seed_data["bare_id"])
            assert gift.photo_path == body["path"]
            assert gift.photo_url == body["url"]

    def test_upload_by_slug(self, client, seed_data, upload_dir):
        resp = client.post(
            f"/api/gifts/{seed_data['bare_slug']}/photo",
            data=_image(name="us.png", content_type="image/png"),
            content_type="multipart/form-data",
        )
        assert resp.status_code == 200
        assert resp.get_json()["path"].endswith("/cover.png")

    def test_replacing_with_other_type_removes_old_file(self, client, seed_data, upload_dir):
        url = f"/api/gifts/{seed_data['bare_id']}/photo"
        client.post(url, data=_image(), content_type="multipart/form-data")
        resp = client.post(
            url,
            data=_image(name="us.webp", content_type="image/webp"),
            content_type="multipart/form-data",
        )

        assert resp.status_code == 200
        gift_dir = upload_dir / seed_data["bare_id"]
        assert (gift_dir / "cover.webp").exists()
        assert not (gift_dir / "cover.jpg").exists()

    @patch("lovewheel.services.storage_service.requests.post")
    def test_supabase_upload(self, mock_post, client, app, seed_data, monkeypatch):
        monkeypatch.setitem(app.config, "SUPABASE_URL", "https://proj.supabase.co")
        monkeypatch.setitem(app.config, "SUPABASE_SERVICE_KEY", "service-key")
        mock_post.return_value = MagicMock(status_code=200)

        resp = client.post(
            f"/api/gifts/{seed_data['bare_id']}/photo",
            data=_image(),
            content_type="multipart/form-data",
        )

        assert resp.status_code == 200
        assert resp.get_json()["url"] == (
            "https://proj.supabase.co/storage/v1/object/public/couple-photos/"
            f"{seed_data['bare_id']}/cover.jpg"
        )
        args, kwargs = mock_post.call_args
        assert args[0].endswith(f"/couple-photos/{seed_data['bare_id']}/cover.jpg")
        assert kwargs["headers"]["x-upsert"] == "true"

    @patch("lovewheel.services.storage_service.requests.post")
    def test_supabase_failure_returns_502(self, mock_post, client, app, seed_data,
                                          monkeypatch):
        monkeypatch.setitem(app.config, "SUPABASE_URL", "https://proj.supabase.co")
        monkeypatch.setitem(app.config, "SUPABASE_SERVICE_KEY", "service-key")
        mock_post.side_effect = requests.ConnectionError("down")

        resp = client.post(
            f"/api/gifts/{seed_data['bare_id']}/photo",
            data=_image(),
            content_type="multipart/form-data",
        )

        assert resp.status_code == 502
        with app.app_context():
            assert db.session.get(Gift, seed_data["bare_id"]).photo_url is None

    def test_rejects_unsupported_type(self, client, seed_data, upload_dir):
        resp = client.post(
            f"/api/gifts/{seed_data['bare_id']}/photo",
            data=_image(name="notes.pdf", content_type="application/pdf"),
            content_type="multipart/form-data",
        )
        assert resp.status_code == 422

    def test_rejects_oversized(self, client, app, seed_data, upload_dir, monkeypatch):
        monkeypatch.setitem(app.config, "MAX_PHOTO_BYTES", 10)
        resp = client.post(
            f"/api/gifts/{seed_data['bare_id']}/photo",
            data=_image(data=b"x" * 11),
            content_type="multipart/form-data",
        )
        assert resp.status_code == 422
        assert "too large" in resp.get_json()["error"]

    def test_missing_file(self, client, seed_data):
        resp = client.post(
            f"/api/gifts/{seed_data['bare_id']}/photo",
            data={},
            content_type="multipart/form-data",
        )
        assert resp.status_code == 422

    def test_paid_gift_is_frozen(self, client, seed_data, upload_dir):
        resp = client.post(
            f"/api/gifts/{seed_data['paid_id']}/photo",
            data=_image(),
            content_type="multipart/form-data",
        )
        assert resp.status_code == 409

    def test_disabled_gift_is_gone(self, client, seed_data, upload_dir):
        resp = client.post(
            f"/api/gifts/{seed_data['disabled_id']}/photo",
            data=_image(),
            content_type="multipart/form-data",
        )
        assert resp.status_code == 410

    def test_unknown_gift(self, client, seed_data):
        resp = client.post(
            "/api/gifts/nope/photo",
            data=_image(),
            content_type="multipart/form-data",
        )
        assert resp.status_code == 404


class TestPublicGift:
    """GET /api/gifts/<slug>"""

    def test_paid_returns_content(self, client, seed_data):
        resp = client.get(f"/api/gifts/{seed_data['paid_slug']}")
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["status"] == "paid"
        assert body["phrase"] == "Always you"
        assert "Tuesday" in body["letter"]
        assert body["photo_url"] == "/uploads/paid/cover.png"
        assert "no-store" in resp.headers["Cache-Control"]

    def test_draft_requires_payment(self, client, seed_data):
        resp = client.get(f"/api/gifts/{seed_data['draft_slug']}")
        assert resp.status_code == 402
        body = resp.get_json()
        assert body["needs_payment"] is True
        assert body["preview"]["slug"] == seed_data["draft_slug"]
        assert "id" not in body["preview"]
        assert seed_data["draft_id"].encode() not in resp.data
        assert b"Tuesday" not in resp.data
        assert b"cover.jpg" not in resp.data
        assert "no-store" in resp.headers["Cache-Control"]

    def test_disabled_is_gone(self, client, seed_data):
        resp = client.get(f"/api/gifts/{seed_data['disabled_slug']}")
        assert resp.status_code == 410
        assert b"Tuesday" not in resp.data

    def test_unknown_is_404(self, client, seed_data):
        assert client.get("/api/gifts/doesNotExist").status_code == 404


class TestGiftStatus:
    """GET /api/gifts/<gift_ref>/status"""

    @patch("lovewheel.services.stripe_service.stripe.checkout.Session.retrieve")
    def test_draft_is_pending(self, mock_retrieve, client, seed_data):
        resp = client.get(f"/api/gifts/{seed_data['draft_id']}/status")
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["status"] == "draft"
        assert body["paid"] is False
        assert body["outcome"] == "pending"
        mock_retrieve.assert_not_called()

    def test_paid(self, client, seed_data):
        body = client.get(f"/api/gifts/{seed_data['paid_slug']}/status").get_json()
        assert body["status"] == "paid"
        assert body["paid"] is True
        assert body["paid_at"].startswith("2026-02-14")
        assert "payment_reference" not in body

    def test_disabled(self, client, seed_data):
        body = client.get(f"/api/gifts/{seed_data['disabled_id']}/status").get_json()
        assert body["status"] == "disabled"
        assert body["outcome"] == "gone"

    def test_unknown(self, client, seed_data):
        assert client.get("/api/gifts/nope/status").status_code == 404
