import os
import logging

import click
from flask import Flask, jsonify

from lovewheel.config import config_by_name
from lovewheel.extensions import db, migrate, limiter


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing, fatal in production) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            if config_name == "production":
                raise
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from lovewheel import models  # noqa: F401

    # --- Register blueprints ---
    from lovewheel.blueprints.gifts import gifts_bp
    from lovewheel.blueprints.checkout import checkout_bp
    from lovewheel.blueprints.webhooks import webhooks_bp

    app.register_blueprint(gifts_bp)
    app.register_blueprint(checkout_bp)
    app.register_blueprint(webhooks_bp)

    @app.route("/healthz")
    def healthz():
        return jsonify(ok=True)

    # --- Local file serving (dev only) ---
    if app.debug:
        @app.route("/uploads/<path:filepath>")
        def serve_upload(filepath):
            """Serve uploaded files from instance/uploads in dev mode."""
            from flask import send_from_directory
            upload_dir = os.path.join(app.instance_path, "uploads")
            return send_from_directory(upload_dir, filepath)

    # --- Error handlers (JSON API) ---
    @app.errorhandler(400)
    def bad_request(e):
        return jsonify(error="Invalid request."), 400

    @app.errorhandler(404)
    def not_found(e):
        return jsonify(error="Not found"), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify(error="Method not allowed"), 405

    @app.errorhandler(410)
    def gone(e):
        return jsonify(error="This gift is no longer available"), 410

    @app.errorhandler(413)
    def too_large(e):
        return jsonify(error="Upload too large."), 413

    @app.errorhandler(429)
    def rate_limited(e):
        return jsonify(error="Too many requests. Please slow down."), 429

    @app.errorhandler(500)
    def server_error(e):
        return jsonify(error="Internal server error"), 500

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"
        # Prevent clickjacking
        response.headers["X-Frame-Options"] = "DENY"
        # Control referrer information (share links carry the slug)
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = (
            "camera=(), microphone=(), geolocation=(), payment=(self)"
        )
        # Strict Transport Security (only in production)
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("disable-gift")
    @click.argument("gift_ref")
    @click.option("--reason", default=None, help="Stored in the audit log.")
    def disable_gift(gift_ref, reason):
        """Soft-delete a gift by id or slug. Its public page returns 410.

        Usage:
            flask disable-gift aB3dE5fG7hJ9
            flask disable-gift aB3dE5fG7hJ9 --reason "refund issued"
        """
        from lovewheel.services.gift_service import disable_gift as _disable

        gift = _disable(gift_ref, reason=reason)
        if gift is None:
            click.echo(f"No gift found for {gift_ref}")
            raise SystemExit(1)
        click.echo(f"Gift {gift.slug} is now {gift.status}")

    @app.cli.command("sync-payments")
    @click.option("--limit", default=50, show_default=True,
                  help="Max drafts to check.")
    def sync_payments(limit):
        """Re-check drafts with a stored Checkout Session against Stripe.

        Fallback for webhooks that never arrived. Only sessions that are
        complete, paid, and bound to the same gift are applied.
        """
        from lovewheel.services.payment_service import sync_pending_payments

        results = sync_pending_payments(limit=limit)
        if not results:
            click.echo("No drafts with a checkout session.")
            return
        for gift_id, outcome in results.items():
            click.echo(f"  {gift_id}: {outcome}")
        confirmed = sum(1 for o in results.values() if o == "confirmed")
        click.echo(f"Checked {len(results)} gift(s), confirmed {confirmed}.")

    @app.cli.command("confirm-gift")
    @click.argument("gift_ref")
    @click.option("--session-id", required=True, help="Checkout Session id (cs_...).")
    @click.option("--attempts", default=None, type=int,
                  help="Defaults to CONFIRM_POLL_MAX_ATTEMPTS.")
    def confirm_gift(gift_ref, session_id, attempts):
        """Poll Stripe for one gift's session until it settles (bounded)."""
        from lovewheel.services.payment_service import poll_confirmation

        result = poll_confirmation(gift_ref, session_id, max_attempts=attempts)
        click.echo(f"{gift_ref}: {result.outcome}"
                   + (f" ({result.reason})" if result.reason else ""))
