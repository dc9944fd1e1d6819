"""
Transactional email over SMTP.

Currently sends one message: "your gift is ready", to the buyer, right
after the gift's payment is confirmed. Payment confirmation calls it only
from the path that won the draft -> paid transition, so a gift never
produces two of these.

Usage:
    from lovewheel.services.email_service import send_email

    send_email(
        to="buyer@example.com",
        subject="Hello",
        template="emails/gift_ready.html",
        context={"gift_url": "..."},
    )
"""

import logging
import smtplib
import threading
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from flask import current_app, render_template

logger = logging.getLogger(__name__)


def _send_smtp(app, msg):
    """Send an email via SMTP in a background thread (non-blocking)."""
    with app.app_context():
        host = app.config.get("MAIL_SMTP_HOST", "smtp.gmail.com")
        port = app.config.get("MAIL_SMTP_PORT", 587)
        username = app.config.get("MAIL_USERNAME")
        password = app.config.get("MAIL_PASSWORD")

        try:
            with smtplib.SMTP(host, port, timeout=30) as server:
                server.ehlo()
                server.starttls()
                server.ehlo()
                server.login(username, password)
                server.send_message(msg)
            logger.info(f"Email sent to {msg['To']} — {msg['Subject']}")
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email to {msg['To']}: {e}")


def send_email(to, subject, template, context=None, reply_to=None):
    """
    Send a templated HTML email.

    Args:
        to:        Recipient email address (str or list).
        subject:   Email subject line.
        template:  Path to Jinja2 HTML template (relative to templates/).
        context:   Dict of variables to pass to the template.
        reply_to:  Optional reply-to address.

    Returns False (and sends nothing) when SMTP isn't configured.
    """
    app = current_app._get_current_object()
    context = context or {}

    if not app.config.get("MAIL_USERNAME") or not app.config.get("MAIL_PASSWORD"):
        logger.warning("Email not sent — MAIL_USERNAME or MAIL_PASSWORD not configured.")
        return False

    from_name = app.config.get("MAIL_FROM_NAME", "LoveWheel")
    from_email = app.config.get("MAIL_FROM_ADDRESS") or app.config.get("MAIL_USERNAME", "")

    html_body = render_template(template, **context)

    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = f"{from_name} <{from_email}>"
    msg["To"] = to if isinstance(to, str) else ", ".join(to)

    if reply_to:
        msg["Reply-To"] = reply_to

    msg.attach(MIMEText(html_body, "html"))

    # Send in background thread so the request doesn't block
    thread = threading.Thread(target=_send_smtp, args=(app, msg))
    thread.daemon = True
    thread.start()
    return True


def send_gift_ready_email(to, gift, gift_url):
    """Tell the buyer their gift is unlocked and where to share it."""
    return send_email(
        to=to,
        subject="Your LoveWheel is ready to share",
        template="emails/gift_ready.html",
        context={
            "gift_url": gift_url,
            "phrase": gift.phrase,
        },
    )
