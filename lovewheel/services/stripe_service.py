"""Stripe service — every call to the Stripe API goes through here.

Responsible for:
- Creating one-time-payment Checkout Sessions for a gift
- Reusing a gift's still-open Checkout Session
- Verifying webhook signatures over the raw request body
- Retrieving a Checkout Session's status for client-side confirmation

Every Stripe failure leaves this module as GatewayError (or
InvalidSignatureError for webhooks), so callers never see raw SDK errors.
"""

import logging
import time

import stripe
from flask import current_app

logger = logging.getLogger(__name__)

# Events that can carry a completed payment for a gift
CHECKOUT_COMPLETED = "checkout.session.completed"
CHECKOUT_ASYNC_SUCCEEDED = "checkout.session.async_payment_succeeded"
CONFIRMING_EVENTS = (CHECKOUT_COMPLETED, CHECKOUT_ASYNC_SUCCEEDED)


class GatewayError(Exception):
    """Stripe was unreachable or rejected the request. Retryable."""


class InvalidSignatureError(Exception):
    """Webhook payload failed Stripe signature verification."""


class WebhookNotConfiguredError(Exception):
    """STRIPE_WEBHOOK_SECRET is unset, so no webhook can be verified."""


def _configure():
    stripe.api_key = current_app.config["STRIPE_SECRET_KEY"]


def _payment_intent_id(value):
    """payment_intent may be an id string, an expanded object, or None."""
    if value is None or isinstance(value, str):
        return value
    return value.get("id")


def session_to_dict(session):
    """Flatten a Checkout Session (API object or webhook payload) into the
    fields confirmation needs.
    """
    customer_details = session.get("customer_details") or {}
    return {
        "id": session.get("id"),
        "status": session.get("status"),
        "payment_status": session.get("payment_status"),
        "payment_intent": _payment_intent_id(session.get("payment_intent")),
        "metadata": dict(session.get("metadata") or {}),
        "customer_email": (
            customer_details.get("email") or session.get("customer_email")
        ),
        "url": session.get("url"),
    }


# ──────────────────────────────────────────────
# Checkout Sessions
# ──────────────────────────────────────────────

def create_checkout_session(gift):
    """Create a Stripe Checkout Session for the flat gift fee.

    The gift id travels in the session metadata; confirmation only trusts
    a payment for the gift named there.

    Returns dict(session_id, url).
    Raises GatewayError on API failures.
    """
    _configure()
    config = current_app.config
    app_base_url = config["APP_BASE_URL"].rstrip("/")

    try:
        session = stripe.checkout.Session.create(
            mode="payment",
            line_items=[
                {
                    "quantity": 1,
                    "price_data": {
                        "currency": config["GIFT_CURRENCY"],
                        "unit_amount": config["GIFT_PRICE_CENTS"],
                        "product_data": {
                            "name": config["GIFT_PRODUCT_NAME"],
                            "description": "Unlock the wheel + reveal experience.",
                        },
                    },
                },
            ],
            metadata={
                "gift_id": gift.id,
                "slug": gift.slug,
            },
            client_reference_id=gift.id,
            success_url=(
                f"{app_base_url}/g/{gift.slug}"
                f"?session_id={{CHECKOUT_SESSION_ID}}"
            ),
            cancel_url=f"{app_base_url}/g/{gift.slug}?canceled=1",
            expires_at=int(time.time()) + config["CHECKOUT_SESSION_TTL_SECONDS"],
        )
    except stripe.StripeError as e:
        logger.error(f"Checkout session creation failed for gift {gift.id}: {e}")
        raise GatewayError(str(e)) from e

    logger.info(f"Created checkout session {session.id} for gift {gift.id}")
    return {"session_id": session.id, "url": session.url}


def reuse_open_session(session_id):
    """Return dict(session_id, url) if the stored session is still open.

    Returns None when it expired, completed, or can't be looked up, in
    which case the caller creates a fresh one.
    """
    if not session_id:
        return None
    try:
        session = retrieve_session(session_id)
    except GatewayError:
        return None
    if session["status"] == "open" and session["url"]:
        return {"session_id": session["id"], "url": session["url"]}
    return None


def retrieve_session(session_id):
    """Fetch a Checkout Session's current state from Stripe.

    Returns the session_to_dict() view.
    Raises GatewayError on network / 4xx / 5xx failures.
    """
    _configure()
    try:
        session = stripe.checkout.Session.retrieve(session_id)
    except stripe.StripeError as e:
        logger.warning(f"Failed to retrieve checkout session {session_id}: {e}")
        raise GatewayError(str(e)) from e
    return session_to_dict(session)


# ──────────────────────────────────────────────
# Webhooks
# ──────────────────────────────────────────────

def verify_webhook_signature(payload, sig_header):
    """Verify Stripe webhook signature and construct the event.

    Returns the verified Stripe event object.
    Raises InvalidSignatureError on a bad/missing signature or malformed payload,
    WebhookNotConfiguredError when there is no secret to verify against.
    """
    if not sig_header:
        raise InvalidSignatureError("Missing signature")

    webhook_secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")
    if not webhook_secret:
        logger.error("STRIPE_WEBHOOK_SECRET is not configured; rejecting webhook")
        raise WebhookNotConfiguredError("Webhook secret not configured")
    try:
        return stripe.Webhook.construct_event(payload, sig_header, webhook_secret)
    except (ValueError, stripe.SignatureVerificationError) as e:
        raise InvalidSignatureError(str(e)) from e
