# stripe_utils.py

import os
import logging
from typing import Any, Optional

import requests
import stripe

from errors import NotFoundError, TransientStoreError

logger = logging.getLogger(__name__)

STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
if not STRIPE_SECRET_KEY:
    logger.error("STRIPE_SECRET_KEY is not set in environment variables")

STRIPE_PRICE_ID      = os.getenv("STRIPE_PRICE_ID", "price_1RqDLRC1pv51tIEWYcI7ROms")
CHECKOUT_SUCCESS_URL = os.getenv("CHECKOUT_SUCCESS_URL", "https://locofest.net/success.html")
CHECKOUT_CANCEL_URL  = os.getenv("CHECKOUT_CANCEL_URL", "https://locofest.net/cancel.html")

REQUEST_TIMEOUT = int(os.getenv("STRIPE_TIMEOUT", "30"))
# Single page only; subscriptions past this limit are not searched.
SUBSCRIPTION_LIST_LIMIT = int(os.getenv("SUBSCRIPTION_LIST_LIMIT", "100"))

_configured = False


def _configure() -> None:
    global _configured
    if _configured:
        return
    stripe.api_key = STRIPE_SECRET_KEY
    stripe.default_http_client = stripe.RequestsClient(timeout=REQUEST_TIMEOUT, session=requests.Session())
    _configured = True


def create_checkout_session(uid: str) -> str:
    """Creates a subscription checkout tagged with the user's uid and returns its redirect URL."""
    _configure()
    try:
        session = stripe.checkout.Session.create(
            payment_method_types=["card"],
            mode="subscription",
            line_items=[{"price": STRIPE_PRICE_ID, "quantity": 1}],
            success_url=CHECKOUT_SUCCESS_URL,
            cancel_url=CHECKOUT_CANCEL_URL,
            metadata={"uid": uid},
        )
    except stripe.StripeError as e:
        raise TransientStoreError(f"Checkout session creation failed: {e}")
    logger.info("Checkout session %s created for uid=%s", session.id, uid)
    return session.url


def find_active_subscription(uid: str) -> Optional[Any]:
    _configure()
    try:
        subscriptions = stripe.Subscription.list(status="active", limit=SUBSCRIPTION_LIST_LIMIT)
    except stripe.StripeError as e:
        raise TransientStoreError(f"Subscription listing failed: {e}")
    for sub in subscriptions.data or []:
        metadata = getattr(sub, "metadata", None)
        if metadata is not None and getattr(metadata, "uid", None) == uid:
            return sub
    return None


def cancel_subscription(uid: str) -> str:
    """Cancels the active subscription tagged with `uid`; returns its id."""
    sub = find_active_subscription(uid)
    if sub is None:
        raise NotFoundError("Subscription not found for this user.")
    try:
        stripe.Subscription.cancel(sub.id)
    except stripe.StripeError as e:
        raise TransientStoreError(f"Subscription {sub.id} cancellation failed: {e}")
    logger.info("Subscription %s cancelled for uid=%s", sub.id, uid)
    return sub.id
