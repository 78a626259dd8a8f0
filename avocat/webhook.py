"""
Stripe webhook ingestion.

The body is authenticated before it is parsed. Only completed, paid checkouts
in one-time payment mode create a ledger entry, at most one per checkout
session id; every other event is acknowledged without side effects.
"""
import json
import logging
import uuid
from dataclasses import dataclass
from typing import Optional

import pycountry
import stripe

from .ledger import DuplicatePurchase
from .models import DEFAULT_AREA, DEFAULT_JURISDICTION, Failed, LineItem

logger = logging.getLogger(__name__)

ELIGIBLE_EVENT_TYPE = "checkout.session.completed"

PROCESSED = "processed"
IGNORED = "ignored"
DUPLICATE = "duplicate"


class InvalidSignature(Exception):
    """The event could not be authenticated. Carries no verification details."""


@dataclass
class WebhookAck:
    status: str
    purchase_id: Optional[str] = None
    received: bool = True

    def to_dict(self):
        data = {"received": self.received, "status": self.status}
        if self.purchase_id:
            data["purchaseId"] = self.purchase_id
        return data


def jurisdiction_name(value):
    """Expand two-letter country codes; anything else is kept as written."""
    value = str(value or "").strip()
    if not value:
        return DEFAULT_JURISDICTION
    if len(value) == 2 and value.isalpha():
        try:
            country = pycountry.countries.get(alpha_2=value.upper())
        except KeyError:
            country = None
        if country is not None:
            return country.name
    return value


def _as_int(value, default):
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _cart_entry(entry):
    if not isinstance(entry, dict):
        raise ValueError(f"expected an object, got {type(entry).__name__}")
    if not entry.get("name"):
        raise ValueError("missing name")
    return LineItem(
        id=str(entry.get("id") or uuid.uuid4()),
        name=str(entry["name"]),
        area=entry.get("area") or DEFAULT_AREA,
        jurisdiction=jurisdiction_name(entry.get("country") or entry.get("jurisdiction")),
        unit_price=int(entry.get("price") or 0),
        quantity=int(entry.get("quantity", 1)),
    )


def _invalid_cart_entry(position, entry, error):
    """A paid entry that cannot be generated is kept and recorded as failed."""
    data = entry if isinstance(entry, dict) else {}
    return LineItem(
        id=str(data.get("id") or uuid.uuid4()),
        name=str(data.get("name") or f"Item {position + 1}"),
        area=str(data.get("area") or DEFAULT_AREA),
        jurisdiction=jurisdiction_name(data.get("country") or data.get("jurisdiction")),
        unit_price=_as_int(data.get("price"), 0),
        quantity=_as_int(data.get("quantity"), 0),
        outcome=Failed(f"Invalid cart entry: {error}", retryable=False),
    )


def parse_cart(raw_items):
    """
    Rebuild line items from the serialized cart stored in the session metadata.

    Every entry becomes a line item; entries whose fields do not parse are
    recorded as failed so the purchase still accounts for them.
    """
    if not raw_items:
        return []
    try:
        cart = json.loads(raw_items) if isinstance(raw_items, str) else raw_items
    except ValueError as e:
        logger.error(f"Could not parse cart metadata: {e}")
        return []
    if not isinstance(cart, list):
        logger.error(f"Cart metadata is not a list: {type(cart).__name__}")
        return []

    items = []
    for position, entry in enumerate(cart):
        try:
            items.append(_cart_entry(entry))
        except (TypeError, ValueError) as e:
            logger.error(f"Invalid cart entry #{position}: {entry!r} ({e})")
            items.append(_invalid_cart_entry(position, entry, e))
    return items


def is_eligible(event_type, session):
    return (
        event_type == ELIGIBLE_EVENT_TYPE
        and session.get("mode") == "payment"
        and session.get("payment_status") == "paid"
    )


class WebhookProcessor:
    def __init__(self, webhook_secret, ledger, users, orchestrator, notifier=None, tolerance=300):
        self.webhook_secret = webhook_secret
        self.ledger = ledger
        self.users = users
        self.orchestrator = orchestrator
        self.notifier = notifier
        self.tolerance = tolerance

    def verify(self, raw_body, signature_header):
        """Authenticate the raw body and return the decoded event."""
        if not self.webhook_secret:
            raise RuntimeError("STRIPE_WEBHOOK_SECRET is not configured")
        if not signature_header:
            raise InvalidSignature("Missing signature")

        payload = raw_body.decode("utf-8") if isinstance(raw_body, bytes) else raw_body
        try:
            stripe.WebhookSignature.verify_header(payload, signature_header, self.webhook_secret, self.tolerance)
        except stripe.SignatureVerificationError as e:
            logger.warning(f"Webhook signature verification failed: {e}")
            raise InvalidSignature("Invalid signature") from None
        return json.loads(payload)

    def handle_incoming_event(self, raw_body, signature_header):
        event = self.verify(raw_body, signature_header)
        event_type = event.get("type")
        session = (event.get("data") or {}).get("object") or {}

        if not is_eligible(event_type, session):
            logger.info(
                f"Ignoring event {event.get('id')} ({event_type}, mode={session.get('mode')}, "
                f"payment_status={session.get('payment_status')})"
            )
            return WebhookAck(IGNORED)

        transaction_id = session.get("id")
        if not transaction_id:
            raise ValueError(f"Checkout session in event {event.get('id')} has no id")

        existing = self.ledger.find_by_external_transaction_id(transaction_id)
        if existing is not None:
            logger.info(f"Checkout session {transaction_id} already recorded as purchase {existing.id}")
            return WebhookAck(DUPLICATE, existing.id)

        metadata = session.get("metadata") or {}
        email = session.get("customer_email") or (session.get("customer_details") or {}).get("email") or ""
        user_id = self.users.resolve_user_id(metadata.get("userId"), email)
        items = parse_cart(metadata.get("items"))
        if not items:
            logger.error(f"Paid checkout session {transaction_id} carries no items")

        try:
            entry = self.ledger.create_pending_entry(
                transaction_id,
                user_id,
                email,
                items,
                total_amount=session.get("amount_total") or 0,
                currency=session.get("currency") or "eur",
                payment_intent_id=session.get("payment_intent"),
            )
        except DuplicatePurchase:
            logger.info(f"Checkout session {transaction_id} was recorded concurrently, skipping")
            return WebhookAck(DUPLICATE)

        self.orchestrator.generate_for_purchase(entry)

        if self.notifier is not None:
            self.notifier.purchase_processed(entry)
        return WebhookAck(PROCESSED, entry.id)
