import json
import logging

import stripe

logger = logging.getLogger(__name__)

# Stripe rejects metadata values longer than this
METADATA_VALUE_LIMIT = 500


class InvalidCart(ValueError):
    pass


def validate_cart(items):
    if not items or not isinstance(items, list):
        raise InvalidCart("No items provided")
    cart = []
    for item in items:
        if not isinstance(item, dict) or not item.get("name"):
            raise InvalidCart("Every item needs a name")
        try:
            price = int(item.get("price"))
            quantity = int(item.get("quantity", 1))
        except (TypeError, ValueError):
            raise InvalidCart(f"Invalid price or quantity for '{item.get('name')}'")
        if price < 0 or quantity < 1:
            raise InvalidCart(f"Invalid price or quantity for '{item.get('name')}'")
        cart.append({
            "name": item["name"],
            "price": price,
            "quantity": quantity,
            "area": item.get("area") or "",
            "country": item.get("country") or "",
        })
    return cart


def create_checkout_session(items, customer_email, success_url, cancel_url, user_id=None, currency="eur"):
    """
    Create a hosted checkout for the cart. The cart travels in the session
    metadata so the webhook can rebuild it without another lookup.
    """
    cart = validate_cart(items)
    serialized = json.dumps(cart, ensure_ascii=False, separators=(",", ":"))
    if len(serialized) > METADATA_VALUE_LIMIT:
        raise InvalidCart("Cart too large for a single checkout")

    session = stripe.checkout.Session.create(
        payment_method_types=['card'],
        line_items=[{
            'price_data': {
                'currency': currency,
                'product_data': {
                    'name': item["name"],
                    'description': f"Área: {item['area'] or 'Derecho General'}",
                },
                'unit_amount': item["price"],  # already in cents
            },
            'quantity': item["quantity"],
        } for item in cart],
        mode='payment',
        customer_email=customer_email or None,
        success_url=success_url,
        cancel_url=cancel_url,
        metadata={
            'items': serialized,
            'totalItems': str(sum(item["quantity"] for item in cart)),
            'userId': user_id or 'unknown',
        },
    )
    logger.info(f"Stripe session created: {session.id}")
    return session
