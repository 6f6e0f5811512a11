"""
Notification templates, keyed by category then template key.

Placeholders use ``{name}`` and are filled from the ``data`` dict passed to
``NotificationDispatcher.send``. Unknown placeholders are left verbatim.
"""

import re
from typing import Any

from core.errors import InvalidArgument

TEMPLATES: dict[str, dict[str, dict[str, str]]] = {
    "subscription": {
        "welcome": {
            "title": "Welcome to {cave_name}!",
            "message": "Thank you for joining our wine subscription. Your first shipment is scheduled for {next_shipment_date}.",
        },
        "renewal": {
            "title": "Subscription Renewal",
            "message": "Your subscription will renew automatically on {date}. No action required.",
        },
        "paused": {
            "title": "Subscription Paused",
            "message": "Your subscription is paused. No shipments will be sent until you resume it.",
        },
        "resumed": {
            "title": "Subscription Resumed",
            "message": "Welcome back! Your next shipment is scheduled for {next_shipment_date}.",
        },
        "cancelled": {
            "title": "Subscription Cancelled",
            "message": "Your subscription has been cancelled. Shipments already prepared will still be delivered.",
        },
        "payment_failed": {
            "title": "Payment Failed",
            "message": "We were unable to process your payment. Please update your payment method to continue your subscription.",
        },
    },
    "shipping": {
        "label_generated": {
            "title": "Shipping Label Generated",
            "message": "Your wine shipment is being prepared and will ship soon. Tracking number: {tracking_number}",
        },
        "shipped": {
            "title": "Wine Shipped!",
            "message": "Your wine has been shipped and is on its way. Track your delivery with: {tracking_number}",
        },
        "delivered": {
            "title": "Wine Delivered!",
            "message": "Your wine has been delivered. Enjoy your selection and don't forget to rate your wines!",
        },
        "delayed": {
            "title": "Shipment Delayed",
            "message": "Your wine shipment has been delayed. New estimated delivery: {new_date}",
        },
    },
    "wine": {
        "new_arrival": {
            "title": "New Wine Available",
            "message": "A new {varietal} from {region} is now available in your wine cave.",
        },
        "low_stock": {
            "title": "Low Stock Alert",
            "message": "{wine_name} is running low on stock ({stock_quantity} left).",
        },
        "rating_reminder": {
            "title": "Rate Your Wines",
            "message": "Don't forget to rate your recent wines to help us personalize your future selections.",
        },
    },
    "inventory": {
        "purchase_order_created": {
            "title": "Purchase Order Created",
            "message": "A purchase order for {supplier_name} ({item_count} wines, total {total_amount}) is ready as {status}.",
        },
        "purchase_order_sent": {
            "title": "Purchase Order Sent",
            "message": "Purchase order {po_id} was sent to {supplier_name}.",
        },
        "purchase_order_received": {
            "title": "Purchase Order Received",
            "message": "Purchase order {po_id} from {supplier_name} was received and stock was updated.",
        },
    },
    "loyalty": {
        "points_earned": {
            "title": "Points Earned!",
            "message": "You earned {points} loyalty points for your recent purchase.",
        },
        "reward_available": {
            "title": "Reward Available",
            "message": "You have enough points to redeem {reward}. Visit your loyalty dashboard to claim it.",
        },
        "tier_upgrade": {
            "title": "Tier Upgrade!",
            "message": "Congratulations! You've been upgraded to {tier} status with exclusive benefits.",
        },
    },
    "system": {
        "maintenance": {
            "title": "Scheduled Maintenance",
            "message": "We'll be performing scheduled maintenance on {date} from {time}. Service may be temporarily unavailable.",
        },
        "update": {
            "title": "New Features Available",
            "message": "We've added new features to improve your wine experience. Check them out!",
        },
    },
}

CATEGORIES = tuple(TEMPLATES)

_PLACEHOLDER = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")


def get_template(category: str, template_key: str) -> dict[str, str]:
    try:
        return TEMPLATES[category][template_key]
    except KeyError:
        raise InvalidArgument(
            f"Unknown notification template '{category}.{template_key}'",
            category=category,
            template_key=template_key,
        )


def fill(text: str, data: dict[str, Any] | None) -> str:
    """Replace every ``{key}`` present in data; leave the rest untouched."""
    if not data:
        return text

    def _sub(match: re.Match) -> str:
        key = match.group(1)
        if key in data and data[key] is not None:
            return str(data[key])
        return match.group(0)

    return _PLACEHOLDER.sub(_sub, text)


def render(category: str, template_key: str, data: dict[str, Any] | None = None) -> tuple[str, str]:
    """Return (title, message) for a template with placeholders filled."""
    template = get_template(category, template_key)
    return fill(template["title"], data), fill(template["message"], data)
