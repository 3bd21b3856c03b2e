from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from .statuses import DeliveryMethod


# Upper bound for a single amount: 99,999,999.99 in major units
MAX_AMOUNT_MINOR = 9_999_999_999

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

SHIPPING_ADDRESS_FIELDS = ("street", "city", "state", "zipCode")


class ValidationError(ValueError):
    """400-level input problem."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate email)."""


class NotFoundError(LookupError):
    """404-level unknown reference, order, user or product."""


def normalize_email(value: Any, field: str = "email") -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required", field=field)
    email = value.strip().lower()
    if not EMAIL_RE.match(email):
        raise ValidationError(f"{field} must be a valid email address", field=field)
    return email


def to_minor_units(value: Any, field: str) -> int:
    """
    Convert a major-unit amount (e.g. 5000 or "49.99") to integer minor units.

    Rejects booleans, negatives and non-numeric strings. Rounds half-up to
    the nearest minor unit.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} is required", field=field)
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number", field=field)
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a number", field=field)
    if amount < 0:
        raise ValidationError(f"{field} cannot be negative", field=field)
    minor = int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if minor > MAX_AMOUNT_MINOR:
        raise ValidationError(f"{field} exceeds maximum allowed amount", field=field)
    return minor


def _require_str(data: dict, key: str, prefix: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{prefix}.{key} is required", field=f"{prefix}.{key}")
    return value.strip()


def _optional_str(value: Any, field: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string", field=field)
    return value.strip() or None


def _positive_int(value: Any, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", field=field)
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer", field=field)
    if value < 1:
        raise ValidationError(f"{field} must be at least 1", field=field)
    return value


def validate_customer_info(data: Any) -> dict:
    """
    Validate checkout contact details and return a normalized snapshot.

    Every field is required: first/last name, email, phone and a shipping
    address with street, city, state and zipCode (country defaults to
    Nigeria).
    """
    if not isinstance(data, dict):
        raise ValidationError("customerInfo is required", field="customerInfo")

    address = data.get("shippingAddress")
    if not isinstance(address, dict):
        raise ValidationError("customerInfo.shippingAddress is required", field="customerInfo.shippingAddress")

    shipping_address = {
        key: _require_str(address, key, "customerInfo.shippingAddress")
        for key in SHIPPING_ADDRESS_FIELDS
    }
    country = _optional_str(address.get("country"), "customerInfo.shippingAddress.country")
    shipping_address["country"] = country or "Nigeria"

    return {
        "first_name": _require_str(data, "firstName", "customerInfo"),
        "last_name": _require_str(data, "lastName", "customerInfo"),
        "email": normalize_email(data.get("email"), field="customerInfo.email"),
        "phone": _require_str(data, "phone", "customerInfo"),
        "shipping_address": shipping_address,
    }


def validate_order_intent(data: Any) -> dict:
    """
    Validate cart and pricing captured at checkout.

    Amounts arrive in major units and are stored in minor units. Totals are
    taken as given; they are not recomputed from the items.
    """
    if not isinstance(data, dict):
        raise ValidationError("orderDetails is required", field="orderDetails")

    raw_items = data.get("items")
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("orderDetails.items must be a non-empty list", field="orderDetails.items")

    items = []
    for index, raw in enumerate(raw_items):
        prefix = f"orderDetails.items[{index}]"
        if not isinstance(raw, dict):
            raise ValidationError(f"{prefix} must be an object", field=prefix)
        items.append({
            "product_id": _positive_int(raw.get("product"), f"{prefix}.product"),
            "name": _require_str(raw, "name", prefix),
            "unit_price_minor": to_minor_units(raw.get("price"), f"{prefix}.price"),
            "quantity": _positive_int(raw.get("quantity"), f"{prefix}.quantity"),
            "size": raw.get("size"),
            "color": raw.get("color"),
            "image": raw.get("image"),
        })

    tax = data.get("tax", data.get("vat"))

    delivery_method = data.get("deliveryMethod")
    try:
        delivery_method = DeliveryMethod(str(delivery_method).lower()).value
    except ValueError:
        allowed = ", ".join(m.value for m in DeliveryMethod)
        raise ValidationError(
            f"orderDetails.deliveryMethod must be one of: {allowed}",
            field="orderDetails.deliveryMethod",
        )

    free_shipping = data.get("qualifiesForFreeShipping")
    if not isinstance(free_shipping, bool):
        raise ValidationError(
            "orderDetails.qualifiesForFreeShipping must be true or false",
            field="orderDetails.qualifiesForFreeShipping",
        )

    total_minor = to_minor_units(data.get("total"), "orderDetails.total")
    if total_minor <= 0:
        raise ValidationError("orderDetails.total must be greater than zero", field="orderDetails.total")

    return {
        "items": items,
        "subtotal_minor": to_minor_units(data.get("subtotal"), "orderDetails.subtotal"),
        "shipping_cost_minor": to_minor_units(data.get("shippingCost"), "orderDetails.shippingCost"),
        "tax_minor": to_minor_units(tax, "orderDetails.tax") if tax is not None else 0,
        "total_minor": total_minor,
        "delivery_method": delivery_method,
        "qualifies_for_free_shipping": free_shipping,
        "notes": _optional_str(data.get("notes"), "orderDetails.notes"),
    }
