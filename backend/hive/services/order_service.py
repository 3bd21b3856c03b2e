# Overview: Service-layer operations for orders; building, tracking access, admin status changes and guest linking.

from __future__ import annotations

from flask import current_app
from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Order, OrderItem, User
from ..statuses import (
    DeliveryStatus,
    OrderStatus,
    PaymentStatus,
    parse_status,
    require_transition,
)
from ..validation import ConflictError, NotFoundError, ValidationError, validate_customer_info, validate_order_intent
from .catalog_service import ensure_purchasable
from .order_number_service import next_order_number
from hive.time_utils import parse_utc


DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


class OrderAccessDenied(Exception):
    """Viewer cannot prove ownership of the order."""
    pass


def build_order(
    customer_info: dict,
    intent: dict,
    *,
    customer: User | None = None,
    account_created: bool = False,
    transaction_id: int | None = None,
    payment_status: PaymentStatus = PaymentStatus.PENDING,
    status: OrderStatus = OrderStatus.PENDING,
    currency: str = "NGN",
) -> Order:
    """
    Add an Order (and its items) to the session from validated checkout data.

    ``customer_info`` and ``intent`` are the normalized dicts returned by
    validate_customer_info / validate_order_intent. Allocates the order
    number; does not commit.
    """
    order = Order(
        order_number=next_order_number(),
        customer_id=customer.id if customer else None,
        customer_first_name=customer_info["first_name"],
        customer_last_name=customer_info["last_name"],
        customer_email=customer_info["email"],
        customer_phone=customer_info["phone"],
        shipping_address=customer_info["shipping_address"],
        subtotal_minor=intent["subtotal_minor"],
        shipping_cost_minor=intent["shipping_cost_minor"],
        tax_minor=intent.get("tax_minor", 0),
        total_minor=intent["total_minor"],
        currency=currency,
        delivery_method=intent["delivery_method"],
        delivery_status=DeliveryStatus.PENDING.value,
        payment_status=payment_status.value,
        status=status.value,
        is_guest_order=customer is None,
        account_created=bool(customer) and account_created,
        qualifies_for_free_shipping=intent["qualifies_for_free_shipping"],
        notes=intent.get("notes"),
        transaction_id=transaction_id,
    )
    for item in intent["items"]:
        order.items.append(OrderItem(
            product_id=item["product_id"],
            name=item["name"],
            unit_price_minor=item["unit_price_minor"],
            quantity=item["quantity"],
            size=item.get("size"),
            color=item.get("color"),
            image=item.get("image"),
        ))
    db.session.add(order)
    return order


def place_pending_order(customer_info_data: dict, order_intent_data: dict, customer: User | None = None) -> Order:
    """Create an unpaid order up front (pay-later flow); payment syncs it later."""
    customer_info = validate_customer_info(customer_info_data)
    intent = validate_order_intent(order_intent_data)
    ensure_purchasable(intent["items"])

    order = build_order(
        customer_info,
        intent,
        customer=customer,
        currency=current_app.config.get("DEFAULT_CURRENCY", "NGN"),
    )
    db.session.commit()
    current_app.logger.info("Pending order %s placed", order.order_number)
    return order


def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if not order:
        raise NotFoundError("Order not found")
    return order


def can_view_order(order: Order, viewer: User | None = None, email: str | None = None) -> bool:
    """
    Ownership proof for order tracking, first match wins:
    admin; owning customer; guest order placed with the viewer's email;
    guest order placed with the supplied ``email``.
    """
    if viewer is not None:
        if viewer.is_admin:
            return True
        if order.customer_id is not None and order.customer_id == viewer.id:
            return True
        if order.is_guest_order and order.customer_email == viewer.email.lower():
            return True

    if email and order.is_guest_order:
        return order.customer_email == email.strip().lower()
    return False


def get_trackable_order(order_number: str, viewer: User | None = None, email: str | None = None) -> Order:
    """
    Raises:
        NotFoundError: no such order number
        OrderAccessDenied: no ownership proof
    """
    order = (
        db.session.query(Order)
        .filter(Order.order_number == (order_number or "").strip().upper())
        .first()
    )
    if not order:
        raise NotFoundError("Order not found")
    if not can_view_order(order, viewer, email):
        raise OrderAccessDenied("Not authorized to view this order. Please provide the email used for the order.")
    return order


def list_user_orders(user: User) -> list[Order]:
    """Orders owned by the user plus guest orders placed with the user's email."""
    return (
        db.session.query(Order)
        .filter(or_(
            Order.customer_id == user.id,
            (Order.is_guest_order.is_(True)) & (Order.customer_email == user.email.lower()),
        ))
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )


def list_orders(status: str | None = None, page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> dict:
    """Admin listing, newest first, with an optional order-status filter."""
    if page < 1:
        raise ValidationError("page must be at least 1", field="page")
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}", field="limit")

    query = db.session.query(Order)
    if status:
        query = query.filter(Order.status == parse_status(OrderStatus, status).value)

    total = query.count()
    orders = (
        query.order_by(Order.created_at.desc(), Order.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "orders": orders,
        "total": total,
        "pages": (total + limit - 1) // limit,
        "current_page": page,
    }


def update_order_status(
    order_id: int,
    *,
    status: str | None = None,
    delivery_status: str | None = None,
    tracking_number: str | None = None,
    estimated_delivery: str | None = None,
) -> Order:
    """
    Admin update of order/delivery status, tracking number and estimated
    delivery date (ISO-8601, stored as UTC).

    Both status dimensions follow their allow-lists (StatusTransitionError
    otherwise). A change of order status emails the customer, best effort.
    """
    if status is None and delivery_status is None and tracking_number is None and estimated_delivery is None:
        raise ValidationError("Provide status, deliveryStatus, trackingNumber or estimatedDelivery")

    if tracking_number is not None and not isinstance(tracking_number, str):
        raise ValidationError("trackingNumber must be a string", field="trackingNumber")

    delivery_eta = None
    if estimated_delivery is not None:
        try:
            delivery_eta = parse_utc(estimated_delivery)
        except ValueError:
            raise ValidationError("estimatedDelivery must be an ISO-8601 date", field="estimatedDelivery")

    order = get_order(order_id)
    previous_status = order.status

    if status is not None:
        target = parse_status(OrderStatus, status)
        require_transition(order.status, target)
        order.status = target.value
    if delivery_status is not None:
        target = parse_status(DeliveryStatus, delivery_status)
        require_transition(order.delivery_status, target)
        order.delivery_status = target.value
    if tracking_number is not None:
        order.tracking_number = tracking_number.strip() or None
    if delivery_eta is not None:
        order.estimated_delivery = delivery_eta

    db.session.commit()

    if order.status != previous_status:
        current_app.logger.info("Order %s: %s -> %s", order.order_number, previous_status, order.status)
        from .notification_service import get_notifier
        try:
            get_notifier().send_order_status_update(order)
        except Exception:
            current_app.logger.exception("Status update email failed for order %s", order.order_number)
    return order


def link_guest_orders(user: User) -> int:
    """Attach every unowned guest order placed with the user's email to the user."""
    result = db.session.execute(
        update(Order)
        .where(
            Order.customer_email == user.email.lower(),
            Order.is_guest_order.is_(True),
            Order.customer_id.is_(None),
        )
        .values(customer_id=user.id, is_guest_order=False, account_created=True)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def create_account_after_purchase(
    *,
    email: str,
    password: str,
    first_name: str = "",
    last_name: str = "",
) -> tuple[User, int]:
    """
    Turn a guest buyer into an account and re-link their earlier guest orders.

    Returns (user, linked_order_count).

    Raises:
        ConflictError: email already registered
    """
    from .auth_service import create_user

    user = create_user(
        email=email,
        password=password,
        first_name=first_name,
        last_name=last_name,
        commit=False,
    )
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Email already registered. Please login.")
    linked = link_guest_orders(user)
    db.session.commit()

    current_app.logger.info("Account %s created after purchase; %s guest order(s) linked", user.id, linked)
    return user, linked
