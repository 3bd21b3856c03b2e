from __future__ import annotations

from ..extensions import db
from ..statuses import DeliveryMethod, DeliveryStatus, OrderStatus, PaymentStatus
from hive.time_utils import to_utc_z


def _major(minor: int | None) -> float | None:
    return None if minor is None else minor / 100


class Order(db.Model):
    """
    Confirmed purchase.

    For metadata-driven checkout the row only exists after payment
    confirmation. Customer contact and shipping details are a snapshot taken
    at order time and are never re-read from the user profile. Totals are
    trusted from the checkout intent, not recomputed here.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_orders_order_number"),
        # One order per payment transaction (storage-level guard)
        db.UniqueConstraint("transaction_id", name="uq_orders_transaction"),
        db.Index("ix_orders_email_guest", "customer_email", "is_guest_order"),
        db.Index("ix_orders_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable order number (e.g., "ORD2610190007")
    order_number = db.Column(db.String(32), nullable=False)

    customer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    # Customer snapshot
    customer_first_name = db.Column(db.String(120), nullable=False)
    customer_last_name = db.Column(db.String(120), nullable=False)
    customer_email = db.Column(db.String(255), nullable=False)
    customer_phone = db.Column(db.String(64), nullable=False)
    shipping_address = db.Column(db.JSON, nullable=False)

    # Totals (minor units)
    subtotal_minor = db.Column(db.Integer, nullable=False)
    shipping_cost_minor = db.Column(db.Integer, nullable=False)
    tax_minor = db.Column(db.Integer, nullable=False, default=0)
    total_minor = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="NGN")

    delivery_method = db.Column(db.String(16), nullable=False, default=DeliveryMethod.STANDARD.value)
    delivery_status = db.Column(db.String(16), nullable=False, default=DeliveryStatus.PENDING.value)
    tracking_number = db.Column(db.String(64), nullable=True)
    estimated_delivery = db.Column(db.DateTime(timezone=True), nullable=True)

    payment_status = db.Column(db.String(16), nullable=False, default=PaymentStatus.PENDING.value, index=True)
    status = db.Column(db.String(16), nullable=False, default=OrderStatus.PENDING.value, index=True)

    is_guest_order = db.Column(db.Boolean, nullable=False, default=True)
    account_created = db.Column(db.Boolean, nullable=False, default=False)
    qualifies_for_free_shipping = db.Column(db.Boolean, nullable=False, default=False)
    notes = db.Column(db.Text, nullable=True)

    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id", use_alter=True, name="fk_orders_transaction_id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    customer = db.relationship("User", backref=db.backref("orders", lazy=True))
    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy=True,
        order_by="OrderItem.id",
        cascade="all, delete-orphan",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "customer_id": self.customer_id,
            "customer_info": {
                "first_name": self.customer_first_name,
                "last_name": self.customer_last_name,
                "email": self.customer_email,
                "phone": self.customer_phone,
                "shipping_address": self.shipping_address,
            },
            "items": [item.to_dict() for item in self.items],
            "subtotal": _major(self.subtotal_minor),
            "shipping_cost": _major(self.shipping_cost_minor),
            "tax": _major(self.tax_minor),
            "total": _major(self.total_minor),
            "total_minor": self.total_minor,
            "currency": self.currency,
            "delivery_method": self.delivery_method,
            "delivery_status": self.delivery_status,
            "tracking_number": self.tracking_number,
            "estimated_delivery": to_utc_z(self.estimated_delivery) if self.estimated_delivery else None,
            "payment_status": self.payment_status,
            "status": self.status,
            "is_guest_order": self.is_guest_order,
            "account_created": self.account_created,
            "qualifies_for_free_shipping": self.qualifies_for_free_shipping,
            "notes": self.notes,
            "transaction_id": self.transaction_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class OrderItem(db.Model):
    """Line item snapshot (name/price/size/color/image frozen at order time)."""
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_order_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    name = db.Column(db.String(255), nullable=False)
    unit_price_minor = db.Column(db.Integer, nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    size = db.Column(db.String(32), nullable=True)
    color = db.Column(db.String(64), nullable=True)
    image = db.Column(db.String(512), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "name": self.name,
            "price": _major(self.unit_price_minor),
            "unit_price_minor": self.unit_price_minor,
            "quantity": self.quantity,
            "size": self.size,
            "color": self.color,
            "image": self.image,
        }


class OrderSequence(db.Model):
    """
    Daily order-number counter.

    One row per day key (YYMMDD); next_number is advanced with an atomic
    UPDATE so concurrent confirmations never share a number.
    """
    __tablename__ = "order_sequences"
    __table_args__ = (
        db.UniqueConstraint("day_key", name="uq_order_sequences_day"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    day_key = db.Column(db.String(6), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
