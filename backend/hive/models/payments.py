from __future__ import annotations

from ..extensions import db
from ..statuses import CheckoutMode, TransactionStatus
from hive.time_utils import to_utc_z


class Transaction(db.Model):
    """
    One payment attempt against the gateway.

    LIFECYCLE:
    - Created PENDING at checkout initiation, with the full order intent in
      metadata_json (DEFERRED_INTENT) or with order_id already set
      (PRE_CREATED).
    - Moved to SUCCESS/FAILED by confirmation (webhook or verify poll).
    - Never deleted.

    INVARIANTS:
    - reference is unique and assigned before any gateway call.
    - order_id, once set, is never cleared or reassigned. It is only written
      by a conditional UPDATE ... WHERE order_id IS NULL.
    - SUCCESS is terminal.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.UniqueConstraint("reference", name="uq_transactions_reference"),
        db.Index("ix_transactions_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    reference = db.Column(db.String(64), nullable=False)
    gateway = db.Column(db.String(32), nullable=False, default="paystack")
    gateway_reference = db.Column(db.String(128), nullable=True)
    gateway_response = db.Column(db.JSON, nullable=True)

    amount_minor = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="NGN")

    customer_email = db.Column(db.String(255), nullable=False, index=True)
    customer_name = db.Column(db.String(255), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=TransactionStatus.PENDING.value)
    checkout_mode = db.Column(db.String(32), nullable=False, default=CheckoutMode.DEFERRED_INTENT.value)

    # Order intent snapshot: customer_info, order_intent, user_id, account_options
    metadata_json = db.Column(db.JSON, nullable=False, default=dict)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)

    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    order = db.relationship("Order", foreign_keys=[order_id])

    @property
    def is_successful(self) -> bool:
        return self.status == TransactionStatus.SUCCESS.value

    def payment_details(self) -> dict:
        return {
            "reference": self.reference,
            "amount": self.amount_minor / 100,
            "amount_minor": self.amount_minor,
            "currency": self.currency,
            "status": self.status,
            "gateway": self.gateway,
            "created_at": to_utc_z(self.created_at),
            "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            **self.payment_details(),
            "gateway_reference": self.gateway_reference,
            "customer_email": self.customer_email,
            "customer_name": self.customer_name,
            "checkout_mode": self.checkout_mode,
            "order_id": self.order_id,
            "updated_at": to_utc_z(self.updated_at),
        }
