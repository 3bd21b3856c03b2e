# Overview: Transaction ledger; creation, guarded status transitions and the one-time order link.

"""
Transaction Ledger

Every write that decides a race is a conditional UPDATE:
- status changes are guarded by WHERE status IN (allowed sources)
- the order link is guarded by WHERE order_id IS NULL

The caller that sees rowcount == 1 won; everyone else re-reads. Nothing here
reads a row, decides in Python, then writes it back.
"""

from __future__ import annotations

import secrets
import string
import time
from dataclasses import dataclass
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import Order, Transaction
from ..statuses import (
    CheckoutMode,
    OrderStatus,
    PaymentStatus,
    TransactionStatus,
    can_transition,
    parse_status,
    sources_for,
    StatusTransitionError,
)
from ..validation import NotFoundError
from .concurrency import conditional_update
from hive.time_utils import utcnow


REFERENCE_PREFIX = "TXN"
_REFERENCE_ALPHABET = string.ascii_uppercase + string.digits


def generate_reference() -> str:
    """TXN-<epoch ms>-<9 random uppercase alphanumerics>; uniqueness is enforced by the DB."""
    suffix = "".join(secrets.choice(_REFERENCE_ALPHABET) for _ in range(9))
    return f"{REFERENCE_PREFIX}-{int(time.time() * 1000)}-{suffix}"


def create_pending_transaction(
    *,
    amount_minor: int,
    customer_email: str,
    customer_name: str | None = None,
    currency: str = "NGN",
    checkout_mode: CheckoutMode = CheckoutMode.DEFERRED_INTENT,
    metadata: dict | None = None,
    order_id: int | None = None,
    commit: bool = True,
) -> Transaction:
    """
    Persist a new pending Transaction with a fresh reference.

    The reference exists (and is committed) before the gateway is contacted,
    so a crash after initialization still leaves a row to reconcile.
    """
    transaction = Transaction(
        reference=generate_reference(),
        amount_minor=amount_minor,
        currency=currency,
        customer_email=customer_email.strip().lower(),
        customer_name=customer_name,
        status=TransactionStatus.PENDING.value,
        checkout_mode=checkout_mode.value,
        metadata_json=metadata or {},
        order_id=order_id,
    )
    db.session.add(transaction)
    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return transaction


def attach_gateway_reference(transaction: Transaction, gateway_reference: str | None) -> Transaction:
    transaction.gateway_reference = gateway_reference
    db.session.commit()
    return transaction


def get_transaction_by_reference(reference: str) -> Transaction:
    transaction = (
        db.session.query(Transaction)
        .filter(Transaction.reference == (reference or "").strip())
        .first()
    )
    if not transaction:
        raise NotFoundError("Transaction not found")
    return transaction


@dataclass(frozen=True)
class StatusChange:
    transaction: Transaction
    changed: bool


def _sync_order_payment(order_id: int, new_status: TransactionStatus) -> None:
    """Mirror a transaction outcome onto its linked order, respecting the order allow-lists."""
    if new_status == TransactionStatus.SUCCESS:
        db.session.execute(
            update(Order)
            .where(Order.id == order_id, Order.payment_status.in_(sources_for(PaymentStatus.PAID)))
            .values(payment_status=PaymentStatus.PAID.value)
            .execution_options(synchronize_session=False)
        )
        db.session.execute(
            update(Order)
            .where(Order.id == order_id, Order.status == OrderStatus.PENDING.value)
            .values(status=OrderStatus.CONFIRMED.value)
            .execution_options(synchronize_session=False)
        )
    elif new_status == TransactionStatus.FAILED:
        db.session.execute(
            update(Order)
            .where(Order.id == order_id, Order.payment_status.in_(sources_for(PaymentStatus.FAILED)))
            .values(payment_status=PaymentStatus.FAILED.value)
            .execution_options(synchronize_session=False)
        )


def update_status(
    transaction: Transaction,
    new_status,
    gateway_data: dict | None = None,
    *,
    commit: bool = True,
) -> StatusChange:
    """
    Move a transaction to ``new_status`` if the allow-list permits it.

    - Re-applying the current status is a no-op (changed=False).
    - A transition not in the allow-list from the stored status raises
      StatusTransitionError, except out of SUCCESS, which is terminal and
      silently ignored so duplicate failure reports cannot downgrade a paid
      transaction.
    - The UPDATE is conditional on the source status; when a concurrent
      caller got there first, changed=False and the row is re-read.
    - success stamps paid_at; success and failed store the raw gateway payload.
    - A linked order has its payment/status fields synced in the same
      transaction.
    """
    target = parse_status(TransactionStatus, new_status)
    current = parse_status(TransactionStatus, transaction.status)

    if current == target:
        return StatusChange(transaction=transaction, changed=False)
    if current == TransactionStatus.SUCCESS:
        return StatusChange(transaction=transaction, changed=False)
    if not can_transition(current, target):
        raise StatusTransitionError(
            f"Cannot move transaction {transaction.reference} from '{current.value}' to '{target.value}'"
        )

    values = {"status": target.value, "updated_at": utcnow()}
    if target in (TransactionStatus.SUCCESS, TransactionStatus.FAILED) and gateway_data is not None:
        values["gateway_response"] = gateway_data
    if target == TransactionStatus.SUCCESS:
        values["paid_at"] = utcnow()

    stmt = (
        update(Transaction)
        .where(
            Transaction.id == transaction.id,
            Transaction.status.in_(sources_for(target)),
        )
        .values(**values)
    )
    won = conditional_update(stmt)
    if won and transaction.order_id is not None:
        _sync_order_payment(transaction.order_id, target)

    if commit:
        db.session.commit()
    db.session.refresh(transaction)

    if won:
        current_app.logger.info(
            "Transaction %s: %s -> %s", transaction.reference, current.value, target.value
        )
    return StatusChange(transaction=transaction, changed=won)


def claim_order_link(transaction_id: int, order_id: int, gateway_data: dict | None = None) -> bool:
    """
    Link an order to the transaction and mark it paid, only if no order is linked yet.

    Single conditional UPDATE; returns True for exactly one caller. Runs in
    the caller's transaction and does not commit.
    """
    now = utcnow()
    stmt = (
        update(Transaction)
        .where(
            Transaction.id == transaction_id,
            Transaction.order_id.is_(None),
            Transaction.status != TransactionStatus.SUCCESS.value,
        )
        .values(
            order_id=order_id,
            status=TransactionStatus.SUCCESS.value,
            paid_at=now,
            gateway_response=gateway_data,
            updated_at=now,
        )
    )
    return conditional_update(stmt)


def abandon_stale_transactions(older_than: timedelta | datetime) -> int:
    """
    Mark pending transactions created before the cutoff as abandoned.

    ``older_than`` is either an age (timedelta) or an absolute cutoff.
    Returns the number of transactions moved. A late success can still
    revive an abandoned transaction.
    """
    cutoff = utcnow() - older_than if isinstance(older_than, timedelta) else older_than
    stmt = (
        update(Transaction)
        .where(
            Transaction.status == TransactionStatus.PENDING.value,
            Transaction.created_at < cutoff,
        )
        .values(status=TransactionStatus.ABANDONED.value, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    db.session.commit()
    if result.rowcount:
        current_app.logger.info("Abandoned %s stale pending transaction(s)", result.rowcount)
    return result.rowcount
