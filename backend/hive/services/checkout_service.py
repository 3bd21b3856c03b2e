# Overview: Checkout orchestration; payment initiation and exactly-once order confirmation.

"""
Checkout Orchestrator

Two checkout modes share one confirmation entry point:

DEFERRED_INTENT
    initiate_checkout stores the whole order intent on a pending Transaction.
    The Order does not exist until confirm_payment sees a successful payment.

PRE_CREATED
    An unpaid Order already exists; initiate_order_payment opens a
    Transaction linked to it and confirmation only syncs statuses.

CONFIRMATION RULES:
- Confirmation may arrive several times, from the webhook and from the
  verify poll, possibly at the same moment.
- Exactly one caller creates the Order. The storage guards are the unique
  orders.transaction_id and the conditional "link only if order_id IS NULL"
  UPDATE; the loser rolls back and reports the winner's Order.
- A pre-created Order is claimed by the first successful Transaction
  (orders.transaction_id IS NULL and still payable). Any later success for
  the same Order is recorded but gets no side effects.
- Stock decrement and the confirmation email run after commit, only for the
  winner, and never fail the confirmation.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..models import Order, Transaction, User
from ..statuses import CheckoutMode, OrderStatus, PaymentStatus, TransactionStatus, sources_for
from ..validation import ConflictError, ValidationError, validate_customer_info, validate_order_intent
from .auth_service import PasswordValidationError, hash_password
from .catalog_service import ensure_purchasable
from .concurrency import conditional_update
from .gateway_service import AuthenticityError, GatewayError, get_gateway_client, verify_webhook_signature
from .identity_service import resolve_identity
from .inventory_service import decrement_for_items
from .ledger_service import (
    attach_gateway_reference,
    claim_order_link,
    create_pending_transaction,
    get_transaction_by_reference,
    update_status,
)
from .notification_service import get_notifier
from .order_service import OrderAccessDenied, build_order, get_order


class CommitError(Exception):
    """Order could not be persisted; the confirmation is safe to retry."""
    pass


class OrderIntegrityError(Exception):
    """
    The paid intent cannot become an Order (a storage constraint other than
    the one-order-per-transaction link rejects it). Retrying will not help;
    the payment needs manual reconciliation.
    """
    pass


class ConfirmationSource(str, Enum):
    WEBHOOK = "webhook"
    POLL = "poll"


class ConfirmationOutcome(str, Enum):
    CONFIRMED = "confirmed"
    ALREADY_CONFIRMED = "already_confirmed"
    FAILED = "failed"


@dataclass(frozen=True)
class CheckoutSession:
    reference: str
    authorization_url: str
    access_code: str

    def to_dict(self) -> dict:
        return {
            "reference": self.reference,
            "authorizationUrl": self.authorization_url,
            "accessCode": self.access_code,
        }


@dataclass(frozen=True)
class ConfirmationResult:
    transaction: Transaction
    order: Order | None
    outcome: ConfirmationOutcome


@dataclass(frozen=True)
class WebhookResult:
    event: str | None
    handled: bool
    confirmation: ConfirmationResult | None = None


# =============================================================================
# INITIATION
# =============================================================================

def _prepare_account_options(account_options) -> dict:
    """Hash the requested password now; plaintext never reaches the metadata."""
    if not account_options:
        return {}
    if not isinstance(account_options, dict):
        raise ValidationError("accountOptions must be an object", field="accountOptions")
    if not account_options.get("createAccount"):
        return {}

    password = account_options.get("password")
    if not password:
        raise ValidationError("accountOptions.password is required to create an account", field="accountOptions.password")
    try:
        password_hash = hash_password(password)
    except PasswordValidationError as exc:
        raise ValidationError(str(exc), field="accountOptions.password")
    return {"create_account": True, "password_hash": password_hash}


def _candidate_user_id(authenticated_user_id, hinted_user_id, email: str) -> int | None:
    """
    The authenticated user always wins. A client-supplied id is advisory and
    only kept when it belongs to an account with the checkout email.
    """
    if authenticated_user_id is not None:
        return authenticated_user_id
    if hinted_user_id is None:
        return None
    try:
        user = db.session.get(User, int(hinted_user_id))
    except (TypeError, ValueError):
        return None
    if user and user.email == email:
        return user.id
    return None


def _start_gateway_payment(transaction: Transaction) -> CheckoutSession:
    gateway = get_gateway_client()
    try:
        initialized = gateway.initialize_payment(
            email=transaction.customer_email,
            amount_minor=transaction.amount_minor,
            reference=transaction.reference,
            metadata={
                "reference": transaction.reference,
                "customer_name": transaction.customer_name,
                "checkout_mode": transaction.checkout_mode,
            },
        )
    except GatewayError as exc:
        # Transaction stays pending without a gateway reference
        current_app.logger.warning("Payment initialization failed for %s: %s", transaction.reference, exc)
        raise

    attach_gateway_reference(transaction, initialized.gateway_reference)
    current_app.logger.info("Payment initialized for %s", transaction.reference)
    return CheckoutSession(
        reference=transaction.reference,
        authorization_url=initialized.authorization_url,
        access_code=initialized.access_code,
    )


def initiate_checkout(
    customer_info,
    order_intent,
    account_options=None,
    authenticated_user_id: int | None = None,
    hinted_user_id=None,
) -> CheckoutSession:
    """
    Validate the cart, persist a pending DEFERRED_INTENT Transaction carrying
    the order intent, then start the hosted payment.

    Raises:
        ValidationError: malformed customer info, order intent or account options
        GatewayError: processor rejected or timed out (transaction stays pending)
    """
    info = validate_customer_info(customer_info)
    intent = validate_order_intent(order_intent)
    ensure_purchasable(intent["items"])
    options = _prepare_account_options(account_options)

    metadata = {
        "customer_info": info,
        "order_intent": intent,
        "user_id": _candidate_user_id(authenticated_user_id, hinted_user_id, info["email"]),
        "account_options": options,
    }
    transaction = create_pending_transaction(
        amount_minor=intent["total_minor"],
        customer_email=info["email"],
        customer_name=f"{info['first_name']} {info['last_name']}",
        currency=current_app.config.get("DEFAULT_CURRENCY", "NGN"),
        checkout_mode=CheckoutMode.DEFERRED_INTENT,
        metadata=metadata,
    )
    return _start_gateway_payment(transaction)


def initiate_order_payment(order_id: int, authenticated_user: User | None = None) -> CheckoutSession:
    """
    Open a PRE_CREATED Transaction for an existing unpaid order.

    Raises:
        NotFoundError: unknown order
        OrderAccessDenied: order belongs to another account
        ConflictError: order already paid, no longer pending, or a payment for
            it is still in progress
        GatewayError: processor rejected or timed out
    """
    order = get_order(order_id)
    if order.customer_id is not None:
        if authenticated_user is None or (
            authenticated_user.id != order.customer_id and not authenticated_user.is_admin
        ):
            raise OrderAccessDenied("Not authorized to pay for this order")
    if order.payment_status == PaymentStatus.PAID.value:
        raise ConflictError("Order is already paid")
    if order.status != OrderStatus.PENDING.value:
        raise ConflictError(f"Order is {order.status} and cannot be paid")
    in_progress = (
        db.session.query(Transaction.id)
        .filter(
            Transaction.order_id == order.id,
            Transaction.status == TransactionStatus.PENDING.value,
        )
        .first()
    )
    if in_progress:
        raise ConflictError("A payment for this order is already in progress")

    transaction = create_pending_transaction(
        amount_minor=order.total_minor,
        customer_email=order.customer_email,
        customer_name=f"{order.customer_first_name} {order.customer_last_name}",
        currency=order.currency,
        checkout_mode=CheckoutMode.PRE_CREATED,
        metadata={"order_number": order.order_number},
        order_id=order.id,
    )
    return _start_gateway_payment(transaction)


# =============================================================================
# CONFIRMATION
# =============================================================================

def _already_confirmed(reference: str) -> ConfirmationResult:
    """Re-read after losing a race; the winner's order must be visible by now."""
    db.session.expire_all()
    transaction = get_transaction_by_reference(reference)
    if transaction.order_id is None:
        raise CommitError(f"Order for {reference} is not visible yet; retry confirmation")
    return ConfirmationResult(transaction, transaction.order, ConfirmationOutcome.ALREADY_CONFIRMED)


def _commit_or_raise(reference: str) -> None:
    try:
        db.session.commit()
    except IntegrityError:
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Commit failed while confirming %s", reference)
        raise CommitError(f"Could not persist order for {reference}") from exc


def _materialize_order(transaction: Transaction, gateway_data: dict) -> ConfirmationResult:
    reference = transaction.reference
    transaction_id = transaction.id
    metadata = transaction.metadata_json or {}
    customer_info = metadata.get("customer_info")
    intent = metadata.get("order_intent")
    if not customer_info or not intent:
        raise OrderIntegrityError(f"Transaction {reference} carries no order intent")

    try:
        identity = resolve_identity(
            metadata.get("user_id"),
            customer_info["email"],
            customer_info,
            metadata.get("account_options"),
        )
        order = build_order(
            customer_info,
            intent,
            customer=identity.user,
            account_created=identity.created,
            transaction_id=transaction_id,
            payment_status=PaymentStatus.PAID,
            status=OrderStatus.CONFIRMED,
            currency=transaction.currency,
        )
        db.session.flush()
        won = claim_order_link(transaction_id, order.id, gateway_data)
        if won:
            _commit_or_raise(reference)
    except IntegrityError as exc:
        db.session.rollback()
        db.session.expire_all()
        if get_transaction_by_reference(reference).order_id is None:
            current_app.logger.exception("Order for %s rejected by the database; needs manual review", reference)
            raise OrderIntegrityError(f"Order for {reference} violates a storage constraint") from exc
        # orders.transaction_id already taken by a concurrent confirmation
        won = False

    if not won:
        db.session.rollback()
        current_app.logger.info("Lost confirmation race for %s; returning existing order", reference)
        return _already_confirmed(reference)

    db.session.refresh(transaction)
    current_app.logger.info("Order %s created for %s", order.order_number, reference)
    return ConfirmationResult(transaction, order, ConfirmationOutcome.CONFIRMED)


def _confirm_pre_created(transaction: Transaction, gateway_data: dict) -> ConfirmationResult:
    """
    The order row is the claim: only the first successful transaction may
    set orders.transaction_id. A later success for the same order is still
    recorded on its transaction and flagged for refund.
    """
    reference = transaction.reference
    won = conditional_update(
        update(Order)
        .where(
            Order.id == transaction.order_id,
            Order.transaction_id.is_(None),
            Order.payment_status.in_(sources_for(PaymentStatus.PAID)),
        )
        .values(transaction_id=transaction.id)
    )
    update_status(transaction, TransactionStatus.SUCCESS, gateway_data, commit=False)
    try:
        _commit_or_raise(reference)
    except IntegrityError as exc:
        db.session.rollback()
        raise CommitError(f"Could not link order for {reference}") from exc

    db.session.refresh(transaction)
    order = transaction.order
    db.session.refresh(order)

    if not won:
        if order.transaction_id != transaction.id:
            current_app.logger.warning(
                "Duplicate payment %s for order %s already paid by transaction %s; refund required",
                reference, order.order_number, order.transaction_id,
            )
        return ConfirmationResult(transaction, order, ConfirmationOutcome.ALREADY_CONFIRMED)

    current_app.logger.info("Order %s paid via %s", order.order_number, reference)
    return ConfirmationResult(transaction, order, ConfirmationOutcome.CONFIRMED)


def _after_confirmation(order: Order) -> None:
    """Winner-only side effects; logged, never raised."""
    try:
        for outcome in decrement_for_items(order.items):
            if not outcome.ok:
                current_app.logger.warning(
                    "Stock not adjusted for order %s product %s: %s",
                    order.order_number, outcome.product_id, outcome.error,
                )
    except Exception:
        current_app.logger.exception("Stock adjustment failed for order %s", order.order_number)

    try:
        if not get_notifier().send_order_confirmation(order):
            current_app.logger.warning("Confirmation email not sent for order %s", order.order_number)
    except Exception:
        current_app.logger.exception("Confirmation email failed for order %s", order.order_number)


def confirm_payment(
    reference: str,
    source,
    gateway_payload: dict | None = None,
    raw_body: bytes | None = None,
    signature: str | None = None,
) -> ConfirmationResult:
    """
    Reconcile one payment confirmation; safe to call any number of times.

    1. Already successful: return the linked order, no side effects.
    2. Webhook payloads must carry a valid signature over ``raw_body``;
       polls ask the gateway directly.
    3. Non-success: the transaction is marked failed and no order is made.
    4. Success: create (deferred intent) or sync (pre-created) the order.
    5. The winning caller adjusts stock and sends the confirmation email.

    Raises:
        NotFoundError: unknown reference
        AuthenticityError: webhook signature missing or wrong (nothing written)
        GatewayError: verify poll could not reach the processor
        CommitError: order could not be persisted (retryable)
        OrderIntegrityError: paid intent rejected by storage constraints (not retryable)
    """
    source = ConfirmationSource(source)
    transaction = get_transaction_by_reference(reference)
    if transaction.is_successful:
        return ConfirmationResult(transaction, transaction.order, ConfirmationOutcome.ALREADY_CONFIRMED)

    gateway = get_gateway_client()
    if source == ConfirmationSource.WEBHOOK:
        if raw_body is None or not verify_webhook_signature(raw_body, signature, gateway.config.webhook_secret):
            current_app.logger.warning("Rejected unsigned confirmation for %s", transaction.reference)
            raise AuthenticityError("Invalid webhook signature")
        gateway_data = gateway_payload or {}
        succeeded = str(gateway_data.get("status") or "").lower() == "success"
    else:
        verified = gateway.verify_payment(transaction.reference)
        gateway_data = verified.raw
        succeeded = verified.succeeded

    if not succeeded:
        update_status(transaction, TransactionStatus.FAILED, gateway_data)
        current_app.logger.info("Payment %s reported as not successful (%s)", transaction.reference, source.value)
        return ConfirmationResult(transaction, transaction.order, ConfirmationOutcome.FAILED)

    if transaction.checkout_mode == CheckoutMode.PRE_CREATED.value:
        result = _confirm_pre_created(transaction, gateway_data)
    else:
        result = _materialize_order(transaction, gateway_data)

    if result.outcome == ConfirmationOutcome.CONFIRMED:
        _after_confirmation(result.order)
    return result


def handle_webhook(raw_body: bytes, signature: str | None) -> WebhookResult:
    """
    Entry point for gateway callbacks. The signature is checked before the
    body is parsed; only charge.success is acted on, other events are
    acknowledged and ignored.
    """
    gateway = get_gateway_client()
    if not verify_webhook_signature(raw_body, signature, gateway.config.webhook_secret):
        current_app.logger.warning("Rejected webhook with invalid signature")
        raise AuthenticityError("Invalid webhook signature")

    try:
        event = json.loads(raw_body)
    except (TypeError, ValueError):
        raise ValidationError("Malformed webhook payload")
    if not isinstance(event, dict):
        raise ValidationError("Malformed webhook payload")

    event_type = event.get("event")
    if event_type != "charge.success":
        current_app.logger.info("Ignoring webhook event %s", event_type)
        return WebhookResult(event=event_type, handled=False)

    data = event.get("data") or {}
    reference = data.get("reference") if isinstance(data, dict) else None
    if not reference:
        raise ValidationError("Webhook payload missing data.reference", field="data.reference")

    result = confirm_payment(
        reference,
        ConfirmationSource.WEBHOOK,
        gateway_payload=data,
        raw_body=raw_body,
        signature=signature,
    )
    return WebhookResult(event=event_type, handled=True, confirmation=result)
