"""
Payment confirmation tests.

Covers the exactly-once guarantees: one Order per reference and one stock
decrement per line item, however many times (and from whichever path)
confirmation runs.
"""

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from hive.extensions import db
from hive.models import Order, Product, Transaction, User
from hive.services import checkout_service
from hive.services.checkout_service import ConfirmationOutcome, ConfirmationSource, OrderIntegrityError
from hive.services.gateway_service import AuthenticityError
from hive.services.ledger_service import create_pending_transaction, get_transaction_by_reference
from hive.statuses import CheckoutMode
from hive.validation import NotFoundError

from conftest import charge_success_event, customer_info, order_details, sign


def _confirmation_emails(notifier):
    return [s for s in notifier.subjects() if s.startswith("Order Confirmation")]


def _place_order(client, product, quantity=1, headers=None):
    placed = client.post("/api/v1/orders", json={
        "customerInfo": customer_info(),
        "orderDetails": order_details(product, quantity=quantity),
    }, headers=headers or {})
    assert placed.status_code == 201, placed.get_json()
    return placed.get_json()["order"]["id"]


class TestSuccessfulPayment:
    def test_guest_checkout_of_5000_naira(self, client, start_checkout, make_product, notifier):
        product = make_product(price_minor=250000, stock_count=10)
        reference = start_checkout(product, quantity=2)

        response = client.get(f"/api/v1/transactions/verify/{reference}")

        assert response.status_code == 200
        body = response.get_json()
        assert body["status"] == "confirmed"
        assert body["order"]["total"] == 5000
        assert body["order"]["total_minor"] == 500000
        assert body["order"]["payment_status"] == "paid"
        assert body["order"]["status"] == "confirmed"
        assert body["order"]["is_guest_order"] is True
        assert body["order"]["account_created"] is False

        order = db.session.query(Order).one()
        assert order.order_number.startswith("ORD")
        assert len(order.order_number) == len("ORD") + 6 + 4
        assert order.customer_id is None
        assert [(i.product_id, i.quantity, i.size) for i in order.items] == [(product.id, 2, "M")]

        txn = db.session.query(Transaction).one()
        assert txn.status == "success"
        assert txn.order_id == order.id
        assert txn.paid_at is not None
        assert txn.gateway_response["status"] == "success"
        assert order.transaction_id == txn.id

        assert db.session.get(Product, product.id).stock_count == 8
        assert len(_confirmation_emails(notifier)) == 1
        assert notifier.sent[0]["to"] == "ada@example.com"

    def test_existing_account_is_linked_by_email(self, client, start_checkout, make_product, make_user):
        user = make_user("ada@example.com")
        product = make_product()
        reference = start_checkout(product, email="ADA@example.com")

        body = client.get(f"/api/v1/transactions/verify/{reference}").get_json()

        assert body["order"]["customer_id"] == user.id
        assert body["order"]["is_guest_order"] is False
        assert body["order"]["account_created"] is False

    def test_account_created_during_confirmation(self, client, start_checkout, make_product):
        product = make_product()
        reference = start_checkout(
            product,
            email="fresh@example.com",
            accountOptions={"createAccount": True, "password": "Secret123"},
        )
        assert db.session.query(User).count() == 0

        body = client.get(f"/api/v1/transactions/verify/{reference}").get_json()

        user = db.session.query(User).one()
        assert user.email == "fresh@example.com"
        assert user.first_name == "Ada"
        assert body["order"]["customer_id"] == user.id
        assert body["order"]["is_guest_order"] is False
        assert body["order"]["account_created"] is True

    def test_late_success_after_failure(self, client, start_checkout, make_product, gateway):
        product = make_product()
        reference = start_checkout(product)
        gateway.statuses[reference] = "failed"
        assert client.get(f"/api/v1/transactions/verify/{reference}").status_code == 402

        gateway.statuses[reference] = "success"
        response = client.get(f"/api/v1/transactions/verify/{reference}")

        assert response.status_code == 200
        assert response.get_json()["status"] == "confirmed"
        assert db.session.query(Order).count() == 1


class TestIdempotence:
    def test_repeated_polls_create_one_order(self, client, start_checkout, make_product, notifier, gateway):
        product = make_product(stock_count=10)
        reference = start_checkout(product, quantity=2)

        first = client.get(f"/api/v1/transactions/verify/{reference}").get_json()
        second = client.get(f"/api/v1/transactions/verify/{reference}").get_json()

        assert first["status"] == "confirmed"
        assert second["status"] == "already_confirmed"
        assert second["order"]["id"] == first["order"]["id"]
        assert db.session.query(Order).count() == 1
        assert db.session.get(Product, product.id).stock_count == 8
        assert len(_confirmation_emails(notifier)) == 1
        # already-successful transactions are not re-verified with the gateway
        assert gateway.verified == [reference]

    def test_webhook_after_poll_is_no_op(self, client, start_checkout, make_product, notifier):
        product = make_product(stock_count=10)
        reference = start_checkout(product, quantity=2)
        client.get(f"/api/v1/transactions/verify/{reference}")

        raw = charge_success_event(reference)
        response = client.post(
            "/api/v1/transactions/webhook",
            data=raw,
            headers={"x-paystack-signature": sign(raw), "Content-Type": "application/json"},
        )

        assert response.status_code == 200
        assert response.get_json()["status"] == "already_confirmed"
        assert db.session.query(Order).count() == 1
        assert db.session.get(Product, product.id).stock_count == 8
        assert len(_confirmation_emails(notifier)) == 1

    def test_concurrent_confirmation_creates_one_order(
        self, app, start_checkout, make_product, notifier, monkeypatch
    ):
        """
        The webhook commits its order while the poll is between reading the
        transaction and writing its own order. The poll must lose cleanly.
        """
        product = make_product(stock_count=10)
        reference = start_checkout(product, quantity=2)
        raw = charge_success_event(reference)

        real_resolve = checkout_service.resolve_identity
        peer = {}

        def resolve_after_peer_commits(*args, **kwargs):
            if "result" not in peer:
                peer["result"] = None
                peer["result"] = checkout_service.confirm_payment(
                    reference,
                    ConfirmationSource.WEBHOOK,
                    gateway_payload={"reference": reference, "status": "success"},
                    raw_body=raw,
                    signature=sign(raw),
                )
            return real_resolve(*args, **kwargs)

        monkeypatch.setattr(checkout_service, "resolve_identity", resolve_after_peer_commits)

        result = checkout_service.confirm_payment(reference, ConfirmationSource.POLL)

        assert peer["result"].outcome == ConfirmationOutcome.CONFIRMED
        assert result.outcome == ConfirmationOutcome.ALREADY_CONFIRMED
        assert result.order.id == peer["result"].order.id
        assert db.session.query(Order).count() == 1
        assert db.session.query(Transaction).one().order_id == result.order.id
        assert db.session.get(Product, product.id).stock_count == 8
        assert len(_confirmation_emails(notifier)) == 1


class TestFailedPayment:
    def test_failed_payment_creates_no_order(self, client, start_checkout, make_product, gateway, notifier):
        product = make_product(stock_count=10)
        reference = start_checkout(product)
        gateway.statuses[reference] = "failed"

        first = client.get(f"/api/v1/transactions/verify/{reference}")
        second = client.get(f"/api/v1/transactions/verify/{reference}")

        assert first.status_code == 402
        assert first.get_json()["status"] == "failed"
        assert second.status_code == 402
        assert db.session.query(Transaction).one().status == "failed"
        assert db.session.query(Order).count() == 0
        assert db.session.get(Product, product.id).stock_count == 10
        assert _confirmation_emails(notifier) == []

    def test_gateway_unreachable_on_verify(self, client, start_checkout, make_product, gateway):
        product = make_product()
        reference = start_checkout(product)
        gateway.fail_verify = True

        response = client.get(f"/api/v1/transactions/verify/{reference}")

        assert response.status_code == 503
        assert db.session.query(Transaction).one().status == "pending"

    def test_unknown_reference(self, client):
        response = client.get("/api/v1/transactions/verify/TXN-0-NOPE")
        assert response.status_code == 404


class TestConfirmPaymentService:
    def test_webhook_source_requires_signature(self, app, start_checkout, make_product):
        product = make_product()
        reference = start_checkout(product)
        raw = charge_success_event(reference)

        with pytest.raises(AuthenticityError):
            checkout_service.confirm_payment(
                reference,
                ConfirmationSource.WEBHOOK,
                gateway_payload={"status": "success"},
                raw_body=raw,
                signature="0" * 128,
            )

        assert db.session.query(Transaction).one().status == "pending"
        assert db.session.query(Order).count() == 0

    def test_unknown_reference_raises(self, app):
        with pytest.raises(NotFoundError):
            checkout_service.confirm_payment("TXN-0-MISSING", ConfirmationSource.POLL)

    def test_insufficient_stock_does_not_fail_confirmation(self, client, start_checkout, make_product, notifier):
        product = make_product(stock_count=1)
        reference = start_checkout(product, quantity=2)

        response = client.get(f"/api/v1/transactions/verify/{reference}")

        assert response.status_code == 200
        assert response.get_json()["status"] == "confirmed"
        assert db.session.get(Product, product.id).stock_count == 1
        assert len(_confirmation_emails(notifier)) == 1


class TestPreCreatedOrderPayment:
    def test_pay_later_order_is_synced_on_confirmation(self, client, make_product, notifier):
        product = make_product(stock_count=5)
        placed = client.post("/api/v1/orders", json={
            "customerInfo": customer_info(),
            "orderDetails": order_details(product, quantity=1),
        })
        assert placed.status_code == 201
        order_id = placed.get_json()["order"]["id"]
        assert placed.get_json()["order"]["payment_status"] == "pending"

        started = client.post(f"/api/v1/orders/{order_id}/pay")
        assert started.status_code == 200
        reference = started.get_json()["reference"]

        txn = db.session.query(Transaction).one()
        assert txn.checkout_mode == "pre_created"
        assert txn.order_id == order_id

        body = client.get(f"/api/v1/transactions/verify/{reference}").get_json()
        assert body["status"] == "confirmed"
        assert body["order"]["id"] == order_id
        assert body["order"]["payment_status"] == "paid"
        assert body["order"]["status"] == "confirmed"
        assert body["order"]["transaction_id"] == txn.id
        assert db.session.query(Order).count() == 1
        assert db.session.get(Product, product.id).stock_count == 4

        again = client.get(f"/api/v1/transactions/verify/{reference}").get_json()
        assert again["status"] == "already_confirmed"
        assert db.session.get(Product, product.id).stock_count == 4
        assert len(_confirmation_emails(notifier)) == 1

        assert client.post(f"/api/v1/orders/{order_id}/pay").status_code == 409

    def test_owned_order_requires_owner(self, client, make_product, make_user, auth_headers):
        owner = make_user("owner@example.com")
        product = make_product()
        placed = client.post("/api/v1/orders", json={
            "customerInfo": customer_info("owner@example.com"),
            "orderDetails": order_details(product, quantity=1),
        }, headers=auth_headers(owner))
        order_id = placed.get_json()["order"]["id"]

        assert client.post(f"/api/v1/orders/{order_id}/pay").status_code == 403
        assert client.post(f"/api/v1/orders/{order_id}/pay", headers=auth_headers(owner)).status_code == 200

    def test_second_payment_while_one_is_pending_is_rejected(self, client, make_product):
        order_id = _place_order(client, make_product())
        assert client.post(f"/api/v1/orders/{order_id}/pay").status_code == 200

        second = client.post(f"/api/v1/orders/{order_id}/pay")

        assert second.status_code == 409
        assert "in progress" in second.get_json()["error"]
        assert db.session.query(Transaction).count() == 1

    def test_two_successful_payments_fulfil_the_order_once(self, client, make_product, notifier, caplog):
        product = make_product(stock_count=5)
        order_id = _place_order(client, product, quantity=1)
        first = client.post(f"/api/v1/orders/{order_id}/pay").get_json()["reference"]
        order = db.session.get(Order, order_id)
        second = create_pending_transaction(
            amount_minor=order.total_minor,
            customer_email=order.customer_email,
            checkout_mode=CheckoutMode.PRE_CREATED,
            order_id=order_id,
        ).reference

        one = client.get(f"/api/v1/transactions/verify/{first}").get_json()
        two = client.get(f"/api/v1/transactions/verify/{second}").get_json()

        assert one["status"] == "confirmed"
        assert two["status"] == "already_confirmed"
        assert two["order"]["id"] == order_id

        db.session.expire_all()
        first_txn = get_transaction_by_reference(first)
        second_txn = get_transaction_by_reference(second)
        assert db.session.get(Order, order_id).transaction_id == first_txn.id
        # the duplicate charge is kept on record for refund
        assert (first_txn.status, second_txn.status) == ("success", "success")
        assert "refund required" in caplog.text

        assert db.session.get(Product, product.id).stock_count == 4
        assert len(_confirmation_emails(notifier)) == 1

    def test_late_success_of_failed_attempt_after_retry(self, client, make_product, gateway, notifier):
        product = make_product(stock_count=5)
        order_id = _place_order(client, product, quantity=1)

        abandoned = client.post(f"/api/v1/orders/{order_id}/pay").get_json()["reference"]
        gateway.statuses[abandoned] = "failed"
        assert client.get(f"/api/v1/transactions/verify/{abandoned}").status_code == 402

        retry = client.post(f"/api/v1/orders/{order_id}/pay")
        assert retry.status_code == 200
        paid = client.get(f"/api/v1/transactions/verify/{retry.get_json()['reference']}").get_json()
        assert paid["status"] == "confirmed"

        gateway.statuses[abandoned] = "success"
        late = client.get(f"/api/v1/transactions/verify/{abandoned}")

        assert late.status_code == 200
        assert late.get_json()["status"] == "already_confirmed"
        db.session.expire_all()
        assert db.session.get(Product, product.id).stock_count == 4
        assert len(_confirmation_emails(notifier)) == 1

    def test_unavailable_product_cannot_be_ordered(self, client, make_product):
        product = make_product()
        product.is_active = False
        db.session.commit()

        response = client.post("/api/v1/orders", json={
            "customerInfo": customer_info(),
            "orderDetails": order_details(product, quantity=1),
        })

        assert response.status_code == 400
        assert response.get_json()["field"] == "orderDetails.items[0].product"
        assert db.session.query(Order).count() == 0


class TestCommitFailure:
    def test_failed_commit_can_be_retried(self, client, start_checkout, make_product, notifier, monkeypatch):
        product = make_product(stock_count=10)
        reference = start_checkout(product, quantity=2)

        session_cls = type(db.session())
        real_commit = session_cls.commit
        calls = {"n": 0}

        def commit_fails_once(session):
            calls["n"] += 1
            if calls["n"] == 1:
                raise OperationalError("COMMIT", {}, Exception("database is locked"))
            return real_commit(session)

        monkeypatch.setattr(session_cls, "commit", commit_fails_once)

        failed = client.get(f"/api/v1/transactions/verify/{reference}")

        assert failed.status_code == 500
        assert "retry" in failed.get_json()["error"]
        assert db.session.query(Order).count() == 0
        assert db.session.query(Transaction).one().status == "pending"
        assert notifier.sent == []

        retried = client.get(f"/api/v1/transactions/verify/{reference}")

        assert retried.status_code == 200
        assert retried.get_json()["status"] == "confirmed"
        db.session.expire_all()
        assert db.session.query(Order).count() == 1
        txn = db.session.query(Transaction).one()
        assert txn.status == "success"
        assert txn.order_id == retried.get_json()["order"]["id"]
        assert db.session.get(Product, product.id).stock_count == 8
        assert len(_confirmation_emails(notifier)) == 1

    def test_constraint_violation_is_not_retryable(self, client, start_checkout, make_product, monkeypatch):
        product = make_product()
        reference = start_checkout(product)

        def rejected(*args, **kwargs):
            raise IntegrityError("INSERT INTO order_items", {}, Exception("FOREIGN KEY constraint failed"))

        monkeypatch.setattr(checkout_service, "claim_order_link", rejected)

        response = client.get(f"/api/v1/transactions/verify/{reference}")

        assert response.status_code == 500
        assert response.get_json()["needs_review"] is True
        assert db.session.query(Order).count() == 0
        assert db.session.query(Transaction).one().status == "pending"

        with pytest.raises(OrderIntegrityError):
            checkout_service.confirm_payment(reference, ConfirmationSource.POLL)

    def test_webhook_acknowledges_unstorable_order(self, client, start_checkout, make_product, monkeypatch):
        product = make_product()
        reference = start_checkout(product)

        def rejected(*args, **kwargs):
            raise IntegrityError("INSERT INTO order_items", {}, Exception("FOREIGN KEY constraint failed"))

        monkeypatch.setattr(checkout_service, "claim_order_link", rejected)
        raw = charge_success_event(reference)

        response = client.post(
            "/api/v1/transactions/webhook",
            data=raw,
            headers={"x-paystack-signature": sign(raw), "Content-Type": "application/json"},
        )

        assert response.status_code == 200
        assert response.get_json()["needs_review"] is True
        assert db.session.query(Order).count() == 0
