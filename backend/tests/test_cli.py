"""
CLI maintenance commands and the health endpoint.
"""

from datetime import timedelta

from sqlalchemy import update

from hive.extensions import db
from hive.models import Transaction, User
from hive.services.ledger_service import create_pending_transaction
from hive.time_utils import utcnow


class TestAbandonStaleCommand:
    def test_marks_old_pending_transactions(self, app):
        old = create_pending_transaction(amount_minor=1000, customer_email="a@b.co")
        fresh = create_pending_transaction(amount_minor=1000, customer_email="a@b.co")
        db.session.execute(
            update(Transaction).where(Transaction.id == old.id).values(created_at=utcnow() - timedelta(hours=30))
        )
        db.session.commit()

        result = app.test_cli_runner().invoke(args=["transactions", "abandon-stale", "--hours", "24"])

        assert result.exit_code == 0
        assert "Abandoned 1 pending transaction(s)" in result.output
        db.session.expire_all()
        assert db.session.get(Transaction, old.id).status == "abandoned"
        assert db.session.get(Transaction, fresh.id).status == "pending"

    def test_rejects_zero_hours(self, app):
        result = app.test_cli_runner().invoke(args=["transactions", "abandon-stale", "--hours", "0"])
        assert result.exit_code != 0


class TestCreateAdminCommand:
    def test_creates_admin(self, app):
        result = app.test_cli_runner().invoke(args=[
            "users", "create-admin", "--email", "Boss@Hive.com", "--password", "Password123",
        ])

        assert result.exit_code == 0, result.output
        user = db.session.query(User).one()
        assert user.email == "boss@hive.com"
        assert user.role == "admin"

    def test_promotes_existing_user(self, app, make_user):
        make_user("boss@hive.com")

        result = app.test_cli_runner().invoke(args=[
            "users", "create-admin", "--email", "boss@hive.com", "--password", "Password123",
        ])

        assert result.exit_code == 0
        db.session.expire_all()
        assert db.session.query(User).one().role == "admin"

    def test_weak_password_fails(self, app):
        result = app.test_cli_runner().invoke(args=[
            "users", "create-admin", "--email", "boss@hive.com", "--password", "weak",
        ])

        assert result.exit_code != 0
        assert db.session.query(User).count() == 0


class TestHealth:
    def test_degraded_without_mail_key(self, client):
        response = client.get("/health")

        body = response.get_json()
        assert response.status_code == 200
        assert body["status"] == "degraded"
        assert body["checks"]["database"]["status"] == "healthy"
        assert "SENDGRID_API_KEY" in body["checks"]["configuration"]["warning"]
