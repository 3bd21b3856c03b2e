# Overview: Outbound customer email (SendGrid v3 mail-send over HTTP).

"""
Notification Dispatcher

Every send is best-effort: failures are logged and reported as False,
never raised. Order confirmation must not be rolled back because an email
could not be delivered.
"""

from __future__ import annotations

from html import escape

import httpx
from flask import current_app


EXTENSION_KEY = "hive.notifier"


def _money(minor: int | None) -> str:
    return f"{(minor or 0) / 100:,.2f}"


class EmailNotifier:
    def __init__(
        self,
        *,
        api_key: str,
        sender: str,
        base_url: str = "https://api.sendgrid.com",
        frontend_url: str = "",
        timeout_seconds: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.api_key = api_key
        self.sender = sender
        self.base_url = base_url
        self.frontend_url = frontend_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    @classmethod
    def from_mapping(cls, config) -> "EmailNotifier":
        return cls(
            api_key=config.get("SENDGRID_API_KEY", ""),
            sender=config.get("EMAIL_FROM", "noreply@hive.com"),
            base_url=config.get("SENDGRID_BASE_URL", "https://api.sendgrid.com"),
            frontend_url=config.get("FRONTEND_URL", ""),
        )

    def send_mail(self, *, to: str, subject: str, html: str) -> bool:
        if not self.api_key:
            current_app.logger.warning("SENDGRID_API_KEY not set; email to %s not sent (%s)", to, subject)
            return False

        payload = {
            "personalizations": [{"to": [{"email": to}]}],
            "from": {"email": self.sender},
            "subject": subject,
            "content": [{"type": "text/html", "value": html}],
        }
        try:
            with httpx.Client(base_url=self.base_url, timeout=self.timeout_seconds, transport=self._transport) as client:
                response = client.post(
                    "/v3/mail/send",
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
        except httpx.HTTPError:
            current_app.logger.exception("Email delivery to %s failed", to)
            return False

        if response.status_code >= 400:
            current_app.logger.warning(
                "Email provider rejected message to %s: HTTP %s %s",
                to, response.status_code, response.text[:300],
            )
            return False
        return True

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def send_order_confirmation(self, order) -> bool:
        rows = "".join(
            f"<tr><td>{escape(item.name)}</td><td>{item.quantity}</td>"
            f"<td>{_money(item.unit_price_minor * item.quantity)}</td></tr>"
            for item in order.items
        )
        tracking_url = f"{self.frontend_url}/orders/track/{order.order_number}"
        html = (
            f"<p>Hi {escape(order.customer_first_name)},</p>"
            f"<p>Thanks for your order <strong>#{order.order_number}</strong>.</p>"
            f"<table>{rows}</table>"
            f"<p>Subtotal: {order.currency} {_money(order.subtotal_minor)}<br>"
            f"Shipping: {order.currency} {_money(order.shipping_cost_minor)}<br>"
            f"Total: {order.currency} {_money(order.total_minor)}</p>"
            f"<p><a href=\"{tracking_url}\">Track your order</a></p>"
        )
        return self.send_mail(
            to=order.customer_email,
            subject=f"Order Confirmation - #{order.order_number}",
            html=html,
        )

    def send_order_status_update(self, order) -> bool:
        tracking = f"<p>Tracking number: {escape(order.tracking_number)}</p>" if order.tracking_number else ""
        html = (
            f"<p>Hi {escape(order.customer_first_name)},</p>"
            f"<p>Your order <strong>#{order.order_number}</strong> is now "
            f"<strong>{escape(order.status)}</strong>.</p>{tracking}"
        )
        return self.send_mail(
            to=order.customer_email,
            subject=f"Order #{order.order_number} - {order.status.title()}",
            html=html,
        )

    def send_welcome(self, user) -> bool:
        html = f"<p>Welcome to Hive, {escape(user.full_name or user.email)}!</p>"
        return self.send_mail(to=user.email, subject="Welcome to Hive", html=html)

    def send_verification_otp(self, user, otp: str) -> bool:
        html = (
            f"<p>Hi {escape(user.first_name)},</p>"
            f"<p>Your verification code is <strong>{otp}</strong>. It expires in a few minutes.</p>"
        )
        return self.send_mail(to=user.email, subject="Your Hive Verification Code", html=html)

    def send_password_reset_otp(self, user, otp: str) -> bool:
        html = (
            f"<p>Hi {escape(user.first_name)},</p>"
            f"<p>Use <strong>{otp}</strong> to reset your password. "
            f"If you did not request this, ignore this email.</p>"
        )
        return self.send_mail(to=user.email, subject="Reset Your Hive Password", html=html)


def get_notifier() -> EmailNotifier:
    notifier = current_app.extensions.get(EXTENSION_KEY)
    if notifier is None:
        notifier = EmailNotifier.from_mapping(current_app.config)
        current_app.extensions[EXTENSION_KEY] = notifier
    return notifier
