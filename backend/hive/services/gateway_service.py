# Overview: Payment gateway client (Paystack HTTP contract) and webhook signature checks.

"""
Gateway Client

Thin wrapper over the processor's HTTP API:
- POST /transaction/initialize  -> authorization URL + access code
- GET  /transaction/verify/:ref -> payment status
- Webhooks are signed with HMAC-SHA512 over the exact raw body.

Configuration is injected through GatewayConfig at construction; nothing is
read from the environment at call time. Tests pass an httpx transport.
"""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass
from typing import Any

import httpx
from flask import current_app


EXTENSION_KEY = "hive.gateway"


class GatewayError(Exception):
    """Processor unreachable, timed out, or rejected the request."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class AuthenticityError(Exception):
    """Webhook signature missing or mismatched."""


@dataclass(frozen=True)
class GatewayConfig:
    secret_key: str
    base_url: str
    webhook_secret: str
    callback_base_url: str
    timeout_seconds: float = 15.0
    currency: str = "NGN"

    @classmethod
    def from_mapping(cls, config) -> "GatewayConfig":
        secret_key = config.get("PAYSTACK_SECRET_KEY", "")
        return cls(
            secret_key=secret_key,
            base_url=config.get("PAYSTACK_BASE_URL", "https://api.paystack.co"),
            webhook_secret=config.get("PAYSTACK_WEBHOOK_SECRET") or secret_key,
            callback_base_url=config.get("FRONTEND_URL", ""),
            timeout_seconds=float(config.get("GATEWAY_TIMEOUT_SECONDS", 15)),
            currency=config.get("DEFAULT_CURRENCY", "NGN"),
        )

    @property
    def callback_url(self) -> str:
        return f"{self.callback_base_url.rstrip('/')}/payment/callback"


@dataclass(frozen=True)
class InitializedPayment:
    authorization_url: str
    access_code: str
    gateway_reference: str


@dataclass(frozen=True)
class VerifiedPayment:
    status: str
    raw: dict

    @property
    def succeeded(self) -> bool:
        return self.status == "success"


class PaystackClient:
    def __init__(self, config: GatewayConfig, transport: httpx.BaseTransport | None = None):
        self.config = config
        self._transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.config.base_url,
            timeout=self.config.timeout_seconds,
            transport=self._transport,
            headers={
                "Authorization": f"Bearer {self.config.secret_key}",
                "Content-Type": "application/json",
            },
        )

    def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            with self._client() as client:
                response = client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise GatewayError(f"Payment gateway timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise GatewayError(f"Payment gateway unreachable: {exc}") from exc

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code >= 400:
            message = body.get("message") if isinstance(body, dict) else None
            raise GatewayError(
                message or f"Payment gateway returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        if not isinstance(body, dict) or not body.get("status"):
            raise GatewayError(
                (body.get("message") if isinstance(body, dict) else None) or "Payment gateway rejected the request",
                status_code=response.status_code,
            )
        return body

    def initialize_payment(
        self,
        *,
        email: str,
        amount_minor: int,
        reference: str,
        callback_url: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> InitializedPayment:
        """
        Start a hosted payment. ``reference`` doubles as the idempotency key.

        Raises:
            GatewayError: transport failure, timeout, non-2xx or status=false
        """
        body = self._request(
            "POST",
            "/transaction/initialize",
            json={
                "email": email,
                "amount": amount_minor,
                "currency": self.config.currency,
                "reference": reference,
                "callback_url": callback_url or self.config.callback_url,
                "metadata": metadata or {},
            },
        )
        data = body.get("data") or {}
        if not data.get("authorization_url"):
            raise GatewayError("Payment gateway response missing authorization_url")
        return InitializedPayment(
            authorization_url=data["authorization_url"],
            access_code=data.get("access_code", ""),
            gateway_reference=data.get("reference") or reference,
        )

    def verify_payment(self, reference: str) -> VerifiedPayment:
        body = self._request("GET", f"/transaction/verify/{reference}")
        data = body.get("data") or {}
        return VerifiedPayment(status=str(data.get("status") or "unknown").lower(), raw=data)


def verify_webhook_signature(raw_body: bytes, signature: str | None, secret: str) -> bool:
    """HMAC-SHA512 hex digest of the raw body, compared in constant time."""
    if not signature or not secret:
        return False
    expected = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()
    return hmac.compare_digest(expected, signature.strip().lower())


def get_gateway_client() -> PaystackClient:
    """Client registered on the app at construction (see create_app)."""
    client = current_app.extensions.get(EXTENSION_KEY)
    if client is None:
        client = PaystackClient(GatewayConfig.from_mapping(current_app.config))
        current_app.extensions[EXTENSION_KEY] = client
    return client
