"""
Gateway client tests against httpx.MockTransport; no network.
"""

import hashlib
import hmac
import json

import httpx
import pytest

from hive.services.gateway_service import (
    GatewayConfig,
    GatewayError,
    PaystackClient,
    verify_webhook_signature,
)


CONFIG = GatewayConfig(
    secret_key="sk_test_123",
    base_url="https://paystack.test",
    webhook_secret="whsec_123",
    callback_base_url="https://shop.test/",
)


def _client(handler):
    return PaystackClient(CONFIG, transport=httpx.MockTransport(handler))


class TestInitializePayment:
    def test_sends_minor_units_and_reference(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "status": True,
                "data": {"authorization_url": "https://pay.test/abc", "access_code": "abc", "reference": "TXN-1"},
            })

        result = _client(handler).initialize_payment(email="a@b.co", amount_minor=500000, reference="TXN-1")

        assert seen["auth"] == "Bearer sk_test_123"
        assert seen["body"]["amount"] == 500000
        assert seen["body"]["reference"] == "TXN-1"
        assert seen["body"]["callback_url"] == "https://shop.test/payment/callback"
        assert result.authorization_url == "https://pay.test/abc"
        assert result.access_code == "abc"

    def test_status_false_is_an_error(self):
        client = _client(lambda request: httpx.Response(200, json={"status": False, "message": "Duplicate reference"}))

        with pytest.raises(GatewayError, match="Duplicate reference"):
            client.initialize_payment(email="a@b.co", amount_minor=100, reference="TXN-1")

    def test_http_error_keeps_status_code(self):
        client = _client(lambda request: httpx.Response(401, json={"status": False, "message": "Invalid key"}))

        with pytest.raises(GatewayError) as exc_info:
            client.initialize_payment(email="a@b.co", amount_minor=100, reference="TXN-1")

        assert exc_info.value.status_code == 401

    def test_missing_authorization_url(self):
        client = _client(lambda request: httpx.Response(200, json={"status": True, "data": {}}))

        with pytest.raises(GatewayError):
            client.initialize_payment(email="a@b.co", amount_minor=100, reference="TXN-1")

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(GatewayError, match="timed out"):
            _client(handler).initialize_payment(email="a@b.co", amount_minor=100, reference="TXN-1")


class TestVerifyPayment:
    def test_reports_status(self):
        def handler(request):
            assert request.url.path == "/transaction/verify/TXN-9"
            return httpx.Response(200, json={"status": True, "data": {"status": "Success", "amount": 100}})

        result = _client(handler).verify_payment("TXN-9")

        assert result.succeeded
        assert result.raw["amount"] == 100

    def test_non_json_body(self):
        client = _client(lambda request: httpx.Response(502, text="Bad Gateway"))

        with pytest.raises(GatewayError) as exc_info:
            client.verify_payment("TXN-9")

        assert exc_info.value.status_code == 502


class TestWebhookSignature:
    body = b'{"event":"charge.success","data":{"reference":"TXN-1"}}'

    def _sign(self, body, secret="whsec_123"):
        return hmac.new(secret.encode(), body, hashlib.sha512).hexdigest()

    def test_valid(self):
        assert verify_webhook_signature(self.body, self._sign(self.body), "whsec_123")

    def test_uppercase_hex_accepted(self):
        assert verify_webhook_signature(self.body, self._sign(self.body).upper(), "whsec_123")

    def test_wrong_secret(self):
        assert not verify_webhook_signature(self.body, self._sign(self.body, "other"), "whsec_123")

    def test_missing_signature_or_secret(self):
        assert not verify_webhook_signature(self.body, None, "whsec_123")
        assert not verify_webhook_signature(self.body, self._sign(self.body), "")

    def test_tampered_body(self):
        signature = self._sign(self.body)
        assert not verify_webhook_signature(self.body.replace(b"TXN-1", b"TXN-2"), signature, "whsec_123")
