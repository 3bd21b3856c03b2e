# Overview: Flask API routes for payment confirmation (verify poll and gateway webhook).

# backend/hive/routes/transactions.py
"""
Payment Confirmation Routes

Both endpoints funnel into checkout_service.confirm_payment, which is
idempotent: repeated or concurrent confirmations of one reference produce a
single order.

Verify poll:
    200 confirmed / already confirmed, 402 payment failed,
    404 unknown reference, 503 gateway unreachable, 500 commit fault (retry),
    500 order rejected by storage (manual review, not retryable)

Webhook:
    401 bad signature, 200 handled or ignored event,
    404 unknown reference, 500 processing fault (gateway retries),
    200 with needs_review when the order can never be stored (no retries)
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import checkout_service
from ..services.checkout_service import CommitError, ConfirmationOutcome, ConfirmationSource, OrderIntegrityError
from ..services.gateway_service import AuthenticityError, GatewayError
from ..validation import NotFoundError, ValidationError


transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/v1/transactions")

SIGNATURE_HEADER = "x-paystack-signature"

_MESSAGES = {
    ConfirmationOutcome.CONFIRMED: "Payment confirmed",
    ConfirmationOutcome.ALREADY_CONFIRMED: "Payment already confirmed",
    ConfirmationOutcome.FAILED: "Payment failed. Please try checking out again.",
}


def _confirmation_body(result) -> dict:
    return {
        "status": result.outcome.value,
        "message": _MESSAGES[result.outcome],
        "transaction": result.transaction.payment_details(),
        "order": result.order.to_dict() if result.order else None,
    }


@transactions_bp.get("/verify/<reference>")
def verify_transaction_route(reference: str):
    """Client-driven confirmation after the gateway redirect."""
    try:
        result = checkout_service.confirm_payment(reference, ConfirmationSource.POLL)
        status_code = 402 if result.outcome == ConfirmationOutcome.FAILED else 200
        return jsonify(_confirmation_body(result)), status_code

    except NotFoundError:
        return jsonify({"error": "Transaction not found"}), 404
    except GatewayError:
        return jsonify({"error": "Could not verify payment right now. Please try again."}), 503
    except CommitError:
        return jsonify({"error": "Payment received but the order could not be saved yet. Please retry."}), 500
    except OrderIntegrityError:
        return jsonify({
            "error": "Payment received but the order needs manual review. Please contact support.",
            "needs_review": True,
        }), 500
    except Exception:
        current_app.logger.exception("Failed to verify transaction %s", reference)
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.post("/webhook")
def webhook_route():
    """
    Gateway callback. The signature covers the exact request bytes, so the
    raw body is read before any JSON parsing.
    """
    raw_body = request.get_data(cache=True)
    signature = request.headers.get(SIGNATURE_HEADER)
    try:
        result = checkout_service.handle_webhook(raw_body, signature)
        if not result.handled:
            return jsonify({"received": True, "event": result.event, "handled": False}), 200
        return jsonify({"received": True, "event": result.event, "handled": True,
                        **_confirmation_body(result.confirmation)}), 200

    except AuthenticityError:
        return jsonify({"error": "Invalid signature"}), 401
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except OrderIntegrityError:
        return jsonify({"received": True, "handled": False, "needs_review": True}), 200
    except NotFoundError:
        return jsonify({"error": "Transaction not found"}), 404
    except Exception:
        current_app.logger.exception("Failed to process webhook")
        return jsonify({"error": "Webhook processing failed"}), 500
