# Overview: Flask API routes for checkout initiation; parses input and returns JSON responses.

# backend/hive/routes/checkout.py
"""
Checkout API Routes

DESIGN:
- The cart is carried on a pending Transaction; no Order exists yet
- Authentication is optional (guest checkout); a valid token decides the
  owning account, a userId in the body is only a hint
- Gateway failures are reported distinctly (502) so the client can offer retry
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import checkout_service
from ..services.gateway_service import GatewayError
from ..validation import ValidationError
from ..decorators import optional_auth


checkout_bp = Blueprint("checkout", __name__, url_prefix="/api/v1/checkout")


@checkout_bp.post("/initialize")
@optional_auth
def initialize_checkout_route():
    """
    Start a hosted payment for the cart.

    Request body:
    {
        "customerInfo": {
            "firstName": "Ada", "lastName": "Obi",
            "email": "ada@example.com", "phone": "08012345678",
            "shippingAddress": {"street": "...", "city": "Lagos", "state": "Lagos", "zipCode": "100001"}
        },
        "orderDetails": {
            "items": [{"product": 1, "name": "Tee", "price": 2500, "quantity": 2}],
            "subtotal": 5000, "shippingCost": 0, "tax": 0, "total": 5000,
            "deliveryMethod": "standard", "qualifiesForFreeShipping": true
        },
        "accountOptions": {"createAccount": true, "password": "secret123"},  (optional)
        "userId": 7  (optional hint)
    }

    Returns:
        200: authorizationUrl, accessCode, reference
        400: Invalid input (field-level message)
        502: Payment could not be started
    """
    try:
        data = request.get_json(silent=True) or {}
        user = g.current_user

        session = checkout_service.initiate_checkout(
            data.get("customerInfo"),
            data.get("orderDetails"),
            account_options=data.get("accountOptions"),
            authenticated_user_id=user.id if user else None,
            hinted_user_id=data.get("userId"),
        )
        return jsonify(session.to_dict()), 200

    except ValidationError as e:
        return jsonify({"error": str(e), "field": e.field}), 400
    except GatewayError:
        return jsonify({"error": "Payment could not be started. Please try again."}), 502
    except Exception:
        current_app.logger.exception("Failed to initialize checkout")
        return jsonify({"error": "Internal server error"}), 500
