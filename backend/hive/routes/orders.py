# Overview: Flask API routes for orders; tracking, listing, pay-later orders and admin status updates.

# backend/hive/routes/orders.py
"""
Order API Routes

SECURITY:
- Tracking requires proof of ownership (admin, owner, or the order email)
- Listing all orders and changing status are admin-only
- Status changes follow the allow-lists in hive.statuses
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import checkout_service
from ..services import order_service
from ..services.gateway_service import GatewayError
from ..services.order_service import OrderAccessDenied
from ..statuses import StatusTransitionError
from ..validation import ConflictError, NotFoundError, ValidationError
from ..decorators import optional_auth, require_auth, require_admin


orders_bp = Blueprint("orders", __name__, url_prefix="/api/v1/orders")


# =============================================================================
# CUSTOMER
# =============================================================================

@orders_bp.post("")
@optional_auth
def place_order_route():
    """
    Place an unpaid order to be paid later via POST /api/v1/orders/<id>/pay.

    Body: {"customerInfo": {...}, "orderDetails": {...}} (same shape as checkout)
    """
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.place_pending_order(
            data.get("customerInfo"),
            data.get("orderDetails"),
            customer=g.current_user,
        )
        return jsonify({"order": order.to_dict()}), 201

    except ValidationError as e:
        return jsonify({"error": str(e), "field": e.field}), 400
    except Exception:
        current_app.logger.exception("Failed to place order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/pay")
@optional_auth
def pay_order_route(order_id: int):
    try:
        session = checkout_service.initiate_order_payment(order_id, authenticated_user=g.current_user)
        return jsonify(session.to_dict()), 200

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except OrderAccessDenied as e:
        return jsonify({"error": str(e)}), 403
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except GatewayError:
        return jsonify({"error": "Payment could not be started. Please try again."}), 502
    except Exception:
        current_app.logger.exception("Failed to start payment for order %s", order_id)
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/track/<order_number>")
@optional_auth
def track_order_route(order_number: str):
    """
    Look up an order by number.

    Query params:
    - email: the email used at checkout (guest orders)

    Returns:
        200: order
        403: no proof of ownership
        404: unknown order number
    """
    try:
        order = order_service.get_trackable_order(
            order_number,
            viewer=g.current_user,
            email=request.args.get("email"),
        )
        return jsonify({"order": order.to_dict()}), 200

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except OrderAccessDenied as e:
        return jsonify({"error": str(e)}), 403
    except Exception:
        current_app.logger.exception("Failed to track order %s", order_number)
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/my-orders")
@require_auth
def my_orders_route():
    try:
        orders = order_service.list_user_orders(g.current_user)
        return jsonify({"count": len(orders), "orders": [o.to_dict() for o in orders]}), 200
    except Exception:
        current_app.logger.exception("Failed to list user orders")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# ADMIN
# =============================================================================

@orders_bp.get("")
@require_auth
@require_admin
def list_orders_route():
    """
    Query params:
    - status: order status filter
    - page (default 1), limit (default 20, max 100)
    """
    try:
        page = int(request.args.get("page", 1))
        limit = int(request.args.get("limit", order_service.DEFAULT_PAGE_SIZE))
    except ValueError:
        return jsonify({"error": "page and limit must be integers"}), 400

    try:
        listing = order_service.list_orders(status=request.args.get("status"), page=page, limit=limit)
        return jsonify({
            "count": len(listing["orders"]),
            "total": listing["total"],
            "pages": listing["pages"],
            "current_page": listing["current_page"],
            "orders": [o.to_dict() for o in listing["orders"]],
        }), 200

    except (ValidationError, StatusTransitionError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.put("/<int:order_id>/status")
@require_auth
@require_admin
def update_order_status_route(order_id: int):
    """
    Request body (any subset):
    {"status": "processing", "deliveryStatus": "shipped", "trackingNumber": "GIG123",
     "estimatedDelivery": "2026-10-24"}

    Returns:
        200: updated order
        400: unknown status, transition not allowed or malformed date
        404: order not found
    """
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.update_order_status(
            order_id,
            status=data.get("status"),
            delivery_status=data.get("deliveryStatus"),
            tracking_number=data.get("trackingNumber"),
            estimated_delivery=data.get("estimatedDelivery"),
        )
        return jsonify({"message": "Order updated successfully", "order": order.to_dict()}), 200

    except (ValidationError, StatusTransitionError) as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to update order %s", order_id)
        return jsonify({"error": "Internal server error"}), 500
