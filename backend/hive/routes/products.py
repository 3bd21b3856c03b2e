# Overview: Flask API routes for products; read access, availability and admin management.

# backend/hive/routes/products.py
from flask import Blueprint, request, jsonify, current_app

from ..services import catalog_service
from ..services import inventory_service
from ..validation import ConflictError, NotFoundError, ValidationError
from ..decorators import require_auth, require_admin


products_bp = Blueprint("products", __name__, url_prefix="/api/v1/products")


@products_bp.get("/<int:product_id>")
def get_product_route(product_id: int):
    try:
        product = catalog_service.get_product(product_id)
        return jsonify({"product": product.to_dict()}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@products_bp.post("")
@require_auth
@require_admin
def create_product_route():
    try:
        product = catalog_service.create_product(request.get_json(silent=True) or {})
        return jsonify({"product": product.to_dict()}), 201

    except ValidationError as e:
        return jsonify({"error": str(e), "field": e.field}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.patch("/<int:product_id>/stock")
@require_auth
@require_admin
def set_stock_route(product_id: int):
    """Body: {"stockCount": 12}"""
    try:
        data = request.get_json(silent=True) or {}
        product = inventory_service.set_stock(product_id, data.get("stockCount"))
        return jsonify({"product": product.to_dict()}), 200

    except ValidationError as e:
        return jsonify({"error": str(e), "field": e.field}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to set stock for product %s", product_id)
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/<int:product_id>/availability")
def check_availability_route(product_id: int):
    """Query: ?quantity=3 (defaults to 1)."""
    try:
        availability = catalog_service.check_availability(product_id, request.args.get("quantity", 1))
        return jsonify(availability), 200
    except ValidationError as e:
        return jsonify({"error": str(e), "field": e.field}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@products_bp.put("/<int:product_id>")
@require_auth
@require_admin
def update_product_route(product_id: int):
    try:
        product = catalog_service.update_product(product_id, request.get_json(silent=True) or {})
        return jsonify({"product": product.to_dict()}), 200

    except ValidationError as e:
        return jsonify({"error": str(e), "field": e.field}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to update product %s", product_id)
        return jsonify({"error": "Internal server error"}), 500


@products_bp.delete("/<int:product_id>")
@require_auth
@require_admin
def delete_product_route(product_id: int):
    """Soft delete; the product disappears from reads and checkout."""
    try:
        catalog_service.deactivate_product(product_id)
        return jsonify({"message": "Product deleted successfully"}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to delete product %s", product_id)
        return jsonify({"error": "Internal server error"}), 500
