# backend/hive/services/catalog_service.py
"""
Catalog Service

Product administration: create, read, partial update and soft delete.
Stock levels are written through inventory_service. Checkout asks
ensure_purchasable before it accepts a cart.
"""
from __future__ import annotations

import re

from flask import current_app

from ..extensions import db
from ..models import Product
from ..validation import ConflictError, NotFoundError, ValidationError, to_minor_units

PRODUCT_LIST_FIELDS = {"images", "sizes", "colors"}


def slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", value.strip().lower()).strip("-")
    return slug or "product"


def _validated_patch(data: dict) -> dict:
    if not isinstance(data, dict):
        raise ValidationError("Request body must be an object")

    sku = data.get("sku")
    name = data.get("name")
    if not isinstance(sku, str) or not sku.strip():
        raise ValidationError("sku is required", field="sku")
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("name is required", field="name")

    stock_count = data.get("stockCount", data.get("stock_count", 0))
    if isinstance(stock_count, bool) or not isinstance(stock_count, int) or stock_count < 0:
        raise ValidationError("stockCount must be a non-negative integer", field="stockCount")

    patch = {
        "sku": sku.strip().upper(),
        "name": name.strip(),
        "slug": slugify(data.get("slug") or name),
        "description": (data.get("description") or "").strip() or None,
        "price_minor": to_minor_units(data.get("price"), "price"),
        "stock_count": stock_count,
        "in_stock": stock_count > 0,
        "is_active": bool(data.get("isActive", True)),
    }
    for key in PRODUCT_LIST_FIELDS:
        value = data.get(key)
        if value is not None and not isinstance(value, list):
            raise ValidationError(f"{key} must be a list", field=key)
        patch[key] = value or []
    return patch


def create_product(data: dict) -> Product:
    """
    Raises:
        ValidationError: missing sku/name/price or malformed fields
        ConflictError: sku or slug already in use
    """
    patch = _validated_patch(data)

    existing = (
        db.session.query(Product)
        .filter((Product.sku == patch["sku"]) | (Product.slug == patch["slug"]))
        .first()
    )
    if existing:
        raise ConflictError("A product with this SKU or slug already exists.")

    product = Product(currency=current_app.config.get("DEFAULT_CURRENCY", "NGN"), **patch)
    db.session.add(product)
    db.session.commit()
    return product


def get_product(product_id: int, include_inactive: bool = False) -> Product:
    product = db.session.get(Product, product_id)
    if not product or (not product.is_active and not include_inactive):
        raise NotFoundError("Product not found")
    return product


def update_product(product_id: int, data: dict) -> Product:
    """
    Partial update; only keys present in ``data`` change. A stockCount in
    the body is applied through the inventory admin path.

    Raises:
        NotFoundError: unknown product
        ValidationError: malformed fields
        ConflictError: new sku or slug already in use
    """
    if not isinstance(data, dict):
        raise ValidationError("Request body must be an object")
    product = get_product(product_id, include_inactive=True)

    patch = {}
    for key in ("sku", "name"):
        if key in data:
            value = data[key]
            if not isinstance(value, str) or not value.strip():
                raise ValidationError(f"{key} cannot be blank", field=key)
            patch[key] = value.strip()
    if "sku" in patch:
        patch["sku"] = patch["sku"].upper()
    if "slug" in data or "name" in patch:
        patch["slug"] = slugify(data.get("slug") or patch.get("name") or product.name)
    if "description" in data:
        patch["description"] = (data.get("description") or "").strip() or None
    if "price" in data:
        patch["price_minor"] = to_minor_units(data.get("price"), "price")
    if "isActive" in data:
        patch["is_active"] = bool(data["isActive"])
    for key in PRODUCT_LIST_FIELDS:
        if key in data:
            value = data[key]
            if value is not None and not isinstance(value, list):
                raise ValidationError(f"{key} must be a list", field=key)
            patch[key] = value or []

    stock_count = data.get("stockCount")
    if "stockCount" in data and (isinstance(stock_count, bool) or not isinstance(stock_count, int) or stock_count < 0):
        raise ValidationError("stockCount must be a non-negative integer", field="stockCount")

    if "sku" in patch or "slug" in patch:
        clash = (
            db.session.query(Product)
            .filter(Product.id != product.id)
            .filter(
                (Product.sku == patch.get("sku", product.sku))
                | (Product.slug == patch.get("slug", product.slug))
            )
            .first()
        )
        if clash:
            raise ConflictError("A product with this SKU or slug already exists.")

    for key, value in patch.items():
        setattr(product, key, value)
    db.session.commit()

    if "stockCount" in data:
        from .inventory_service import set_stock
        product = set_stock(product.id, stock_count)

    current_app.logger.info("Product %s updated (%s)", product.id, ", ".join(sorted(patch)) or "no fields")
    return product


def deactivate_product(product_id: int) -> Product:
    """Soft delete: the row stays so past order items keep their product reference."""
    product = get_product(product_id, include_inactive=True)
    product.is_active = False
    db.session.commit()
    current_app.logger.info("Product %s deactivated", product.id)
    return product


def check_availability(product_id: int, quantity=1) -> dict:
    product = get_product(product_id)
    if isinstance(quantity, str) and quantity.strip().isdigit():
        quantity = int(quantity)
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise ValidationError("quantity must be a positive integer", field="quantity")

    can_fulfill = product.stock_count >= quantity
    return {
        "available": product.is_active and product.in_stock and can_fulfill,
        "inStock": product.in_stock,
        "stockCount": product.stock_count,
        "requestedQuantity": quantity,
        "canFulfill": can_fulfill,
    }


def ensure_purchasable(items: list[dict]) -> None:
    """
    Every validated cart line must point at an existing, active product.

    Raises:
        ValidationError: naming the first offending line
    """
    ids = {item["product_id"] for item in items}
    active = {
        product_id
        for (product_id,) in db.session.query(Product.id)
        .filter(Product.id.in_(ids), Product.is_active.is_(True))
        .all()
    }
    for index, item in enumerate(items):
        if item["product_id"] not in active:
            raise ValidationError(
                f"Product {item['product_id']} is not available",
                field=f"orderDetails.items[{index}].product",
            )
