# Overview: Service-layer operations for product stock; encapsulates the atomic decrement.

# backend/hive/services/inventory_service.py

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import case, update

from ..extensions import db
from ..models import Product
from ..validation import NotFoundError, ValidationError
from .concurrency import conditional_update, run_with_retry
"""
Hive Stock Invariants (authoritative)

- stock_count never goes negative. The decrement is a single conditional
  UPDATE (WHERE stock_count >= quantity), never a read-then-write.
- in_stock flips to False in the same statement when the result hits zero.
- Each decrement commits on its own. A failure on one line item leaves the
  other items decremented; callers treat a batch as best effort.
"""


class InsufficientStockError(Exception):
    """Raised when requested quantity exceeds current stock."""

    def __init__(self, product_id: int, requested: int, available: int | None):
        super().__init__(
            f"Insufficient stock for product {product_id}: requested {requested}, available {available}"
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


@dataclass(frozen=True)
class StockAdjustment:
    product_id: int
    quantity: int
    ok: bool
    error: str | None = None


def decrement_stock(product_id: int, quantity: int) -> None:
    """
    Atomically subtract ``quantity`` from a product's stock.

    Raises:
        ValidationError: quantity < 1
        NotFoundError: unknown product
        InsufficientStockError: stock_count < quantity (nothing is written)
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise ValidationError("quantity must be a positive integer", field="quantity")

    def _op():
        remaining = Product.stock_count - quantity
        stmt = (
            update(Product)
            .where(Product.id == product_id, Product.stock_count >= quantity)
            .values(
                stock_count=remaining,
                in_stock=case((remaining > 0, True), else_=False),
            )
        )
        if conditional_update(stmt):
            db.session.commit()
            return

        db.session.rollback()
        available = db.session.query(Product.stock_count).filter_by(id=product_id).scalar()
        if available is None:
            raise NotFoundError(f"Product {product_id} not found")
        raise InsufficientStockError(product_id, quantity, available)

    # Commit expires loaded Product instances, so callers re-read fresh stock
    run_with_retry(_op)


def decrement_for_items(items) -> list[StockAdjustment]:
    """
    Decrement stock once per line item, independently.

    ``items`` yields objects or dicts exposing product_id and quantity.
    Never raises for an individual item; outcomes are returned so the
    caller can log them.
    """
    outcomes = []
    for item in items:
        product_id = item["product_id"] if isinstance(item, dict) else item.product_id
        quantity = item["quantity"] if isinstance(item, dict) else item.quantity
        try:
            decrement_stock(product_id, quantity)
            outcomes.append(StockAdjustment(product_id=product_id, quantity=quantity, ok=True))
        except (InsufficientStockError, NotFoundError, ValidationError) as exc:
            outcomes.append(StockAdjustment(product_id=product_id, quantity=quantity, ok=False, error=str(exc)))
    return outcomes


def set_stock(product_id: int, stock_count: int) -> Product:
    """Admin override of the stock level."""
    if isinstance(stock_count, bool) or not isinstance(stock_count, int) or stock_count < 0:
        raise ValidationError("stock_count must be a non-negative integer", field="stock_count")

    product = db.session.get(Product, product_id)
    if not product:
        raise NotFoundError(f"Product {product_id} not found")

    product.stock_count = stock_count
    product.in_stock = stock_count > 0
    db.session.commit()
    return product
