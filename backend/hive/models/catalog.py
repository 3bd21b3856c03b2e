from __future__ import annotations

from ..extensions import db
from hive.time_utils import to_utc_z


class Product(db.Model):
    """
    Catalog product with a mutable stock count.

    stock_count is written only through inventory_service (atomic
    conditional decrement, admin set). in_stock mirrors stock_count > 0.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.UniqueConstraint("slug", name="uq_products_slug"),
        db.CheckConstraint("stock_count >= 0", name="ck_products_stock_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # Authoritative storage in minor units (kobo for NGN)
    price_minor = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="NGN")

    stock_count = db.Column(db.Integer, nullable=False, default=0)
    in_stock = db.Column(db.Boolean, nullable=False, default=True)

    images = db.Column(db.JSON, nullable=True)
    sizes = db.Column(db.JSON, nullable=True)
    colors = db.Column(db.JSON, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} stock={self.stock_count}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "price_minor": self.price_minor,
            "currency": self.currency,
            "stock_count": self.stock_count,
            "in_stock": self.in_stock,
            "images": self.images or [],
            "sizes": self.sizes or [],
            "colors": self.colors or [],
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
