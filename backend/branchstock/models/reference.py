from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Branch(db.Model):
    """
    A retail location holding stock.

    Reference data: created and renamed outside the stock services. The stock
    services only check that a branch exists before opening a stock account.
    """
    __tablename__ = "branches"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    address = db.Column(db.String(255), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Branch id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """Master product; sellable units are its variants."""
    __tablename__ = "products"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
        }


class Variant(db.Model):
    """
    Product variant (model / color) stocked per branch.

    purchase_price_cents is the acquisition cost used for margin in rankings;
    list_price_cents is the label price. Authoritative storage in cents.
    """
    __tablename__ = "variants"
    __table_args__ = (
        db.Index("ix_variants_product", "product_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    sku = db.Column(db.String(64), nullable=False, unique=True)
    barcode = db.Column(db.String(64), nullable=True, unique=True)
    model = db.Column(db.String(128), nullable=True)
    color = db.Column(db.String(64), nullable=True)

    purchase_price_cents = db.Column(db.Integer, nullable=False, default=0)
    list_price_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    product = db.relationship("Product", backref=db.backref("variants", lazy=True))

    def __repr__(self) -> str:
        return f"<Variant id={self.id} sku={self.sku!r} product_id={self.product_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "sku": self.sku,
            "barcode": self.barcode,
            "model": self.model,
            "color": self.color,
            "purchase_price_cents": self.purchase_price_cents,
            "list_price_cents": self.list_price_cents,
            "created_at": to_utc_z(self.created_at),
        }
