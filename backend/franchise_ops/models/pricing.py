from __future__ import annotations

from ..extensions import db
from franchise_ops.time_utils import to_utc_z


class Product(db.Model):
    """
    Catalog product, shared across all franchises.

    Authoritative prices are stored in cents (frontend may only format for display).
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.Index("ix_products_active", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(64), nullable=True)

    base_price_cents = db.Column(db.Integer, nullable=False)
    cost_price_cents = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "category": self.category,
            "base_price_cents": self.base_price_cents,
            "cost_price_cents": self.cost_price_cents,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class FranchisePricing(db.Model):
    """
    Franchise-specific price list entry for one product.

    Effective window is [effective_from, effective_until); effective_until=None is open-ended.
    base_price_cents=None means "use the catalog base price" while still applying
    the franchise discount and volume tiers.
    Percentages are stored in basis points (e.g., 500 = 5%).
    """
    __tablename__ = "franchise_pricing"
    __table_args__ = (
        db.Index("ix_franchise_pricing_lookup", "franchise_id", "product_id", "effective_from"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    franchise_id = db.Column(db.Integer, db.ForeignKey("franchises.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    base_price_cents = db.Column(db.Integer, nullable=True)
    franchise_discount_bps = db.Column(db.Integer, nullable=False, default=0)

    effective_from = db.Column(db.DateTime(timezone=True), nullable=False)
    effective_until = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    product = db.relationship("Product")
    volume_tiers = db.relationship(
        "VolumeDiscountTier",
        backref="pricing",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="VolumeDiscountTier.min_quantity",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "franchise_id": self.franchise_id,
            "product_id": self.product_id,
            "base_price_cents": self.base_price_cents,
            "franchise_discount_bps": self.franchise_discount_bps,
            "volume_tiers": [t.to_dict() for t in self.volume_tiers],
            "effective_from": to_utc_z(self.effective_from),
            "effective_until": to_utc_z(self.effective_until),
            "updated_at": to_utc_z(self.updated_at),
        }


class VolumeDiscountTier(db.Model):
    __tablename__ = "volume_discount_tiers"
    __table_args__ = (
        db.UniqueConstraint("pricing_id", "min_quantity", name="uq_volume_tiers_pricing_min"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    pricing_id = db.Column(db.Integer, db.ForeignKey("franchise_pricing.id"), nullable=False, index=True)
    min_quantity = db.Column(db.Integer, nullable=False)
    discount_bps = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "min_quantity": self.min_quantity,
            "discount_bps": self.discount_bps,
        }


class FranchiseDiscount(db.Model):
    """
    Order-level discount rule.

    discount_type:
    - PERCENTAGE: discount_value is basis points of subtotal
    - FIXED: discount_value is cents
    """
    __tablename__ = "franchise_discounts"
    __table_args__ = (
        db.Index("ix_franchise_discounts_active", "franchise_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    franchise_id = db.Column(db.Integer, db.ForeignKey("franchises.id"), nullable=False, index=True)
    name = db.Column(db.String(128), nullable=False)

    discount_type = db.Column(db.String(16), nullable=False, default="PERCENTAGE")
    discount_value = db.Column(db.Integer, nullable=False)
    minimum_order_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    valid_from = db.Column(db.DateTime(timezone=True), nullable=False)
    valid_until = db.Column(db.DateTime(timezone=True), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "franchise_id": self.franchise_id,
            "name": self.name,
            "discount_type": self.discount_type,
            "discount_value": self.discount_value,
            "minimum_order_amount_cents": self.minimum_order_amount_cents,
            "valid_from": to_utc_z(self.valid_from),
            "valid_until": to_utc_z(self.valid_until),
            "is_active": self.is_active,
        }


class TaxConfiguration(db.Model):
    """
    Per-location tax rule.

    tax_type PERCENTAGE -> tax_rate is basis points; FIXED -> tax_rate is cents.
    """
    __tablename__ = "tax_configurations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    location_id = db.Column(db.Integer, db.ForeignKey("franchise_locations.id"), nullable=False, unique=True)
    tax_name = db.Column(db.String(64), nullable=False, default="VAT")
    tax_type = db.Column(db.String(16), nullable=False, default="PERCENTAGE")
    tax_rate = db.Column(db.Integer, nullable=False)
    applies_to_shipping = db.Column(db.Boolean, nullable=False, default=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "location_id": self.location_id,
            "tax_name": self.tax_name,
            "tax_type": self.tax_type,
            "tax_rate": self.tax_rate,
            "applies_to_shipping": self.applies_to_shipping,
        }


class ShippingConfiguration(db.Model):
    """
    Per-location shipping rule.

    shipping_zones: list of {"zone_name": str, "rate_multiplier": float, "delivery_days": int}
    """
    __tablename__ = "shipping_configurations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    location_id = db.Column(db.Integer, db.ForeignKey("franchise_locations.id"), nullable=False, unique=True)
    base_shipping_rate_cents = db.Column(db.Integer, nullable=False)
    free_shipping_threshold_cents = db.Column(db.Integer, nullable=False)
    express_shipping_rate_cents = db.Column(db.Integer, nullable=True)
    shipping_zones = db.Column(db.JSON, nullable=False, default=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "location_id": self.location_id,
            "base_shipping_rate_cents": self.base_shipping_rate_cents,
            "free_shipping_threshold_cents": self.free_shipping_threshold_cents,
            "express_shipping_rate_cents": self.express_shipping_rate_cents,
            "shipping_zones": self.shipping_zones or [],
        }
