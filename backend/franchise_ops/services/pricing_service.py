# Overview: Service-layer pricing; franchise price lists, volume tiers, tax, shipping, order discounts.

"""
Franchise Ops Pricing Invariants (authoritative)

Money:
- All amounts are integer cents; percentages are basis points (500 = 5%).
- Rounding is nearest-cent, half-up, applied once per line total and once per
  order-level component (tax, shipping, discount).

Per line:
- base price = active franchise price-list entry (effective_from <= now < effective_until)
  if it overrides the price, else the catalog base price.
- franchise discount applies first, then the volume tier with the HIGHEST
  min_quantity not exceeding the ordered quantity (no blending of tiers).

Order level:
- tax: location TaxConfiguration (percentage or fixed), default 12% of subtotal.
- shipping: free at/above threshold (default 5,000.00), else base rate x zone
  multiplier; default flat 200.00.
- discounts: sum of active, in-window franchise discounts whose minimum is met,
  capped at 50% of subtotal.
- grand_total = subtotal + tax + shipping - discount.

Failure policy:
- Missing/inactive product or missing location is a hard error.
- Any failure reading OPTIONAL configuration (tax, shipping, discounts) falls
  back to the defaults above and is logged.
- compute_pricing never writes and never mutates its inputs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, asdict
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Iterable

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..errors import NotFoundError, ValidationError
from ..models import (
    FranchiseLocation,
    FranchisePricing,
    FranchiseDiscount,
    Product,
    ShippingConfiguration,
    TaxConfiguration,
    VolumeDiscountTier,
)
from franchise_ops.time_utils import utcnow

logger = logging.getLogger(__name__)

BPS = Decimal(10000)

DEFAULT_TAX_RATE_BPS = 1200
DEFAULT_FREE_SHIPPING_THRESHOLD_CENTS = 500000
DEFAULT_SHIPPING_CENTS = 20000
MAX_ORDER_DISCOUNT_BPS = 5000


def _round_cents(value: Decimal) -> int:
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def apply_bps_discount(amount: Decimal, discount_bps: int) -> Decimal:
    return amount * (BPS - Decimal(discount_bps)) / BPS


def select_volume_discount_bps(quantity: int, tiers: Iterable) -> int:
    """
    Discount of the tier with the highest min_quantity <= quantity; 0 if none qualifies.

    tiers: objects exposing min_quantity and discount_bps (not mutated, not re-sorted).
    """
    best = None
    for tier in tiers:
        if tier.min_quantity <= quantity and (best is None or tier.min_quantity > best.min_quantity):
            best = tier
    return best.discount_bps if best is not None else 0


def normalize_items(items) -> list[dict]:
    """Validate order lines and merge duplicate products. Raises ValidationError."""
    if not items:
        raise ValidationError("at least one item is required")

    merged: dict[int, int] = {}
    for idx, item in enumerate(items):
        try:
            product_id = int(item["product_id"])
            quantity = item["quantity"]
        except (KeyError, TypeError, ValueError):
            raise ValidationError(f"item {idx}: product_id and quantity are required")
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise ValidationError(f"item {idx}: quantity must be an integer")
        if quantity <= 0:
            raise ValidationError(f"item {idx}: quantity must be positive")
        merged[product_id] = merged.get(product_id, 0) + quantity

    return [{"product_id": pid, "quantity": qty} for pid, qty in merged.items()]


@dataclass
class PricingLine:
    product_id: int
    product_name: str
    quantity: int
    base_price_cents: int
    franchise_discount_bps: int
    volume_discount_bps: int
    unit_price_cents: int
    line_total_cents: int

    @property
    def discount_applied_bps(self) -> int:
        return self.franchise_discount_bps + self.volume_discount_bps


@dataclass
class PricingResult:
    subtotal_cents: int
    tax_cents: int
    shipping_cents: int
    discount_cents: int
    grand_total_cents: int
    currency: str
    breakdown: list[PricingLine] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = asdict(self)
        for line, raw in zip(self.breakdown, data["breakdown"]):
            raw["discount_applied_bps"] = line.discount_applied_bps
        return data


class PricingEngine:
    def __init__(self, *, clock: Callable[[], datetime] = utcnow, default_currency: str = "PHP"):
        self.clock = clock
        self.default_currency = default_currency

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _get_location(self, location_id: int) -> FranchiseLocation:
        location = db.session.get(FranchiseLocation, location_id)
        if location is None:
            raise NotFoundError("Location", location_id)
        return location

    def _get_product(self, product_id: int) -> Product:
        product = db.session.get(Product, product_id)
        if product is None:
            raise NotFoundError("Product", product_id)
        if not product.is_active:
            raise ValidationError(f"Product {product_id} is inactive")
        return product

    def _active_price_entry(self, franchise_id: int, product_id: int, now: datetime) -> FranchisePricing | None:
        return (
            db.session.query(FranchisePricing)
            .filter(
                FranchisePricing.franchise_id == franchise_id,
                FranchisePricing.product_id == product_id,
                FranchisePricing.effective_from <= now,
                or_(FranchisePricing.effective_until.is_(None), FranchisePricing.effective_until > now),
            )
            .order_by(FranchisePricing.effective_from.desc(), FranchisePricing.id.desc())
            .first()
        )

    def _optional(self, label: str, func, default):
        """Run an optional lookup in a savepoint so a failure leaves the caller's transaction usable."""
        try:
            with db.session.begin_nested():
                return func()
        except SQLAlchemyError as exc:
            logger.warning("Falling back to default %s: %s", label, exc)
            return default

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    def price_line(self, franchise_id: int, product_id: int, quantity: int, now: datetime) -> PricingLine:
        product = self._get_product(product_id)
        entry = self._optional(
            "price list entry",
            lambda: self._active_price_entry(franchise_id, product_id, now),
            None,
        )

        if entry is not None and entry.base_price_cents is not None:
            base_price = entry.base_price_cents
        else:
            base_price = product.base_price_cents

        franchise_bps = entry.franchise_discount_bps if entry is not None else 0
        volume_bps = select_volume_discount_bps(quantity, entry.volume_tiers if entry is not None else [])

        unit = apply_bps_discount(Decimal(base_price), franchise_bps)
        unit = apply_bps_discount(unit, volume_bps)

        return PricingLine(
            product_id=product.id,
            product_name=product.name,
            quantity=quantity,
            base_price_cents=base_price,
            franchise_discount_bps=franchise_bps,
            volume_discount_bps=volume_bps,
            unit_price_cents=_round_cents(unit),
            line_total_cents=_round_cents(unit * quantity),
        )

    def calculate_tax(self, taxable_cents: int, shipping_cents: int, location_id: int) -> int:
        config = self._optional(
            "tax configuration",
            lambda: db.session.query(TaxConfiguration).filter_by(location_id=location_id).first(),
            None,
        )
        if config is None:
            return _round_cents(Decimal(taxable_cents) * DEFAULT_TAX_RATE_BPS / BPS)

        if config.tax_type == "FIXED":
            return config.tax_rate

        base = taxable_cents + (shipping_cents if config.applies_to_shipping else 0)
        return _round_cents(Decimal(base) * Decimal(config.tax_rate) / BPS)

    def calculate_shipping(self, subtotal_cents: int, location: FranchiseLocation) -> int:
        config = self._optional(
            "shipping configuration",
            lambda: db.session.query(ShippingConfiguration).filter_by(location_id=location.id).first(),
            None,
        )
        if config is None:
            return 0 if subtotal_cents >= DEFAULT_FREE_SHIPPING_THRESHOLD_CENTS else DEFAULT_SHIPPING_CENTS

        if subtotal_cents >= config.free_shipping_threshold_cents:
            return 0

        multiplier = Decimal(1)
        for zone in config.shipping_zones or []:
            if location.shipping_zone and zone.get("zone_name") == location.shipping_zone:
                multiplier = Decimal(str(zone.get("rate_multiplier") or 1))
                break

        return _round_cents(Decimal(config.base_shipping_rate_cents) * multiplier)

    def calculate_order_discounts(self, subtotal_cents: int, franchise_id: int, now: datetime) -> int:
        discounts = self._optional(
            "order discounts",
            lambda: (
                db.session.query(FranchiseDiscount)
                .filter(
                    FranchiseDiscount.franchise_id == franchise_id,
                    FranchiseDiscount.is_active.is_(True),
                    FranchiseDiscount.valid_from <= now,
                    or_(FranchiseDiscount.valid_until.is_(None), FranchiseDiscount.valid_until > now),
                )
                .all()
            ),
            [],
        )

        total = Decimal(0)
        for discount in discounts:
            if subtotal_cents < discount.minimum_order_amount_cents:
                continue
            if discount.discount_type == "FIXED":
                total += Decimal(discount.discount_value)
            else:
                total += Decimal(subtotal_cents) * Decimal(discount.discount_value) / BPS

        cap = Decimal(subtotal_cents) * MAX_ORDER_DISCOUNT_BPS / BPS
        return _round_cents(min(total, cap))

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def compute_pricing(self, items, location_id: int) -> PricingResult:
        lines = normalize_items(items)
        location = self._get_location(location_id)
        now = self.clock()

        breakdown = [
            self.price_line(location.franchise_id, line["product_id"], line["quantity"], now)
            for line in lines
        ]
        subtotal = sum(line.line_total_cents for line in breakdown)

        shipping = self.calculate_shipping(subtotal, location)
        tax = self.calculate_tax(subtotal, shipping, location.id)
        discount = self.calculate_order_discounts(subtotal, location.franchise_id, now)

        return PricingResult(
            subtotal_cents=subtotal,
            tax_cents=tax,
            shipping_cents=shipping,
            discount_cents=discount,
            grand_total_cents=subtotal + tax + shipping - discount,
            currency=location.currency or self.default_currency,
            breakdown=breakdown,
        )

    def preview(self, items, location_id: int) -> PricingResult:
        """Pricing shown to the UI before an order is placed; same computation, no writes."""
        return self.compute_pricing(items, location_id)

    def calculate_profit_margins(self, items, location_id: int) -> dict:
        pricing = self.compute_pricing(items, location_id)

        total_cost = 0
        for line in pricing.breakdown:
            product = db.session.get(Product, line.product_id)
            total_cost += (product.cost_price_cents or 0) * line.quantity

        revenue = pricing.subtotal_cents
        gross_profit = revenue - total_cost
        margin_bps = (gross_profit * 10000 // revenue) if revenue > 0 else 0

        return {
            "total_cost_cents": total_cost,
            "total_revenue_cents": revenue,
            "gross_profit_cents": gross_profit,
            "profit_margin_bps": margin_bps,
        }


def upsert_franchise_pricing(
    *,
    franchise_id: int,
    product_id: int,
    effective_from: datetime,
    base_price_cents: int | None = None,
    franchise_discount_bps: int = 0,
    volume_tiers: list[dict] | None = None,
    effective_until: datetime | None = None,
) -> FranchisePricing:
    """
    Create or replace the price-list entry starting at effective_from.

    Entries with other start dates are left alone so price history is preserved.
    volume_tiers: [{"min_quantity": int, "discount_bps": int}, ...]
    """
    if db.session.get(Product, product_id) is None:
        raise NotFoundError("Product", product_id)
    if not 0 <= franchise_discount_bps <= 10000:
        raise ValidationError("franchise_discount_bps must be between 0 and 10000")
    if effective_until is not None and effective_until <= effective_from:
        raise ValidationError("effective_until must be after effective_from")

    entry = (
        db.session.query(FranchisePricing)
        .filter_by(franchise_id=franchise_id, product_id=product_id, effective_from=effective_from)
        .first()
    )
    if entry is None:
        entry = FranchisePricing(franchise_id=franchise_id, product_id=product_id, effective_from=effective_from)
        db.session.add(entry)

    entry.base_price_cents = base_price_cents
    entry.franchise_discount_bps = franchise_discount_bps
    entry.effective_until = effective_until

    if volume_tiers is not None:
        seen = set()
        tiers = []
        for raw in volume_tiers:
            min_qty = int(raw["min_quantity"])
            bps = int(raw["discount_bps"])
            if min_qty <= 0 or min_qty in seen:
                raise ValidationError(f"invalid or duplicate volume tier min_quantity {min_qty}")
            if not 0 <= bps <= 10000:
                raise ValidationError("volume tier discount_bps must be between 0 and 10000")
            seen.add(min_qty)
            tiers.append(VolumeDiscountTier(min_quantity=min_qty, discount_bps=bps))
        entry.volume_tiers = tiers

    db.session.flush()
    return entry


def get_pricing_history(franchise_id: int, product_id: int | None = None) -> list[FranchisePricing]:
    q = db.session.query(FranchisePricing).filter_by(franchise_id=franchise_id)
    if product_id is not None:
        q = q.filter_by(product_id=product_id)
    return q.order_by(FranchisePricing.effective_from.desc(), FranchisePricing.id.desc()).all()
