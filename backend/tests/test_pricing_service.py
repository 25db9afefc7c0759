import copy
import logging
from datetime import timedelta
from types import SimpleNamespace

import pytest
from sqlalchemy import event, text
from sqlalchemy.exc import OperationalError

from franchise_ops.errors import NotFoundError, ValidationError
from franchise_ops.extensions import db
from franchise_ops.models import (
    FranchiseDiscount,
    ShippingConfiguration,
    TaxConfiguration,
)
from franchise_ops.services.pricing_service import (
    PricingEngine,
    get_pricing_history,
    normalize_items,
    select_volume_discount_bps,
    upsert_franchise_pricing,
)
from franchise_ops.time_utils import utcnow


@pytest.fixture
def engine(db_session):
    return PricingEngine()


def _yesterday():
    return utcnow() - timedelta(days=1)


def test_default_configuration(engine, location, products):
    result = engine.compute_pricing([{"product_id": products["widget"].id, "quantity": 5}], location.id)

    assert result.subtotal_cents == 50000
    assert result.tax_cents == 6000          # 12%
    assert result.shipping_cents == 20000    # flat 200.00 below the free threshold
    assert result.discount_cents == 0
    assert result.grand_total_cents == 76000
    assert result.currency == "PHP"
    assert result.breakdown[0].unit_price_cents == 10000


def test_free_shipping_at_default_threshold(engine, location, products):
    result = engine.compute_pricing([{"product_id": products["gadget"].id, "quantity": 10}], location.id)

    assert result.subtotal_cents == 500000
    assert result.shipping_cents == 0


def test_volume_discount_uses_highest_qualifying_tier(engine, franchise, location, products):
    upsert_franchise_pricing(
        franchise_id=franchise.id,
        product_id=products["widget"].id,
        effective_from=_yesterday(),
        volume_tiers=[
            {"min_quantity": 10, "discount_bps": 500},
            {"min_quantity": 50, "discount_bps": 1500},
        ],
    )

    result = engine.compute_pricing([{"product_id": products["widget"].id, "quantity": 50}], location.id)
    line = result.breakdown[0]

    assert line.volume_discount_bps == 1500
    assert line.unit_price_cents == 8500
    assert line.line_total_cents == 425000


def test_select_volume_discount_does_not_depend_on_tier_order():
    tiers = [SimpleNamespace(min_quantity=50, discount_bps=1500), SimpleNamespace(min_quantity=10, discount_bps=500)]

    assert select_volume_discount_bps(50, tiers) == 1500
    assert select_volume_discount_bps(49, tiers) == 500
    assert select_volume_discount_bps(9, tiers) == 0
    assert [t.min_quantity for t in tiers] == [50, 10]


def test_franchise_discount_applies_before_volume_discount(engine, franchise, location, products):
    upsert_franchise_pricing(
        franchise_id=franchise.id,
        product_id=products["widget"].id,
        effective_from=_yesterday(),
        franchise_discount_bps=1000,
        volume_tiers=[{"min_quantity": 20, "discount_bps": 1500}],
    )

    line = engine.compute_pricing(
        [{"product_id": products["widget"].id, "quantity": 20}], location.id
    ).breakdown[0]

    assert line.unit_price_cents == 7650
    assert line.discount_applied_bps == 2500


def test_price_list_override_and_expired_entries(engine, franchise, location, products):
    upsert_franchise_pricing(
        franchise_id=franchise.id,
        product_id=products["widget"].id,
        effective_from=utcnow() - timedelta(days=30),
        effective_until=utcnow() - timedelta(days=10),
        base_price_cents=5000,
    )
    items = [{"product_id": products["widget"].id, "quantity": 1}]
    assert engine.compute_pricing(items, location.id).breakdown[0].base_price_cents == 10000

    upsert_franchise_pricing(
        franchise_id=franchise.id,
        product_id=products["widget"].id,
        effective_from=_yesterday(),
        base_price_cents=9000,
    )
    assert engine.compute_pricing(items, location.id).breakdown[0].base_price_cents == 9000

    history = get_pricing_history(franchise.id, products["widget"].id)
    assert [e.base_price_cents for e in history] == [9000, 5000]


def test_location_tax_configuration(engine, db_session, location, products):
    db_session.add(TaxConfiguration(
        location_id=location.id, tax_name="VAT", tax_type="PERCENTAGE", tax_rate=1000, applies_to_shipping=True
    ))
    db_session.commit()

    result = engine.compute_pricing([{"product_id": products["widget"].id, "quantity": 5}], location.id)

    assert result.tax_cents == 7000    # 10% of (500.00 + 200.00 shipping)


def test_fixed_tax(engine, db_session, location, products):
    db_session.add(TaxConfiguration(location_id=location.id, tax_type="FIXED", tax_rate=1500))
    db_session.commit()

    result = engine.compute_pricing([{"product_id": products["widget"].id, "quantity": 5}], location.id)

    assert result.tax_cents == 1500


def test_shipping_zone_multiplier(engine, db_session, location, products):
    location.shipping_zone = "north"
    db_session.add(ShippingConfiguration(
        location_id=location.id,
        base_shipping_rate_cents=10000,
        free_shipping_threshold_cents=1000000,
        shipping_zones=[
            {"zone_name": "south", "rate_multiplier": 2.0},
            {"zone_name": "north", "rate_multiplier": 1.5},
        ],
    ))
    db_session.commit()

    result = engine.compute_pricing([{"product_id": products["widget"].id, "quantity": 5}], location.id)

    assert result.shipping_cents == 15000


def test_order_discounts_are_capped_at_half_the_subtotal(engine, db_session, franchise, location, products):
    db_session.add_all([
        FranchiseDiscount(
            franchise_id=franchise.id, name="Opening promo", discount_type="PERCENTAGE",
            discount_value=4000, valid_from=_yesterday(),
        ),
        FranchiseDiscount(
            franchise_id=franchise.id, name="Loyalty", discount_type="FIXED",
            discount_value=20000, valid_from=_yesterday(),
        ),
    ])
    db_session.commit()

    result = engine.compute_pricing([{"product_id": products["widget"].id, "quantity": 5}], location.id)

    assert result.discount_cents == 25000    # 40% + 200.00 would exceed 50% of 500.00
    assert result.grand_total_cents == 50000 + 6000 + 20000 - 25000


def test_order_discount_minimum_and_window(engine, db_session, franchise, location, products):
    db_session.add_all([
        FranchiseDiscount(
            franchise_id=franchise.id, name="Bulk", discount_type="PERCENTAGE",
            discount_value=1000, minimum_order_amount_cents=100000, valid_from=_yesterday(),
        ),
        FranchiseDiscount(
            franchise_id=franchise.id, name="Expired", discount_type="FIXED", discount_value=1000,
            valid_from=utcnow() - timedelta(days=10), valid_until=utcnow() - timedelta(days=5),
        ),
        FranchiseDiscount(
            franchise_id=franchise.id, name="Disabled", discount_type="FIXED", discount_value=1000,
            valid_from=_yesterday(), is_active=False,
        ),
    ])
    db_session.commit()

    small = engine.compute_pricing([{"product_id": products["widget"].id, "quantity": 5}], location.id)
    large = engine.compute_pricing([{"product_id": products["widget"].id, "quantity": 10}], location.id)

    assert small.discount_cents == 0
    assert large.discount_cents == 10000


def test_compute_pricing_is_repeatable_and_does_not_mutate_input(engine, location, products):
    items = [
        {"product_id": products["widget"].id, "quantity": 3},
        {"product_id": products["gadget"].id, "quantity": 2},
    ]
    snapshot = copy.deepcopy(items)

    first = engine.compute_pricing(items, location.id)
    second = engine.compute_pricing(items, location.id)

    assert first.to_dict() == second.to_dict()
    assert items == snapshot


def test_missing_product_and_location_are_hard_errors(engine, location, products):
    with pytest.raises(NotFoundError):
        engine.compute_pricing([{"product_id": 999999, "quantity": 1}], location.id)
    with pytest.raises(NotFoundError):
        engine.compute_pricing([{"product_id": products["widget"].id, "quantity": 1}], 999999)


def test_inactive_product_is_rejected(engine, db_session, location, products):
    products["widget"].is_active = False
    db_session.commit()

    with pytest.raises(ValidationError):
        engine.compute_pricing([{"product_id": products["widget"].id, "quantity": 1}], location.id)


@pytest.mark.parametrize("items", [
    [],
    [{"product_id": 1, "quantity": 0}],
    [{"product_id": 1, "quantity": -2}],
    [{"product_id": 1, "quantity": 1.5}],
    [{"quantity": 1}],
])
def test_normalize_items_rejects_bad_lines(items):
    with pytest.raises(ValidationError):
        normalize_items(items)


def test_normalize_items_merges_duplicate_products():
    assert normalize_items([
        {"product_id": 1, "quantity": 2},
        {"product_id": "1", "quantity": 3},
        {"product_id": 2, "quantity": 1},
    ]) == [{"product_id": 1, "quantity": 5}, {"product_id": 2, "quantity": 1}]


def test_optional_configuration_failure_falls_back_and_logs(engine, caplog):
    def broken_lookup():
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    with caplog.at_level(logging.WARNING, logger="franchise_ops.services.pricing_service"):
        assert engine._optional("tax configuration", broken_lookup, None) is None

    assert "Falling back to default tax configuration" in caplog.text


def test_profit_margins(engine, location, products):
    margins = engine.calculate_profit_margins([{"product_id": products["widget"].id, "quantity": 5}], location.id)

    assert margins == {
        "total_cost_cents": 30000,
        "total_revenue_cents": 50000,
        "gross_profit_cents": 20000,
        "profit_margin_bps": 4000,
    }


def test_upsert_rejects_invalid_tiers(franchise, products):
    with pytest.raises(ValidationError):
        upsert_franchise_pricing(
            franchise_id=franchise.id,
            product_id=products["widget"].id,
            effective_from=_yesterday(),
            volume_tiers=[{"min_quantity": 10, "discount_bps": 500}, {"min_quantity": 10, "discount_bps": 700}],
        )


def test_failed_optional_lookup_keeps_outer_transaction_usable(engine, db_session, location, products):
    statements = []

    def capture(conn, cursor, statement, parameters, context, executemany):
        statements.append(statement)

    db_session.add(TaxConfiguration(location_id=location.id, tax_type="FIXED", tax_rate=1500))
    db_session.flush()

    event.listen(db.engine, "before_cursor_execute", capture)
    try:
        fallback = engine._optional(
            "price list entry",
            lambda: db_session.execute(text("SELECT * FROM no_such_table")).first(),
            None,
        )
    finally:
        event.remove(db.engine, "before_cursor_execute", capture)

    assert fallback is None
    assert any(s.startswith("ROLLBACK TO SAVEPOINT") for s in statements)

    # Work flushed before the failed lookup is still part of the transaction
    result = engine.compute_pricing([{"product_id": products["widget"].id, "quantity": 5}], location.id)
    assert result.tax_cents == 1500
    db_session.commit()
    assert db_session.query(TaxConfiguration).filter_by(location_id=location.id).count() == 1
