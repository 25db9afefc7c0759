from datetime import timedelta

from conftest import make_order, stock_of
from franchise_ops.models import Franchise, InventoryReservation, User
from franchise_ops.time_utils import to_utc_z, utcnow


def test_system_init_is_idempotent(app, db_session):
    runner = app.test_cli_runner()

    first = runner.invoke(args=["system", "init", "--franchise", "Demo Foods", "--franchise-code", "DEMO"])
    second = runner.invoke(args=["system", "init", "--franchise", "Demo Foods", "--franchise-code", "DEMO"])

    assert first.exit_code == 0, first.output
    assert second.exit_code == 0, second.output
    assert "SKIP User location_manager already exists" in second.output
    assert db_session.query(Franchise).filter_by(code="DEMO").count() == 1
    assert {u.role for u in db_session.query(User).all()} == {
        "franchisee",
        "location_manager",
        "regional_coordinator",
        "franchisor_admin",
        "fulfillment",
    }


def test_sweep_reservations_command(app, db_session, ledger, location, stocked, franchisee):
    order = make_order(db_session, location, franchisee)
    ledger.reserve([{"product_id": stocked["widget"].id, "quantity": 10}], location.id, order.id)
    runner = app.test_cli_runner()

    not_yet = runner.invoke(args=["inventory", "sweep-reservations"])
    later = runner.invoke(
        args=["inventory", "sweep-reservations", "--now", to_utc_z(utcnow() + timedelta(hours=25))]
    )

    assert "Expired 0 reservation(s)" in not_yet.output
    assert "Expired 1 reservation(s)" in later.output
    reservation = db_session.query(InventoryReservation).populate_existing().one()
    assert reservation.status == "expired"
    assert stock_of(db_session, stocked["widget"], location).reserved_stock == 0


def test_sweep_rejects_bad_timestamp(app, db_session):
    result = app.test_cli_runner().invoke(args=["inventory", "sweep-reservations", "--now", "yesterday"])

    assert result.exit_code != 0
    assert "--now" in result.output


def test_inventory_levels_command(app, db_session, location, stocked):
    result = app.test_cli_runner().invoke(args=["inventory", "levels", "--location-id", str(location.id)])

    assert result.exit_code == 0
    assert "AVAILABLE" in result.output
    assert len(result.output.strip().splitlines()) == 3
