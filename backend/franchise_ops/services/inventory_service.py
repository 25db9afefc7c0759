# Overview: Service-layer inventory ledger; reservations, releases, delivery commits, transfers.

# backend/franchise_ops/services/inventory_service.py

"""
Franchise Ops Inventory Invariants (authoritative)

Stock model:
- One InventoryRecord per (product, location) with current_stock and reserved_stock.
- available_stock = current_stock - reserved_stock.
- 0 <= reserved_stock <= current_stock at all times.

Atomicity:
- Every check-and-write is a single conditional UPDATE whose WHERE clause carries
  the precondition (e.g. "current_stock - reserved_stock >= :qty"). A zero rowcount
  means the precondition failed. There is never a read followed by a separate write.
- Multi-line operations raise after evaluating every line; the enclosing
  transaction (run_in_transaction or the order workflow) rolls back, so a batch
  reserves all of its lines or none of them.

Reservations:
- active -> fulfilled | cancelled | expired, one-way. Each terminal transition is
  itself a conditional UPDATE on status='active', so double release and a sweep
  racing a cancellation are no-ops rather than double decrements.
- Delivery consumes only the order's own active holds plus unreserved stock.
  An order whose holds expired competes for stock like a new reservation.

Audit:
- Every stock-affecting event appends an InventoryTransaction in the same DB
  transaction. Transactions are never updated.
- quantity_change sign: reservation -q, release +q, sale -q, transfer out -q / in +q.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy import case, update

from ..extensions import db
from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..models import (
    FranchiseLocation,
    InventoryRecord,
    InventoryReservation,
    InventoryTransaction,
    Order,
    Product,
)
from .actors import Actor
from .concurrency import execute_conditional, run_in_transaction
from .document_service import next_transfer_reference
from .pricing_service import normalize_items
from franchise_ops.time_utils import utcnow

logger = logging.getLogger(__name__)


RESERVATION_ACTIVE = "active"
RESERVATION_FULFILLED = "fulfilled"
RESERVATION_CANCELLED = "cancelled"
RESERVATION_EXPIRED = "expired"

TX_PURCHASE = "purchase"
TX_SALE = "sale"
TX_ADJUSTMENT = "adjustment"
TX_TRANSFER = "transfer"
TX_RESERVATION = "reservation"
TX_RELEASE = "release"

SYSTEM_ACTOR = Actor.api_caller()


def _floor_zero(column, quantity: int):
    return case((column - quantity < 0, 0), else_=column - quantity)


class InventoryLedger:
    def __init__(
        self,
        *,
        notifier=None,
        clock: Callable[[], datetime] = utcnow,
        reservation_ttl: timedelta = timedelta(hours=24),
    ):
        self.notifier = notifier
        self.clock = clock
        self.reservation_ttl = reservation_ttl

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _record_transaction(
        self,
        *,
        product_id: int,
        location_id: int,
        transaction_type: str,
        quantity_change: int,
        actor: Actor,
        reference_type: str | None = None,
        reference_id=None,
        unit_cost_cents: int | None = None,
        notes: str | None = None,
    ) -> InventoryTransaction:
        tx = InventoryTransaction(
            product_id=product_id,
            location_id=location_id,
            transaction_type=transaction_type,
            quantity_change=quantity_change,
            reference_type=reference_type,
            reference_id=str(reference_id) if reference_id is not None else None,
            unit_cost_cents=unit_cost_cents,
            notes=notes,
            created_at=self.clock(),
            **actor.audit_fields(),
        )
        db.session.add(tx)
        return tx

    def _require_location(self, location_id: int) -> FranchiseLocation:
        location = db.session.get(FranchiseLocation, location_id)
        if location is None:
            raise NotFoundError("Location", location_id)
        return location

    def get_record(self, product_id: int, location_id: int) -> InventoryRecord | None:
        return (
            db.session.query(InventoryRecord)
            .filter_by(product_id=product_id, location_id=location_id)
            .populate_existing()
            .first()
        )

    def _available(self, product_id: int, location_id: int) -> int:
        record = self.get_record(product_id, location_id)
        return record.available_stock if record is not None else 0

    def _release_reservation(self, reservation: InventoryReservation, terminal_status: str, actor: Actor, now: datetime) -> bool:
        """Close one active reservation and return its stock. False if it was already closed."""
        closed = execute_conditional(
            update(InventoryReservation)
            .where(
                InventoryReservation.id == reservation.id,
                InventoryReservation.status == RESERVATION_ACTIVE,
            )
            .values(status=terminal_status, closed_at=now)
        )
        if not closed:
            return False

        db.session.execute(
            update(InventoryRecord)
            .where(
                InventoryRecord.product_id == reservation.product_id,
                InventoryRecord.location_id == reservation.location_id,
            )
            .values(
                reserved_stock=_floor_zero(InventoryRecord.reserved_stock, reservation.quantity_reserved),
                last_updated=now,
            )
            .execution_options(synchronize_session=False)
        )

        self._record_transaction(
            product_id=reservation.product_id,
            location_id=reservation.location_id,
            transaction_type=TX_RELEASE,
            quantity_change=reservation.quantity_reserved,
            actor=actor,
            reference_type="order",
            reference_id=reservation.order_id,
            notes=f"Reservation {terminal_status} for order {reservation.order_id}",
        )
        return True

    # ------------------------------------------------------------------
    # Availability
    # ------------------------------------------------------------------

    def find_shortages(self, items, location_id: int) -> list[dict]:
        """Read-only availability check; one entry per line that cannot be covered."""
        shortages = []
        for item in normalize_items(items):
            available = self._available(item["product_id"], location_id)
            if available < item["quantity"]:
                shortages.append({
                    "product_id": item["product_id"],
                    "location_id": location_id,
                    "requested": item["quantity"],
                    "available": max(available, 0),
                })
        return shortages

    def validate_availability(self, items, location_id: int) -> None:
        shortages = self.find_shortages(items, location_id)
        if shortages:
            raise InsufficientStockError(shortages)

    # ------------------------------------------------------------------
    # Reserve / release / commit
    # ------------------------------------------------------------------

    def reserve(
        self,
        items,
        location_id: int,
        order_id: int,
        *,
        actor: Actor = SYSTEM_ACTOR,
        commit: bool = True,
    ) -> list[InventoryReservation]:
        """
        Hold stock for every line of an order, all-or-nothing.

        Must run inside a transaction that is rolled back on error; with
        commit=True this method provides one.
        """
        lines = normalize_items(items)

        def _op():
            now = self.clock()
            expires_at = now + self.reservation_ttl
            shortages = []

            for line in lines:
                qty = line["quantity"]
                held = execute_conditional(
                    update(InventoryRecord)
                    .where(
                        InventoryRecord.product_id == line["product_id"],
                        InventoryRecord.location_id == location_id,
                        InventoryRecord.current_stock - InventoryRecord.reserved_stock >= qty,
                    )
                    .values(reserved_stock=InventoryRecord.reserved_stock + qty, last_updated=now)
                )
                if not held:
                    shortages.append({
                        "product_id": line["product_id"],
                        "location_id": location_id,
                        "requested": qty,
                        "available": max(self._available(line["product_id"], location_id), 0),
                    })

            if shortages:
                raise InsufficientStockError(shortages)

            reservations = []
            for line in lines:
                reservation = InventoryReservation(
                    order_id=order_id,
                    product_id=line["product_id"],
                    location_id=location_id,
                    quantity_reserved=line["quantity"],
                    status=RESERVATION_ACTIVE,
                    reserved_at=now,
                    expires_at=expires_at,
                )
                db.session.add(reservation)
                reservations.append(reservation)

                self._record_transaction(
                    product_id=line["product_id"],
                    location_id=location_id,
                    transaction_type=TX_RESERVATION,
                    quantity_change=-line["quantity"],
                    actor=actor,
                    reference_type="order",
                    reference_id=order_id,
                    notes=f"Reserved for order {order_id}",
                )

            logger.info("Reserved %d line(s) at location %s for order %s", len(lines), location_id, order_id)
            return reservations

        return run_in_transaction(_op, commit=commit)

    def release(
        self,
        order_id: int,
        *,
        actor: Actor = SYSTEM_ACTOR,
        commit: bool = True,
        terminal_status: str = RESERVATION_CANCELLED,
    ) -> int:
        """
        Compensating action for reserve(): cancel every active reservation of the order.

        Idempotent; returns the number of reservations actually released.
        """
        def _op():
            now = self.clock()
            reservations = (
                db.session.query(InventoryReservation)
                .filter_by(order_id=order_id, status=RESERVATION_ACTIVE)
                .all()
            )
            released = sum(
                1 for r in reservations if self._release_reservation(r, terminal_status, actor, now)
            )
            if released:
                logger.info("Released %d reservation(s) for order %s (%s)", released, order_id, terminal_status)
            return released

        return run_in_transaction(_op, commit=commit)

    def commit_order(
        self,
        order_id: int,
        *,
        actor: Actor = SYSTEM_ACTOR,
        commit: bool = True,
    ) -> list[InventoryTransaction]:
        """
        Convert an order's reservations into a physical stock reduction (delivery).

        The only operation that lowers current_stock for an order. Each line is
        covered by the order's own active holds plus unreserved stock; holds
        belonging to other orders are never consumed. If any line is short the
        whole delivery raises InsufficientStockError.
        """
        def _op():
            order = db.session.get(Order, order_id)
            if order is None:
                raise NotFoundError("Order", order_id)

            now = self.clock()
            own_held: dict[int, int] = {}
            reservations = (
                db.session.query(InventoryReservation)
                .filter_by(order_id=order_id, status=RESERVATION_ACTIVE)
                .all()
            )
            for reservation in reservations:
                closed = execute_conditional(
                    update(InventoryReservation)
                    .where(
                        InventoryReservation.id == reservation.id,
                        InventoryReservation.status == RESERVATION_ACTIVE,
                    )
                    .values(status=RESERVATION_FULFILLED, closed_at=now)
                )
                if closed:
                    own_held[reservation.product_id] = own_held.get(reservation.product_id, 0) + reservation.quantity_reserved

            needed: dict[int, int] = {}
            for item in order.items:
                needed[item.product_id] = needed.get(item.product_id, 0) + item.quantity

            shortages = []
            for product_id, qty in needed.items():
                own = own_held.get(product_id, 0)
                applied = execute_conditional(
                    update(InventoryRecord)
                    .where(
                        InventoryRecord.product_id == product_id,
                        InventoryRecord.location_id == order.location_id,
                        InventoryRecord.reserved_stock >= own,
                        InventoryRecord.current_stock - InventoryRecord.reserved_stock + own >= qty,
                    )
                    .values(
                        current_stock=InventoryRecord.current_stock - qty,
                        reserved_stock=InventoryRecord.reserved_stock - own,
                        last_updated=now,
                    )
                )
                if not applied:
                    shortages.append({
                        "product_id": product_id,
                        "location_id": order.location_id,
                        "requested": qty,
                        "available": max(self._available(product_id, order.location_id) + own, 0),
                    })

            if shortages:
                raise InsufficientStockError(shortages)

            transactions = []
            for item in order.items:
                transactions.append(self._record_transaction(
                    product_id=item.product_id,
                    location_id=order.location_id,
                    transaction_type=TX_SALE,
                    quantity_change=-item.quantity,
                    actor=actor,
                    reference_type="order",
                    reference_id=order_id,
                    unit_cost_cents=item.unit_price_cents,
                    notes=f"Sale confirmed for order {order.order_number}",
                ))
            return transactions

        return run_in_transaction(_op, commit=commit)

    def sweep_expired_reservations(self, *, now: datetime | None = None, actor: Actor | None = None) -> int:
        """
        Expire active reservations past expires_at and return their stock.

        Safe to run concurrently with itself and with order operations: each
        reservation is closed by a conditional UPDATE, so a reservation already
        released, fulfilled or expired elsewhere is skipped.
        """
        actor = actor or Actor.scheduled_job("reservation-sweep")

        def _op():
            cutoff = now or self.clock()
            expired = (
                db.session.query(InventoryReservation)
                .filter(
                    InventoryReservation.status == RESERVATION_ACTIVE,
                    InventoryReservation.expires_at < cutoff,
                )
                .all()
            )
            count = sum(
                1 for r in expired if self._release_reservation(r, RESERVATION_EXPIRED, actor, cutoff)
            )
            if count:
                logger.info("Expired %d reservation(s) older than %s", count, cutoff)
            return count

        return run_in_transaction(_op)

    # ------------------------------------------------------------------
    # Physical stock movements
    # ------------------------------------------------------------------

    def transfer(
        self,
        from_location_id: int,
        to_location_id: int,
        items,
        *,
        notes: str | None = None,
        actor: Actor = SYSTEM_ACTOR,
        commit: bool = True,
    ) -> str:
        """
        Move physical stock between locations. Returns the shared transfer reference.

        Only unreserved stock may leave the source location.
        """
        if from_location_id == to_location_id:
            raise ValidationError("Cannot transfer to the same location")
        lines = normalize_items(items)

        def _op():
            self._require_location(from_location_id)
            self._require_location(to_location_id)
            now = self.clock()
            reference = next_transfer_reference(location_id=from_location_id)

            shortages = []
            for line in lines:
                qty = line["quantity"]
                moved = execute_conditional(
                    update(InventoryRecord)
                    .where(
                        InventoryRecord.product_id == line["product_id"],
                        InventoryRecord.location_id == from_location_id,
                        InventoryRecord.current_stock - InventoryRecord.reserved_stock >= qty,
                    )
                    .values(current_stock=InventoryRecord.current_stock - qty, last_updated=now)
                )
                if not moved:
                    shortages.append({
                        "product_id": line["product_id"],
                        "location_id": from_location_id,
                        "requested": qty,
                        "available": max(self._available(line["product_id"], from_location_id), 0),
                    })
                    continue

                received = execute_conditional(
                    update(InventoryRecord)
                    .where(
                        InventoryRecord.product_id == line["product_id"],
                        InventoryRecord.location_id == to_location_id,
                    )
                    .values(current_stock=InventoryRecord.current_stock + qty, last_updated=now)
                )
                if not received:
                    db.session.add(InventoryRecord(
                        product_id=line["product_id"],
                        location_id=to_location_id,
                        current_stock=qty,
                        reserved_stock=0,
                    ))

                suffix = f": {notes}" if notes else ""
                self._record_transaction(
                    product_id=line["product_id"],
                    location_id=from_location_id,
                    transaction_type=TX_TRANSFER,
                    quantity_change=-qty,
                    actor=actor,
                    reference_type="transfer",
                    reference_id=reference,
                    notes=f"Transfer out to location {to_location_id}{suffix}",
                )
                self._record_transaction(
                    product_id=line["product_id"],
                    location_id=to_location_id,
                    transaction_type=TX_TRANSFER,
                    quantity_change=qty,
                    actor=actor,
                    reference_type="transfer",
                    reference_id=reference,
                    notes=f"Transfer in from location {from_location_id}{suffix}",
                )

            if shortages:
                raise InsufficientStockError(shortages)

            logger.info("Transfer %s: %d line(s) %s -> %s", reference, len(lines), from_location_id, to_location_id)
            return reference

        return run_in_transaction(_op, commit=commit)

    def receive(
        self,
        product_id: int,
        location_id: int,
        quantity: int,
        *,
        unit_cost_cents: int | None = None,
        notes: str | None = None,
        actor: Actor = SYSTEM_ACTOR,
        commit: bool = True,
    ) -> InventoryTransaction:
        """Add purchased stock, creating the record on first receipt."""
        if quantity <= 0:
            raise ValidationError("quantity must be positive")

        def _op():
            if db.session.get(Product, product_id) is None:
                raise NotFoundError("Product", product_id)
            self._require_location(location_id)
            now = self.clock()

            updated = execute_conditional(
                update(InventoryRecord)
                .where(InventoryRecord.product_id == product_id, InventoryRecord.location_id == location_id)
                .values(current_stock=InventoryRecord.current_stock + quantity, last_updated=now)
            )
            if not updated:
                db.session.add(InventoryRecord(
                    product_id=product_id,
                    location_id=location_id,
                    current_stock=quantity,
                    reserved_stock=0,
                ))

            return self._record_transaction(
                product_id=product_id,
                location_id=location_id,
                transaction_type=TX_PURCHASE,
                quantity_change=quantity,
                actor=actor,
                unit_cost_cents=unit_cost_cents,
                notes=notes,
            )

        return run_in_transaction(_op, commit=commit)

    def adjust(
        self,
        product_id: int,
        location_id: int,
        quantity_delta: int,
        *,
        notes: str | None = None,
        actor: Actor = SYSTEM_ACTOR,
        commit: bool = True,
    ) -> InventoryTransaction:
        """
        Correct physical stock (counts, damage). A negative adjustment may not push
        current_stock below what is already reserved.
        """
        if quantity_delta == 0:
            raise ValidationError("quantity_delta must be non-zero")

        def _op():
            now = self.clock()
            guard = InventoryRecord.current_stock - InventoryRecord.reserved_stock >= -quantity_delta
            applied = execute_conditional(
                update(InventoryRecord)
                .where(
                    InventoryRecord.product_id == product_id,
                    InventoryRecord.location_id == location_id,
                    guard,
                )
                .values(current_stock=InventoryRecord.current_stock + quantity_delta, last_updated=now)
            )
            if not applied:
                if self.get_record(product_id, location_id) is None:
                    raise NotFoundError("Inventory record", f"{product_id}@{location_id}")
                raise InsufficientStockError([{
                    "product_id": product_id,
                    "location_id": location_id,
                    "requested": -quantity_delta,
                    "available": max(self._available(product_id, location_id), 0),
                }])

            return self._record_transaction(
                product_id=product_id,
                location_id=location_id,
                transaction_type=TX_ADJUSTMENT,
                quantity_change=quantity_delta,
                actor=actor,
                reference_type="adjustment",
                notes=notes,
            )

        return run_in_transaction(_op, commit=commit)

    # ------------------------------------------------------------------
    # Reads and alerts
    # ------------------------------------------------------------------

    def get_stock_levels(self, location_id: int, product_ids: list[int] | None = None) -> list[InventoryRecord]:
        q = db.session.query(InventoryRecord).filter_by(location_id=location_id)
        if product_ids:
            q = q.filter(InventoryRecord.product_id.in_(product_ids))
        return q.order_by(InventoryRecord.product_id).populate_existing().all()

    def get_transaction_history(
        self,
        location_id: int,
        product_id: int | None = None,
        limit: int = 100,
    ) -> list[InventoryTransaction]:
        q = db.session.query(InventoryTransaction).filter_by(location_id=location_id)
        if product_id is not None:
            q = q.filter_by(product_id=product_id)
        return q.order_by(InventoryTransaction.created_at.desc(), InventoryTransaction.id.desc()).limit(limit).all()

    def find_low_stock(self, location_id: int) -> list[InventoryRecord]:
        return (
            db.session.query(InventoryRecord)
            .filter(
                InventoryRecord.location_id == location_id,
                InventoryRecord.current_stock <= InventoryRecord.reorder_level,
            )
            .populate_existing()
            .all()
        )

    def check_low_stock(self, location_id: int) -> list[InventoryRecord]:
        """
        Emit one low-stock notification for the location if anything is at/below
        its reorder level. Call after the stock change is committed.
        """
        low = self.find_low_stock(location_id)
        if low and self.notifier is not None:
            from .notification_service import Recipients

            self.notifier.notify(
                Recipients.location(location_id),
                "Low Stock Alert",
                f"{len(low)} item(s) are at or below reorder level",
                data={"low_stock_items": [r.to_dict() for r in low]},
                level="warning",
                category="inventory",
            )
        return low
