from __future__ import annotations

from ..extensions import db
from franchise_ops.time_utils import to_utc_z


class Franchise(db.Model):
    """
    Multi-tenant root: every tenant is a Franchise brand.

    Locations, users, price lists and discount rules belong to exactly one
    franchise. Price lists are franchise-wide; stock and approval thresholds
    are per location.
    """
    __tablename__ = "franchises"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=True, unique=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Franchise id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class FranchiseLocation(db.Model):
    """
    A franchised outlet that places orders and holds stock.

    location_code prefixes order numbers (e.g. MNL01-20260115-0001).
    shipping_zone selects a rate multiplier from the location's shipping configuration.
    """
    __tablename__ = "franchise_locations"
    __table_args__ = (
        db.UniqueConstraint("franchise_id", "location_code", name="uq_locations_franchise_code"),
        db.Index("ix_locations_franchise_id", "franchise_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    franchise_id = db.Column(db.Integer, db.ForeignKey("franchises.id"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    location_code = db.Column(db.String(32), nullable=True)

    currency = db.Column(db.String(3), nullable=True)
    shipping_zone = db.Column(db.String(64), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    franchise = db.relationship("Franchise", backref=db.backref("locations", lazy=True))

    def __repr__(self) -> str:
        return f"<FranchiseLocation id={self.id} code={self.location_code!r} franchise_id={self.franchise_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "franchise_id": self.franchise_id,
            "name": self.name,
            "location_code": self.location_code,
            "currency": self.currency,
            "shipping_zone": self.shipping_zone,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class User(db.Model):
    """
    People who create and approve orders.

    role drives approval authority:
    - location_manager: tier 1
    - regional_coordinator: tiers 1-2
    - franchisor_admin: tiers 1-3
    Other roles (franchisee, staff, fulfillment) cannot approve.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.UniqueConstraint("franchise_id", "username", name="uq_users_franchise_username"),
        db.Index("ix_users_franchise_role", "franchise_id", "role"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    franchise_id = db.Column(db.Integer, db.ForeignKey("franchises.id"), nullable=False, index=True)

    # Null for regional / franchisor staff who are not tied to one outlet
    location_id = db.Column(db.Integer, db.ForeignKey("franchise_locations.id"), nullable=True, index=True)

    username = db.Column(db.String(64), nullable=False)
    full_name = db.Column(db.String(255), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    role = db.Column(db.String(32), nullable=False, default="franchisee")

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    franchise = db.relationship("Franchise", backref=db.backref("users", lazy=True))
    location = db.relationship("FranchiseLocation", backref=db.backref("users", lazy=True))

    def __repr__(self) -> str:
        return f"<User id={self.id} username={self.username!r} role={self.role!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "franchise_id": self.franchise_id,
            "location_id": self.location_id,
            "username": self.username,
            "full_name": self.full_name,
            "email": self.email,
            "role": self.role,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
