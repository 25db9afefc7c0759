# Overview: Domain error taxonomy shared by services and routes.

"""
Franchise Ops error taxonomy.

Errors raised BEFORE any durable state change abort the operation with nothing
written. DownstreamError is the only error raised AFTER a committed transition;
the workflow logs it and never rolls back the transition.
"""

from __future__ import annotations


class FranchiseOpsError(Exception):
    """Base class for domain errors. Carries the HTTP status routes respond with."""

    status_code = 400
    code = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class ValidationError(FranchiseOpsError):
    """Malformed input: quantities <= 0, missing location, unknown action."""

    code = "validation_error"


class NotFoundError(FranchiseOpsError):
    status_code = 404
    code = "not_found"

    def __init__(self, entity: str, entity_id):
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class InsufficientStockError(FranchiseOpsError):
    """
    One or more lines cannot be covered by available stock.

    shortages: list of dicts with product_id, location_id, requested, available.
    """

    status_code = 409
    code = "insufficient_stock"

    def __init__(self, shortages: list[dict]):
        parts = [
            f"product {s['product_id']} at location {s['location_id']}: "
            f"requested {s['requested']}, available {s['available']} "
            f"(short by {s['requested'] - s['available']})"
            for s in shortages
        ]
        super().__init__("Insufficient stock for " + "; ".join(parts))
        self.shortages = shortages

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["shortages"] = self.shortages
        return data


class AuthorizationError(FranchiseOpsError):
    status_code = 403
    code = "not_authorized"

    def __init__(self, message: str, *, required_role: str | None = None, tier: int | None = None):
        super().__init__(message)
        self.required_role = required_role
        self.tier = tier

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["required_role"] = self.required_role
        data["tier"] = self.tier
        return data


class StateConflictError(FranchiseOpsError):
    """A transition was attempted from a status other than the expected pre-state."""

    status_code = 409
    code = "state_conflict"

    def __init__(self, entity: str, entity_id, current_status: str | None, attempted: str):
        super().__init__(
            f"{entity} {entity_id} is already in state {current_status}; cannot {attempted}"
        )
        self.current_status = current_status
        self.attempted = attempted

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["current_status"] = self.current_status
        return data


class DownstreamError(FranchiseOpsError):
    """Notification / invoice / payment collaborator failure. Never fatal to a transition."""

    status_code = 502
    code = "downstream_error"

    def __init__(self, collaborator: str, message: str):
        super().__init__(f"{collaborator}: {message}")
        self.collaborator = collaborator
