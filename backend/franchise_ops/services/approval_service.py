# Overview: Approval policy; maps order totals to approval tiers and roles to tier authority.

"""
TIERS:
    0  auto-approved                 total <= auto_approve_limit
    1  location_manager              total <= level1_threshold
    2  regional_coordinator          total <= level2_threshold
    3  franchisor_admin              anything above level2_threshold

level3_threshold is validated for ordering but does not bound tier 3.

ESCALATION:
An order of tier N must clear tiers 1..N in sequence; a tier-3 order is approved
three times. Roles may act on their own tier or any lower tier.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..errors import AuthorizationError
from ..models import ApprovalThreshold

logger = logging.getLogger(__name__)


TIER_ROLES = {
    1: "location_manager",
    2: "regional_coordinator",
    3: "franchisor_admin",
}

ROLE_AUTHORITY = {role: tier for tier, role in TIER_ROLES.items()}


@dataclass(frozen=True)
class Thresholds:
    auto_approve_limit_cents: int
    level1_threshold_cents: int
    level2_threshold_cents: int
    level3_threshold_cents: int

    def is_valid(self) -> bool:
        return (
            0 <= self.auto_approve_limit_cents
            < self.level1_threshold_cents
            < self.level2_threshold_cents
            < self.level3_threshold_cents
        )


DEFAULT_THRESHOLDS = Thresholds(
    auto_approve_limit_cents=100000,
    level1_threshold_cents=500000,
    level2_threshold_cents=2500000,
    level3_threshold_cents=10000000,
)


class ApprovalPolicy:
    def __init__(self, *, defaults: Thresholds = DEFAULT_THRESHOLDS):
        self.defaults = defaults

    def _load_thresholds(self, location_id: int) -> ApprovalThreshold | None:
        return db.session.query(ApprovalThreshold).filter_by(location_id=location_id).first()

    def thresholds_for(self, location_id: int | None) -> Thresholds:
        """Location thresholds, or defaults when missing, unreadable or not strictly increasing."""
        if location_id is None:
            return self.defaults
        try:
            with db.session.begin_nested():
                row = self._load_thresholds(location_id)
        except SQLAlchemyError as exc:
            logger.warning("Approval thresholds unavailable for location %s: %s", location_id, exc)
            return self.defaults
        if row is None:
            return self.defaults

        thresholds = Thresholds(
            auto_approve_limit_cents=row.auto_approve_limit_cents,
            level1_threshold_cents=row.level1_threshold_cents,
            level2_threshold_cents=row.level2_threshold_cents,
            level3_threshold_cents=row.level3_threshold_cents,
        )
        if not thresholds.is_valid():
            logger.warning("Ignoring non-increasing approval thresholds for location %s", location_id)
            return self.defaults
        return thresholds

    def required_tier(self, grand_total_cents: int, location_id: int | None) -> int:
        t = self.thresholds_for(location_id)
        if grand_total_cents <= t.auto_approve_limit_cents:
            return 0
        if grand_total_cents <= t.level1_threshold_cents:
            return 1
        if grand_total_cents <= t.level2_threshold_cents:
            return 2
        return 3

    @staticmethod
    def required_tiers(tier: int) -> list[int]:
        return list(range(1, tier + 1))

    @staticmethod
    def role_for_tier(tier: int) -> str:
        return TIER_ROLES[tier]

    @staticmethod
    def can_approve(role: str | None, tier: int) -> bool:
        return ROLE_AUTHORITY.get(role or "", 0) >= tier

    def authorize(self, role: str | None, tier: int) -> None:
        if not self.can_approve(role, tier):
            required = self.role_for_tier(tier)
            raise AuthorizationError(
                f"Tier {tier} approval requires role {required} (or higher); caller has role {role}",
                required_role=required,
                tier=tier,
            )
