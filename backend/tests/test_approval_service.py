import pytest
from sqlalchemy import text

from franchise_ops.errors import AuthorizationError
from franchise_ops.models import ApprovalThreshold
from franchise_ops.services.approval_service import (
    DEFAULT_THRESHOLDS,
    ApprovalPolicy,
    Thresholds,
)


@pytest.fixture
def policy(db_session):
    return ApprovalPolicy()


@pytest.mark.parametrize("total_cents, tier", [
    (0, 0),
    (80000, 0),
    (100000, 0),
    (100001, 1),
    (300000, 1),
    (500000, 1),
    (500001, 2),
    (2500000, 2),
    (2500001, 3),
    (6000000, 3),
    (20000000, 3),
])
def test_default_tiers(policy, location, total_cents, tier):
    assert policy.required_tier(total_cents, location.id) == tier


def test_required_tier_is_monotonic(policy, location):
    totals = list(range(0, 12000000, 25000))
    tiers = [policy.required_tier(t, location.id) for t in totals]

    assert tiers == sorted(tiers)


def test_location_thresholds_override_defaults(policy, location, thresholds):
    assert policy.required_tier(6000000, location.id) == 2
    assert policy.required_tier(10000001, location.id) == 3


def test_non_increasing_thresholds_fall_back_to_defaults(policy, db_session, location):
    db_session.add(ApprovalThreshold(
        location_id=location.id,
        auto_approve_limit_cents=500000,
        level1_threshold_cents=100000,
        level2_threshold_cents=2500000,
        level3_threshold_cents=10000000,
    ))
    db_session.commit()

    assert policy.thresholds_for(location.id) == DEFAULT_THRESHOLDS
    assert policy.required_tier(300000, location.id) == 1


def test_unreadable_thresholds_fall_back_without_poisoning_session(policy, db_session, location, thresholds, monkeypatch):
    def broken_lookup(location_id):
        return db_session.execute(text("SELECT * FROM no_such_table")).first()

    monkeypatch.setattr(policy, "_load_thresholds", broken_lookup)
    assert policy.thresholds_for(location.id) == DEFAULT_THRESHOLDS

    monkeypatch.undo()
    assert policy.required_tier(6000000, location.id) == 2
    assert db_session.query(ApprovalThreshold).filter_by(location_id=location.id).count() == 1


def test_thresholds_validation():
    assert DEFAULT_THRESHOLDS.is_valid()
    assert not Thresholds(0, 0, 1, 2).is_valid()
    assert not Thresholds(-1, 1, 2, 3).is_valid()


def test_required_tiers_is_explicit_sequence():
    assert ApprovalPolicy.required_tiers(0) == []
    assert ApprovalPolicy.required_tiers(1) == [1]
    assert ApprovalPolicy.required_tiers(3) == [1, 2, 3]


@pytest.mark.parametrize("role, tier, allowed", [
    ("location_manager", 1, True),
    ("location_manager", 2, False),
    ("regional_coordinator", 1, True),
    ("regional_coordinator", 2, True),
    ("regional_coordinator", 3, False),
    ("franchisor_admin", 3, True),
    ("franchisee", 1, False),
    (None, 1, False),
])
def test_can_approve(role, tier, allowed):
    assert ApprovalPolicy.can_approve(role, tier) is allowed


def test_authorize_names_required_role():
    with pytest.raises(AuthorizationError) as exc_info:
        ApprovalPolicy().authorize("location_manager", 2)

    assert exc_info.value.required_role == "regional_coordinator"
    assert exc_info.value.tier == 2
    assert "regional_coordinator" in str(exc_info.value)
    assert exc_info.value.status_code == 403
