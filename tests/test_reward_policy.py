from datetime import datetime, timedelta, timezone
from decimal import Decimal

from view_sessions import Eligible, NotYetEligible, RewardPolicy

T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def test_exactly_one_minute_is_eligible():
    decision = RewardPolicy().evaluate(T0, T0 + timedelta(minutes=1))
    assert decision == Eligible(1.0)


def test_ninety_seconds_is_eligible():
    decision = RewardPolicy().evaluate(T0, T0 + timedelta(seconds=90))
    assert isinstance(decision, Eligible)
    assert decision.elapsed_minutes == 1.5


def test_thirty_seconds_is_not_yet_eligible():
    decision = RewardPolicy().evaluate(T0, T0 + timedelta(seconds=30))
    assert decision == NotYetEligible(0.5)


def test_just_below_threshold():
    decision = RewardPolicy().evaluate(T0, T0 + timedelta(seconds=59, milliseconds=999))
    assert isinstance(decision, NotYetEligible)


def test_negative_duration_never_eligible():
    decision = RewardPolicy().evaluate(T0, T0 - timedelta(hours=3))
    assert isinstance(decision, NotYetEligible)
    assert decision.elapsed_minutes == -180.0


def test_custom_threshold():
    policy = RewardPolicy(min_duration_minutes=5)
    assert isinstance(policy.evaluate(T0, T0 + timedelta(minutes=4)), NotYetEligible)
    assert isinstance(policy.evaluate(T0, T0 + timedelta(minutes=5)), Eligible)


def test_credit_adds_reward_in_cents():
    policy = RewardPolicy()
    assert policy.credit(0) == Decimal("0.12")
    assert policy.credit(None) == Decimal("0.12")
    # float accumulation would drift; decimal arithmetic does not
    assert policy.credit(0.24) == Decimal("0.36")
    assert policy.credit(0.1) == Decimal("0.22")


def test_credit_custom_reward():
    assert RewardPolicy(reward_per_view=Decimal("0.5")).credit(1) == Decimal("1.50")
