"""Tests for quitplan/data/adaptive.py: recalculation, minimum wait and delay rewards."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

import pytest

from quitplan.data.adaptive import (
    MIN_WAIT_THRESHOLD_MS,
    REWARD_BONUS_MS,
    calculate_delay_reward,
    enforce_minimum_wait,
    maybe_recalculate,
    recalculate_adaptive_plan,
    select_adjustment_multiplier,
    should_recalculate,
)
from quitplan.data.schedule import generate_quit_plan, validate_plan
from quitplan.data.schemas import (
    LogEntry,
    Plan,
    PlanSpeed,
    QuitConfig,
    make_adaptive_stats,
    make_log_entry,
)

START = datetime(2026, 3, 2, 8, 0, tzinfo=UTC)
RECALC_AT = START + timedelta(days=7)


def _config(
    cigarettes: float = 20,
    vapes: float = 250,
    adaptive: bool = True,
    rate: float | None = None,
) -> QuitConfig:
    return QuitConfig(
        cigarettes_per_week=cigarettes,
        vapes_per_week=vapes,
        plan_speed=PlanSpeed.MEDIUM,
        adaptive_mode=adaptive,
        start_date=START,
        reduction_rate=rate,
    )


def _plan(**kwargs: object) -> Plan:
    return generate_quit_plan(_config(**kwargs))  # type: ignore[arg-type]


def _daily_logs(per_day: int, now: datetime, substance: str = "vape", days: int = 7) -> list[LogEntry]:
    """per_day vapes for each of the last ``days`` days, spaced evenly inside each day."""
    step = 24 // per_day
    return [
        make_log_entry(substance, now - timedelta(hours=day * 24 + slot * step + 1))
        for day in range(days)
        for slot in range(per_day)
    ]


# ---------------------------------------------------------------------------
# Minimum wait
# ---------------------------------------------------------------------------


def test_short_wait_pinned_to_minimum() -> None:
    decision = enforce_minimum_wait(300_000)
    assert decision["should_wait"] is True
    assert decision["wait_time_ms"] == 600_000
    assert decision["is_minimum_enforced"] is True
    assert decision["message"] is not None
    assert "10 minutes" in decision["message"]


def test_no_wait_when_nothing_remains() -> None:
    decision = enforce_minimum_wait(0)
    assert decision["should_wait"] is False
    assert decision["wait_time_ms"] == 0
    assert decision["is_minimum_enforced"] is False


def test_long_wait_passes_through() -> None:
    decision = enforce_minimum_wait(900_000)
    assert decision == {
        "should_wait": True,
        "wait_time_ms": 900_000,
        "is_minimum_enforced": False,
        "message": None,
    }


def test_exact_threshold_is_not_enforced() -> None:
    decision = enforce_minimum_wait(MIN_WAIT_THRESHOLD_MS)
    assert decision["is_minimum_enforced"] is False
    assert decision["wait_time_ms"] == MIN_WAIT_THRESHOLD_MS


# ---------------------------------------------------------------------------
# Delay reward
# ---------------------------------------------------------------------------


def _reward_logs(now: datetime) -> list[LogEntry]:
    return [make_log_entry("vape", now - timedelta(hours=h)) for h in (60, 48, 24, 12, 1)]


def test_reward_needs_five_logs() -> None:
    now = START + timedelta(days=3)
    logs = _reward_logs(now)[:4]
    assert calculate_delay_reward(logs, _plan(), now=now) == {
        "has_reward": False,
        "bonus_time_ms": 0,
        "message": None,
    }


def test_reward_granted_below_target() -> None:
    now = START + timedelta(days=3)
    reward = calculate_delay_reward(_reward_logs(now), _plan(), now=now)
    assert reward["has_reward"] is True
    assert reward["bonus_time_ms"] == REWARD_BONUS_MS
    assert reward["message"]


def test_no_reward_outside_adaptive_mode() -> None:
    now = START + timedelta(days=3)
    reward = calculate_delay_reward(_reward_logs(now), _plan(adaptive=False), now=now)
    assert reward["has_reward"] is False


def test_no_reward_right_after_a_log() -> None:
    now = START + timedelta(days=3)
    logs = [*_reward_logs(now), make_log_entry("vape", now - timedelta(minutes=3))]
    assert calculate_delay_reward(logs, _plan(), now=now)["has_reward"] is False


def test_no_reward_when_at_target() -> None:
    now = START + timedelta(days=3)
    # 14/week baseline; 5 logs over 2.5 days is also 14/week
    plan = _plan(cigarettes=0, vapes=14)
    assert calculate_delay_reward(_reward_logs(now), plan, now=now)["has_reward"] is False


def test_no_reward_when_recent_rate_is_zero() -> None:
    now = START + timedelta(days=10)
    old_logs = [make_log_entry("vape", START + timedelta(hours=h)) for h in range(5)]
    assert calculate_delay_reward(old_logs, _plan(), now=now)["has_reward"] is False


# ---------------------------------------------------------------------------
# Recalculation schedule
# ---------------------------------------------------------------------------


def test_should_recalculate_weekly_from_start() -> None:
    plan = _plan()
    assert should_recalculate(plan, now=START + timedelta(days=6, hours=23)) is False
    assert should_recalculate(plan, now=RECALC_AT) is True


def test_should_recalculate_from_last_recalculation() -> None:
    plan = _plan()
    plan["adaptive_stats"] = make_adaptive_stats(RECALC_AT, 0, 1.0, "stable")
    assert should_recalculate(plan, now=RECALC_AT + timedelta(days=3)) is False
    assert should_recalculate(plan, now=RECALC_AT + timedelta(days=7)) is True


def test_should_not_recalculate_without_adaptive_mode() -> None:
    assert should_recalculate(_plan(adaptive=False), now=START + timedelta(days=30)) is False


@pytest.mark.parametrize(
    ("deviation", "expected"),
    [
        (35.0, 0.975),
        (20.5, 0.975),
        (20.0, 1.0),
        (15.0, 1.0),
        (10.0, 1.0),
        (0.0, 1.0),
        (-10.0, 1.0),
        (-15.0, 1.025),
        (-20.0, 1.025),
        (-25.0, 1.05),
    ],
)
def test_select_adjustment_multiplier(deviation: float, expected: float) -> None:
    assert select_adjustment_multiplier(deviation) == pytest.approx(expected)


# ---------------------------------------------------------------------------
# Recalculation
# ---------------------------------------------------------------------------


def test_recalculate_noop_without_adaptive_mode() -> None:
    plan = _plan(adaptive=False)
    logs = _daily_logs(10, RECALC_AT)
    assert recalculate_adaptive_plan(logs, plan, now=RECALC_AT) is plan


def test_recalculate_noop_with_low_confidence(caplog: pytest.LogCaptureFixture) -> None:
    plan = _plan()
    logs = _daily_logs(10, RECALC_AT, days=1)
    with caplog.at_level(logging.DEBUG, logger="quitplan.data.adaptive"):
        result = recalculate_adaptive_plan(logs, plan, now=RECALC_AT)
    assert result is plan
    assert any("not enough data" in rec.message for rec in caplog.records)


def test_recalculate_noop_for_plan_without_weeks() -> None:
    plan = _plan()
    plan["weeks"] = []
    assert recalculate_adaptive_plan(_daily_logs(10, RECALC_AT), plan, now=RECALC_AT) is plan


def test_recalculate_under_target_accelerates() -> None:
    plan = _plan()
    logs = _daily_logs(10, RECALC_AT)  # 70 logs over 163 hours ~ 72.1/week vs target 243

    new_plan = recalculate_adaptive_plan(logs, plan, now=RECALC_AT)

    assert new_plan is not plan
    assert new_plan["start_date"] == RECALC_AT
    assert new_plan["adaptive_mode"] is True
    assert new_plan["plan_speed"] == PlanSpeed.MEDIUM
    assert new_plan["reduction_rate"] == pytest.approx(0.105)
    assert new_plan["original_cigarettes_per_week"] == 20
    assert new_plan["original_vapes_per_week"] == 250
    assert new_plan["weeks"][0]["total_allowed"] == 72
    assert new_plan["weeks"][0]["cigarettes_allowed"] == 0
    assert validate_plan(new_plan) == []

    stats = new_plan["adaptive_stats"]
    assert stats is not None
    assert stats["last_recalculation"] == RECALC_AT
    assert stats["deviation_percent"] == -70
    assert stats["adjustment_multiplier"] == pytest.approx(1.05)


def test_recalculate_over_target_eases_off() -> None:
    plan = _plan(cigarettes=0, vapes=14)  # week 1 target is 13
    logs = _daily_logs(3, RECALC_AT)  # ~21.9/week

    new_plan = recalculate_adaptive_plan(logs, plan, now=RECALC_AT)

    stats = new_plan["adaptive_stats"]
    assert stats is not None
    assert stats["adjustment_multiplier"] == pytest.approx(0.975)
    assert stats["deviation_percent"] == 68
    assert new_plan["reduction_rate"] == pytest.approx(0.0975)
    assert new_plan["original_vapes_per_week"] == 14


def test_regenerated_schedule_tapers_at_speed_rate() -> None:
    plan = _plan()
    new_plan = recalculate_adaptive_plan(_daily_logs(10, RECALC_AT), plan, now=RECALC_AT)

    expected = generate_quit_plan(
        QuitConfig(
            cigarettes_per_week=0.0,
            vapes_per_week=72.1,
            plan_speed=PlanSpeed.MEDIUM,
            adaptive_mode=True,
            start_date=RECALC_AT,
        )
    )
    assert new_plan["weeks"] == expected["weeks"]
    assert new_plan["total_weeks"] == expected["total_weeks"]
    assert [w["total_allowed"] for w in new_plan["weeks"][:4]] == [72, 65, 58, 53]
    # the adjusted rate is recorded for the next recalculation only
    assert new_plan["reduction_rate"] == pytest.approx(0.105)


def test_regeneration_ignores_rate_override_on_supplied_config() -> None:
    plan = _plan(rate=0.2)
    config = QuitConfig(vapes_per_week=1, start_date=START, reduction_rate=0.18)
    new_plan = recalculate_adaptive_plan(_daily_logs(10, RECALC_AT), plan, config, now=RECALC_AT)

    expected = generate_quit_plan(
        QuitConfig(vapes_per_week=72.1, plan_speed=PlanSpeed.MEDIUM, start_date=RECALC_AT)
    )
    assert new_plan["weeks"] == expected["weeks"]
    assert new_plan["reduction_rate"] == pytest.approx(0.20)


def test_recalculated_rate_clamped_to_ceiling() -> None:
    plan = _plan(rate=0.2)
    new_plan = recalculate_adaptive_plan(_daily_logs(10, RECALC_AT), plan, now=RECALC_AT)
    assert new_plan["reduction_rate"] == pytest.approx(0.20)


def test_recalculated_rate_clamped_to_floor() -> None:
    plan = _plan(cigarettes=0, vapes=14, rate=0.03)
    new_plan = recalculate_adaptive_plan(_daily_logs(3, RECALC_AT), plan, now=RECALC_AT)
    assert new_plan["reduction_rate"] == pytest.approx(0.03)


def test_recalculate_keeps_original_baseline_across_generations() -> None:
    plan = _plan()
    first = recalculate_adaptive_plan(_daily_logs(10, RECALC_AT), plan, now=RECALC_AT)
    later = RECALC_AT + timedelta(days=7)
    second = recalculate_adaptive_plan(_daily_logs(8, later), first, now=later)
    assert second["original_cigarettes_per_week"] == 20
    assert second["original_vapes_per_week"] == 250
    assert second["start_date"] == later


def test_recalculate_uses_supplied_config_policy_from_plan() -> None:
    plan = _plan()
    config = QuitConfig(vapes_per_week=1, plan_speed="quick", start_date=START)
    new_plan = recalculate_adaptive_plan(_daily_logs(10, RECALC_AT), plan, config, now=RECALC_AT)
    # policy follows the plan being replaced, not the supplied config
    assert new_plan["plan_speed"] == PlanSpeed.MEDIUM
    assert new_plan["weeks"][0]["total_allowed"] == 72


def test_recalculate_leaves_old_plan_untouched() -> None:
    plan = _plan()
    weeks_before = [dict(w) for w in plan["weeks"]]
    recalculate_adaptive_plan(_daily_logs(10, RECALC_AT), plan, now=RECALC_AT)
    assert plan["weeks"] == weeks_before
    assert plan["adaptive_stats"] is None


def test_maybe_recalculate_only_when_due() -> None:
    plan = _plan()
    early = START + timedelta(days=3)
    assert maybe_recalculate(_daily_logs(10, early, days=3), plan, now=early) is plan
    assert maybe_recalculate(_daily_logs(10, RECALC_AT), plan, now=RECALC_AT) is not plan
