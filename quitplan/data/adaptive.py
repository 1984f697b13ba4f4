"""Adaptive mode: regenerate the plan from observed behaviour and shape wait times."""

from __future__ import annotations

import dataclasses
import logging
import math
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta

from quitplan.data.schedule import generate_quit_plan, get_current_week, round_half_up, validate_plan
from quitplan.data.schemas import (
    Confidence,
    DelayReward,
    LogEntry,
    MinimumWaitDecision,
    Plan,
    QuitConfig,
    make_adaptive_stats,
    make_delay_reward,
    make_minimum_wait_decision,
)
from quitplan.data.trends import analyze_trend

logger = logging.getLogger(__name__)

MIN_WAIT_THRESHOLD_MS = 10 * 60 * 1000
ANALYSIS_WINDOW_DAYS = 7
REWARD_WINDOW_DAYS = 3
RECALCULATION_INTERVAL_DAYS = 7
ADJUSTMENT_FACTOR = 0.05  # max 5% rate change per recalculation
REWARD_BONUS_MS = 2 * 60 * 1000
REWARD_MIN_LOGS = 5
REWARD_QUIET_PERIOD = timedelta(minutes=10)
REWARD_TARGET_RATIO = 0.9
MIN_REDUCTION_RATE = 0.03
MAX_REDUCTION_RATE = 0.20


def should_recalculate(plan: Plan, now: datetime | None = None) -> bool:
    """True once a week has passed since the last regeneration (or the plan start)."""
    if not plan["adaptive_mode"]:
        return False
    reference = now or datetime.now(tz=UTC)
    stats = plan["adaptive_stats"]
    last = stats["last_recalculation"] if stats else plan["start_date"]
    return reference - last >= timedelta(days=RECALCULATION_INTERVAL_DAYS)


def select_adjustment_multiplier(deviation_percent: float) -> float:
    """Map deviation from the weekly target to a reduction-rate multiplier.

    Well over target eases the reduction off, well under target speeds it up.
    Within 10% either way, and up to 20% over, the rate is left alone.
    """
    if deviation_percent > 20:
        return 1 - ADJUSTMENT_FACTOR * 0.5
    if deviation_percent > 10:
        return 1.0
    if deviation_percent < -20:
        return 1 + ADJUSTMENT_FACTOR * 1.0
    if deviation_percent < -10:
        return 1 + ADJUSTMENT_FACTOR * 0.5
    return 1.0


def _clamp_rate(rate: float) -> float:
    return min(MAX_REDUCTION_RATE, max(MIN_REDUCTION_RATE, rate))


def recalculate_adaptive_plan(
    logs: Sequence[LogEntry],
    plan: Plan,
    config: QuitConfig | None = None,
    now: datetime | None = None,
) -> Plan:
    """Return a fresh plan seeded from the last week's observed consumption.

    The input plan is returned unchanged when adaptive mode is off, when the
    trend covers fewer than three days, or when no current week resolves.
    Otherwise the old schedule is discarded: the new one starts now and tapers
    under the old plan's speed, frequency and method. The old plan's frozen
    baseline carries over, and ``reduction_rate`` records the adjusted rate
    for the next recalculation to build on.
    """
    if not plan["adaptive_mode"]:
        return plan

    reference = now or datetime.now(tz=UTC)
    trends = analyze_trend(logs, ANALYSIS_WINDOW_DAYS, now=reference)
    current_week = get_current_week(plan, now=reference)

    if current_week is None or trends["confidence"] == Confidence.LOW:
        logger.debug("Skipping adaptive recalculation: not enough data yet")
        return plan

    target = current_week["total_allowed"]
    actual = trends["average_per_week"]
    deviation_percent = (actual - target) / target * 100 if target > 0 else 0.0
    multiplier = select_adjustment_multiplier(deviation_percent)
    adjusted_rate = _clamp_rate(plan["reduction_rate"] * multiplier)

    if trends["cigarettes_per_week"] + trends["vapes_per_week"] <= 0:
        return plan

    base = config or QuitConfig(start_date=reference)
    new_config = dataclasses.replace(
        base,
        cigarettes_per_week=trends["cigarettes_per_week"],
        vapes_per_week=trends["vapes_per_week"],
        plan_speed=plan["plan_speed"],
        reduction_frequency=plan["reduction_frequency"],
        reduction_method=plan["reduction_method"],
        adaptive_mode=True,
        start_date=reference,
        reduction_rate=None,
    )
    new_plan = generate_quit_plan(new_config)

    problems = validate_plan(new_plan)
    if problems:
        msg = f"Regenerated plan breaks schedule invariants: {problems}"
        raise RuntimeError(msg)

    new_plan["adaptive_mode"] = True
    new_plan["original_cigarettes_per_week"] = plan["original_cigarettes_per_week"]
    new_plan["original_vapes_per_week"] = plan["original_vapes_per_week"]
    new_plan["reduction_rate"] = adjusted_rate
    new_plan["adaptive_stats"] = make_adaptive_stats(
        last_recalculation=reference,
        deviation_percent=int(round_half_up(deviation_percent)),
        adjustment_multiplier=multiplier,
        trend=trends["trend"],
    )
    logger.info(
        "Adaptive plan regenerated: actual %.1f/week vs target %d (%+.0f%%), rate %.3f -> %.3f",
        actual,
        target,
        deviation_percent,
        plan["reduction_rate"],
        adjusted_rate,
    )
    return new_plan


def maybe_recalculate(
    logs: Sequence[LogEntry],
    plan: Plan,
    config: QuitConfig | None = None,
    now: datetime | None = None,
) -> Plan:
    """Recalculate only when due. Returns the same object when nothing changed."""
    reference = now or datetime.now(tz=UTC)
    if not should_recalculate(plan, now=reference):
        return plan
    return recalculate_adaptive_plan(logs, plan, config, now=reference)


def enforce_minimum_wait(remaining_ms: float) -> MinimumWaitDecision:
    """Pin short remaining waits to the minimum so the limit never feels like none."""
    if remaining_ms <= 0:
        return make_minimum_wait_decision(should_wait=False, wait_time_ms=0)

    if remaining_ms < MIN_WAIT_THRESHOLD_MS:
        minutes = math.ceil(MIN_WAIT_THRESHOLD_MS / 60000)
        return make_minimum_wait_decision(
            should_wait=True,
            wait_time_ms=MIN_WAIT_THRESHOLD_MS,
            is_minimum_enforced=True,
            message=f"Almost there! Wait {minutes} minutes to build better habits.",
        )

    return make_minimum_wait_decision(should_wait=True, wait_time_ms=remaining_ms)


def calculate_delay_reward(
    logs: Sequence[LogEntry],
    plan: Plan,
    now: datetime | None = None,
) -> DelayReward:
    """Grant a fixed wait bonus when the last three days ran below 90% of target.

    Needs at least five logs in total, and no log in the last ten minutes.
    """
    if not plan["adaptive_mode"] or len(logs) < REWARD_MIN_LOGS:
        return make_delay_reward()

    reference = now or datetime.now(tz=UTC)
    trends = analyze_trend(logs, REWARD_WINDOW_DAYS, now=reference)
    current_week = get_current_week(plan, now=reference)
    if current_week is None or trends["average_per_week"] == 0:
        return make_delay_reward()

    quiet_since = reference - REWARD_QUIET_PERIOD
    if any(log["timestamp"] > quiet_since for log in logs):
        return make_delay_reward()

    if trends["average_per_week"] < current_week["total_allowed"] * REWARD_TARGET_RATIO:
        return make_delay_reward(
            has_reward=True,
            bonus_time_ms=REWARD_BONUS_MS,
            message="Great job! You earned a 2-minute bonus for staying below your limit!",
        )
    return make_delay_reward()
