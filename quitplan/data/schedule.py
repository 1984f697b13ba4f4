"""Weekly reduction schedule generation for cigarettes and vapes."""

from __future__ import annotations

import logging
import math
from datetime import UTC, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import NamedTuple

from quitplan.data.schemas import (
    Plan,
    PlanPreconditionError,
    QuitConfig,
    ReductionFrequency,
    ReductionMethod,
    WeekAllowance,
    make_week_allowance,
)

logger = logging.getLogger(__name__)

# 16 waking hours/day * 60 min * 7 days
WAKING_MINUTES_PER_WEEK = 6720
MAX_PLAN_WEEKS = 100
WEEK = timedelta(days=7)

# Below this the running total rounds to nothing worth scheduling
_MIN_RUNNING_TOTAL = 0.5


class WeekTotals(NamedTuple):
    """Integer allowances for one week, plus the running total to continue from."""

    total: int
    cigarettes: int
    vapes: int
    resync: float | None  # set when the plateau guard forced a step down


def round_half_up(value: float, places: int = 0) -> float:
    """Round halves away from zero on the exact binary value of ``value``.

    Python's round() is banker's rounding; plan totals must round 256.5 to 257.
    """
    quantum = Decimal(1).scaleb(-places)
    rounded = Decimal(value).quantize(quantum, rounding=ROUND_HALF_UP)
    return int(rounded) if places == 0 else float(rounded)


def calculate_wait_time(weekly_amount: int) -> int:
    """Minutes between events if ``weekly_amount`` are spread evenly over waking time."""
    if weekly_amount <= 0:
        return 0
    return WAKING_MINUTES_PER_WEEK // weekly_amount


def round_week_totals(
    current_total: float,
    cig_percentage: float,
    previous_total: int | None,
) -> WeekTotals:
    """Turn the running float total into integer allowances for one week.

    The plateau guard forces a one-unit drop when rounding would repeat the
    previous week's total. Vapes take the remainder so both parts always sum
    to the total.
    """
    total = int(round_half_up(current_total))
    resync: float | None = None
    if previous_total is not None and total == previous_total and total > 0:
        total = previous_total - 1
        resync = float(total)

    if total <= 0:
        return WeekTotals(total=0, cigarettes=0, vapes=0, resync=resync)

    cigarettes = int(round_half_up(total * cig_percentage))
    return WeekTotals(total=total, cigarettes=cigarettes, vapes=total - cigarettes, resync=resync)


def advance_total(
    current_total: float,
    original_total: float,
    rate: float,
    frequency: ReductionFrequency,
    method: ReductionMethod,
) -> float:
    """Apply one week of reduction to the running total."""
    if frequency == ReductionFrequency.DAILY:
        if method == ReductionMethod.LINEAR:
            daily_reduction = original_total * (rate / 7)
            return current_total - daily_reduction * 7
        daily_rate = rate / 7
        for _ in range(7):
            current_total *= 1 - daily_rate
        return current_total
    # weekly reduction is always compound
    return current_total * (1 - rate)


def generate_quit_plan(config: QuitConfig) -> Plan:
    """Build the week-by-week schedule from a starting configuration down to zero.

    The result always ends with exactly one zero week. At most MAX_PLAN_WEEKS
    non-zero weeks are emitted, however slow the reduction.
    """
    total_per_week = config.total_per_week
    if total_per_week <= 0:
        msg = "Cannot generate a plan from zero weekly consumption"
        raise PlanPreconditionError(msg)

    cig_percentage = config.cigarettes_per_week / total_per_week
    rate = config.effective_rate
    start = config.start_date

    weeks: list[WeekAllowance] = []
    current_total = float(total_per_week)
    previous_total: int | None = None
    week_number = 0

    while current_total > _MIN_RUNNING_TOTAL and week_number < MAX_PLAN_WEEKS:
        totals = round_week_totals(current_total, cig_percentage, previous_total)
        if totals.resync is not None:
            current_total = totals.resync
        if totals.total <= 0:
            break
        previous_total = totals.total

        weeks.append(
            make_week_allowance(
                week_number=week_number,
                week_start=start + week_number * WEEK,
                cigarettes_allowed=totals.cigarettes,
                vapes_allowed=totals.vapes,
                wait_time_cigs=calculate_wait_time(totals.cigarettes),
                wait_time_vapes=calculate_wait_time(totals.vapes),
            )
        )

        current_total = advance_total(
            current_total,
            total_per_week,
            rate,
            config.reduction_frequency,
            config.reduction_method,
        )
        week_number += 1

    if not weeks or weeks[-1]["total_allowed"] > 0:
        weeks.append(make_week_allowance(week_number=week_number, week_start=start + week_number * WEEK))

    plan = Plan(
        start_date=start,
        plan_speed=config.plan_speed,
        reduction_frequency=config.reduction_frequency,
        reduction_method=config.reduction_method,
        adaptive_mode=config.adaptive_mode,
        original_cigarettes_per_week=config.cigarettes_per_week,
        original_vapes_per_week=config.vapes_per_week,
        cig_percentage=cig_percentage,
        vape_percentage=1 - cig_percentage,
        reduction_rate=rate,
        weeks=weeks,
        estimated_quit_date=weeks[-1]["week_start"],
        total_weeks=len(weeks),
        adaptive_stats=None,
    )
    logger.info(
        "Generated %d-week plan from %.1f/week (%s, %s %s, rate %.3f)",
        plan["total_weeks"],
        total_per_week,
        config.plan_speed,
        config.reduction_frequency,
        config.reduction_method,
        rate,
    )
    return plan


def get_current_week(plan: Plan, now: datetime | None = None) -> WeekAllowance | None:
    """Return the week ``now`` falls in, clamped to the plan's first and last weeks.

    Once the schedule runs out the terminal zero week applies until the plan
    is replaced.
    """
    weeks = plan["weeks"]
    if not weeks:
        return None
    reference = now or datetime.now(tz=UTC)
    weeks_passed = math.floor((reference - plan["start_date"]) / WEEK)
    if weeks_passed <= 0:
        return weeks[0]
    for week in weeks:
        if week["week_number"] == weeks_passed:
            return week
    return weeks[-1]


def validate_plan(plan: Plan) -> list[str]:
    """Return a description of every schedule invariant the plan breaks."""
    problems: list[str] = []
    weeks = plan["weeks"]
    if not weeks:
        return ["plan has no weeks"]

    for index, week in enumerate(weeks):
        if week["week_number"] != index:
            problems.append(f"week {index}: week_number is {week['week_number']}")
        if week["cigarettes_allowed"] + week["vapes_allowed"] != week["total_allowed"]:
            problems.append(f"week {index}: cigarettes + vapes != total_allowed")
        if week["cigarettes_allowed"] < 0 or week["vapes_allowed"] < 0:
            problems.append(f"week {index}: negative allowance")

    zero_weeks = [w["week_number"] for w in weeks if w["total_allowed"] == 0]
    if len(zero_weeks) != 1 or weeks[-1]["total_allowed"] != 0:
        problems.append(f"expected exactly one terminal zero week, found {zero_weeks}")

    for prev, nxt in zip(weeks, weeks[1:], strict=False):
        if nxt["total_allowed"] > prev["total_allowed"]:
            problems.append(f"week {nxt['week_number']}: total increases")
        elif prev["total_allowed"] > 0 and nxt["total_allowed"] == prev["total_allowed"]:
            problems.append(f"week {nxt['week_number']}: total plateaus at {prev['total_allowed']}")

    return problems
