"""Decide whether a cigarette or vape may be logged now, and how long until it may."""

from __future__ import annotations

import math
from collections.abc import Sequence
from datetime import UTC, datetime

from quitplan.data.adaptive import calculate_delay_reward, enforce_minimum_wait
from quitplan.data.schedule import WEEK, get_current_week
from quitplan.data.schemas import (
    AvailabilityStatus,
    LogEntry,
    Plan,
    SubstanceType,
    WeekAllowance,
)

MS_PER_MINUTE = 60 * 1000


def _wait_minutes(substance: SubstanceType | str, week: WeekAllowance) -> int:
    if SubstanceType(substance) == SubstanceType.CIGARETTE:
        return week["wait_time_cigs"]
    return week["wait_time_vapes"]


def _required_wait_ms(
    wait_minutes: int,
    plan: Plan | None,
    logs: Sequence[LogEntry],
    now: datetime,
) -> float:
    """Nominal wait for the week, minus any adaptive delay reward."""
    required = wait_minutes * MS_PER_MINUTE
    if plan is not None and plan["adaptive_mode"] and logs:
        reward = calculate_delay_reward(logs, plan, now=now)
        if reward["has_reward"]:
            required = max(0, required - reward["bonus_time_ms"])
    return required


def _elapsed_ms(last_log: LogEntry, now: datetime) -> float:
    return (now - last_log["timestamp"]).total_seconds() * 1000


def can_consume_now(
    substance: SubstanceType | str,
    last_log: LogEntry | None,
    current_week: WeekAllowance | None,
    plan: Plan | None = None,
    logs: Sequence[LogEntry] = (),
    now: datetime | None = None,
) -> bool:
    """Return True if another event of ``substance`` is allowed at ``now``."""
    if current_week is None:
        return False
    wait_minutes = _wait_minutes(substance, current_week)
    if wait_minutes == 0:
        return False  # none left this week
    if last_log is None:
        return True

    reference = now or datetime.now(tz=UTC)
    elapsed = _elapsed_ms(last_log, reference)
    required = _required_wait_ms(wait_minutes, plan, logs, reference)
    remaining = required - elapsed

    if plan is not None and plan["adaptive_mode"] and 0 < remaining < required:
        if enforce_minimum_wait(remaining)["is_minimum_enforced"]:
            return False

    return elapsed >= required


def time_until_next(
    substance: SubstanceType | str,
    last_log: LogEntry | None,
    current_week: WeekAllowance | None,
    plan: Plan | None = None,
    logs: Sequence[LogEntry] = (),
    now: datetime | None = None,
) -> float:
    """Milliseconds until ``substance`` is allowed again; math.inf if not this week."""
    if current_week is None:
        return math.inf
    wait_minutes = _wait_minutes(substance, current_week)
    if wait_minutes == 0:
        return math.inf
    if last_log is None:
        return 0.0

    reference = now or datetime.now(tz=UTC)
    required = _required_wait_ms(wait_minutes, plan, logs, reference)
    remaining = max(0.0, required - _elapsed_ms(last_log, reference))

    if plan is not None and plan["adaptive_mode"] and remaining > 0:
        decision = enforce_minimum_wait(remaining)
        if decision["is_minimum_enforced"]:
            return float(decision["wait_time_ms"])

    return remaining


def last_log_of_type(logs: Sequence[LogEntry], substance: SubstanceType | str) -> LogEntry | None:
    """Latest event of ``substance`` by timestamp; logs arrive in insertion order."""
    kind = SubstanceType(substance)
    matching = [log for log in logs if log["type"] == kind]
    if not matching:
        return None
    return max(matching, key=lambda log: log["timestamp"])


def availability_status(
    substance: SubstanceType | str,
    logs: Sequence[LogEntry],
    plan: Plan,
    now: datetime | None = None,
) -> AvailabilityStatus:
    """Resolve the current week and evaluate one substance against it."""
    reference = now or datetime.now(tz=UTC)
    kind = SubstanceType(substance)
    week = get_current_week(plan, now=reference)
    last_log = last_log_of_type(logs, kind)

    if week is None:
        return AvailabilityStatus(
            substance=kind,
            available=False,
            wait_ms=math.inf,
            week_number=0,
            allowed_this_week=0,
            logged_this_week=0,
        )

    # count within the calendar week now falls in, which outlives the schedule
    weeks_passed = max(0, math.floor((reference - plan["start_date"]) / WEEK))
    window_start = plan["start_date"] + weeks_passed * WEEK
    window_end = window_start + WEEK
    logged = sum(1 for log in logs if log["type"] == kind and window_start <= log["timestamp"] < window_end)
    allowed = week["cigarettes_allowed"] if kind == SubstanceType.CIGARETTE else week["vapes_allowed"]

    return AvailabilityStatus(
        substance=kind,
        available=can_consume_now(kind, last_log, week, plan, logs, now=reference),
        wait_ms=time_until_next(kind, last_log, week, plan, logs, now=reference),
        week_number=week["week_number"],
        allowed_this_week=allowed,
        logged_this_week=logged,
    )
