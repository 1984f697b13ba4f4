"""Progress statistics measured against the plan's frozen baseline."""

from __future__ import annotations

import math
from collections.abc import Sequence
from datetime import UTC, datetime

from quitplan.data.schedule import WEEK, round_half_up
from quitplan.data.schemas import LogEntry, Plan, ProgressStats, SubstanceType, WeekAdherence
from quitplan.data.trends import DAY

CIGARETTES_PER_PACK = 20
DEFAULT_CIGARETTE_PRICE = 0.4  # per cigarette
DEFAULT_VAPE_PRICE = 15.0  # per vape / pod


def _count(logs: Sequence[LogEntry], substance: SubstanceType) -> int:
    return sum(1 for log in logs if log["type"] == substance)


def calculate_progress(
    logs: Sequence[LogEntry],
    plan: Plan,
    now: datetime | None = None,
    cigarette_pack_price: float | None = None,
    vape_price: float | None = None,
) -> ProgressStats:
    """Summarise consumption since the plan started.

    Reduction percentage compares the average weekly rate since the start
    (divided over at least one week) against the original baseline, and only
    shows once a full day has passed. Money saved prices the units not
    consumed relative to that baseline.
    """
    reference = now or datetime.now(tz=UTC)
    days_since_start = max(0, math.floor((reference - plan["start_date"]) / DAY))
    weeks_since_start = days_since_start / 7

    cigarettes = _count(logs, SubstanceType.CIGARETTE)
    vapes = _count(logs, SubstanceType.VAPE)
    total = len(logs)

    original_cigs = plan["original_cigarettes_per_week"]
    original_vapes = plan["original_vapes_per_week"]
    original_total = original_cigs + original_vapes

    reduction = 0.0
    if days_since_start >= 1 and original_total > 0:
        current_rate = (cigarettes + vapes) / max(1.0, weeks_since_start)
        reduction = min(100.0, max(0.0, (original_total - current_rate) / original_total * 100))

    money_saved = 0.0
    if days_since_start >= 1 and total > 0:
        cigs_saved = max(0.0, original_cigs * weeks_since_start - cigarettes)
        vapes_saved = max(0.0, original_vapes * weeks_since_start - vapes)
        cig_price = (
            cigarette_pack_price / CIGARETTES_PER_PACK if cigarette_pack_price else DEFAULT_CIGARETTE_PRICE
        )
        money_saved = cigs_saved * cig_price + vapes_saved * (vape_price or DEFAULT_VAPE_PRICE)

    return ProgressStats(
        days_active=max(1, days_since_start) if total > 0 else 0,
        total_logged=total,
        cigarettes_logged=cigarettes,
        vapes_logged=vapes,
        reduction_percentage=int(round_half_up(reduction)),
        money_saved=max(0.0, round_half_up(money_saved, 2)),
        weeks_since_start=math.floor(weeks_since_start),
    )


def weekly_adherence(
    logs: Sequence[LogEntry],
    plan: Plan,
    now: datetime | None = None,
    max_weeks: int = 12,
) -> list[WeekAdherence]:
    """Target vs actual counts for each elapsed plan week, oldest first."""
    reference = now or datetime.now(tz=UTC)
    start = plan["start_date"]
    weeks_since_start = max(0, math.floor((reference - start) / WEEK))
    count = min(max_weeks, weeks_since_start + 1)
    schedule = plan["weeks"]

    result: list[WeekAdherence] = []
    for index in range(count):
        week_start = start + index * WEEK
        week_end = week_start + WEEK
        in_week = [log for log in logs if week_start <= log["timestamp"] < week_end]
        target = schedule[index]["total_allowed"] if index < len(schedule) else 0
        cigarettes = _count(in_week, SubstanceType.CIGARETTE)
        vapes = _count(in_week, SubstanceType.VAPE)
        result.append(
            WeekAdherence(
                week_number=index,
                week_start=week_start,
                target=target,
                actual=cigarettes + vapes,
                cigarettes=cigarettes,
                vapes=vapes,
            )
        )
    return result
