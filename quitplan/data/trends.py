"""Consumption trend analysis over a trailing window of logs."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta

from quitplan.data.schedule import round_half_up
from quitplan.data.schemas import Confidence, LogEntry, SubstanceType, Trend, TrendReport

logger = logging.getLogger(__name__)

DAY = timedelta(days=1)
# Halves must differ by more than 10% to count as a trend
_DECREASE_RATIO = 0.9
_INCREASE_RATIO = 1.1
_HIGH_CONFIDENCE_DAYS = 3


def _days(delta: timedelta) -> float:
    return delta / DAY


def _empty_report() -> TrendReport:
    return TrendReport(
        average_per_day=0.0,
        average_per_week=0.0,
        cigarettes_per_week=0.0,
        vapes_per_week=0.0,
        trend=Trend.STABLE,
        confidence=Confidence.LOW,
    )


def classify_trend(first_half_rate: float, second_half_rate: float) -> Trend:
    """Compare the later half of the window against the earlier half."""
    if second_half_rate < first_half_rate * _DECREASE_RATIO:
        return Trend.DECREASING
    if second_half_rate > first_half_rate * _INCREASE_RATIO:
        return Trend.INCREASING
    return Trend.STABLE


def analyze_trend(
    logs: Sequence[LogEntry],
    window_days: float = 7,
    now: datetime | None = None,
) -> TrendReport:
    """Estimate weekly consumption and its direction from the last ``window_days``.

    The rate divides by the span actually covered (oldest log in the window
    to now, at least one day) so a new user is not averaged over empty days.
    Confidence is high only once that span reaches three days.
    """
    reference = now or datetime.now(tz=UTC)
    cutoff = reference - timedelta(days=window_days)
    recent = [log for log in logs if log["timestamp"] >= cutoff]

    if not recent:
        logger.debug("No logs in the last %s days", window_days)
        return _empty_report()

    oldest = min(log["timestamp"] for log in recent)
    day_span = max(1.0, _days(reference - oldest))

    cigarettes = sum(1 for log in recent if log["type"] == SubstanceType.CIGARETTE)
    vapes = sum(1 for log in recent if log["type"] == SubstanceType.VAPE)

    average_per_day = len(recent) / day_span

    midpoint = oldest + (reference - oldest) / 2
    first_half = sum(1 for log in recent if log["timestamp"] < midpoint)
    second_half = len(recent) - first_half
    first_half_rate = first_half / max(1.0, _days(midpoint - oldest))
    second_half_rate = second_half / max(1.0, _days(reference - midpoint))

    return TrendReport(
        average_per_day=round_half_up(average_per_day, 1),
        average_per_week=round_half_up(average_per_day * 7, 1),
        cigarettes_per_week=round_half_up(cigarettes / day_span * 7, 1),
        vapes_per_week=round_half_up(vapes / day_span * 7, 1),
        trend=classify_trend(first_half_rate, second_half_rate),
        confidence=Confidence.HIGH if day_span >= _HIGH_CONFIDENCE_DAYS else Confidence.LOW,
    )
