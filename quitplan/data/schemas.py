"""Quit-plan data model: policy enums, configuration, and plain-data records."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TypedDict, TypeVar

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=StrEnum)


class PlanPreconditionError(ValueError):
    """Raised when the engine is handed input it cannot build a plan from."""


class SubstanceType(StrEnum):
    """Substance a consumption event refers to."""

    CIGARETTE = "cigarette"
    VAPE = "vape"


class PlanSpeed(StrEnum):
    """How aggressively the weekly allowance shrinks."""

    SLOW = "slow"
    MEDIUM = "medium"
    QUICK = "quick"


class ReductionFrequency(StrEnum):
    """How often the reduction is applied within a week."""

    WEEKLY = "weekly"
    DAILY = "daily"


class ReductionMethod(StrEnum):
    """Decay shape for daily reductions."""

    COMPOUND = "compound"  # multiply by (1 - rate/7) each day
    LINEAR = "linear"  # subtract a fixed share of the original total


class Trend(StrEnum):
    """Direction of consumption across the analysis window."""

    DECREASING = "decreasing"
    STABLE = "stable"
    INCREASING = "increasing"


class Confidence(StrEnum):
    """Whether a trend report covers enough days to act on."""

    LOW = "low"
    HIGH = "high"


REDUCTION_RATES: dict[PlanSpeed, float] = {
    PlanSpeed.SLOW: 0.05,  # 5% per week
    PlanSpeed.MEDIUM: 0.10,
    PlanSpeed.QUICK: 0.15,
}


def _coerce_speed(value: PlanSpeed | str) -> PlanSpeed:
    """Unknown speeds fall back to medium rather than failing."""
    try:
        return PlanSpeed(value)
    except ValueError:
        logger.warning("Unknown plan speed %r, falling back to %s", value, PlanSpeed.MEDIUM)
        return PlanSpeed.MEDIUM


def _coerce_enum(enum_cls: type[E], value: E | str, field_name: str) -> E:
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        msg = f"Invalid {field_name} {value!r}; expected one of: {allowed}"
        raise PlanPreconditionError(msg) from None


def _check_count(value: float, field_name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int | float):
        msg = f"{field_name} must be a number, got {type(value).__name__}"
        raise PlanPreconditionError(msg)
    if not math.isfinite(value) or value < 0:
        msg = f"{field_name} must be a finite non-negative number, got {value}"
        raise PlanPreconditionError(msg)


@dataclass(frozen=True)
class QuitConfig:
    """Starting consumption plus the reduction policy for one person.

    String values for the policy fields are accepted and coerced to their
    enums. An unrecognised ``plan_speed`` quietly becomes ``medium``; an
    unrecognised frequency or method is rejected.

    ``reduction_rate`` overrides the rate implied by ``plan_speed``.
    """

    cigarettes_per_week: float = 0
    vapes_per_week: float = 0
    plan_speed: PlanSpeed = PlanSpeed.MEDIUM
    reduction_frequency: ReductionFrequency = ReductionFrequency.WEEKLY
    reduction_method: ReductionMethod = ReductionMethod.COMPOUND
    adaptive_mode: bool = False
    start_date: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    reduction_rate: float | None = None

    def __post_init__(self) -> None:
        _check_count(self.cigarettes_per_week, "cigarettes_per_week")
        _check_count(self.vapes_per_week, "vapes_per_week")
        if self.start_date.tzinfo is None:
            msg = "start_date must be timezone-aware"
            raise PlanPreconditionError(msg)
        if self.reduction_rate is not None and not 0 < self.reduction_rate < 1:
            msg = f"reduction_rate must be between 0 and 1 (exclusive), got {self.reduction_rate}"
            raise PlanPreconditionError(msg)

        # frozen: assign coerced enums through object.__setattr__
        object.__setattr__(self, "plan_speed", _coerce_speed(self.plan_speed))
        object.__setattr__(
            self,
            "reduction_frequency",
            _coerce_enum(ReductionFrequency, self.reduction_frequency, "reduction_frequency"),
        )
        object.__setattr__(
            self,
            "reduction_method",
            _coerce_enum(ReductionMethod, self.reduction_method, "reduction_method"),
        )

    @property
    def total_per_week(self) -> float:
        return self.cigarettes_per_week + self.vapes_per_week

    @property
    def effective_rate(self) -> float:
        """Rate the generator applies: the override if set, else the speed's rate."""
        if self.reduction_rate is not None:
            return self.reduction_rate
        return REDUCTION_RATES[self.plan_speed]


class LogEntry(TypedDict):
    """A single consumption event."""

    type: str  # SubstanceType value
    timestamp: datetime


class WeekAllowance(TypedDict):
    """One week of the schedule. cigarettes_allowed + vapes_allowed == total_allowed."""

    week_number: int  # 0-based, gapless
    week_start: datetime
    total_allowed: int
    cigarettes_allowed: int
    vapes_allowed: int
    wait_time_cigs: int  # minutes, 0 = none allowed this week
    wait_time_vapes: int  # minutes, 0 = none allowed this week


class AdaptiveStats(TypedDict):
    """Bookkeeping attached by the adaptive controller on each regeneration."""

    last_recalculation: datetime
    deviation_percent: int
    adjustment_multiplier: float
    trend: str  # Trend value


class Plan(TypedDict):
    """A generated reduction schedule plus the policy it was built from."""

    start_date: datetime
    plan_speed: str  # PlanSpeed value
    reduction_frequency: str  # ReductionFrequency value
    reduction_method: str  # ReductionMethod value
    adaptive_mode: bool
    original_cigarettes_per_week: float  # frozen baseline
    original_vapes_per_week: float  # frozen baseline
    cig_percentage: float
    vape_percentage: float
    reduction_rate: float
    weeks: list[WeekAllowance]
    estimated_quit_date: datetime
    total_weeks: int
    adaptive_stats: AdaptiveStats | None


class TrendReport(TypedDict):
    """Consumption rates over a trailing window, rounded to one decimal."""

    average_per_day: float
    average_per_week: float
    cigarettes_per_week: float
    vapes_per_week: float
    trend: str  # Trend value
    confidence: str  # Confidence value


class MinimumWaitDecision(TypedDict):
    """Outcome of applying the minimum-wait floor to a remaining wait."""

    should_wait: bool
    wait_time_ms: float
    is_minimum_enforced: bool
    message: str | None


class DelayReward(TypedDict):
    """Bonus time shaved off the required wait for staying under target."""

    has_reward: bool
    bonus_time_ms: int
    message: str | None


class AvailabilityStatus(TypedDict):
    """Snapshot of whether a substance may be logged right now."""

    substance: str  # SubstanceType value
    available: bool
    wait_ms: float  # math.inf when nothing is allowed this week
    week_number: int
    allowed_this_week: int
    logged_this_week: int


class ProgressStats(TypedDict):
    """All-time progress measured against the frozen baseline."""

    days_active: int
    total_logged: int
    cigarettes_logged: int
    vapes_logged: int
    reduction_percentage: int
    money_saved: float
    weeks_since_start: int


class WeekAdherence(TypedDict):
    """Target vs actual counts for one elapsed plan week."""

    week_number: int
    week_start: datetime
    target: int
    actual: int
    cigarettes: int
    vapes: int


def make_log_entry(
    substance: SubstanceType | str,
    timestamp: datetime | None = None,
) -> LogEntry:
    """Create a log entry with auto-timestamp."""
    return LogEntry(
        type=SubstanceType(substance),
        timestamp=timestamp or datetime.now(tz=UTC),
    )


def make_week_allowance(
    week_number: int,
    week_start: datetime,
    cigarettes_allowed: int = 0,
    vapes_allowed: int = 0,
    wait_time_cigs: int = 0,
    wait_time_vapes: int = 0,
) -> WeekAllowance:
    """Create a week allowance; the total is always the sum of both substances."""
    return WeekAllowance(
        week_number=week_number,
        week_start=week_start,
        total_allowed=cigarettes_allowed + vapes_allowed,
        cigarettes_allowed=cigarettes_allowed,
        vapes_allowed=vapes_allowed,
        wait_time_cigs=wait_time_cigs,
        wait_time_vapes=wait_time_vapes,
    )


def make_adaptive_stats(
    last_recalculation: datetime,
    deviation_percent: int,
    adjustment_multiplier: float,
    trend: Trend | str,
) -> AdaptiveStats:
    """Create the adaptive bookkeeping block for a regenerated plan."""
    return AdaptiveStats(
        last_recalculation=last_recalculation,
        deviation_percent=deviation_percent,
        adjustment_multiplier=adjustment_multiplier,
        trend=Trend(trend),
    )


def make_minimum_wait_decision(
    should_wait: bool,
    wait_time_ms: float,
    is_minimum_enforced: bool = False,
    message: str | None = None,
) -> MinimumWaitDecision:
    return MinimumWaitDecision(
        should_wait=should_wait,
        wait_time_ms=wait_time_ms,
        is_minimum_enforced=is_minimum_enforced,
        message=message,
    )


def make_delay_reward(
    has_reward: bool = False,
    bonus_time_ms: int = 0,
    message: str | None = None,
) -> DelayReward:
    return DelayReward(has_reward=has_reward, bonus_time_ms=bonus_time_ms, message=message)
