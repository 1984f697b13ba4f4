"""FastAPI entrypoint exposing the quit-plan engine over JSON.

The host owns storage: every request carries the logs and the active plan,
and every response is plain data the host stores or renders.
"""

from __future__ import annotations

import logging
import math
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import AwareDatetime, BaseModel, Field

from quitplan.core.config import settings
from quitplan.data.adaptive import maybe_recalculate
from quitplan.data.availability import availability_status
from quitplan.data.progress import calculate_progress, weekly_adherence
from quitplan.data.schedule import generate_quit_plan
from quitplan.data.schemas import (
    Confidence,
    LogEntry,
    Plan,
    PlanPreconditionError,
    QuitConfig,
    ReductionFrequency,
    ReductionMethod,
    SubstanceType,
    Trend,
)
from quitplan.data.trends import analyze_trend

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Configure logging for the engine modules."""
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("Quit-plan API started")
    yield


app = FastAPI(title="quitplan", version="0.1.0", lifespan=lifespan)

_bearer_scheme = HTTPBearer(auto_error=False)


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------


class ConfigBody(BaseModel):
    """Starting consumption and reduction policy."""

    cigarettes_per_week: float = Field(default=0, ge=0)
    vapes_per_week: float = Field(default=0, ge=0)
    plan_speed: str = "medium"  # unknown speeds fall back to medium
    reduction_frequency: ReductionFrequency = ReductionFrequency.WEEKLY
    reduction_method: ReductionMethod = ReductionMethod.COMPOUND
    adaptive_mode: bool = False
    start_date: AwareDatetime | None = None

    def to_config(self) -> QuitConfig:
        data = self.model_dump(exclude_none=True)
        return QuitConfig(**data)


class LogBody(BaseModel):
    """A single consumption event."""

    type: SubstanceType
    timestamp: AwareDatetime


class WeekAllowanceBody(BaseModel):
    week_number: int
    week_start: AwareDatetime
    total_allowed: int
    cigarettes_allowed: int
    vapes_allowed: int
    wait_time_cigs: int
    wait_time_vapes: int


class AdaptiveStatsBody(BaseModel):
    last_recalculation: AwareDatetime
    deviation_percent: int
    adjustment_multiplier: float
    trend: Trend


class PlanBody(BaseModel):
    """A generated plan as stored by the host."""

    start_date: AwareDatetime
    plan_speed: str
    reduction_frequency: ReductionFrequency
    reduction_method: ReductionMethod
    adaptive_mode: bool
    original_cigarettes_per_week: float
    original_vapes_per_week: float
    cig_percentage: float
    vape_percentage: float
    reduction_rate: float
    weeks: list[WeekAllowanceBody]
    estimated_quit_date: AwareDatetime
    total_weeks: int
    adaptive_stats: AdaptiveStatsBody | None = None

    def to_plan(self) -> Plan:
        data: Any = self.model_dump()
        return data


class PlanWithLogsBody(BaseModel):
    plan: PlanBody
    logs: list[LogBody] = Field(default_factory=list)
    now: AwareDatetime | None = None

    def entries(self) -> list[LogEntry]:
        return [LogEntry(type=log.type, timestamp=log.timestamp) for log in self.logs]


class RecalculateBody(PlanWithLogsBody):
    config: ConfigBody | None = None


class ProgressBody(PlanWithLogsBody):
    cigarette_pack_price: float | None = Field(default=None, gt=0)
    vape_price: float | None = Field(default=None, gt=0)


class TrendBody(BaseModel):
    logs: list[LogBody] = Field(default_factory=list)
    window_days: float = Field(default_factory=lambda: settings.default_window_days, gt=0)
    now: AwareDatetime | None = None


class TrendResponse(BaseModel):
    average_per_day: float
    average_per_week: float
    cigarettes_per_week: float
    vapes_per_week: float
    trend: Trend
    confidence: Confidence


class AvailabilityResponse(BaseModel):
    """wait_ms is null when nothing more is allowed this week."""

    substance: SubstanceType
    available: bool
    wait_ms: float | None
    week_number: int
    allowed_this_week: int
    logged_this_week: int


class HealthResponse(BaseModel):
    """Response for the /health endpoint."""

    status: str


# ---------------------------------------------------------------------------
# Auth and errors
# ---------------------------------------------------------------------------


async def _verify_api_key(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),  # noqa: B008
) -> None:
    """Require the Bearer token only when an api_key is configured."""
    if not settings.api_key:
        return
    if credentials is None or credentials.credentials != settings.api_key:
        raise HTTPException(status_code=401, detail="Invalid or missing API key")


@app.exception_handler(PlanPreconditionError)
async def _precondition_handler(request: Request, exc: PlanPreconditionError) -> JSONResponse:
    logger.warning("Rejected %s: %s", request.url.path, exc)
    return JSONResponse(status_code=422, content={"detail": str(exc)})


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(status="ok")


@app.post("/plan", response_model=PlanBody, dependencies=[Depends(_verify_api_key)])
async def create_plan(body: ConfigBody) -> Plan:
    """Generate a fresh plan from onboarding data."""
    return generate_quit_plan(body.to_config())


@app.post(
    "/availability",
    response_model=list[AvailabilityResponse],
    dependencies=[Depends(_verify_api_key)],
)
async def availability(body: PlanWithLogsBody) -> list[dict[str, Any]]:
    """Evaluate both substances against the plan's current week."""
    plan = body.plan.to_plan()
    logs = body.entries()
    statuses: list[dict[str, Any]] = []
    for substance in SubstanceType:
        status: dict[str, Any] = dict(availability_status(substance, logs, plan, now=body.now))
        if math.isinf(status["wait_ms"]):
            status["wait_ms"] = None
        statuses.append(status)
    return statuses


@app.post("/trend", response_model=TrendResponse, dependencies=[Depends(_verify_api_key)])
async def trend(body: TrendBody) -> dict[str, Any]:
    """Summarise recent consumption."""
    logs = [LogEntry(type=log.type, timestamp=log.timestamp) for log in body.logs]
    return dict(analyze_trend(logs, body.window_days, now=body.now))


@app.post("/recalculate", response_model=PlanBody, dependencies=[Depends(_verify_api_key)])
async def recalculate(body: RecalculateBody) -> Plan:
    """Replace the plan if an adaptive recalculation is due; otherwise echo it back."""
    config = body.config.to_config() if body.config is not None else None
    return maybe_recalculate(body.entries(), body.plan.to_plan(), config, now=body.now)


@app.post("/progress", dependencies=[Depends(_verify_api_key)])
async def progress(body: ProgressBody) -> dict[str, Any]:
    """All-time progress and per-week adherence."""
    plan = body.plan.to_plan()
    logs = body.entries()
    return {
        "stats": calculate_progress(
            logs,
            plan,
            now=body.now,
            cigarette_pack_price=body.cigarette_pack_price,
            vape_price=body.vape_price,
        ),
        "weeks": weekly_adherence(logs, plan, now=body.now),
    }


def main() -> None:
    """Serve the API with uvicorn."""
    uvicorn.run("quitplan.app:app", host=settings.app_host, port=settings.app_port)
