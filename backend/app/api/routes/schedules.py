"""
Schedule definitions API (host-facing). Requires X-Host-Id; the host must own the offering.

Two kinds:
- service_period: days_of_week (0=Mon), start_time, end_time, optional last_seating, interval_minutes
- recurrence: frequency, dtstart, optional recurrence_interval / count / until / by_* filters, duration_minutes
"""
import logging
from datetime import datetime, time
from typing import Any, Literal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.api.deps import raise_http, require_host_id
from app.core.errors import BookingEngineError
from app.db.session import get_db
from app.services.schedule_service import (
    create_schedule_definition,
    deactivate_schedule_definition,
    definition_to_dict,
    list_schedule_definitions,
    update_schedule_definition,
)

router = APIRouter()
logger = logging.getLogger(__name__)


class ScheduleFields(BaseModel):
    name: str | None = None
    max_per_slot: int | None = Field(None, ge=0)
    days_of_week: list[int] | None = None
    start_time: time | None = None
    end_time: time | None = None
    last_seating: time | None = None
    interval_minutes: int | None = Field(None, gt=0)
    frequency: Literal["DAILY", "WEEKLY", "MONTHLY", "YEARLY"] | None = None
    recurrence_interval: int | None = Field(None, ge=1)
    dtstart: datetime | None = None
    count: int | None = Field(None, ge=1)
    until: datetime | None = None
    by_weekday: list[int] | None = None
    by_month_day: list[int] | None = None
    by_month: list[int] | None = None
    duration_minutes: int | None = Field(None, gt=0)


class CreateScheduleRequest(ScheduleFields):
    kind: Literal["service_period", "recurrence"] = "service_period"
    max_per_slot: int = Field(..., ge=0)


class UpdateScheduleRequest(ScheduleFields):
    kind: Literal["service_period", "recurrence"] | None = None


@router.get("/offerings/{offering_id}/schedules")
def list_schedules(
    offering_id: int,
    include_inactive: bool = Query(False),
    host_id: str = Depends(require_host_id),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    try:
        rows = list_schedule_definitions(db, host_id, offering_id, include_inactive=include_inactive)
    except BookingEngineError as e:
        raise_http(e)
    return {"schedules": [definition_to_dict(r) for r in rows]}


@router.post("/offerings/{offering_id}/schedules", status_code=201)
def create_schedule(
    offering_id: int,
    body: CreateScheduleRequest,
    host_id: str = Depends(require_host_id),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    try:
        row = create_schedule_definition(db, host_id, offering_id, body.model_dump(exclude_none=True))
    except BookingEngineError as e:
        raise_http(e)
    return definition_to_dict(row)


@router.patch("/offerings/{offering_id}/schedules/{definition_id}")
def update_schedule(
    offering_id: int,
    definition_id: int,
    body: UpdateScheduleRequest,
    host_id: str = Depends(require_host_id),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    """Only fields present in the body change; send null to clear an optional field."""
    try:
        row = update_schedule_definition(db, host_id, offering_id, definition_id, body.model_dump(exclude_unset=True))
    except BookingEngineError as e:
        raise_http(e)
    return definition_to_dict(row)


@router.delete("/offerings/{offering_id}/schedules/{definition_id}")
def deactivate_schedule(
    offering_id: int,
    definition_id: int,
    host_id: str = Depends(require_host_id),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    """Soft delete: existing slots and bookings stay; no new slots are generated."""
    try:
        row = deactivate_schedule_definition(db, host_id, offering_id, definition_id)
    except BookingEngineError as e:
        raise_http(e)
    return definition_to_dict(row)
