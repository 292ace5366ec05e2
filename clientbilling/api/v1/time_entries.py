"""
Time entry API endpoints
"""
from datetime import date

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from clientbilling.api.deps import get_db, http_error
from clientbilling.application.time_entries import (
    DeleteTimeEntryUseCase,
    LogTimeEntryUseCase,
    RecombineFragmentsUseCase,
)
from clientbilling.domain.errors import BillingError
from clientbilling.domain.hours import format_minutes, minutes_to_hours


router = APIRouter(prefix="/api/v1/clients/{client_id}/time-entries", tags=["time-entries"])


# === Request/Response models ===

class LogTimeEntryRequest(BaseModel):
    minutes_worked: int = Field(gt=0)
    date_worked: date
    name: str = ""
    is_billable: bool = True
    user_id: int | None = None
    project_id: int | None = None
    task_id: int | None = None


class TimeEntryResponse(BaseModel):
    time_entry_id: int
    minutes_worked: int
    hours: str
    duration: str  # h:mm
    date_worked: date
    name: str
    is_billable: bool
    client_invoice_line_id: int | None


# === Endpoints ===

@router.post("", response_model=TimeEntryResponse, status_code=status.HTTP_201_CREATED)
def log_time_entry(
    client_id: int,
    req: LogTimeEntryRequest,
    db: Session = Depends(get_db)
):
    """Log work for a client"""
    try:
        entry = LogTimeEntryUseCase(db).execute(
            client_id,
            minutes_worked=req.minutes_worked,
            date_worked=req.date_worked,
            name=req.name,
            is_billable=req.is_billable,
            user_id=req.user_id,
            project_id=req.project_id,
            task_id=req.task_id,
        )
    except BillingError as e:
        raise http_error(e)

    return TimeEntryResponse(
        time_entry_id=entry.id,
        minutes_worked=entry.minutes_worked,
        hours=str(minutes_to_hours(entry.minutes_worked)),
        duration=format_minutes(entry.minutes_worked),
        date_worked=entry.date_worked,
        name=entry.name,
        is_billable=entry.is_billable,
        client_invoice_line_id=entry.client_invoice_line_id,
    )


@router.delete("/{entry_id}")
def delete_time_entry(
    client_id: int,
    entry_id: int,
    db: Session = Depends(get_db)
):
    """Soft-remove an entry that is not on an invoice"""
    try:
        DeleteTimeEntryUseCase(db).execute(client_id, entry_id)
    except BillingError as e:
        raise http_error(e)

    return {"status": "deleted"}


@router.post("/recombine")
def recombine_time_entries(
    client_id: int,
    db: Session = Depends(get_db)
):
    """Merge unlinked split fragments back into single entries"""
    try:
        merged = RecombineFragmentsUseCase(db).execute(client_id)
    except BillingError as e:
        raise http_error(e)

    return {"merged": merged}
