"""
Agreement API endpoints
"""
from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from clientbilling.api.deps import get_db, http_error
from clientbilling.application.agreements import CreateAgreementUseCase, TerminateAgreementUseCase
from clientbilling.domain.errors import BillingError
from clientbilling.infrastructure.db.models import ClientAgreement
from clientbilling.utils.validation import validate_and_normalize_amount


router = APIRouter(prefix="/api/v1/clients/{client_id}/agreements", tags=["agreements"])


# === Request/Response models ===

class CreateAgreementRequest(BaseModel):
    active_from: date
    terminated_at: date | None = None
    monthly_retainer_hours: Decimal
    rollover_months: int = Field(default=0, ge=0)
    hourly_rate: Decimal
    monthly_fee: Decimal
    catch_up_threshold_hours: Decimal = Decimal(0)

    @field_validator("monthly_retainer_hours", "catch_up_threshold_hours", mode="before")
    @classmethod
    def validate_hours(cls, v) -> Decimal:
        """Hours: non-negative, up to 4 decimal places"""
        return validate_and_normalize_amount(str(v), max_decimal_places=4)

    @field_validator("hourly_rate", "monthly_fee", mode="before")
    @classmethod
    def validate_money(cls, v) -> Decimal:
        """Money: non-negative, up to 2 decimal places"""
        return validate_and_normalize_amount(str(v), max_decimal_places=2)


class TerminateAgreementRequest(BaseModel):
    terminated_at: date


class AgreementResponse(BaseModel):
    agreement_id: int
    active_from: date
    terminated_at: date | None
    monthly_retainer_hours: str
    rollover_months: int
    hourly_rate: str
    monthly_fee: str
    catch_up_threshold_hours: str


# === Helper function ===

def agreement_response(row: ClientAgreement) -> AgreementResponse:
    return AgreementResponse(
        agreement_id=row.id,
        active_from=row.active_date,
        terminated_at=row.termination_date,
        monthly_retainer_hours=str(row.monthly_retainer_hours),
        rollover_months=row.rollover_months,
        hourly_rate=str(row.hourly_rate),
        monthly_fee=str(row.monthly_retainer_fee),
        catch_up_threshold_hours=str(row.catch_up_threshold_hours),
    )


# === Endpoints ===

@router.post("", response_model=AgreementResponse, status_code=status.HTTP_201_CREATED)
def create_agreement(
    client_id: int,
    req: CreateAgreementRequest,
    db: Session = Depends(get_db)
):
    """Create an agreement; it must not overlap existing ones"""
    try:
        row = CreateAgreementUseCase(db).execute(
            client_id,
            active_from=req.active_from,
            terminated_at=req.terminated_at,
            monthly_retainer_hours=req.monthly_retainer_hours,
            rollover_months=req.rollover_months,
            hourly_rate=req.hourly_rate,
            monthly_fee=req.monthly_fee,
            catch_up_threshold_hours=req.catch_up_threshold_hours,
        )
    except BillingError as e:
        raise http_error(e)

    return agreement_response(row)


@router.post("/{agreement_id}/terminate", response_model=AgreementResponse)
def terminate_agreement(
    client_id: int,
    agreement_id: int,
    req: TerminateAgreementRequest,
    db: Session = Depends(get_db)
):
    """Set the termination date (exclusive) of an agreement"""
    try:
        row = TerminateAgreementUseCase(db).execute(client_id, agreement_id, req.terminated_at)
    except BillingError as e:
        raise http_error(e)

    return agreement_response(row)
