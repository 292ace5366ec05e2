"""
Monthly balance API endpoints
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from clientbilling.api.deps import get_db, http_error
from clientbilling.application.balances import GetMonthlyBalancesUseCase
from clientbilling.domain.balances import MonthSummary, describe_status
from clientbilling.domain.errors import BillingError
from clientbilling.domain.hours import format_minutes, hours_to_minutes, whole_minutes
from clientbilling.domain.months import YearMonth
from clientbilling.utils.money import decimal_str


router = APIRouter(prefix="/api/v1/clients/{client_id}/balances", tags=["balances"])


# === Response models ===

class OpeningBalanceResponse(BaseModel):
    retainer_hours: str
    rollover_hours: str
    expired_hours: str
    total_available: str
    negative_offset: str
    invoiced_negative_balance: str
    effective_retainer_hours: str
    remaining_negative_balance: str


class ClosingBalanceResponse(BaseModel):
    hours_used_from_retainer: str
    hours_used_from_rollover: str
    unused_hours: str
    excess_hours: str
    negative_balance: str
    remaining_rollover: str


class MonthBalanceResponse(BaseModel):
    year_month: str  # YYYY-MM
    has_agreement: bool
    agreement_id: int | None
    hours_worked: str
    hours_worked_display: str  # h:mm
    retainer_hours: str
    unbilled_hours: str
    will_be_billed_in_next_agreement: bool
    folded_in_hours: str
    entries_count: int
    opening: OpeningBalanceResponse | None
    closing: ClosingBalanceResponse | None
    status: str


# === Helper function ===

def month_balance_response(summary: MonthSummary) -> MonthBalanceResponse:
    opening = closing = None
    if summary.opening is not None:
        opening = OpeningBalanceResponse(**{
            name: decimal_str(getattr(summary.opening, name))
            for name in OpeningBalanceResponse.model_fields
        })
    if summary.closing is not None:
        closing = ClosingBalanceResponse(**{
            name: decimal_str(getattr(summary.closing, name))
            for name in ClosingBalanceResponse.model_fields
        })

    return MonthBalanceResponse(
        year_month=str(summary.year_month),
        has_agreement=summary.has_agreement,
        agreement_id=summary.agreement_id,
        hours_worked=str(summary.hours_worked),
        hours_worked_display=format_minutes(whole_minutes(hours_to_minutes(summary.hours_worked))),
        retainer_hours=str(summary.retainer_hours),
        unbilled_hours=str(summary.unbilled_hours),
        will_be_billed_in_next_agreement=summary.will_be_billed_in_next_agreement,
        folded_in_hours=str(summary.folded_in_hours),
        entries_count=summary.entries_count,
        opening=opening,
        closing=closing,
        status=describe_status(summary),
    )


# === Endpoints ===

@router.get("", response_model=list[MonthBalanceResponse])
def get_monthly_balances(
    client_id: int,
    through: str | None = None,
    db: Session = Depends(get_db)
):
    """Month-by-month hour balances, most recent month first"""
    try:
        through_month = YearMonth.parse(through) if through else None
        summaries = GetMonthlyBalancesUseCase(db).execute(client_id, through=through_month)
    except BillingError as e:
        raise http_error(e)

    return [month_balance_response(s) for s in summaries]
