"""
Expense API endpoints
"""
from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from clientbilling.api.deps import get_db, http_error
from clientbilling.application.expenses import (
    DeleteExpenseUseCase,
    MarkExpenseReimbursedUseCase,
    RecordExpenseUseCase,
    list_expenses,
)
from clientbilling.domain.errors import BillingError
from clientbilling.infrastructure.db.models import ClientExpense
from clientbilling.utils.money import format_money
from clientbilling.utils.validation import validate_and_normalize_amount


router = APIRouter(prefix="/api/v1/clients/{client_id}/expenses", tags=["expenses"])


# === Request/Response models ===

class RecordExpenseRequest(BaseModel):
    description: str
    amount: Decimal
    expense_date: date
    is_reimbursable: bool = True
    category: str | None = None
    notes: str | None = None
    project_id: int | None = None
    creator_user_id: int | None = None

    @field_validator("amount", mode="before")
    @classmethod
    def validate_amount(cls, v) -> Decimal:
        return validate_and_normalize_amount(str(v), max_decimal_places=2)


class MarkReimbursedRequest(BaseModel):
    reimbursed_date: date | None = None


class ExpenseResponse(BaseModel):
    expense_id: int
    description: str
    amount: str
    amount_display: str
    expense_date: date
    category: str | None
    is_reimbursable: bool
    is_reimbursed: bool
    reimbursed_date: date | None
    client_invoice_line_id: int | None


def expense_response(expense: ClientExpense) -> ExpenseResponse:
    return ExpenseResponse(
        expense_id=expense.id,
        description=expense.description,
        amount=str(expense.amount),
        amount_display=format_money(expense.amount),
        expense_date=expense.expense_date,
        category=expense.category,
        is_reimbursable=expense.is_reimbursable,
        is_reimbursed=expense.is_reimbursed,
        reimbursed_date=expense.reimbursed_date,
        client_invoice_line_id=expense.client_invoice_line_id,
    )


# === Endpoints ===

@router.get("", response_model=list[ExpenseResponse])
def get_expenses(
    client_id: int,
    db: Session = Depends(get_db)
):
    """Expenses of a client, oldest first"""
    try:
        expenses = list_expenses(db, client_id)
    except BillingError as e:
        raise http_error(e)

    return [expense_response(expense) for expense in expenses]


@router.post("", response_model=ExpenseResponse, status_code=status.HTTP_201_CREATED)
def record_expense(
    client_id: int,
    req: RecordExpenseRequest,
    db: Session = Depends(get_db)
):
    """Record an expense; reimbursable ones are billed on the next invoice"""
    try:
        expense = RecordExpenseUseCase(db).execute(
            client_id,
            description=req.description,
            amount=req.amount,
            expense_date=req.expense_date,
            is_reimbursable=req.is_reimbursable,
            category=req.category,
            notes=req.notes,
            project_id=req.project_id,
            creator_user_id=req.creator_user_id,
        )
    except BillingError as e:
        raise http_error(e)

    return expense_response(expense)


@router.post("/{expense_id}/reimbursed", response_model=ExpenseResponse)
def mark_expense_reimbursed(
    client_id: int,
    expense_id: int,
    req: MarkReimbursedRequest,
    db: Session = Depends(get_db)
):
    """Record that the client paid the expense back"""
    try:
        expense = MarkExpenseReimbursedUseCase(db).execute(client_id, expense_id, req.reimbursed_date)
    except BillingError as e:
        raise http_error(e)

    return expense_response(expense)


@router.delete("/{expense_id}")
def delete_expense(
    client_id: int,
    expense_id: int,
    db: Session = Depends(get_db)
):
    """Soft-remove an expense that is not on an invoice"""
    try:
        DeleteExpenseUseCase(db).execute(client_id, expense_id)
    except BillingError as e:
        raise http_error(e)

    return {"status": "deleted"}
