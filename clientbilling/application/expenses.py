"""
Expense use cases - recording, listing and soft removal of client expenses
"""
import logging
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clientbilling.application.loaders import get_client, load_expense_rows
from clientbilling.domain.errors import (
    BillingConflictError,
    BillingNotFoundError,
    BillingPersistenceError,
    BillingValidationError,
)
from clientbilling.domain.hours import quantize_money
from clientbilling.infrastructure.db.models import ClientExpense

logger = logging.getLogger(__name__)


def list_expenses(db: Session, client_id: int) -> list[ClientExpense]:
    get_client(db, client_id)
    return load_expense_rows(db, client_id)


def get_expense(db: Session, client_id: int, expense_id: int) -> ClientExpense:
    expense = db.query(ClientExpense).filter(
        ClientExpense.id == expense_id,
        ClientExpense.client_company_id == client_id,
        ClientExpense.deleted_at.is_(None),
    ).first()
    if not expense:
        raise BillingNotFoundError(f"Expense #{expense_id} not found")
    return expense


def _commit(db: Session, action: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to %s", action)
        raise BillingPersistenceError(f"Could not {action}") from exc


class RecordExpenseUseCase:
    """Use case: record an expense; reimbursable ones go on the next invoice"""

    def __init__(self, db: Session):
        self.db = db

    def execute(
        self,
        client_id: int,
        description: str,
        amount: Decimal,
        expense_date: date,
        is_reimbursable: bool = True,
        category: str | None = None,
        notes: str | None = None,
        project_id: int | None = None,
        creator_user_id: int | None = None,
    ) -> ClientExpense:
        description = description.strip()
        if not description:
            raise BillingValidationError("Expense description cannot be empty")
        if amount < 0:
            raise BillingValidationError("Expense amount cannot be negative")

        get_client(self.db, client_id)

        expense = ClientExpense(
            client_company_id=client_id,
            description=description,
            amount=quantize_money(amount),
            expense_date=expense_date,
            is_reimbursable=is_reimbursable,
            category=category,
            notes=notes,
            project_id=project_id,
            creator_user_id=creator_user_id,
        )
        self.db.add(expense)
        _commit(self.db, f"record expense for client {client_id}")
        self.db.refresh(expense)
        return expense


class MarkExpenseReimbursedUseCase:
    """Use case: record that the client has paid an expense back"""

    def __init__(self, db: Session):
        self.db = db

    def execute(self, client_id: int, expense_id: int, reimbursed_date: date | None = None) -> ClientExpense:
        expense = get_expense(self.db, client_id, expense_id)
        if not expense.is_reimbursable:
            raise BillingConflictError(f"Expense #{expense_id} is not reimbursable")

        expense.is_reimbursed = True
        expense.reimbursed_date = reimbursed_date or date.today()
        _commit(self.db, f"mark expense {expense_id} reimbursed")
        self.db.refresh(expense)
        return expense


class DeleteExpenseUseCase:
    """
    Use case: soft-remove an expense

    Expenses linked to an invoice line are immutable; void the invoice first.
    """

    def __init__(self, db: Session):
        self.db = db

    def execute(self, client_id: int, expense_id: int) -> None:
        expense = get_expense(self.db, client_id, expense_id)
        if expense.client_invoice_line_id is not None:
            raise BillingConflictError(
                f"Expense #{expense_id} is linked to invoice line #{expense.client_invoice_line_id}"
            )

        expense.deleted_at = datetime.now(timezone.utc)
        _commit(self.db, f"delete expense {expense_id}")
