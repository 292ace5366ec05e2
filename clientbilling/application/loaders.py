"""
Loaders - map billing rows to domain value objects
"""
from dataclasses import dataclass
from datetime import date
from typing import Iterable

from sqlalchemy.orm import Session

from clientbilling.domain.agreement import Agreement
from clientbilling.domain.balances import MonthSummary, billing_month_for
from clientbilling.domain.errors import BillingNotFoundError
from clientbilling.domain.expense import Expense
from clientbilling.domain.invoice import LINE_TYPE_RETAINER
from clientbilling.domain.months import YearMonth, iter_months
from clientbilling.domain.time_entry import BILLED_AT_RATE_TYPES, TimeEntry
from clientbilling.infrastructure.db.models import (
    ClientAgreement,
    ClientCompany,
    ClientExpense,
    ClientInvoice,
    ClientInvoiceLine,
    ClientTimeEntry,
    INVOICE_STATUS_VOID,
)


@dataclass(frozen=True)
class LinkedMinutes:
    """Minutes of one time entry row already billed on a non-void invoice line"""
    date_worked: date
    minutes: int
    line_type: str


def get_client(db: Session, client_id: int, lock: bool = False) -> ClientCompany:
    query = db.query(ClientCompany).filter(
        ClientCompany.id == client_id,
        ClientCompany.deleted_at.is_(None),
    )
    if lock:
        query = query.with_for_update()
    client = query.first()
    if not client:
        raise BillingNotFoundError(f"Client #{client_id} not found")
    return client


def to_agreement(row: ClientAgreement) -> Agreement:
    return Agreement(
        id=row.id,
        active_from=row.active_date,
        terminated_at=row.termination_date,
        monthly_retainer_hours=row.monthly_retainer_hours,
        rollover_months=row.rollover_months,
        hourly_rate=row.hourly_rate,
        monthly_fee=row.monthly_retainer_fee,
        catch_up_threshold_hours=row.catch_up_threshold_hours,
    )


def to_time_entry(row: ClientTimeEntry) -> TimeEntry:
    return TimeEntry(
        id=row.id,
        minutes_worked=row.minutes_worked,
        date_worked=row.date_worked,
        is_billable=row.is_billable,
        invoice_line_id=row.client_invoice_line_id,
        description=row.name,
        user_id=row.user_id,
        project_id=row.project_id,
        task_id=row.task_id,
    )


def load_agreements(db: Session, client_id: int) -> list[Agreement]:
    rows = db.query(ClientAgreement).filter(
        ClientAgreement.client_company_id == client_id,
        ClientAgreement.deleted_at.is_(None),
    ).order_by(ClientAgreement.active_date, ClientAgreement.id).all()
    return [to_agreement(row) for row in rows]


def load_time_entry_rows(
    db: Session,
    client_id: int,
    unbilled_only: bool = False,
    lock: bool = False,
) -> list[ClientTimeEntry]:
    """Non-deleted time entry rows of a client, oldest first."""
    query = db.query(ClientTimeEntry).filter(
        ClientTimeEntry.client_company_id == client_id,
        ClientTimeEntry.deleted_at.is_(None),
    )
    if unbilled_only:
        query = query.filter(
            ClientTimeEntry.client_invoice_line_id.is_(None),
            ClientTimeEntry.is_billable.is_(True),
        )
    if lock:
        query = query.with_for_update()
    return query.order_by(ClientTimeEntry.date_worked, ClientTimeEntry.id).all()


def load_time_entries(db: Session, client_id: int) -> list[TimeEntry]:
    return [to_time_entry(row) for row in load_time_entry_rows(db, client_id)]


def to_expense(row: ClientExpense) -> Expense:
    return Expense(
        id=row.id,
        description=row.description,
        amount=row.amount,
        expense_date=row.expense_date,
        is_reimbursable=row.is_reimbursable,
        invoice_line_id=row.client_invoice_line_id,
    )


def load_expense_rows(
    db: Session,
    client_id: int,
    unbilled_reimbursable_only: bool = False,
    lock: bool = False,
) -> list[ClientExpense]:
    """Non-deleted expense rows of a client, oldest first."""
    query = db.query(ClientExpense).filter(
        ClientExpense.client_company_id == client_id,
        ClientExpense.deleted_at.is_(None),
    )
    if unbilled_reimbursable_only:
        query = query.filter(
            ClientExpense.is_reimbursable.is_(True),
            ClientExpense.client_invoice_line_id.is_(None),
        )
    if lock:
        query = query.with_for_update()
    return query.order_by(ClientExpense.expense_date, ClientExpense.id).all()


def load_unbilled_expenses(db: Session, client_id: int) -> list[Expense]:
    return [to_expense(row) for row in load_expense_rows(db, client_id, unbilled_reimbursable_only=True)]


def load_linked_minutes(db: Session, client_id: int) -> list[LinkedMinutes]:
    """Time entry minutes linked to lines of the client's non-void invoices."""
    rows = (
        db.query(ClientTimeEntry.date_worked, ClientTimeEntry.minutes_worked, ClientInvoiceLine.line_type)
        .join(ClientInvoiceLine, ClientInvoiceLine.id == ClientTimeEntry.client_invoice_line_id)
        .join(ClientInvoice, ClientInvoice.id == ClientInvoiceLine.client_invoice_id)
        .filter(
            ClientTimeEntry.client_company_id == client_id,
            ClientTimeEntry.deleted_at.is_(None),
            ClientInvoice.status != INVOICE_STATUS_VOID,
        )
        .all()
    )
    return [LinkedMinutes(date_worked=d, minutes=m, line_type=t) for d, m, t in rows]


def invoiced_excess_by_month(linked: Iterable[LinkedMinutes]) -> dict[YearMonth, int]:
    """Minutes already billed at the hourly rate, keyed by the month the work was done."""
    result: dict[YearMonth, int] = {}
    for item in linked:
        if item.line_type not in BILLED_AT_RATE_TYPES:
            continue
        key = YearMonth.from_date(item.date_worked)
        result[key] = result.get(key, 0) + item.minutes
    return result


def consumed_by_billing_month(
    linked: Iterable[LinkedMinutes],
    summaries: list[MonthSummary],
) -> dict[YearMonth, dict[str, int]]:
    """Minutes already drawn from each billing month's pools, per allocation type."""
    result: dict[YearMonth, dict[str, int]] = {}
    for item in linked:
        month = billing_month_for(summaries, item.date_worked)
        if month is None:
            continue
        pools = result.setdefault(month, {})
        pools[item.line_type] = pools.get(item.line_type, 0) + item.minutes
    return result


def retainer_billed_months(db: Session, client_id: int) -> set[YearMonth]:
    """Months covered by a retainer fee line of a non-void invoice."""
    invoices = (
        db.query(ClientInvoice)
        .join(ClientInvoiceLine, ClientInvoiceLine.client_invoice_id == ClientInvoice.id)
        .filter(
            ClientInvoice.client_company_id == client_id,
            ClientInvoice.status != INVOICE_STATUS_VOID,
            ClientInvoiceLine.line_type == LINE_TYPE_RETAINER,
        )
        .distinct()
        .all()
    )
    months: set[YearMonth] = set()
    for invoice in invoices:
        months.update(iter_months(
            YearMonth.from_date(invoice.period_start),
            YearMonth.from_date(invoice.period_end),
        ))
    return months
