"""
Reimbursable expense value object.

An expense is billed at cost on the first invoice whose period ends on or
after its date, one line per expense.
"""
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable

from clientbilling.domain.errors import BillingValidationError


@dataclass(frozen=True)
class Expense:
    id: int
    description: str
    amount: Decimal
    expense_date: date
    is_reimbursable: bool = True
    invoice_line_id: int | None = None

    def __post_init__(self) -> None:
        if self.amount < 0:
            raise BillingValidationError(f"Expense #{self.id}: amount cannot be negative")

    @property
    def is_invoiced(self) -> bool:
        return self.invoice_line_id is not None


def billable_expenses(expenses: Iterable[Expense], period_end: date) -> list[Expense]:
    """Unbilled reimbursable expenses dated on or before period_end, oldest first."""
    return sorted(
        (
            e for e in expenses
            if e.is_reimbursable and not e.is_invoiced and e.expense_date <= period_end
        ),
        key=lambda e: (e.expense_date, e.id),
    )
