"""Tests for the pure invoice assembler"""
from datetime import date
from decimal import Decimal

import pytest

from clientbilling.domain.agreement import Agreement
from clientbilling.domain.allocation import allocate
from clientbilling.domain.balances import calculate_monthly_balances
from clientbilling.domain.errors import BillingValidationError
from clientbilling.domain.expense import Expense
from clientbilling.domain.invoice import LINE_TYPE_EXPENSE, LINE_TYPE_RETAINER, assemble_invoice
from clientbilling.domain.months import YearMonth
from clientbilling.domain.time_entry import (
    ALLOCATION_BILLABLE_CATCHUP,
    ALLOCATION_CURRENT_MONTH_RETAINER,
    ALLOCATION_PRIOR_MONTH_RETAINER,
    TimeEntry,
)

AGREEMENT = Agreement(
    id=1,
    active_from=date(2024, 1, 1),
    terminated_at=None,
    monthly_retainer_hours=Decimal("10"),
    rollover_months=1,
    hourly_rate=Decimal("150.00"),
    monthly_fee=Decimal("1500.00"),
)

ENTRIES = [
    TimeEntry(id=1, minutes_worked=300, date_worked=date(2024, 1, 10)),
    TimeEntry(id=2, minutes_worked=240, date_worked=date(2024, 1, 20)),
    TimeEntry(id=3, minutes_worked=600, date_worked=date(2024, 2, 5)),
    TimeEntry(id=4, minutes_worked=180, date_worked=date(2024, 2, 10)),
]


def build(period_start, period_end, entries=ENTRIES, **kwargs):
    summaries = calculate_monthly_balances([AGREEMENT], entries, through=YearMonth.from_date(period_end))
    plan = allocate(entries, summaries, period_start, period_end)
    return assemble_invoice(plan, summaries, [AGREEMENT], period_start, period_end, **kwargs)


@pytest.fixture
def february():
    return build(date(2024, 2, 1), date(2024, 2, 29))


def test_lines_in_order(february):
    """Retainer fee first, then included groups, then billed-at-rate groups"""
    assert [line.line_type for line in february.lines] == [
        LINE_TYPE_RETAINER,
        ALLOCATION_CURRENT_MONTH_RETAINER,
        ALLOCATION_PRIOR_MONTH_RETAINER,
        ALLOCATION_BILLABLE_CATCHUP,
    ]
    assert [line.sort_order for line in february.lines] == [1, 2, 3, 4]


def test_line_pricing(february):
    retainer, current, prior, billable = february.lines

    assert retainer.quantity == "1"
    assert retainer.line_total == Decimal("1500.00")
    assert retainer.fragments == ()

    assert current.quantity == "10:00"
    assert current.unit_price == Decimal("0")
    assert current.line_total == Decimal("0.00")

    assert prior.quantity == "1:00"
    assert prior.line_total == Decimal("0.00")

    assert billable.quantity == "2:00"
    assert billable.unit_price == Decimal("150.00")
    assert billable.line_total == Decimal("300.00")
    assert billable.line_date == date(2024, 2, 10)


def test_invoice_total_is_sum_of_lines(february):
    assert february.invoice_total == Decimal("1800.00")
    assert february.invoice_total == sum(line.line_total for line in february.lines)


def test_hour_totals(february):
    assert february.retainer_hours_included == Decimal("10")
    assert february.hours_worked == Decimal("13")
    assert february.rollover_hours_used == Decimal("1")
    assert february.hours_billed_at_rate == Decimal("2")
    assert february.starting_unused_hours == Decimal("1")
    assert february.starting_negative_hours == Decimal("0")
    assert february.unused_hours_balance == Decimal("0")
    # the 2h overrun is billed on this invoice, nothing is left to carry
    assert february.negative_hours_balance == Decimal("0")


def test_multi_month_period_bills_fee_per_month():
    draft = build(date(2024, 1, 1), date(2024, 2, 29))
    retainer = draft.lines[0]
    assert retainer.line_type == LINE_TYPE_RETAINER
    assert retainer.quantity == "2"
    assert retainer.line_total == Decimal("3000.00")
    assert draft.retainer_hours_included == Decimal("20")
    assert draft.hours_worked == Decimal("22")


def test_retainer_already_billed_is_not_repeated():
    draft = build(date(2024, 2, 6), date(2024, 2, 29), retainer_billed_months=[YearMonth(2024, 2)])
    assert [line.line_type for line in draft.lines] == [ALLOCATION_CURRENT_MONTH_RETAINER]
    assert draft.lines[0].fragments[0].original_time_entry_id == 4
    assert draft.retainer_hours_included == Decimal("0")


def test_no_agreement_no_lines():
    entries = [TimeEntry(id=1, minutes_worked=60, date_worked=date(2023, 12, 5))]
    summaries = calculate_monthly_balances([AGREEMENT], entries)
    plan = allocate(entries, summaries, date(2023, 12, 1), date(2023, 12, 31))
    draft = assemble_invoice(plan, summaries, [AGREEMENT], date(2023, 12, 1), date(2023, 12, 31))

    assert not draft.has_agreement
    assert draft.lines == ()
    assert draft.invoice_total == Decimal("0.00")


class TestExpenseLines:
    @pytest.fixture
    def expenses(self):
        return [
            Expense(id=2, description="Hosting", amount=Decimal("49.99"), expense_date=date(2024, 2, 20)),
            Expense(id=1, description="Stock photos", amount=Decimal("120"), expense_date=date(2024, 1, 15)),
            Expense(id=3, description="Conference", amount=Decimal("400"), expense_date=date(2024, 3, 2)),
            Expense(id=4, description="Already billed", amount=Decimal("10"), expense_date=date(2024, 1, 3),
                    invoice_line_id=7),
            Expense(id=5, description="Team lunch", amount=Decimal("80"), expense_date=date(2024, 2, 1),
                    is_reimbursable=False),
        ]

    def test_unbilled_expenses_up_to_period_end_follow_time_lines(self, expenses):
        draft = build(date(2024, 2, 1), date(2024, 2, 29), expenses=expenses)
        expense_lines = [line for line in draft.lines if line.line_type == LINE_TYPE_EXPENSE]

        # earlier unbilled expenses are picked up too; later ones wait
        assert [(line.expense_id, line.description) for line in expense_lines] == [
            (1, "Stock photos"),
            (2, "Hosting"),
        ]
        assert draft.lines[-2:] == tuple(expense_lines)
        assert [line.sort_order for line in draft.lines] == [1, 2, 3, 4, 5, 6]

    def test_expense_line_billed_at_cost(self, expenses):
        draft = build(date(2024, 2, 1), date(2024, 2, 29), expenses=expenses)
        hosting = next(line for line in draft.lines if line.expense_id == 2)

        assert hosting.quantity == "1"
        assert hosting.unit_price == Decimal("49.99")
        assert hosting.line_total == Decimal("49.99")
        assert hosting.hours is None
        assert hosting.agreement_id is None
        assert hosting.line_date == date(2024, 2, 20)
        assert draft.invoice_total == Decimal("1969.99")

    def test_expenses_do_not_change_hour_totals(self, expenses):
        without = build(date(2024, 2, 1), date(2024, 2, 29))
        with_expenses = build(date(2024, 2, 1), date(2024, 2, 29), expenses=expenses)
        assert with_expenses.hours_worked == without.hours_worked
        assert with_expenses.hours_billed_at_rate == without.hours_billed_at_rate

    def test_negative_amount_rejected(self):
        with pytest.raises(BillingValidationError):
            Expense(id=1, description="Refund", amount=Decimal("-5"), expense_date=date(2024, 2, 1))
