"""
Invoice assembler (pure part): turns an allocation plan and the month
balances of the period into invoice totals and line drafts.

Lines:
  - one retainer fee line per agreement active in the period
    (quantity = number of active months)
  - one line per non-empty (allocation type, agreement) group; included
    groups are priced at 0, catch-up groups at the agreement's hourly rate
  - one expense line per unbilled reimbursable expense dated up to period_end

invoice_total is always the sum of the line totals.
"""
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from typing import Iterable

from clientbilling.domain.agreement import Agreement, AgreementTimeline
from clientbilling.domain.allocation import AllocationPlan
from clientbilling.domain.balances import MonthSummary, billing_month_for
from clientbilling.domain.expense import Expense, billable_expenses
from clientbilling.domain.hours import (
    MINUTES_PER_HOUR,
    ZERO,
    format_minutes,
    hours_to_minutes,
    minutes_to_hours,
    quantize_money,
)
from clientbilling.domain.months import YearMonth
from clientbilling.domain.time_entry import (
    ALLOCATION_BILLABLE_CATCHUP,
    ALLOCATION_CATCH_UP,
    ALLOCATION_CURRENT_MONTH_RETAINER,
    ALLOCATION_PRIOR_MONTH_RETAINER,
    BILLED_AT_RATE_TYPES,
    TimeEntryFragment,
)

LINE_TYPE_RETAINER = "retainer"
LINE_TYPE_EXPENSE = "expense"
LINE_TYPE_ADJUSTMENT = "adjustment"

LINE_TYPES = (
    LINE_TYPE_RETAINER,
    ALLOCATION_PRIOR_MONTH_RETAINER,
    ALLOCATION_CURRENT_MONTH_RETAINER,
    ALLOCATION_CATCH_UP,
    ALLOCATION_BILLABLE_CATCHUP,
    LINE_TYPE_EXPENSE,
    LINE_TYPE_ADJUSTMENT,
)

# Produced by the assembler; adjustment lines are added manually
SYSTEM_LINE_TYPES = frozenset(LINE_TYPES) - {LINE_TYPE_ADJUSTMENT}

_GROUP_ORDER = (
    ALLOCATION_CURRENT_MONTH_RETAINER,
    ALLOCATION_PRIOR_MONTH_RETAINER,
    ALLOCATION_CATCH_UP,
    ALLOCATION_BILLABLE_CATCHUP,
)

_GROUP_DESCRIPTIONS = {
    ALLOCATION_CURRENT_MONTH_RETAINER: "Work items included in monthly retainer",
    ALLOCATION_PRIOR_MONTH_RETAINER: "Work items covered by rollover hours from prior months",
    ALLOCATION_CATCH_UP: "Catch-up hours (restoring negative balance)",
    ALLOCATION_BILLABLE_CATCHUP: "Additional work beyond retainer",
}


@dataclass(frozen=True)
class InvoiceLineDraft:
    line_type: str
    description: str
    quantity: str
    unit_price: Decimal
    line_total: Decimal
    hours: Decimal | None
    agreement_id: int | None
    line_date: date | None
    sort_order: int
    fragments: tuple[TimeEntryFragment, ...] = ()
    expense_id: int | None = None


@dataclass(frozen=True)
class InvoiceDraft:
    period_start: date
    period_end: date
    retainer_hours_included: Decimal
    hours_worked: Decimal
    rollover_hours_used: Decimal
    unused_hours_balance: Decimal
    negative_hours_balance: Decimal
    hours_billed_at_rate: Decimal
    starting_unused_hours: Decimal
    starting_negative_hours: Decimal
    lines: tuple[InvoiceLineDraft, ...]
    active_months: tuple[YearMonth, ...] = ()

    @property
    def invoice_total(self) -> Decimal:
        return quantize_money(sum((line.line_total for line in self.lines), ZERO))

    @property
    def has_agreement(self) -> bool:
        return bool(self.active_months)


def _retainer_lines(
    active: list[MonthSummary],
    timeline: AgreementTimeline,
) -> list[InvoiceLineDraft]:
    months_by_agreement: dict[int, list[YearMonth]] = {}
    for summary in active:
        months_by_agreement.setdefault(summary.agreement_id, []).append(summary.year_month)

    lines = []
    for agreement_id, months in months_by_agreement.items():
        agreement = timeline.get(agreement_id)
        count = len(months)
        label = str(months[0]) if count == 1 else f"{months[0]} to {months[-1]}"
        lines.append(InvoiceLineDraft(
            line_type=LINE_TYPE_RETAINER,
            description=f"Monthly Retainer ({agreement.monthly_retainer_hours} hours) - {label}",
            quantity=str(count),
            unit_price=agreement.monthly_fee,
            line_total=quantize_money(agreement.monthly_fee * count),
            hours=agreement.monthly_retainer_hours * count,
            agreement_id=agreement_id,
            line_date=months[0].first_day,
            sort_order=0,
        ))
    return lines


def _group_lines(plan: AllocationPlan, timeline: AgreementTimeline) -> list[InvoiceLineDraft]:
    by_group: dict[tuple[str, int | None], list[TimeEntryFragment]] = {}
    for fragment in plan.all_fragments():
        by_group.setdefault((fragment.allocation_type, fragment.agreement_id), []).append(fragment)

    lines = []
    for allocation_type in _GROUP_ORDER:
        for (group_type, agreement_id), fragments in by_group.items():
            if group_type != allocation_type:
                continue
            minutes = sum(f.minutes for f in fragments)
            agreement: Agreement | None = timeline.get(agreement_id) if agreement_id is not None else None
            rate = agreement.hourly_rate if agreement and allocation_type in BILLED_AT_RATE_TYPES else ZERO
            lines.append(InvoiceLineDraft(
                line_type=allocation_type,
                description=_GROUP_DESCRIPTIONS[allocation_type],
                quantity=format_minutes(minutes),
                unit_price=rate,
                line_total=quantize_money(Decimal(minutes) * rate / MINUTES_PER_HOUR),
                hours=minutes_to_hours(minutes),
                agreement_id=agreement_id,
                line_date=max(f.date_worked for f in fragments),
                sort_order=0,
                fragments=tuple(fragments),
            ))
    return lines


def _expense_lines(expenses: Iterable[Expense], period_end: date) -> list[InvoiceLineDraft]:
    return [
        InvoiceLineDraft(
            line_type=LINE_TYPE_EXPENSE,
            description=expense.description,
            quantity="1",
            unit_price=quantize_money(expense.amount),
            line_total=quantize_money(expense.amount),
            hours=None,
            agreement_id=None,
            line_date=expense.expense_date,
            sort_order=0,
            expense_id=expense.id,
        )
        for expense in billable_expenses(expenses, period_end)
    ]


def assemble_invoice(
    plan: AllocationPlan,
    month_balances: Iterable[MonthSummary],
    agreements: Iterable[Agreement],
    period_start: date,
    period_end: date,
    retainer_billed_months: Iterable[YearMonth] = (),
    expenses: Iterable[Expense] = (),
) -> InvoiceDraft:
    """
    Compute invoice totals and line drafts. Pure: no persistence.

    retainer_billed_months: months whose retainer fee is already on another
    invoice (partial-month periods); they get no second fee line.
    expenses: candidate reimbursable expenses; billed ones and those dated
    after period_end are skipped.
    """
    timeline = AgreementTimeline(agreements)
    summaries = sorted(month_balances, key=lambda s: s.year_month)
    first_month = YearMonth.from_date(period_start)
    last_month = YearMonth.from_date(period_end)
    active = [
        s for s in summaries
        if s.has_agreement and first_month <= s.year_month <= last_month
    ]

    already_billed = set(retainer_billed_months)
    fee_months = [s for s in active if s.year_month not in already_billed]

    lines = (
        _retainer_lines(fee_months, timeline)
        + _group_lines(plan, timeline)
        + _expense_lines(expenses, period_end)
    )
    lines = [
        replace(line, sort_order=index)
        for index, line in enumerate(lines, start=1)
    ]

    unused_balance = ZERO
    negative_balance = ZERO
    starting_unused = ZERO
    starting_negative = ZERO
    if active:
        first, last = active[0], active[-1]
        starting_unused = first.opening.rollover_hours
        starting_negative = first.opening.negative_offset + first.opening.remaining_negative_balance
        unused_balance = last.closing.unused_hours + last.closing.remaining_rollover

        billed_in_last = sum(
            f.minutes for f in plan.all_fragments()
            if f.allocation_type in BILLED_AT_RATE_TYPES
            and billing_month_for(summaries, f.date_worked) == last.year_month
        )
        negative_minutes = hours_to_minutes(last.closing.negative_balance) - billed_in_last
        negative_balance = minutes_to_hours(max(ZERO, negative_minutes))

    return InvoiceDraft(
        period_start=period_start,
        period_end=period_end,
        retainer_hours_included=sum((s.retainer_hours for s in fee_months), ZERO),
        hours_worked=plan.total_hours,
        rollover_hours_used=plan.total_prior_month_retainer_hours,
        unused_hours_balance=unused_balance,
        negative_hours_balance=negative_balance,
        hours_billed_at_rate=plan.hours_billed_at_rate,
        starting_unused_hours=starting_unused,
        starting_negative_hours=starting_negative,
        lines=tuple(lines),
        active_months=tuple(s.year_month for s in active),
    )
