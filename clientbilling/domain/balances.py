"""
Monthly balance calculator.

Walks calendar months oldest to newest and folds an explicit BalanceState
through every month:

  rollover_buckets          - (month_earned, minutes) credits, oldest first
  carried_negative_minutes  - work beyond the available pool, offset next month
  pending_unbilled_minutes  - work logged while no agreement was active

Rules per active month:
  1. buckets earned more than rollover_months ago expire
  2. opening rollover = sum of surviving buckets
  3. the carried negative balance (less what was already billed at rate) is
     offset against this month's retainer first
  4. work is applied to the effective retainer, then to rollover credit
     (oldest bucket first); the remainder is excess
  5. leftover retainer becomes a new rollover bucket
  6. excess plus any negative balance the retainer could not absorb is
     carried to the next month

Months without an agreement only accumulate pending hours; they are folded
into the first month an agreement becomes active.

All arithmetic is Decimal minutes; hours are produced only in the summaries.
"""
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from typing import Iterable, Mapping

from clientbilling.domain.agreement import Agreement, AgreementTimeline
from clientbilling.domain.errors import BillingValidationError
from clientbilling.domain.hours import ZERO, hours_to_minutes, minutes_to_hours
from clientbilling.domain.months import YearMonth, iter_months
from clientbilling.domain.time_entry import TimeEntry


@dataclass(frozen=True)
class OpeningBalance:
    retainer_hours: Decimal
    rollover_hours: Decimal
    expired_hours: Decimal
    total_available: Decimal
    negative_offset: Decimal
    invoiced_negative_balance: Decimal
    effective_retainer_hours: Decimal
    remaining_negative_balance: Decimal

    def __post_init__(self) -> None:
        for name in ("retainer_hours", "rollover_hours", "expired_hours", "total_available",
                     "negative_offset", "invoiced_negative_balance",
                     "effective_retainer_hours", "remaining_negative_balance"):
            if getattr(self, name) < 0:
                raise BillingValidationError(f"OpeningBalance.{name} cannot be negative")


@dataclass(frozen=True)
class ClosingBalance:
    hours_used_from_retainer: Decimal
    hours_used_from_rollover: Decimal
    unused_hours: Decimal
    excess_hours: Decimal
    negative_balance: Decimal
    remaining_rollover: Decimal

    def __post_init__(self) -> None:
        for name in ("hours_used_from_retainer", "hours_used_from_rollover", "unused_hours",
                     "excess_hours", "negative_balance", "remaining_rollover"):
            if getattr(self, name) < 0:
                raise BillingValidationError(f"ClosingBalance.{name} cannot be negative")


@dataclass(frozen=True)
class MonthSummary:
    year_month: YearMonth
    opening: OpeningBalance | None
    closing: ClosingBalance | None
    hours_worked: Decimal
    retainer_hours: Decimal
    has_agreement: bool = True
    unbilled_hours: Decimal = ZERO
    will_be_billed_in_next_agreement: bool = False
    agreement_id: int | None = None
    rollover_months: int | None = None
    billable_minutes: int = 0
    entries_count: int = 0
    folded_in_hours: Decimal = ZERO
    catch_up_threshold_hours: Decimal = ZERO


@dataclass(frozen=True)
class RolloverBucket:
    month_earned: YearMonth
    minutes: Decimal


@dataclass(frozen=True)
class BalanceState:
    rollover_buckets: tuple[RolloverBucket, ...] = ()
    carried_negative_minutes: Decimal = ZERO
    # Billed-at-rate minutes of the previous active month (catch-up already invoiced)
    invoiced_excess_minutes: Decimal = ZERO
    pending_unbilled_minutes: int = 0
    pending_invoiced_minutes: int = 0


@dataclass(frozen=True)
class MonthInput:
    """Per-month input of the fold: billable minutes logged and minutes already billed at rate."""
    billable_minutes: int = 0
    entries_count: int = 0
    invoiced_excess_minutes: int = 0


def _expire_buckets(
    buckets: tuple[RolloverBucket, ...],
    month: YearMonth,
    rollover_months: int,
) -> tuple[tuple[RolloverBucket, ...], Decimal]:
    alive = []
    expired = ZERO
    for bucket in buckets:
        if bucket.month_earned.shift(rollover_months) < month:
            expired += bucket.minutes
        else:
            alive.append(bucket)
    return tuple(alive), expired


def _consume_buckets(
    buckets: tuple[RolloverBucket, ...],
    minutes: Decimal,
) -> tuple[RolloverBucket, ...]:
    """Draw minutes from the oldest buckets first."""
    remaining = []
    for bucket in buckets:
        if minutes <= 0:
            remaining.append(bucket)
            continue
        taken = min(bucket.minutes, minutes)
        minutes -= taken
        if bucket.minutes - taken > 0:
            remaining.append(replace(bucket, minutes=bucket.minutes - taken))
    return tuple(remaining)


def step_month(
    state: BalanceState,
    month: YearMonth,
    agreement: Agreement | None,
    month_input: MonthInput = MonthInput(),
) -> tuple[MonthSummary, BalanceState]:
    """One transition of the fold. Returns the month's summary and the next state."""
    own_minutes = month_input.billable_minutes

    if agreement is None:
        summary = MonthSummary(
            year_month=month,
            opening=None,
            closing=None,
            hours_worked=minutes_to_hours(own_minutes),
            retainer_hours=ZERO,
            has_agreement=False,
            unbilled_hours=minutes_to_hours(own_minutes),
            will_be_billed_in_next_agreement=True,
            billable_minutes=own_minutes,
            entries_count=month_input.entries_count,
        )
        return summary, replace(
            state,
            pending_unbilled_minutes=state.pending_unbilled_minutes + own_minutes,
            pending_invoiced_minutes=state.pending_invoiced_minutes + month_input.invoiced_excess_minutes,
        )

    folded_minutes = state.pending_unbilled_minutes
    worked = Decimal(own_minutes + folded_minutes)
    retainer = hours_to_minutes(agreement.monthly_retainer_hours)

    # 1-2. Expire old credit, the rest is this month's rollover
    buckets, expired = _expire_buckets(state.rollover_buckets, month, agreement.rollover_months)
    rollover = sum((b.minutes for b in buckets), ZERO)

    # 3. Negative balance carried in, less what was already billed as catch-up
    carried = state.carried_negative_minutes
    invoiced_negative = min(carried, state.invoiced_excess_minutes)
    outstanding = carried - invoiced_negative
    negative_offset = min(outstanding, retainer)
    effective_retainer = retainer - negative_offset
    remaining_negative = outstanding - negative_offset
    total_available = effective_retainer + rollover

    # 4. Retainer first, then rollover (oldest first), then excess
    used_retainer = min(worked, effective_retainer)
    used_rollover = min(worked - used_retainer, rollover)
    excess = worked - used_retainer - used_rollover
    buckets = _consume_buckets(buckets, used_rollover)

    # 5. Leftover retainer becomes new credit
    unused = effective_retainer - used_retainer
    if unused > 0:
        buckets = buckets + (RolloverBucket(month, unused),)

    # 6. Excess and unabsorbed debt carry forward
    negative_balance = excess + remaining_negative

    opening = OpeningBalance(
        retainer_hours=minutes_to_hours(retainer),
        rollover_hours=minutes_to_hours(rollover),
        expired_hours=minutes_to_hours(expired),
        total_available=minutes_to_hours(total_available),
        negative_offset=minutes_to_hours(negative_offset),
        invoiced_negative_balance=minutes_to_hours(invoiced_negative),
        effective_retainer_hours=minutes_to_hours(effective_retainer),
        remaining_negative_balance=minutes_to_hours(remaining_negative),
    )
    closing = ClosingBalance(
        hours_used_from_retainer=minutes_to_hours(used_retainer),
        hours_used_from_rollover=minutes_to_hours(used_rollover),
        unused_hours=minutes_to_hours(unused),
        excess_hours=minutes_to_hours(excess),
        negative_balance=minutes_to_hours(negative_balance),
        remaining_rollover=minutes_to_hours(rollover - used_rollover),
    )
    summary = MonthSummary(
        year_month=month,
        opening=opening,
        closing=closing,
        hours_worked=minutes_to_hours(worked),
        retainer_hours=agreement.monthly_retainer_hours,
        has_agreement=True,
        agreement_id=agreement.id,
        rollover_months=agreement.rollover_months,
        billable_minutes=own_minutes,
        entries_count=month_input.entries_count,
        folded_in_hours=minutes_to_hours(folded_minutes),
        catch_up_threshold_hours=agreement.catch_up_threshold_hours,
    )
    next_state = BalanceState(
        rollover_buckets=buckets,
        carried_negative_minutes=negative_balance,
        invoiced_excess_minutes=Decimal(month_input.invoiced_excess_minutes + state.pending_invoiced_minutes),
        pending_unbilled_minutes=0,
        pending_invoiced_minutes=0,
    )
    return summary, next_state


def _month_inputs(
    entries: Iterable[TimeEntry],
    invoiced_excess: Mapping[YearMonth, int] | None,
) -> dict[YearMonth, MonthInput]:
    minutes: dict[YearMonth, int] = {}
    counts: dict[YearMonth, int] = {}
    for entry in entries:
        if not entry.is_billable:
            continue
        key = YearMonth.from_date(entry.date_worked)
        minutes[key] = minutes.get(key, 0) + entry.minutes_worked
        counts[key] = counts.get(key, 0) + 1

    inputs = {}
    for key in set(minutes) | set(invoiced_excess or {}):
        inputs[key] = MonthInput(
            billable_minutes=minutes.get(key, 0),
            entries_count=counts.get(key, 0),
            invoiced_excess_minutes=(invoiced_excess or {}).get(key, 0),
        )
    return inputs


def fold_months(
    timeline: AgreementTimeline,
    inputs: Mapping[YearMonth, MonthInput],
    start: YearMonth,
    end: YearMonth,
) -> list[MonthSummary]:
    """Chronological month summaries from start to end inclusive."""
    state = BalanceState()
    summaries = []
    for month in iter_months(start, end):
        summary, state = step_month(
            state, month, timeline.resolve(month), inputs.get(month, MonthInput())
        )
        summaries.append(summary)
    return summaries


def calculate_monthly_balances(
    agreements: Iterable[Agreement],
    entries: Iterable[TimeEntry],
    invoiced_excess: Mapping[YearMonth, int] | None = None,
    through: YearMonth | None = None,
) -> list[MonthSummary]:
    """
    Month-by-month balance history, most recent month first.

    Args:
        agreements: client's agreements (validated for overlap)
        entries: client's time entries; non-billable entries are ignored
        invoiced_excess: minutes already billed at rate (catch-up) per work month
        through: extend the history up to this month even without entries

    Raises:
        BillingValidationError: overlapping agreements or malformed entries
    """
    timeline = AgreementTimeline(agreements)
    entries = list(entries)
    inputs = _month_inputs(entries, invoiced_excess)

    logged_months = sorted(
        YearMonth.from_date(e.date_worked) for e in entries if e.is_billable
    )
    if logged_months:
        start = logged_months[0]
        end = logged_months[-1]
        # agreement months before the first logged work still earn their retainer
        first_active = timeline.first_active_month()
        if first_active is not None and first_active < start:
            start = first_active
    elif through is not None and timeline:
        start = timeline.first_active_month()
        end = through
    else:
        return []

    if through is not None and through > end:
        end = through
    if start > end:
        return []

    return list(reversed(fold_months(timeline, inputs, start, end)))


def billing_month_for(summaries: Iterable[MonthSummary], day: date) -> YearMonth | None:
    """
    Month whose pools bill work done on `day`: the month itself when an
    agreement governs it, otherwise the first later agreement month.
    None while the work is still waiting for an agreement.
    """
    target = YearMonth.from_date(day)
    for summary in sorted(summaries, key=lambda s: s.year_month):
        if summary.year_month < target:
            continue
        if summary.has_agreement:
            return summary.year_month
    return None


def describe_status(summary: MonthSummary) -> str:
    """Human-readable status of a month's hour balance."""
    if not summary.has_agreement:
        return f"{summary.unbilled_hours:.2f} hours will be billed in the next agreement"

    closing = summary.closing
    if closing.excess_hours > 0:
        return f"Exceeded by {closing.excess_hours:.2f} hours (will be billed at hourly rate)"
    if closing.unused_hours > 0:
        return f"{closing.unused_hours:.2f} unused hours will roll over"
    if closing.hours_used_from_rollover > 0:
        return f"Used {closing.hours_used_from_rollover:.2f} rollover hours"
    return "All retainer hours used exactly"
