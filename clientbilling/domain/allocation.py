"""
Time-entry allocator.

Splits the unbilled entries of a billing period into fragments, one per
allocation type, drawing on the pools of the month that bills each entry:

  1. current_month_retainer - the month's effective retainer
  2. prior_month_retainer   - rollover credit carried from earlier months
  3. catch_up               - outstanding negative balance + threshold shortfall
  4. billable_catchup       - everything beyond, billed at the hourly rate

Entries are processed oldest first (date_worked, id), so earlier work is
covered before later work when a pool runs out. The fragments of one entry
always sum to the entry's minutes.
"""
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, Mapping

from clientbilling.domain.balances import MonthSummary, billing_month_for
from clientbilling.domain.errors import BillingValidationError
from clientbilling.domain.hours import ZERO, hours_to_minutes, minutes_to_hours, whole_minutes
from clientbilling.domain.months import YearMonth
from clientbilling.domain.time_entry import (
    ALLOCATION_BILLABLE_CATCHUP,
    ALLOCATION_CATCH_UP,
    ALLOCATION_CURRENT_MONTH_RETAINER,
    ALLOCATION_PRIOR_MONTH_RETAINER,
    ALLOCATION_UNALLOCATED,
    BILLED_AT_RATE_TYPES,
    TimeEntry,
    TimeEntryFragment,
)


@dataclass(frozen=True)
class AllocationPolicy:
    # When an entry fits entirely in one included pool, assign it whole
    # instead of splitting it across the current and prior pools.
    prefer_whole_entries: bool = True


@dataclass(frozen=True)
class AllocationPlan:
    prior_month_retainer_fragments: tuple[TimeEntryFragment, ...] = ()
    current_month_retainer_fragments: tuple[TimeEntryFragment, ...] = ()
    catch_up_fragments: tuple[TimeEntryFragment, ...] = ()
    billable_catchup_fragments: tuple[TimeEntryFragment, ...] = ()
    unallocated_fragments: tuple[TimeEntryFragment, ...] = ()

    @classmethod
    def from_fragments(cls, fragments: Iterable[TimeEntryFragment]) -> "AllocationPlan":
        groups: dict[str, list[TimeEntryFragment]] = {}
        for fragment in fragments:
            groups.setdefault(fragment.allocation_type, []).append(fragment)
        return cls(
            prior_month_retainer_fragments=tuple(groups.get(ALLOCATION_PRIOR_MONTH_RETAINER, ())),
            current_month_retainer_fragments=tuple(groups.get(ALLOCATION_CURRENT_MONTH_RETAINER, ())),
            catch_up_fragments=tuple(groups.get(ALLOCATION_CATCH_UP, ())),
            billable_catchup_fragments=tuple(groups.get(ALLOCATION_BILLABLE_CATCHUP, ())),
            unallocated_fragments=tuple(groups.get(ALLOCATION_UNALLOCATED, ())),
        )

    @staticmethod
    def _hours(fragments: Iterable[TimeEntryFragment]) -> Decimal:
        return minutes_to_hours(sum(f.minutes for f in fragments))

    @property
    def total_prior_month_retainer_hours(self) -> Decimal:
        return self._hours(self.prior_month_retainer_fragments)

    @property
    def total_current_month_retainer_hours(self) -> Decimal:
        return self._hours(self.current_month_retainer_fragments)

    @property
    def total_catch_up_hours(self) -> Decimal:
        return self._hours(self.catch_up_fragments)

    @property
    def total_billable_catchup_hours(self) -> Decimal:
        return self._hours(self.billable_catchup_fragments)

    @property
    def total_unallocated_hours(self) -> Decimal:
        return self._hours(self.unallocated_fragments)

    def all_fragments(self) -> list[TimeEntryFragment]:
        """Allocated fragments (unallocated ones excluded)."""
        return [
            *self.prior_month_retainer_fragments,
            *self.current_month_retainer_fragments,
            *self.catch_up_fragments,
            *self.billable_catchup_fragments,
        ]

    @property
    def total_fragments(self) -> int:
        return len(self.all_fragments())

    @property
    def total_hours(self) -> Decimal:
        return self._hours(self.all_fragments())

    @property
    def hours_billed_at_rate(self) -> Decimal:
        return self._hours(f for f in self.all_fragments() if f.allocation_type in BILLED_AT_RATE_TYPES)

    def fragments_for(self, entry_id: int) -> list[TimeEntryFragment]:
        return [f for f in self.all_fragments() if f.original_time_entry_id == entry_id]

    def is_empty(self) -> bool:
        return not self.all_fragments()


class _MonthPools:
    """Remaining minutes of one billing month's pools during an allocation run."""

    def __init__(self, summary: MonthSummary, consumed: Mapping[str, int]):
        opening = summary.opening
        available = hours_to_minutes(opening.total_available)
        threshold = hours_to_minutes(summary.catch_up_threshold_hours)
        catch_up = hours_to_minutes(opening.remaining_negative_balance) + max(ZERO, threshold - available)

        self.agreement_id = summary.agreement_id
        self.remaining = {
            ALLOCATION_CURRENT_MONTH_RETAINER: whole_minutes(hours_to_minutes(opening.effective_retainer_hours)),
            ALLOCATION_PRIOR_MONTH_RETAINER: whole_minutes(hours_to_minutes(opening.rollover_hours)),
            ALLOCATION_CATCH_UP: whole_minutes(catch_up),
        }
        for allocation_type in self.remaining:
            used = consumed.get(allocation_type, 0)
            self.remaining[allocation_type] = max(0, self.remaining[allocation_type] - used)

    def take(self, allocation_type: str, minutes: int) -> int:
        taken = min(minutes, self.remaining[allocation_type])
        self.remaining[allocation_type] -= taken
        return taken


INCLUDED_POOL_ORDER = (ALLOCATION_CURRENT_MONTH_RETAINER, ALLOCATION_PRIOR_MONTH_RETAINER)
SPLIT_POOL_ORDER = INCLUDED_POOL_ORDER + (ALLOCATION_CATCH_UP,)


def _allocate_entry(
    entry: TimeEntry,
    pools: _MonthPools,
    policy: AllocationPolicy,
) -> list[TimeEntryFragment]:
    if policy.prefer_whole_entries:
        for allocation_type in INCLUDED_POOL_ORDER:
            if entry.minutes_worked <= pools.remaining[allocation_type]:
                pools.take(allocation_type, entry.minutes_worked)
                return [TimeEntryFragment.of(entry, entry.minutes_worked, allocation_type, pools.agreement_id)]

    fragments = []
    remaining = entry.minutes_worked
    for allocation_type in SPLIT_POOL_ORDER:
        if remaining <= 0:
            break
        taken = pools.take(allocation_type, remaining)
        if taken > 0:
            fragments.append(TimeEntryFragment.of(entry, taken, allocation_type, pools.agreement_id))
            remaining -= taken
    if remaining > 0:
        fragments.append(TimeEntryFragment.of(entry, remaining, ALLOCATION_BILLABLE_CATCHUP, pools.agreement_id))
    return fragments


def is_eligible(entry: TimeEntry) -> bool:
    return entry.is_billable and not entry.is_invoiced


def allocate(
    unbilled_entries: Iterable[TimeEntry],
    month_balances: Iterable[MonthSummary],
    period_start: date,
    period_end: date,
    consumed: Mapping[YearMonth, Mapping[str, int]] | None = None,
    policy: AllocationPolicy = AllocationPolicy(),
) -> AllocationPlan:
    """
    Build the allocation plan of one billing run.

    Args:
        unbilled_entries: candidate entries; non-billable and invoiced ones are skipped
        month_balances: calculator output covering the period (any order)
        period_start, period_end: inclusive billing period
        consumed: minutes already billed per month and allocation type
        policy: tie-break policy

    Returns:
        AllocationPlan. Entries of the period not yet governed by an agreement
        are reported as unallocated fragments.

    Raises:
        BillingValidationError: period_end before period_start
    """
    if period_end < period_start:
        raise BillingValidationError("period_end must not be before period_start")

    summaries = list(month_balances)
    by_month = {s.year_month: s for s in summaries}
    first_month = YearMonth.from_date(period_start)
    last_month = YearMonth.from_date(period_end)
    consumed = consumed or {}

    pools: dict[YearMonth, _MonthPools] = {}
    fragments: list[TimeEntryFragment] = []

    entries = sorted(
        (e for e in unbilled_entries if is_eligible(e)),
        key=lambda e: (e.date_worked, e.id),
    )
    for entry in entries:
        in_period = period_start <= entry.date_worked <= period_end
        billing_month = billing_month_for(summaries, entry.date_worked)
        if billing_month is None:
            billable_now = False
        elif billing_month == YearMonth.from_date(entry.date_worked):
            billable_now = in_period
        else:
            # pre-agreement work is billed with its first agreement month
            billable_now = first_month <= billing_month <= last_month

        if not billable_now:
            if in_period:
                fragments.append(TimeEntryFragment.of(entry, entry.minutes_worked, ALLOCATION_UNALLOCATED))
            continue

        if billing_month not in pools:
            pools[billing_month] = _MonthPools(by_month[billing_month], consumed.get(billing_month, {}))
        fragments.extend(_allocate_entry(entry, pools[billing_month], policy))

    return AllocationPlan.from_fragments(fragments)
