"""Tests for the monthly balance calculator"""
from datetime import date
from decimal import Decimal

import pytest

from clientbilling.domain.agreement import Agreement
from clientbilling.domain.balances import (
    BalanceState,
    MonthInput,
    billing_month_for,
    calculate_monthly_balances,
    describe_status,
    step_month,
)
from clientbilling.domain.errors import BillingValidationError
from clientbilling.domain.months import YearMonth
from clientbilling.domain.time_entry import TimeEntry


def agreement(active_from=date(2024, 1, 1), retainer="10", rollover=1, agreement_id=1, terminated_at=None):
    return Agreement(
        id=agreement_id,
        active_from=active_from,
        terminated_at=terminated_at,
        monthly_retainer_hours=Decimal(retainer),
        rollover_months=rollover,
        hourly_rate=Decimal("150"),
        monthly_fee=Decimal("1500"),
    )


def entry(entry_id, day, minutes, billable=True):
    return TimeEntry(id=entry_id, minutes_worked=minutes, date_worked=day, is_billable=billable)


def by_month(summaries):
    return {str(s.year_month): s for s in summaries}


class TestRetainerScenario:
    """10h retainer, 1 month rollover: 8h, then 13h, then nothing"""

    @pytest.fixture
    def months(self):
        summaries = calculate_monthly_balances(
            [agreement()],
            [entry(1, date(2024, 1, 15), 480), entry(2, date(2024, 2, 15), 780)],
            through=YearMonth(2024, 3),
        )
        return by_month(summaries)

    def test_month_one_leaves_unused_hours(self, months):
        jan = months["2024-01"]
        assert jan.hours_worked == Decimal("8")
        assert jan.opening.total_available == Decimal("10")
        assert jan.closing.hours_used_from_retainer == Decimal("8")
        assert jan.closing.unused_hours == Decimal("2")
        assert jan.closing.negative_balance == Decimal("0")

    def test_month_two_uses_rollover_then_goes_negative(self, months):
        feb = months["2024-02"]
        assert feb.opening.rollover_hours == Decimal("2")
        assert feb.opening.total_available == Decimal("12")
        assert feb.closing.hours_used_from_retainer == Decimal("10")
        assert feb.closing.hours_used_from_rollover == Decimal("2")
        assert feb.closing.excess_hours == Decimal("1")
        assert feb.closing.negative_balance == Decimal("1")
        assert feb.closing.unused_hours == Decimal("0")

    def test_month_three_offsets_negative_balance(self, months):
        mar = months["2024-03"]
        assert mar.hours_worked == Decimal("0")
        assert mar.opening.negative_offset == Decimal("1")
        assert mar.opening.effective_retainer_hours == Decimal("9")
        assert mar.closing.unused_hours == Decimal("9")
        assert mar.closing.negative_balance == Decimal("0")

    def test_most_recent_month_first(self):
        summaries = calculate_monthly_balances(
            [agreement()],
            [entry(1, date(2024, 1, 15), 480), entry(2, date(2024, 2, 15), 780)],
            through=YearMonth(2024, 3),
        )
        assert [str(s.year_month) for s in summaries] == ["2024-03", "2024-02", "2024-01"]


class TestRolloverExpiration:
    def test_credit_expires_after_rollover_window(self):
        summaries = by_month(calculate_monthly_balances([agreement(rollover=1)], [], through=YearMonth(2024, 3)))
        # January's 10h survive into February only
        assert summaries["2024-02"].opening.rollover_hours == Decimal("10")
        assert summaries["2024-03"].opening.expired_hours == Decimal("10")
        assert summaries["2024-03"].opening.rollover_hours == Decimal("10")  # February's credit

    def test_zero_rollover_means_no_carry(self):
        summaries = by_month(calculate_monthly_balances([agreement(rollover=0)], [], through=YearMonth(2024, 2)))
        assert summaries["2024-02"].opening.rollover_hours == Decimal("0")
        assert summaries["2024-02"].opening.expired_hours == Decimal("10")

    def test_credit_never_outlives_window(self):
        summaries = calculate_monthly_balances([agreement(rollover=2)], [], through=YearMonth(2024, 8))
        for summary in summaries:
            # at most the last two months of unused retainer survive
            assert summary.opening.rollover_hours <= Decimal("20")

    def test_oldest_bucket_used_first(self):
        # Jan and Feb each leave 5h; March uses 5h of rollover -> January's bucket
        entries = [
            entry(1, date(2024, 1, 5), 300),
            entry(2, date(2024, 2, 5), 300),
            entry(3, date(2024, 3, 5), 900),
        ]
        months = by_month(calculate_monthly_balances([agreement(rollover=2)], entries, through=YearMonth(2024, 4)))
        assert months["2024-03"].opening.rollover_hours == Decimal("10")
        assert months["2024-03"].closing.remaining_rollover == Decimal("5")
        # January's bucket is spent, so nothing expires in April; February's 5h remain
        assert months["2024-04"].opening.expired_hours == Decimal("0")
        assert months["2024-04"].opening.rollover_hours == Decimal("5")


class TestNegativeBalance:
    def test_negative_beyond_retainer_carries_remainder(self):
        months = by_month(calculate_monthly_balances(
            [agreement(rollover=0)],
            [entry(1, date(2024, 1, 5), 1500)],
            through=YearMonth(2024, 3),
        ))
        feb = months["2024-02"]
        assert months["2024-01"].closing.excess_hours == Decimal("15")
        assert feb.opening.negative_offset == Decimal("10")
        assert feb.opening.effective_retainer_hours == Decimal("0")
        assert feb.opening.remaining_negative_balance == Decimal("5")
        assert feb.closing.negative_balance == Decimal("5")
        assert months["2024-03"].opening.negative_offset == Decimal("5")
        assert months["2024-03"].opening.effective_retainer_hours == Decimal("5")

    def test_excess_of_two_offsets_at_most_two(self):
        months = by_month(calculate_monthly_balances(
            [agreement(rollover=0)],
            [entry(1, date(2024, 1, 5), 720)],
            through=YearMonth(2024, 2),
        ))
        assert months["2024-01"].closing.excess_hours == Decimal("2")
        assert months["2024-02"].opening.negative_offset <= Decimal("2")
        assert months["2024-02"].opening.effective_retainer_hours == Decimal("8")

    def test_invoiced_catch_up_is_not_offset_again(self):
        months = by_month(calculate_monthly_balances(
            [agreement()],
            [entry(1, date(2024, 1, 15), 480), entry(2, date(2024, 2, 15), 780)],
            invoiced_excess={YearMonth(2024, 2): 60},
            through=YearMonth(2024, 3),
        ))
        mar = months["2024-03"]
        assert mar.opening.invoiced_negative_balance == Decimal("1")
        assert mar.opening.negative_offset == Decimal("0")
        assert mar.opening.effective_retainer_hours == Decimal("10")


class TestPreAgreementFold:
    def test_pre_agreement_hours_fold_into_first_month(self):
        summaries = calculate_monthly_balances(
            [agreement(active_from=date(2024, 2, 1))],
            [entry(1, date(2024, 1, 20), 60), entry(2, date(2024, 2, 3), 60)],
        )
        months = by_month(summaries)
        jan, feb = months["2024-01"], months["2024-02"]

        assert not jan.has_agreement
        assert jan.unbilled_hours == Decimal("1")
        assert jan.will_be_billed_in_next_agreement
        assert jan.opening is None and jan.closing is None

        assert feb.hours_worked == Decimal("2")
        assert feb.folded_in_hours == Decimal("1")
        assert feb.closing.unused_hours == Decimal("8")
        assert feb.closing.remaining_rollover == Decimal("0")

    def test_gap_between_agreements_folds_into_next(self):
        agreements = [
            agreement(agreement_id=1, active_from=date(2024, 1, 1), terminated_at=date(2024, 2, 1)),
            agreement(agreement_id=2, active_from=date(2024, 3, 1)),
        ]
        months = by_month(calculate_monthly_balances(
            agreements,
            [entry(1, date(2024, 1, 5), 60), entry(2, date(2024, 2, 5), 120), entry(3, date(2024, 3, 5), 60)],
        ))
        assert not months["2024-02"].has_agreement
        assert months["2024-03"].agreement_id == 2
        assert months["2024-03"].hours_worked == Decimal("3")


class TestInputs:
    def test_non_billable_entries_ignored(self):
        months = by_month(calculate_monthly_balances(
            [agreement()],
            [entry(1, date(2024, 1, 5), 120), entry(2, date(2024, 1, 6), 600, billable=False)],
        ))
        assert months["2024-01"].hours_worked == Decimal("2")
        assert months["2024-01"].entries_count == 1

    def test_history_starts_with_agreement_before_first_work(self):
        months = by_month(calculate_monthly_balances(
            [agreement(rollover=1)],
            [entry(1, date(2024, 3, 5), 120)],
        ))
        assert list(months) == ["2024-03", "2024-02", "2024-01"]
        # February's unused retainer is still available in March
        assert months["2024-03"].opening.rollover_hours == Decimal("10")
        assert months["2024-03"].opening.expired_hours == Decimal("10")

    def test_no_entries_no_history(self):
        assert calculate_monthly_balances([agreement()], []) == []

    def test_overlapping_agreements_rejected(self):
        overlapping = [
            agreement(agreement_id=1, active_from=date(2024, 1, 1)),
            agreement(agreement_id=2, active_from=date(2024, 3, 1)),
        ]
        with pytest.raises(BillingValidationError):
            calculate_monthly_balances(overlapping, [entry(1, date(2024, 1, 5), 60)])

    def test_non_positive_minutes_rejected(self):
        with pytest.raises(BillingValidationError):
            entry(1, date(2024, 1, 5), 0)

    def test_step_month_is_pure(self):
        state = BalanceState()
        first, next_state = step_month(state, YearMonth(2024, 1), agreement(), MonthInput(billable_minutes=120))
        again, _ = step_month(state, YearMonth(2024, 1), agreement(), MonthInput(billable_minutes=120))
        assert first == again
        assert state == BalanceState()
        assert len(next_state.rollover_buckets) == 1


class TestBillingMonth:
    def test_covered_month_bills_itself(self):
        summaries = calculate_monthly_balances([agreement()], [entry(1, date(2024, 1, 5), 60)])
        assert billing_month_for(summaries, date(2024, 1, 5)) == YearMonth(2024, 1)

    def test_pre_agreement_entry_bills_in_first_active_month(self):
        summaries = calculate_monthly_balances(
            [agreement(active_from=date(2024, 3, 1))],
            [entry(1, date(2024, 1, 5), 60), entry(2, date(2024, 3, 5), 60)],
        )
        assert billing_month_for(summaries, date(2024, 1, 5)) == YearMonth(2024, 3)

    def test_pending_entry_has_no_billing_month(self):
        summaries = calculate_monthly_balances([], [entry(1, date(2024, 1, 5), 60)])
        assert billing_month_for(summaries, date(2024, 1, 5)) is None


class TestDescribeStatus:
    def test_statuses(self):
        months = by_month(calculate_monthly_balances(
            [agreement(active_from=date(2024, 2, 1))],
            [entry(1, date(2024, 1, 5), 60), entry(2, date(2024, 2, 5), 480), entry(3, date(2024, 3, 5), 780)],
        ))
        assert describe_status(months["2024-01"]) == "1.00 hours will be billed in the next agreement"
        assert describe_status(months["2024-02"]) == "1.00 unused hours will roll over"
        assert describe_status(months["2024-03"]) == "Exceeded by 2.00 hours (will be billed at hourly rate)"
