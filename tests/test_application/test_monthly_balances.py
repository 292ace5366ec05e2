"""
Tests for GetMonthlyBalancesUseCase against persisted agreements and entries.
"""
import pytest
from datetime import date
from decimal import Decimal

from clientbilling.application.balances import GetMonthlyBalancesUseCase
from clientbilling.application.invoicing import GenerateInvoiceUseCase
from clientbilling.domain.errors import BillingNotFoundError
from clientbilling.domain.months import YearMonth


def _by_month(summaries):
    return {str(s.year_month): s for s in summaries}


class TestMonthlyBalances:
    def test_history_newest_first(self, db_session, client_company, retainer_history):
        summaries = GetMonthlyBalancesUseCase(db_session).execute(client_company.id)
        assert [str(s.year_month) for s in summaries] == ["2024-02", "2024-01"]

    def test_balances_before_invoicing(self, db_session, client_company, retainer_history):
        months = _by_month(GetMonthlyBalancesUseCase(db_session).execute(client_company.id, through=YearMonth(2024, 3)))

        assert months["2024-01"].closing.unused_hours == Decimal("1")
        assert months["2024-02"].opening.rollover_hours == Decimal("1")
        assert months["2024-02"].closing.negative_balance == Decimal("2")
        assert months["2024-03"].opening.negative_offset == Decimal("2")
        assert months["2024-03"].opening.effective_retainer_hours == Decimal("8")

    def test_billed_excess_is_not_offset_again(self, db_session, client_company, retainer_history):
        generate = GenerateInvoiceUseCase(db_session)
        generate.execute(client_company.id, date(2024, 1, 1), date(2024, 1, 31))
        generate.execute(client_company.id, date(2024, 2, 1), date(2024, 2, 29))

        months = _by_month(GetMonthlyBalancesUseCase(db_session).execute(client_company.id, through=YearMonth(2024, 3)))
        mar = months["2024-03"]
        assert mar.opening.invoiced_negative_balance == Decimal("2")
        assert mar.opening.negative_offset == Decimal("0")
        assert mar.opening.effective_retainer_hours == Decimal("10")

    def test_split_rows_do_not_change_hours(self, db_session, client_company, retainer_history):
        before = GetMonthlyBalancesUseCase(db_session).execute(client_company.id)
        GenerateInvoiceUseCase(db_session).execute(client_company.id, date(2024, 2, 1), date(2024, 2, 29))
        after = GetMonthlyBalancesUseCase(db_session).execute(client_company.id)

        assert [s.hours_worked for s in after] == [s.hours_worked for s in before]

    def test_unknown_client(self, db_session):
        with pytest.raises(BillingNotFoundError):
            GetMonthlyBalancesUseCase(db_session).execute(999)
