"""
Tests for agreement use cases.
"""
import pytest
from datetime import date
from decimal import Decimal

from clientbilling.application.agreements import CreateAgreementUseCase, TerminateAgreementUseCase
from clientbilling.application.loaders import load_agreements
from clientbilling.domain.errors import BillingNotFoundError, BillingValidationError

TERMS = dict(
    monthly_retainer_hours=Decimal("10"),
    rollover_months=1,
    hourly_rate=Decimal("150"),
    monthly_fee=Decimal("1500"),
)


class TestCreateAgreement:
    def test_create(self, db_session, client_company):
        row = CreateAgreementUseCase(db_session).execute(client_company.id, date(2024, 1, 1), **TERMS)

        assert row.id is not None
        agreements = load_agreements(db_session, client_company.id)
        assert len(agreements) == 1
        assert agreements[0].monthly_retainer_hours == Decimal("10")
        assert agreements[0].terminated_at is None

    def test_overlap_rejected(self, db_session, client_company, add_agreement):
        add_agreement(date(2024, 1, 1))
        with pytest.raises(BillingValidationError):
            CreateAgreementUseCase(db_session).execute(client_company.id, date(2024, 6, 1), **TERMS)
        assert len(load_agreements(db_session, client_company.id)) == 1

    def test_adjacent_after_termination(self, db_session, client_company, add_agreement):
        first = add_agreement(date(2024, 1, 1))
        TerminateAgreementUseCase(db_session).execute(client_company.id, first.id, date(2024, 6, 1))

        CreateAgreementUseCase(db_session).execute(client_company.id, date(2024, 6, 1), **TERMS)
        assert len(load_agreements(db_session, client_company.id)) == 2

    def test_negative_terms_rejected(self, db_session, client_company):
        terms = dict(TERMS, hourly_rate=Decimal("-1"))
        with pytest.raises(BillingValidationError):
            CreateAgreementUseCase(db_session).execute(client_company.id, date(2024, 1, 1), **terms)

    def test_unknown_client(self, db_session):
        with pytest.raises(BillingNotFoundError):
            CreateAgreementUseCase(db_session).execute(999, date(2024, 1, 1), **TERMS)


class TestTerminateAgreement:
    def test_terminate(self, db_session, client_company, add_agreement):
        row = add_agreement(date(2024, 1, 1))
        TerminateAgreementUseCase(db_session).execute(client_company.id, row.id, date(2024, 4, 1))
        assert row.termination_date == date(2024, 4, 1)

    def test_terminate_before_start_rejected(self, db_session, client_company, add_agreement):
        row = add_agreement(date(2024, 1, 1))
        with pytest.raises(BillingValidationError):
            TerminateAgreementUseCase(db_session).execute(client_company.id, row.id, date(2023, 12, 1))
        assert row.termination_date is None

    def test_already_terminated(self, db_session, client_company, add_agreement):
        row = add_agreement(date(2024, 1, 1), terminated_at=date(2024, 3, 1))
        with pytest.raises(BillingValidationError):
            TerminateAgreementUseCase(db_session).execute(client_company.id, row.id, date(2024, 4, 1))

    def test_unknown_agreement(self, db_session, client_company):
        with pytest.raises(BillingNotFoundError):
            TerminateAgreementUseCase(db_session).execute(client_company.id, 42, date(2024, 4, 1))
