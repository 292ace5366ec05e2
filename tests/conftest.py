"""
Pytest fixtures for testing
"""
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from clientbilling.infrastructure.db.session import Base
from clientbilling.infrastructure.db.models import ClientAgreement, ClientCompany, ClientExpense, ClientTimeEntry


@pytest.fixture
def db_engine():
    """In-memory SQLite engine shared across threads (TestClient runs sync routes in a worker thread)."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine) -> Session:
    """Create database session for tests"""
    SessionLocal = sessionmaker(bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def client_company(db_session) -> ClientCompany:
    """Sample client company"""
    company = ClientCompany(company_name="Acme Corp", invoice_prefix="ACME")
    db_session.add(company)
    db_session.commit()
    return company


@pytest.fixture
def add_agreement(db_session, client_company):
    """Factory: persist an agreement for the sample client"""
    def _add(
        active_from: date,
        retainer_hours: str = "10",
        rollover_months: int = 1,
        hourly_rate: str = "150",
        monthly_fee: str = "1500",
        terminated_at: date | None = None,
        catch_up_threshold_hours: str = "0",
    ) -> ClientAgreement:
        row = ClientAgreement(
            client_company_id=client_company.id,
            active_date=active_from,
            termination_date=terminated_at,
            monthly_retainer_hours=Decimal(retainer_hours),
            rollover_months=rollover_months,
            hourly_rate=Decimal(hourly_rate),
            monthly_retainer_fee=Decimal(monthly_fee),
            catch_up_threshold_hours=Decimal(catch_up_threshold_hours),
        )
        db_session.add(row)
        db_session.commit()
        return row
    return _add


@pytest.fixture
def add_entry(db_session, client_company):
    """Factory: persist a time entry for the sample client"""
    def _add(
        date_worked: date,
        minutes: int,
        name: str = "Development",
        is_billable: bool = True,
        user_id: int | None = 1,
    ) -> ClientTimeEntry:
        row = ClientTimeEntry(
            client_company_id=client_company.id,
            minutes_worked=minutes,
            date_worked=date_worked,
            name=name,
            is_billable=is_billable,
            user_id=user_id,
        )
        db_session.add(row)
        db_session.commit()
        return row
    return _add


@pytest.fixture
def add_expense(db_session, client_company):
    """Factory: persist an expense for the sample client"""
    def _add(
        expense_date: date,
        amount: str,
        description: str = "Hosting",
        is_reimbursable: bool = True,
    ) -> ClientExpense:
        row = ClientExpense(
            client_company_id=client_company.id,
            description=description,
            amount=Decimal(amount),
            expense_date=expense_date,
            is_reimbursable=is_reimbursable,
        )
        db_session.add(row)
        db_session.commit()
        return row
    return _add


@pytest.fixture
def retainer_history(add_agreement, add_entry):
    """
    10h retainer from 2024-01, rollover 1 month, 150/h, fee 1500.

    January: 5h + 4h (1h unused, rolls into February)
    February: 10h + 3h (1h from rollover, 2h beyond)
    """
    agreement = add_agreement(date(2024, 1, 1))
    entries = {
        "jan_a": add_entry(date(2024, 1, 10), 300, name="Design"),
        "jan_b": add_entry(date(2024, 1, 20), 240, name="Review"),
        "feb_a": add_entry(date(2024, 2, 5), 600, name="Build"),
        "feb_b": add_entry(date(2024, 2, 10), 180, name="Deploy"),
    }
    return agreement, entries
