"""
SQLAlchemy ORM models (client billing tables)
"""
from decimal import Decimal
from datetime import date as date_type
from sqlalchemy import String, DateTime, Integer, Text, TIMESTAMP, Date, func, Boolean, Numeric, UniqueConstraint, Index, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from clientbilling.infrastructure.db.session import Base


INVOICE_STATUS_DRAFT = "draft"
INVOICE_STATUS_ISSUED = "issued"
INVOICE_STATUS_PAID = "paid"
INVOICE_STATUS_VOID = "void"

HOURS_NUMERIC = Numeric(precision=10, scale=4)
MONEY_NUMERIC = Numeric(precision=10, scale=2)


class ClientCompany(Base):
    """Client company; its row is the lock target of an invoice generation run"""
    __tablename__ = "client_companies"

    id: Mapped[int] = mapped_column(primary_key=True)
    company_name: Mapped[str] = mapped_column(String(255), nullable=False)
    # Invoice number prefix, e.g. "ACME" -> ACME-202403-001
    invoice_prefix: Mapped[str | None] = mapped_column(String(16), nullable=True)

    created_at: Mapped[DateTime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )
    deleted_at: Mapped[DateTime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)


class ClientAgreement(Base):
    """Billing agreement: [active_date, termination_date) of one client"""
    __tablename__ = "client_agreements"

    id: Mapped[int] = mapped_column(primary_key=True)
    client_company_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)  # -> client_companies

    active_date: Mapped[date_type] = mapped_column(Date, nullable=False)
    termination_date: Mapped[date_type | None] = mapped_column(Date, nullable=True)  # exclusive

    monthly_retainer_hours: Mapped[Decimal] = mapped_column(HOURS_NUMERIC, nullable=False)
    rollover_months: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    hourly_rate: Mapped[Decimal] = mapped_column(MONEY_NUMERIC, nullable=False)
    monthly_retainer_fee: Mapped[Decimal] = mapped_column(MONEY_NUMERIC, nullable=False)
    catch_up_threshold_hours: Mapped[Decimal] = mapped_column(
        HOURS_NUMERIC, nullable=False, server_default="0"
    )

    created_at: Mapped[DateTime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )
    deleted_at: Mapped[DateTime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)


class ClientTimeEntry(Base):
    """
    Logged unit of work. client_invoice_line_id is set once the entry is billed;
    a linked entry is never edited or hard-deleted.
    """
    __tablename__ = "client_time_entries"

    id: Mapped[int] = mapped_column(primary_key=True)
    client_company_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)  # -> client_companies
    project_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    task_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    user_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    name: Mapped[str] = mapped_column(String(512), nullable=False, server_default="")
    minutes_worked: Mapped[int] = mapped_column(Integer, nullable=False)
    date_worked: Mapped[date_type] = mapped_column(Date, nullable=False)
    is_billable: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="true")

    client_invoice_line_id: Mapped[int | None] = mapped_column(
        Integer, nullable=True, index=True
    )  # -> client_invoice_lines

    created_at: Mapped[DateTime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )
    deleted_at: Mapped[DateTime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    __table_args__ = (
        Index('ix_client_time_entry_client_date', 'client_company_id', 'date_worked'),
        CheckConstraint('minutes_worked > 0', name='ck_client_time_entry_minutes_positive'),
    )


class ClientExpense(Base):
    """Client expense; reimbursable ones are billed at cost and linked to their invoice line"""
    __tablename__ = "client_expenses"

    id: Mapped[int] = mapped_column(primary_key=True)
    client_company_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)  # -> client_companies
    project_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    creator_user_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    description: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=2), nullable=False)
    expense_date: Mapped[date_type] = mapped_column(Date, nullable=False)
    category: Mapped[str | None] = mapped_column(String(64), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    is_reimbursable: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="false")
    # Set when the client has paid the expense back
    is_reimbursed: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="false")
    reimbursed_date: Mapped[date_type | None] = mapped_column(Date, nullable=True)

    client_invoice_line_id: Mapped[int | None] = mapped_column(
        Integer, nullable=True, index=True
    )  # -> client_invoice_lines

    created_at: Mapped[DateTime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )
    deleted_at: Mapped[DateTime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    __table_args__ = (
        Index('ix_client_expense_client_date', 'client_company_id', 'expense_date'),
        CheckConstraint('amount >= 0', name='ck_client_expense_amount_non_negative'),
    )


class ClientInvoice(Base):
    """Invoice header: period, computed hour totals, status draft -> issued -> paid | void"""
    __tablename__ = "client_invoices"

    id: Mapped[int] = mapped_column(primary_key=True)
    client_company_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)  # -> client_companies
    invoice_number: Mapped[str] = mapped_column(String(64), nullable=False)

    period_start: Mapped[date_type] = mapped_column(Date, nullable=False)
    period_end: Mapped[date_type] = mapped_column(Date, nullable=False)

    retainer_hours_included: Mapped[Decimal] = mapped_column(HOURS_NUMERIC, nullable=False, server_default="0")
    hours_worked: Mapped[Decimal] = mapped_column(HOURS_NUMERIC, nullable=False, server_default="0")
    rollover_hours_used: Mapped[Decimal] = mapped_column(HOURS_NUMERIC, nullable=False, server_default="0")
    unused_hours_balance: Mapped[Decimal] = mapped_column(HOURS_NUMERIC, nullable=False, server_default="0")
    negative_hours_balance: Mapped[Decimal] = mapped_column(HOURS_NUMERIC, nullable=False, server_default="0")
    hours_billed_at_rate: Mapped[Decimal] = mapped_column(HOURS_NUMERIC, nullable=False, server_default="0")
    starting_unused_hours: Mapped[Decimal] = mapped_column(HOURS_NUMERIC, nullable=False, server_default="0")
    starting_negative_hours: Mapped[Decimal] = mapped_column(HOURS_NUMERIC, nullable=False, server_default="0")

    invoice_total: Mapped[Decimal] = mapped_column(MONEY_NUMERIC, nullable=False, server_default="0")
    status: Mapped[str] = mapped_column(String(20), nullable=False, server_default=INVOICE_STATUS_DRAFT)

    issue_date: Mapped[date_type | None] = mapped_column(Date, nullable=True)
    due_date: Mapped[date_type | None] = mapped_column(Date, nullable=True)
    paid_date: Mapped[date_type | None] = mapped_column(Date, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[DateTime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[DateTime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint('client_company_id', 'invoice_number', name='uq_client_invoice_number'),
        Index('ix_client_invoice_period', 'client_company_id', 'period_start', 'period_end'),
    )


class ClientInvoiceLine(Base):
    """Invoice line; line_type is retainer, an allocation type, expense or adjustment"""
    __tablename__ = "client_invoice_lines"

    id: Mapped[int] = mapped_column(primary_key=True)
    client_invoice_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)  # -> client_invoices
    client_agreement_id: Mapped[int | None] = mapped_column(Integer, nullable=True)  # -> client_agreements

    description: Mapped[str] = mapped_column(String(512), nullable=False)
    quantity: Mapped[str] = mapped_column(String(32), nullable=False, server_default="1")
    unit_price: Mapped[Decimal] = mapped_column(MONEY_NUMERIC, nullable=False, server_default="0")
    line_total: Mapped[Decimal] = mapped_column(MONEY_NUMERIC, nullable=False, server_default="0")
    line_type: Mapped[str] = mapped_column(String(32), nullable=False)
    hours: Mapped[Decimal | None] = mapped_column(HOURS_NUMERIC, nullable=True)
    line_date: Mapped[date_type | None] = mapped_column(Date, nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")

    created_at: Mapped[DateTime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )
