"""
Invoice use cases - preview, generation and lifecycle of client invoices

Generation runs in one transaction:
1. Lock the client row (serializes concurrent runs for the same client)
2. Reject a period that overlaps a non-void invoice
3. Lock the unbilled time entries and expenses, rebuild the allocation plan
4. Insert the invoice and its lines, link every fragment and expense to its line
5. Recompute invoice_total and commit

Any failure rolls the whole run back; entries and invoices stay as they were.
"""
import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clientbilling.application.loaders import (
    consumed_by_billing_month,
    get_client,
    invoiced_excess_by_month,
    load_agreements,
    load_expense_rows,
    load_linked_minutes,
    load_time_entries,
    load_time_entry_rows,
    load_unbilled_expenses,
    retainer_billed_months,
)
from clientbilling.application.time_entries import recombine_fragments
from clientbilling.config import get_settings
from clientbilling.domain.agreement import AgreementTimeline
from clientbilling.domain.allocation import AllocationPlan, AllocationPolicy, allocate
from clientbilling.domain.balances import MonthSummary, calculate_monthly_balances
from clientbilling.domain.errors import (
    BillingConflictError,
    BillingError,
    BillingNotFoundError,
    BillingPersistenceError,
    BillingValidationError,
)
from clientbilling.domain.hours import ZERO, quantize_money
from clientbilling.domain.invoice import LINE_TYPE_ADJUSTMENT, SYSTEM_LINE_TYPES, InvoiceDraft, assemble_invoice
from clientbilling.domain.months import YearMonth, iter_months
from clientbilling.domain.time_entry import TimeEntryFragment
from clientbilling.infrastructure.db.models import (
    ClientCompany,
    ClientExpense,
    ClientInvoice,
    ClientInvoiceLine,
    ClientTimeEntry,
    INVOICE_STATUS_DRAFT,
    INVOICE_STATUS_ISSUED,
    INVOICE_STATUS_PAID,
    INVOICE_STATUS_VOID,
)

logger = logging.getLogger(__name__)

DEFAULT_INVOICE_PREFIX = "INV"


@dataclass(frozen=True)
class InvoicePreview:
    draft: InvoiceDraft
    plan: AllocationPlan
    month_balances: tuple[MonthSummary, ...] = ()


def default_policy() -> AllocationPolicy:
    return AllocationPolicy(prefer_whole_entries=get_settings().ALLOCATION_PREFER_WHOLE_ENTRIES)


def validate_period(period_start: date, period_end: date) -> None:
    if period_end < period_start:
        raise BillingValidationError(
            f"Invalid period: {period_end} is before {period_start}"
        )


def build_preview(
    db: Session,
    client_id: int,
    period_start: date,
    period_end: date,
    policy: AllocationPolicy,
) -> InvoicePreview:
    """Balances -> allocation -> assembly for one period. Reads only."""
    agreements = load_agreements(db, client_id)
    entries = load_time_entries(db, client_id)
    linked = load_linked_minutes(db, client_id)

    summaries = calculate_monthly_balances(
        agreements,
        entries,
        invoiced_excess_by_month(linked),
        through=YearMonth.from_date(period_end),
    )
    plan = allocate(
        [e for e in entries if not e.is_invoiced],
        summaries,
        period_start,
        period_end,
        consumed=consumed_by_billing_month(linked, summaries),
        policy=policy,
    )
    draft = assemble_invoice(
        plan,
        summaries,
        agreements,
        period_start,
        period_end,
        retainer_billed_months=retainer_billed_months(db, client_id),
        expenses=load_unbilled_expenses(db, client_id),
    )
    return InvoicePreview(draft=draft, plan=plan, month_balances=tuple(summaries))


def find_overlapping_invoice(
    db: Session,
    client_id: int,
    period_start: date,
    period_end: date,
    exclude_invoice_id: int | None = None,
) -> ClientInvoice | None:
    query = db.query(ClientInvoice).filter(
        ClientInvoice.client_company_id == client_id,
        ClientInvoice.status != INVOICE_STATUS_VOID,
        ClientInvoice.period_start <= period_end,
        ClientInvoice.period_end >= period_start,
    )
    if exclude_invoice_id is not None:
        query = query.filter(ClientInvoice.id != exclude_invoice_id)
    return query.order_by(ClientInvoice.id).first()


def next_invoice_number(db: Session, client: ClientCompany, period_end: date) -> str:
    """PREFIX-YYYYMM-NNN, numbered per client and month (void invoices keep their numbers)."""
    prefix = f"{client.invoice_prefix or DEFAULT_INVOICE_PREFIX}-{period_end:%Y%m}"
    count = db.query(func.count(ClientInvoice.id)).filter(
        ClientInvoice.client_company_id == client.id,
        ClientInvoice.invoice_number.like(f"{prefix}-%"),
    ).scalar() or 0
    return f"{prefix}-{count + 1:03d}"


def get_invoice(db: Session, client_id: int, invoice_id: int) -> ClientInvoice:
    invoice = db.query(ClientInvoice).filter(
        ClientInvoice.id == invoice_id,
        ClientInvoice.client_company_id == client_id,
    ).first()
    if not invoice:
        raise BillingNotFoundError(f"Invoice #{invoice_id} not found")
    return invoice


def get_invoice_lines(db: Session, invoice_id: int) -> list[ClientInvoiceLine]:
    return db.query(ClientInvoiceLine).filter(
        ClientInvoiceLine.client_invoice_id == invoice_id,
    ).order_by(ClientInvoiceLine.sort_order, ClientInvoiceLine.id).all()


def list_invoices(db: Session, client_id: int) -> list[ClientInvoice]:
    """Invoice history of a client, newest period first."""
    return db.query(ClientInvoice).filter(
        ClientInvoice.client_company_id == client_id,
    ).order_by(ClientInvoice.period_start.desc(), ClientInvoice.id.desc()).all()


def recalculate_invoice_total(db: Session, invoice: ClientInvoice) -> Decimal:
    """invoice_total := sum of the line totals (no commit)."""
    db.flush()
    lines = get_invoice_lines(db, invoice.id)
    invoice.invoice_total = quantize_money(sum((Decimal(line.line_total) for line in lines), ZERO))
    return invoice.invoice_total


def link_fragments(
    db: Session,
    row: ClientTimeEntry,
    parts: list[tuple[TimeEntryFragment, int]],
) -> None:
    """
    Link an entry's fragments to their invoice lines.

    The row keeps the first fragment; every further fragment becomes a sibling
    row carrying the same metadata, so each row is linked to exactly one line.
    """
    if row.client_invoice_line_id is not None:
        raise BillingConflictError(
            f"Time entry #{row.id} is already linked to invoice line #{row.client_invoice_line_id}"
        )
    if sum(fragment.minutes for fragment, _ in parts) != row.minutes_worked:
        raise BillingValidationError(f"Fragments of time entry #{row.id} do not add up to its minutes")

    (first, first_line_id), rest = parts[0], parts[1:]
    row.minutes_worked = first.minutes
    row.client_invoice_line_id = first_line_id

    for fragment, line_id in rest:
        db.add(ClientTimeEntry(
            client_company_id=row.client_company_id,
            project_id=row.project_id,
            task_id=row.task_id,
            user_id=row.user_id,
            name=row.name,
            minutes_worked=fragment.minutes,
            date_worked=row.date_worked,
            is_billable=row.is_billable,
            client_invoice_line_id=line_id,
        ))


class PreviewInvoiceUseCase:
    """
    Use case: compute invoice totals and breakdown for a period without writing

    Repeated calls on unchanged data return identical results.
    """

    def __init__(self, db: Session, policy: AllocationPolicy | None = None):
        self.db = db
        self.policy = policy or default_policy()

    def execute(self, client_id: int, period_start: date, period_end: date) -> InvoicePreview:
        validate_period(period_start, period_end)
        get_client(self.db, client_id)
        return build_preview(self.db, client_id, period_start, period_end, self.policy)


class GenerateInvoiceUseCase:
    """
    Use case: persist an invoice for a period and mark its time entries invoiced

    Raises:
        BillingValidationError: bad period, or nothing to invoice
        BillingConflictError: a non-void invoice overlaps the period
        BillingPersistenceError: the store failed; nothing was written
    """

    def __init__(self, db: Session, policy: AllocationPolicy | None = None):
        self.db = db
        self.policy = policy or default_policy()

    def execute(
        self,
        client_id: int,
        period_start: date,
        period_end: date,
        notes: str | None = None,
    ) -> ClientInvoice:
        validate_period(period_start, period_end)

        try:
            client = get_client(self.db, client_id, lock=True)

            existing = find_overlapping_invoice(self.db, client_id, period_start, period_end)
            if existing:
                raise BillingConflictError(
                    f"Invoice {existing.invoice_number} already covers "
                    f"{existing.period_start} - {existing.period_end}"
                )

            rows = load_time_entry_rows(self.db, client_id, unbilled_only=True, lock=True)
            expense_rows = load_expense_rows(self.db, client_id, unbilled_reimbursable_only=True, lock=True)
            preview = build_preview(self.db, client_id, period_start, period_end, self.policy)
            draft = preview.draft
            if not draft.lines:
                raise BillingValidationError(
                    f"Nothing to invoice for {period_start} - {period_end}"
                )

            invoice = self._insert_invoice(client, draft, notes)
            self._insert_lines(
                invoice,
                draft,
                {row.id: row for row in rows},
                {row.id: row for row in expense_rows},
            )
            recalculate_invoice_total(self.db, invoice)
            self.db.commit()
        except BillingError:
            self.db.rollback()
            raise
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception(
                "Invoice generation failed for client %s (%s - %s)",
                client_id, period_start, period_end,
            )
            raise BillingPersistenceError("Invoice could not be saved; nothing was changed") from exc

        self.db.refresh(invoice)
        logger.info(
            "Client %s: invoice %s generated for %s - %s, total %s",
            client_id, invoice.invoice_number, period_start, period_end, invoice.invoice_total,
        )
        return invoice

    def _insert_invoice(self, client: ClientCompany, draft: InvoiceDraft, notes: str | None) -> ClientInvoice:
        invoice = ClientInvoice(
            client_company_id=client.id,
            invoice_number=next_invoice_number(self.db, client, draft.period_end),
            period_start=draft.period_start,
            period_end=draft.period_end,
            retainer_hours_included=draft.retainer_hours_included,
            hours_worked=draft.hours_worked,
            rollover_hours_used=draft.rollover_hours_used,
            unused_hours_balance=draft.unused_hours_balance,
            negative_hours_balance=draft.negative_hours_balance,
            hours_billed_at_rate=draft.hours_billed_at_rate,
            starting_unused_hours=draft.starting_unused_hours,
            starting_negative_hours=draft.starting_negative_hours,
            invoice_total=draft.invoice_total,
            status=INVOICE_STATUS_DRAFT,
            notes=notes,
        )
        self.db.add(invoice)
        self.db.flush()
        return invoice

    def _insert_lines(
        self,
        invoice: ClientInvoice,
        draft: InvoiceDraft,
        rows_by_id: dict[int, ClientTimeEntry],
        expenses_by_id: dict[int, ClientExpense],
    ) -> None:
        parts_by_entry: dict[int, list[tuple[TimeEntryFragment, int]]] = {}
        for line_draft in draft.lines:
            line = ClientInvoiceLine(
                client_invoice_id=invoice.id,
                client_agreement_id=line_draft.agreement_id,
                description=line_draft.description,
                quantity=line_draft.quantity,
                unit_price=line_draft.unit_price,
                line_total=line_draft.line_total,
                line_type=line_draft.line_type,
                hours=line_draft.hours,
                line_date=line_draft.line_date,
                sort_order=line_draft.sort_order,
            )
            self.db.add(line)
            self.db.flush()
            for fragment in line_draft.fragments:
                parts_by_entry.setdefault(fragment.original_time_entry_id, []).append((fragment, line.id))
            if line_draft.expense_id is not None:
                expense = expenses_by_id.get(line_draft.expense_id)
                if expense is None:
                    raise BillingConflictError(
                        f"Expense #{line_draft.expense_id} changed during invoice generation"
                    )
                expense.client_invoice_line_id = line.id

        for entry_id, parts in parts_by_entry.items():
            row = rows_by_id.get(entry_id)
            if row is None:
                raise BillingConflictError(f"Time entry #{entry_id} changed during invoice generation")
            link_fragments(self.db, row, parts)
        self.db.flush()


@dataclass(frozen=True)
class MonthlyRunResult:
    year_month: YearMonth
    status: str  # created / skipped / failed
    invoice_id: int | None = None
    message: str = ""


class GenerateMonthlyInvoicesUseCase:
    """
    Use case: one invoice per agreement month, up to a given month

    Each month is generated in its own transaction. Months already invoiced
    or with nothing to bill are skipped; failures are collected, not raised.
    """

    def __init__(self, db: Session, policy: AllocationPolicy | None = None):
        self.db = db
        self.policy = policy or default_policy()

    def execute(self, client_id: int, through: YearMonth) -> list[MonthlyRunResult]:
        get_client(self.db, client_id)
        timeline = AgreementTimeline(load_agreements(self.db, client_id))
        first = timeline.first_active_month()
        if first is None:
            return []

        results = []
        for month in iter_months(first, through):
            if timeline.resolve(month) is None:
                continue

            existing = find_overlapping_invoice(self.db, client_id, month.first_day, month.last_day)
            if existing:
                results.append(MonthlyRunResult(
                    month, "skipped", existing.id, f"Already invoiced ({existing.invoice_number})"
                ))
                continue

            try:
                invoice = GenerateInvoiceUseCase(self.db, self.policy).execute(
                    client_id, month.first_day, month.last_day
                )
            except BillingValidationError as exc:
                results.append(MonthlyRunResult(month, "skipped", message=str(exc)))
            except BillingError as exc:
                logger.warning("Client %s: invoice for %s failed: %s", client_id, month, exc)
                results.append(MonthlyRunResult(month, "failed", message=str(exc)))
            else:
                results.append(MonthlyRunResult(month, "created", invoice.id, invoice.invoice_number))
        return results


class _InvoiceCommandUseCase:
    """Shared plumbing of the lifecycle use cases: load, mutate, commit or roll back."""

    action = "update invoice"

    def __init__(self, db: Session):
        self.db = db

    def _commit(self, invoice: ClientInvoice) -> ClientInvoice:
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Failed to %s #%s", self.action, invoice.id)
            raise BillingPersistenceError(f"Could not {self.action}") from exc
        self.db.refresh(invoice)
        return invoice


class IssueInvoiceUseCase(_InvoiceCommandUseCase):
    """Use case: draft -> issued; sets issue and due dates"""

    action = "issue invoice"

    def execute(self, client_id: int, invoice_id: int, issue_date: date | None = None) -> ClientInvoice:
        invoice = get_invoice(self.db, client_id, invoice_id)
        if invoice.status != INVOICE_STATUS_DRAFT:
            raise BillingConflictError(f"Only draft invoices can be issued (status: {invoice.status})")

        invoice.issue_date = issue_date or date.today()
        invoice.due_date = invoice.issue_date + timedelta(days=get_settings().INVOICE_DUE_DAYS)
        invoice.status = INVOICE_STATUS_ISSUED
        return self._commit(invoice)


class MarkInvoicePaidUseCase(_InvoiceCommandUseCase):
    """Use case: draft | issued -> paid"""

    action = "mark invoice paid"

    def execute(self, client_id: int, invoice_id: int, paid_date: date | None = None) -> ClientInvoice:
        invoice = get_invoice(self.db, client_id, invoice_id)
        if invoice.status not in (INVOICE_STATUS_DRAFT, INVOICE_STATUS_ISSUED):
            raise BillingConflictError(
                f"Invoice cannot be marked as paid in its current status ({invoice.status})"
            )

        invoice.paid_date = paid_date or date.today()
        invoice.status = INVOICE_STATUS_PAID
        return self._commit(invoice)


class VoidInvoiceUseCase(_InvoiceCommandUseCase):
    """
    Use case: void an unpaid invoice

    Time entries and expenses are unlinked from its lines so they can be billed
    again, and split fragments that are now all unlinked are merged back together.
    """

    action = "void invoice"

    def execute(self, client_id: int, invoice_id: int) -> ClientInvoice:
        invoice = get_invoice(self.db, client_id, invoice_id)
        if invoice.status == INVOICE_STATUS_PAID:
            raise BillingConflictError("Paid invoices cannot be voided")
        if invoice.status == INVOICE_STATUS_VOID:
            raise BillingConflictError("Invoice is already void")

        line_ids = [line.id for line in get_invoice_lines(self.db, invoice.id)]
        try:
            unlinked = 0
            if line_ids:
                unlinked = self.db.query(ClientTimeEntry).filter(
                    ClientTimeEntry.client_invoice_line_id.in_(line_ids),
                ).update({ClientTimeEntry.client_invoice_line_id: None}, synchronize_session="fetch")
                self.db.query(ClientExpense).filter(
                    ClientExpense.client_invoice_line_id.in_(line_ids),
                ).update({ClientExpense.client_invoice_line_id: None}, synchronize_session="fetch")
            invoice.status = INVOICE_STATUS_VOID
            self.db.flush()
            recombine_fragments(self.db, client_id)
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Failed to void invoice #%s", invoice.id)
            raise BillingPersistenceError("Could not void invoice") from exc

        logger.info("Invoice %s voided, %d time entries unlinked", invoice.invoice_number, unlinked)
        return self._commit(invoice)


class UnvoidInvoiceUseCase(_InvoiceCommandUseCase):
    """
    Use case: revert a void invoice to issued or draft

    Time entries unlinked by the void stay unlinked; the period must still be
    free of other non-void invoices.
    """

    action = "unvoid invoice"

    def execute(self, client_id: int, invoice_id: int, target_status: str = INVOICE_STATUS_ISSUED) -> ClientInvoice:
        if target_status not in (INVOICE_STATUS_ISSUED, INVOICE_STATUS_DRAFT):
            raise BillingValidationError('Target status must be "issued" or "draft"')

        invoice = get_invoice(self.db, client_id, invoice_id)
        if invoice.status != INVOICE_STATUS_VOID:
            raise BillingConflictError("Only voided invoices can be un-voided")

        other = find_overlapping_invoice(
            self.db, client_id, invoice.period_start, invoice.period_end, exclude_invoice_id=invoice.id
        )
        if other:
            raise BillingConflictError(
                f"Invoice {other.invoice_number} now covers an overlapping period"
            )

        invoice.status = target_status
        return self._commit(invoice)


class AddInvoiceLineUseCase(_InvoiceCommandUseCase):
    """Use case: add a manual adjustment line to a draft invoice"""

    action = "add invoice line"

    def execute(
        self,
        client_id: int,
        invoice_id: int,
        description: str,
        quantity: Decimal,
        unit_price: Decimal,
        line_date: date | None = None,
    ) -> ClientInvoiceLine:
        invoice = get_invoice(self.db, client_id, invoice_id)
        if invoice.status != INVOICE_STATUS_DRAFT:
            raise BillingConflictError("Lines can only be added to draft invoices")
        description = description.strip()
        if not description:
            raise BillingValidationError("Line description cannot be empty")

        last_sort = self.db.query(func.max(ClientInvoiceLine.sort_order)).filter(
            ClientInvoiceLine.client_invoice_id == invoice.id,
        ).scalar() or 0

        line = ClientInvoiceLine(
            client_invoice_id=invoice.id,
            description=description,
            quantity=str(quantity),
            unit_price=unit_price,
            line_total=quantize_money(quantity * unit_price),
            line_type=LINE_TYPE_ADJUSTMENT,
            line_date=line_date,
            sort_order=last_sort + 1,
        )
        self.db.add(line)
        recalculate_invoice_total(self.db, invoice)
        self._commit(invoice)
        self.db.refresh(line)
        return line


class RemoveInvoiceLineUseCase(_InvoiceCommandUseCase):
    """Use case: remove a manual adjustment line from a draft invoice"""

    action = "remove invoice line"

    def execute(self, client_id: int, invoice_id: int, line_id: int) -> ClientInvoice:
        invoice = get_invoice(self.db, client_id, invoice_id)
        if invoice.status != INVOICE_STATUS_DRAFT:
            raise BillingConflictError("Lines can only be removed from draft invoices")

        line = self.db.query(ClientInvoiceLine).filter(
            ClientInvoiceLine.id == line_id,
            ClientInvoiceLine.client_invoice_id == invoice.id,
        ).first()
        if not line:
            raise BillingNotFoundError(f"Invoice line #{line_id} not found")
        if line.line_type in SYSTEM_LINE_TYPES:
            raise BillingConflictError("Only adjustment lines can be removed; void the invoice instead")

        self.db.delete(line)
        recalculate_invoice_total(self.db, invoice)
        return self._commit(invoice)
