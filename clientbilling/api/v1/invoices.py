"""
Invoice API endpoints: preview, generation and lifecycle
"""
from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, field_validator, model_validator
from sqlalchemy.orm import Session

from clientbilling.api.deps import get_db, http_error
from clientbilling.application.invoicing import (
    AddInvoiceLineUseCase,
    GenerateInvoiceUseCase,
    GenerateMonthlyInvoicesUseCase,
    InvoicePreview,
    IssueInvoiceUseCase,
    MarkInvoicePaidUseCase,
    PreviewInvoiceUseCase,
    RemoveInvoiceLineUseCase,
    UnvoidInvoiceUseCase,
    VoidInvoiceUseCase,
    get_invoice,
    get_invoice_lines,
    list_invoices,
)
from clientbilling.application.loaders import get_client
from clientbilling.domain.errors import BillingError
from clientbilling.domain.months import YearMonth
from clientbilling.domain.time_entry import TimeEntryFragment
from clientbilling.infrastructure.db.models import ClientExpense, ClientInvoice, ClientInvoiceLine, ClientTimeEntry
from clientbilling.utils.money import decimal_str, format_money
from clientbilling.utils.validation import validate_and_normalize_amount


router = APIRouter(prefix="/api/v1/clients/{client_id}/invoices", tags=["invoices"])


# === Request/Response models ===

class PeriodRequest(BaseModel):
    period_start: date
    period_end: date
    notes: str | None = None

    @model_validator(mode="after")
    def check_order(self) -> "PeriodRequest":
        if self.period_end < self.period_start:
            raise ValueError("period_end must not be before period_start")
        return self


class GenerateAllRequest(BaseModel):
    through: str  # YYYY-MM


class IssueInvoiceRequest(BaseModel):
    issue_date: date | None = None


class MarkPaidRequest(BaseModel):
    paid_date: date | None = None


class UnvoidInvoiceRequest(BaseModel):
    status: str = "issued"  # issued / draft


class AddLineRequest(BaseModel):
    description: str
    quantity: Decimal = Decimal(1)
    unit_price: Decimal
    line_date: date | None = None

    @field_validator("quantity", mode="before")
    @classmethod
    def validate_quantity(cls, v) -> Decimal:
        """Quantity: up to 4 decimal places (hours)"""
        return validate_and_normalize_amount(str(v), max_decimal_places=4)

    @field_validator("unit_price", mode="before")
    @classmethod
    def validate_unit_price(cls, v) -> Decimal:
        """Unit price: money, negative allowed for credits"""
        return validate_and_normalize_amount(str(v), max_decimal_places=2, allow_negative=True)


class FragmentResponse(BaseModel):
    time_entry_id: int
    minutes: int
    hours: str
    date_worked: date
    description: str
    allocation_type: str


class LineResponse(BaseModel):
    line_id: int | None = None
    line_type: str
    description: str
    quantity: str
    unit_price: str
    line_total: str
    hours: str | None
    agreement_id: int | None
    line_date: date | None
    sort_order: int
    time_entry_ids: list[int] = []
    expense_id: int | None = None
    fragments: list[FragmentResponse] = []


class TotalsResponse(BaseModel):
    retainer_hours_included: str
    hours_worked: str
    rollover_hours_used: str
    unused_hours_balance: str
    negative_hours_balance: str
    hours_billed_at_rate: str
    starting_unused_hours: str
    starting_negative_hours: str


class PreviewResponse(BaseModel):
    period_start: date
    period_end: date
    has_agreement: bool
    totals: TotalsResponse
    invoice_total: str
    invoice_total_display: str
    lines: list[LineResponse]
    unallocated_hours: str
    unallocated: list[FragmentResponse]


class InvoiceResponse(BaseModel):
    invoice_id: int
    invoice_number: str
    status: str
    period_start: date
    period_end: date
    totals: TotalsResponse
    invoice_total: str
    invoice_total_display: str
    issue_date: date | None
    due_date: date | None
    paid_date: date | None
    notes: str | None
    lines: list[LineResponse] = []


class MonthlyRunResponse(BaseModel):
    year_month: str
    status: str
    invoice_id: int | None
    message: str


# === Helper functions ===

_TOTAL_FIELDS = tuple(TotalsResponse.model_fields)


def _fragment_response(fragment: TimeEntryFragment) -> FragmentResponse:
    return FragmentResponse(
        time_entry_id=fragment.original_time_entry_id,
        minutes=fragment.minutes,
        hours=str(fragment.hours),
        date_worked=fragment.date_worked,
        description=fragment.description,
        allocation_type=fragment.allocation_type,
    )


def preview_response(preview: InvoicePreview) -> PreviewResponse:
    draft = preview.draft
    return PreviewResponse(
        period_start=draft.period_start,
        period_end=draft.period_end,
        has_agreement=draft.has_agreement,
        totals=TotalsResponse(**{name: str(getattr(draft, name)) for name in _TOTAL_FIELDS}),
        invoice_total=str(draft.invoice_total),
        invoice_total_display=format_money(draft.invoice_total),
        lines=[
            LineResponse(
                line_type=line.line_type,
                description=line.description,
                quantity=line.quantity,
                unit_price=str(line.unit_price),
                line_total=str(line.line_total),
                hours=decimal_str(line.hours),
                agreement_id=line.agreement_id,
                line_date=line.line_date,
                sort_order=line.sort_order,
                time_entry_ids=sorted({f.original_time_entry_id for f in line.fragments}),
                fragments=[_fragment_response(f) for f in line.fragments],
                expense_id=line.expense_id,
            )
            for line in draft.lines
        ],
        unallocated_hours=str(preview.plan.total_unallocated_hours),
        unallocated=[_fragment_response(f) for f in preview.plan.unallocated_fragments],
    )


def _line_response(db: Session, line: ClientInvoiceLine) -> LineResponse:
    entry_ids = [
        entry_id for (entry_id,) in db.query(ClientTimeEntry.id).filter(
            ClientTimeEntry.client_invoice_line_id == line.id,
        ).order_by(ClientTimeEntry.id)
    ]
    expense_id = db.query(ClientExpense.id).filter(
        ClientExpense.client_invoice_line_id == line.id,
    ).scalar()
    return LineResponse(
        line_id=line.id,
        line_type=line.line_type,
        description=line.description,
        quantity=line.quantity,
        unit_price=str(line.unit_price),
        line_total=str(line.line_total),
        hours=decimal_str(line.hours),
        agreement_id=line.client_agreement_id,
        line_date=line.line_date,
        sort_order=line.sort_order,
        time_entry_ids=entry_ids,
        expense_id=expense_id,
    )


def invoice_response(db: Session, invoice: ClientInvoice, with_lines: bool = True) -> InvoiceResponse:
    lines = []
    if with_lines:
        lines = [_line_response(db, line) for line in get_invoice_lines(db, invoice.id)]
    return InvoiceResponse(
        invoice_id=invoice.id,
        invoice_number=invoice.invoice_number,
        status=invoice.status,
        period_start=invoice.period_start,
        period_end=invoice.period_end,
        totals=TotalsResponse(**{name: str(getattr(invoice, name)) for name in _TOTAL_FIELDS}),
        invoice_total=str(invoice.invoice_total),
        invoice_total_display=format_money(invoice.invoice_total),
        issue_date=invoice.issue_date,
        due_date=invoice.due_date,
        paid_date=invoice.paid_date,
        notes=invoice.notes,
        lines=lines,
    )


# === Endpoints ===

@router.get("", response_model=list[InvoiceResponse])
def get_invoices(
    client_id: int,
    db: Session = Depends(get_db)
):
    """Invoice history, newest period first"""
    try:
        get_client(db, client_id)
    except BillingError as e:
        raise http_error(e)

    return [invoice_response(db, inv, with_lines=False) for inv in list_invoices(db, client_id)]


@router.post("/preview", response_model=PreviewResponse)
def preview_invoice(
    client_id: int,
    req: PeriodRequest,
    db: Session = Depends(get_db)
):
    """Invoice totals and breakdown for a period; nothing is saved"""
    try:
        preview = PreviewInvoiceUseCase(db).execute(client_id, req.period_start, req.period_end)
    except BillingError as e:
        raise http_error(e)

    return preview_response(preview)


@router.post("", response_model=InvoiceResponse, status_code=status.HTTP_201_CREATED)
def generate_invoice(
    client_id: int,
    req: PeriodRequest,
    db: Session = Depends(get_db)
):
    """Generate a draft invoice for a period and link its time entries"""
    try:
        invoice = GenerateInvoiceUseCase(db).execute(
            client_id, req.period_start, req.period_end, notes=req.notes
        )
    except BillingError as e:
        raise http_error(e)

    return invoice_response(db, invoice)


@router.post("/generate-all", response_model=list[MonthlyRunResponse])
def generate_all_invoices(
    client_id: int,
    req: GenerateAllRequest,
    db: Session = Depends(get_db)
):
    """Generate one invoice per agreement month up to `through`"""
    try:
        results = GenerateMonthlyInvoicesUseCase(db).execute(client_id, YearMonth.parse(req.through))
    except BillingError as e:
        raise http_error(e)

    return [
        MonthlyRunResponse(
            year_month=str(r.year_month),
            status=r.status,
            invoice_id=r.invoice_id,
            message=r.message,
        )
        for r in results
    ]


@router.get("/{invoice_id}", response_model=InvoiceResponse)
def get_invoice_detail(
    client_id: int,
    invoice_id: int,
    db: Session = Depends(get_db)
):
    """Invoice with its lines and linked time entries"""
    try:
        invoice = get_invoice(db, client_id, invoice_id)
    except BillingError as e:
        raise http_error(e)

    return invoice_response(db, invoice)


@router.post("/{invoice_id}/issue", response_model=InvoiceResponse)
def issue_invoice(
    client_id: int,
    invoice_id: int,
    req: IssueInvoiceRequest | None = None,
    db: Session = Depends(get_db)
):
    """draft -> issued"""
    issue_date = req.issue_date if req else None
    try:
        invoice = IssueInvoiceUseCase(db).execute(client_id, invoice_id, issue_date=issue_date)
    except BillingError as e:
        raise http_error(e)

    return invoice_response(db, invoice)


@router.post("/{invoice_id}/mark-paid", response_model=InvoiceResponse)
def mark_invoice_paid(
    client_id: int,
    invoice_id: int,
    req: MarkPaidRequest | None = None,
    db: Session = Depends(get_db)
):
    """draft | issued -> paid"""
    paid_date = req.paid_date if req else None
    try:
        invoice = MarkInvoicePaidUseCase(db).execute(client_id, invoice_id, paid_date=paid_date)
    except BillingError as e:
        raise http_error(e)

    return invoice_response(db, invoice)


@router.post("/{invoice_id}/void", response_model=InvoiceResponse)
def void_invoice(
    client_id: int,
    invoice_id: int,
    db: Session = Depends(get_db)
):
    """Void an unpaid invoice and release its time entries"""
    try:
        invoice = VoidInvoiceUseCase(db).execute(client_id, invoice_id)
    except BillingError as e:
        raise http_error(e)

    return invoice_response(db, invoice)


@router.post("/{invoice_id}/unvoid", response_model=InvoiceResponse)
def unvoid_invoice(
    client_id: int,
    invoice_id: int,
    req: UnvoidInvoiceRequest | None = None,
    db: Session = Depends(get_db)
):
    """void -> issued | draft"""
    target = req.status if req else "issued"
    try:
        invoice = UnvoidInvoiceUseCase(db).execute(client_id, invoice_id, target_status=target)
    except BillingError as e:
        raise http_error(e)

    return invoice_response(db, invoice)


@router.post("/{invoice_id}/lines", response_model=InvoiceResponse, status_code=status.HTTP_201_CREATED)
def add_invoice_line(
    client_id: int,
    invoice_id: int,
    req: AddLineRequest,
    db: Session = Depends(get_db)
):
    """Add a manual adjustment line to a draft invoice"""
    try:
        AddInvoiceLineUseCase(db).execute(
            client_id,
            invoice_id,
            description=req.description,
            quantity=req.quantity,
            unit_price=req.unit_price,
            line_date=req.line_date,
        )
        invoice = get_invoice(db, client_id, invoice_id)
    except BillingError as e:
        raise http_error(e)

    return invoice_response(db, invoice)


@router.delete("/{invoice_id}/lines/{line_id}", response_model=InvoiceResponse)
def remove_invoice_line(
    client_id: int,
    invoice_id: int,
    line_id: int,
    db: Session = Depends(get_db)
):
    """Remove a manual adjustment line from a draft invoice"""
    try:
        invoice = RemoveInvoiceLineUseCase(db).execute(client_id, invoice_id, line_id)
    except BillingError as e:
        raise http_error(e)

    return invoice_response(db, invoice)
