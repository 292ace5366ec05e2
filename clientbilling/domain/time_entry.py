"""
Time entry and allocation fragment value objects.

Allocation types:
  prior_month_retainer   - covered by rollover credit carried from earlier months
  current_month_retainer - covered by this month's (effective) retainer
  catch_up               - overflow that restores a negative balance / threshold
  billable_catchup       - overflow beyond that, billed at the hourly rate
  unallocated            - no agreement governs the work yet
"""
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from clientbilling.domain.errors import BillingValidationError
from clientbilling.domain.hours import minutes_to_hours

ALLOCATION_PRIOR_MONTH_RETAINER = "prior_month_retainer"
ALLOCATION_CURRENT_MONTH_RETAINER = "current_month_retainer"
ALLOCATION_CATCH_UP = "catch_up"
ALLOCATION_BILLABLE_CATCHUP = "billable_catchup"
ALLOCATION_UNALLOCATED = "unallocated"

ALLOCATION_TYPES = (
    ALLOCATION_PRIOR_MONTH_RETAINER,
    ALLOCATION_CURRENT_MONTH_RETAINER,
    ALLOCATION_CATCH_UP,
    ALLOCATION_BILLABLE_CATCHUP,
    ALLOCATION_UNALLOCATED,
)
BILLED_AT_RATE_TYPES = frozenset({ALLOCATION_CATCH_UP, ALLOCATION_BILLABLE_CATCHUP})


@dataclass(frozen=True)
class TimeEntry:
    id: int
    minutes_worked: int
    date_worked: date
    is_billable: bool = True
    invoice_line_id: int | None = None
    description: str = ""
    user_id: int | None = None
    project_id: int | None = None
    task_id: int | None = None

    def __post_init__(self) -> None:
        if self.minutes_worked <= 0:
            raise BillingValidationError(
                f"Time entry #{self.id}: minutes_worked must be positive"
            )

    @property
    def is_invoiced(self) -> bool:
        return self.invoice_line_id is not None

    @property
    def hours(self) -> Decimal:
        return minutes_to_hours(self.minutes_worked)


@dataclass(frozen=True)
class TimeEntryFragment:
    """
    A slice of one time entry's minutes assigned to exactly one allocation type.
    """
    original_time_entry_id: int
    minutes: int
    date_worked: date
    description: str
    user_id: int | None
    client_invoice_line_id: int | None = None
    allocation_type: str = ALLOCATION_UNALLOCATED
    agreement_id: int | None = None

    def __post_init__(self) -> None:
        if self.minutes < 1:
            raise BillingValidationError("Fragment minutes must be >= 1")
        if self.allocation_type not in ALLOCATION_TYPES:
            raise BillingValidationError(f"Unknown allocation type: {self.allocation_type}")

    @property
    def hours(self) -> Decimal:
        return minutes_to_hours(self.minutes)

    @classmethod
    def of(
        cls,
        entry: TimeEntry,
        minutes: int,
        allocation_type: str,
        agreement_id: int | None = None,
    ) -> "TimeEntryFragment":
        return cls(
            original_time_entry_id=entry.id,
            minutes=minutes,
            date_worked=entry.date_worked,
            description=entry.description,
            user_id=entry.user_id,
            client_invoice_line_id=entry.invoice_line_id,
            allocation_type=allocation_type,
            agreement_id=agreement_id,
        )
