"""
Agreement domain entity and the agreement timeline resolver.

An agreement covers the half-open interval [active_from, terminated_at).
Agreements of one client never overlap; when two agreements both touch a
calendar month (mid-month transition) the later one governs the whole month
and the earlier days are not pro-rated.
"""
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Iterable

from clientbilling.domain.errors import BillingValidationError
from clientbilling.domain.months import YearMonth


@dataclass(frozen=True)
class Agreement:
    id: int
    active_from: date
    terminated_at: date | None
    monthly_retainer_hours: Decimal
    rollover_months: int
    hourly_rate: Decimal
    monthly_fee: Decimal
    # Minimum availability buffer: overflow up to this shortfall is billed as catch-up
    catch_up_threshold_hours: Decimal = field(default=Decimal(0))

    def __post_init__(self) -> None:
        if self.monthly_retainer_hours < 0:
            raise BillingValidationError("monthly_retainer_hours must be >= 0")
        if self.rollover_months < 0:
            raise BillingValidationError("rollover_months must be >= 0")
        if self.hourly_rate < 0 or self.monthly_fee < 0:
            raise BillingValidationError("hourly_rate and monthly_fee must be >= 0")
        if not 0 <= self.catch_up_threshold_hours <= self.monthly_retainer_hours:
            raise BillingValidationError(
                "catch_up_threshold_hours must be between 0 and monthly_retainer_hours"
            )
        if self.terminated_at is not None and self.terminated_at <= self.active_from:
            raise BillingValidationError(
                f"Agreement #{self.id}: terminated_at must be after active_from"
            )

    def covers(self, day: date) -> bool:
        return self.active_from <= day and (self.terminated_at is None or day < self.terminated_at)

    def overlaps_month(self, month: YearMonth) -> bool:
        if self.active_from > month.last_day:
            return False
        return self.terminated_at is None or self.terminated_at > month.first_day

    def overlaps(self, other: "Agreement") -> bool:
        self_end = self.terminated_at or date.max
        other_end = other.terminated_at or date.max
        return self.active_from < other_end and other.active_from < self_end


def validate_agreements(agreements: Iterable[Agreement]) -> list[Agreement]:
    """Return agreements sorted by active_from; reject overlapping intervals."""
    ordered = sorted(agreements, key=lambda a: (a.active_from, a.id))
    for prev, cur in zip(ordered, ordered[1:]):
        if prev.overlaps(cur):
            raise BillingValidationError(
                f"Agreements #{prev.id} and #{cur.id} overlap"
            )
    return ordered


def resolve(agreements: Iterable[Agreement], month: YearMonth) -> Agreement | None:
    """Agreement governing a calendar month, or None when nothing covers it."""
    best = None
    for agreement in agreements:
        if not agreement.overlaps_month(month):
            continue
        if best is None or agreement.active_from > best.active_from:
            best = agreement
    return best


class AgreementTimeline:
    """
    Validated, ordered agreement history of one client.
    """

    def __init__(self, agreements: Iterable[Agreement]):
        self.agreements = validate_agreements(agreements)

    def resolve(self, month: YearMonth) -> Agreement | None:
        return resolve(self.agreements, month)

    def first_active_month(self) -> YearMonth | None:
        if not self.agreements:
            return None
        return YearMonth.from_date(self.agreements[0].active_from)

    def get(self, agreement_id: int) -> Agreement | None:
        for agreement in self.agreements:
            if agreement.id == agreement_id:
                return agreement
        return None

    def __bool__(self) -> bool:
        return bool(self.agreements)
