"""
Calendar month value object used as the key of every monthly balance.
"""
import calendar
from dataclasses import dataclass
from datetime import date
from typing import Iterator

from clientbilling.domain.errors import BillingValidationError


@dataclass(frozen=True, order=True)
class YearMonth:
    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise BillingValidationError(f"Invalid month: {self.month}")

    @classmethod
    def from_date(cls, day: date) -> "YearMonth":
        return cls(day.year, day.month)

    @classmethod
    def parse(cls, value: str) -> "YearMonth":
        """Parse "YYYY-MM"."""
        try:
            year_str, month_str = value.split("-")
            return cls(int(year_str), int(month_str))
        except ValueError as exc:
            raise BillingValidationError(f"Invalid year-month: {value!r}") from exc

    @property
    def first_day(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def last_day(self) -> date:
        return date(self.year, self.month, calendar.monthrange(self.year, self.month)[1])

    def shift(self, months: int) -> "YearMonth":
        index = self.year * 12 + (self.month - 1) + months
        return YearMonth(index // 12, index % 12 + 1)

    def months_until(self, other: "YearMonth") -> int:
        """Number of months from self to other (negative if other is earlier)."""
        return (other.year - self.year) * 12 + (other.month - self.month)

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


def iter_months(start: YearMonth, end: YearMonth) -> Iterator[YearMonth]:
    """Yield every month from start to end inclusive."""
    current = start
    while current <= end:
        yield current
        current = current.shift(1)
