import calendar
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


@dataclass(frozen=True, order=True)
class YearMonth:
    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValueError(f"Month must be between 1 and 12, got {self.month}")

    @classmethod
    def from_date(cls, value: date) -> "YearMonth":
        return cls(value.year, value.month)

    @classmethod
    def from_index(cls, index: int) -> "YearMonth":
        return cls(index // 12, index % 12 + 1)

    @property
    def index(self) -> int:
        """Months since year 0; differences give month distances."""
        return self.year * 12 + (self.month - 1)

    def shift(self, months: int) -> "YearMonth":
        return YearMonth.from_index(self.index + months)

    def months_since(self, other: "YearMonth") -> int:
        return self.index - other.index

    @property
    def label(self) -> str:
        return f"{calendar.month_abbr[self.month]} {self.year % 100:02d}"

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


def month_range(start: YearMonth, end: YearMonth) -> list[YearMonth]:
    """Inclusive, ascending."""
    return [YearMonth.from_index(i) for i in range(start.index, end.index + 1)]


def window_around(center: YearMonth, months: int) -> list[YearMonth]:
    return month_range(center.shift(-months), center.shift(months))


def resolve_month_year(
    month: Optional[int],
    year: Optional[int],
    *,
    today: Optional[date] = None,
) -> YearMonth:
    today = today or local_today()
    return YearMonth(
        year if year is not None else today.year,
        month if month is not None else today.month,
    )


def year_months(year: int) -> list[YearMonth]:
    return [YearMonth(year, m) for m in range(1, 13)]
