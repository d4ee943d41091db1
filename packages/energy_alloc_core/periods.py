# packages/energy_alloc_core/periods.py
"""
Period model for monthly energy allocation.

- Five fixed time-of-day buckets C1..C5; C2/C3 are peak, C1/C4/C5 non-peak.
- Totals tolerate strings, None and garbage (treated as 0) and never go negative.
- Month keys are six-character MMYYYY strings.
- Financial year Y runs April of Y through March of Y+1.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, asdict, replace as dc_replace
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from packages.energy_alloc_core.errors import InvalidMonthError

PEAK_PERIODS: Tuple[str, ...] = ("c2", "c3")
NON_PEAK_PERIODS: Tuple[str, ...] = ("c1", "c4", "c5")
ALL_PERIODS: Tuple[str, ...] = ("c1", "c2", "c3", "c4", "c5")

FINANCIAL_YEAR_START_MONTH = 4


# -------------------------- Helpers -------------------------- #

def coerce_units(value: Any) -> float:
    """Any raw value -> non-negative float. Missing, non-numeric, NaN/inf and negatives become 0."""
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, str):
        value = value.strip().replace(",", "")
        if not value:
            return 0.0
    try:
        num = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(num) or math.isinf(num):
        return 0.0
    return max(0.0, num)


def round_half_up(x: float) -> int:
    """Round .5 away from zero for non-negative inputs (Python's round() is banker's)."""
    return int(math.floor(float(x) + 0.5))


def is_peak(period: str) -> bool:
    return period.lower() in PEAK_PERIODS


def _period_value(record: Any, period: str) -> Any:
    if record is None:
        return None
    if isinstance(record, Mapping):
        if period in record:
            return record[period]
        return record.get(period.upper())
    return getattr(record, period, None)


# ---------------------- Data Contracts ----------------------- #

@dataclass(frozen=True)
class PeriodUnits:
    """Units for c1..c5. All five are always present, zero when unset."""
    c1: float = 0.0
    c2: float = 0.0
    c3: float = 0.0
    c4: float = 0.0
    c5: float = 0.0

    @classmethod
    def zero(cls) -> "PeriodUnits":
        return cls()

    @classmethod
    def from_record(cls, record: Any) -> "PeriodUnits":
        """Build from a mapping (c1 or C1 keys) or an object with period attributes."""
        return cls(**{p: coerce_units(_period_value(record, p)) for p in ALL_PERIODS})

    def get(self, period: str) -> float:
        return getattr(self, period)

    def replace(self, **changes: float) -> "PeriodUnits":
        return dc_replace(self, **changes)

    def clamped(self) -> "PeriodUnits":
        return PeriodUnits(**{p: max(0.0, self.get(p)) for p in ALL_PERIODS})

    def rounded(self) -> "PeriodUnits":
        return PeriodUnits(**{p: float(round_half_up(max(0.0, self.get(p)))) for p in ALL_PERIODS})

    def plus(self, other: "PeriodUnits") -> "PeriodUnits":
        return PeriodUnits(**{p: self.get(p) + other.get(p) for p in ALL_PERIODS})

    def minus_floored(self, other: "PeriodUnits") -> "PeriodUnits":
        return PeriodUnits(**{p: max(0.0, self.get(p) - other.get(p)) for p in ALL_PERIODS})

    def is_zero(self) -> bool:
        return all(self.get(p) == 0 for p in ALL_PERIODS)

    def as_dict(self) -> Dict[str, float]:
        return asdict(self)

    @property
    def total(self) -> float:
        return total(self)

    @property
    def peak_total(self) -> float:
        return peak_total(self)

    @property
    def non_peak_total(self) -> float:
        return non_peak_total(self)


# -------------------------- Totals --------------------------- #

def total(record: Any, periods: Iterable[str] = ALL_PERIODS) -> float:
    """Sum of record[period] over `periods`, malformed values counted as 0."""
    return sum(coerce_units(_period_value(record, p)) for p in periods)


def peak_total(record: Any) -> float:
    return total(record, PEAK_PERIODS)


def non_peak_total(record: Any) -> float:
    return total(record, NON_PEAK_PERIODS)


def sum_units(items: Iterable[PeriodUnits]) -> PeriodUnits:
    acc = PeriodUnits.zero()
    for item in items:
        acc = acc.plus(item)
    return acc


# ------------------------ Month keys ------------------------- #

_MMYYYY = re.compile(r"^(\d{1,2})[-/ ]?(\d{4})$")
_YYYYMM = re.compile(r"^(\d{4})[-/](\d{1,2})$")


def format_month_key(month: int, year: int) -> str:
    month, year = int(month), int(year)
    if not 1 <= month <= 12 or year < 1:
        raise InvalidMonthError(f"{month}/{year}")
    return f"{month:02d}{year:04d}"


def parse_month_key(value: Any) -> Tuple[int, int]:
    """Return (month, year) from MMYYYY, MM-YYYY, MM/YYYY, YYYY-MM or a date."""
    if isinstance(value, (date, datetime)):
        return value.month, value.year
    if value is None:
        raise InvalidMonthError(value)
    text = str(value).strip()
    m = _MMYYYY.match(text)
    if m and len(text) != 5:  # "12024" is ambiguous
        month, year = int(m.group(1)), int(m.group(2))
    else:
        m = _YYYYMM.match(text)
        if not m:
            raise InvalidMonthError(value)
        year, month = int(m.group(1)), int(m.group(2))
    if not 1 <= month <= 12:
        raise InvalidMonthError(value)
    return month, year


def normalize_month_key(value: Any) -> str:
    month, year = parse_month_key(value)
    return format_month_key(month, year)


def month_sort_key(month_key: str) -> Tuple[int, int]:
    month, year = parse_month_key(month_key)
    return year, month


# ---------------------- Financial years ---------------------- #

def financial_year_start(month_key: Any) -> int:
    """Start year of the financial year a month belongs to ("032024" -> 2023, "042024" -> 2024)."""
    month, year = parse_month_key(month_key)
    return year if month >= FINANCIAL_YEAR_START_MONTH else year - 1


def financial_year_label(start_year: int) -> str:
    return f"{int(start_year)}-{int(start_year) + 1}"


def parse_financial_year(value: Any) -> int:
    """Accepts 2023, "2023", "2023-2024", "2023-24" or "FY2023"; returns the start year."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    text = str(value or "").strip().upper()
    if text.startswith("FY"):
        text = text[2:].strip()
    m = re.match(r"^(\d{4})(?:\s*-\s*(\d{2}|\d{4}))?$", text)
    if not m:
        raise ValueError(f"Invalid financial year: {value!r}")
    start = int(m.group(1))
    if m.group(2):
        end = int(m.group(2))
        expected = (start + 1) % 100 if len(m.group(2)) == 2 else start + 1
        if end != expected:
            raise ValueError(f"Invalid financial year: {value!r}")
    return start


def months_in_financial_year(start_year: int) -> List[str]:
    """April(start_year) .. March(start_year + 1) as MMYYYY keys."""
    keys = [format_month_key(m, start_year) for m in range(FINANCIAL_YEAR_START_MONTH, 13)]
    keys += [format_month_key(m, start_year + 1) for m in range(1, FINANCIAL_YEAR_START_MONTH)]
    return keys


def in_financial_year(month_key: Any, start_year: int) -> bool:
    try:
        return financial_year_start(month_key) == int(start_year)
    except InvalidMonthError:
        return False


def period_lookup(period: str) -> Dict[str, Optional[str]]:
    """Display fields for a period code.

    >>> period_lookup("c2")
    {'period': 'c2', 'label': 'C2', 'band': 'peak'}
    """
    p = period.lower()
    if p not in ALL_PERIODS:
        raise ValueError(f"Unknown period: {period!r}")
    return {"period": p, "label": p.upper(), "band": "peak" if is_peak(p) else "non-peak"}
