import pytest

from packages.energy_alloc_core.errors import InvalidMonthError
from packages.energy_alloc_core.periods import (
    PeriodUnits,
    coerce_units,
    financial_year_label,
    financial_year_start,
    in_financial_year,
    is_peak,
    months_in_financial_year,
    non_peak_total,
    normalize_month_key,
    parse_financial_year,
    peak_total,
    period_lookup,
    round_half_up,
    total,
)


def test_totals_tolerate_garbage():
    rec = {"c1": "10", "c2": None, "c3": "abc", "c4": -5, "C5": "1,000"}
    assert total(rec) == 1010
    assert peak_total(rec) == 0
    assert non_peak_total(rec) == 1010


def test_peak_split():
    units = PeriodUnits(c1=1, c2=2, c3=3, c4=4, c5=5)
    assert units.peak_total == 5
    assert units.non_peak_total == 10
    assert units.total == 15
    assert is_peak("C2") and not is_peak("c5")


def test_coerce_units_edge_values():
    assert coerce_units(float("nan")) == 0
    assert coerce_units(float("inf")) == 0
    assert coerce_units(True) == 0
    assert coerce_units(" 12.5 ") == 12.5
    assert coerce_units(-3) == 0


def test_round_half_up():
    assert round_half_up(2.5) == 3
    assert round_half_up(3.5) == 4
    assert round_half_up(2.49) == 2


def test_period_units_from_upper_case_record():
    units = PeriodUnits.from_record({"C1": "5", "c2": 7})
    assert units == PeriodUnits(c1=5, c2=7)
    assert units.minus_floored(PeriodUnits(c1=9)).c1 == 0


@pytest.mark.parametrize("raw", ["072024", "7-2024", "07/2024", "2024-07"])
def test_month_key_spellings(raw):
    assert normalize_month_key(raw) == "072024"


@pytest.mark.parametrize("raw", ["132024", "", None, "July", "12024"])
def test_bad_month_keys(raw):
    with pytest.raises(InvalidMonthError):
        normalize_month_key(raw)


def test_financial_year_boundary():
    assert financial_year_start("032024") == 2023
    assert financial_year_start("042024") == 2024
    assert in_financial_year("032024", 2023)
    assert not in_financial_year("042024", 2023)
    assert financial_year_label(2023) == "2023-2024"


def test_parse_financial_year():
    assert parse_financial_year(2023) == 2023
    assert parse_financial_year("2023-2024") == 2023
    assert parse_financial_year("2023-24") == 2023
    assert parse_financial_year("FY2023") == 2023
    with pytest.raises(ValueError):
        parse_financial_year("2023-2025")


def test_months_in_financial_year():
    months = months_in_financial_year(2023)
    assert len(months) == 12
    assert months[0] == "042023"
    assert months[-1] == "032024"


def test_period_lookup():
    assert period_lookup("C3")["band"] == "peak"
    with pytest.raises(ValueError):
        period_lookup("c6")
