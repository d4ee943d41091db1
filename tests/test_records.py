from packages.energy_alloc_core.periods import PeriodUnits
from packages.energy_alloc_core.records import (
    AllocationType,
    allocation_from_record,
    normalize_consumption_units,
    normalize_manual_allocations,
    normalize_production_units,
    normalize_shareholdings,
    override_key,
)


def test_production_units_coerce_strings_and_aliases():
    warnings = []
    units = normalize_production_units([
        {"productionSiteId": 11, "companyId": "G1", "c1": "100", "C2": "50.5", "c3": None,
         "unitBankingEnabled": "true", "type": "wind", "month": "7-2024"},
        {"companyId": "G1", "c1": 5},
        "not a row",
    ], warnings)
    assert len(units) == 1
    unit = units[0]
    assert unit.production_site_id == "11"
    assert unit.units == PeriodUnits(c1=100, c2=50.5)
    assert unit.banking_enabled is True
    assert unit.type == "WIND"
    assert unit.month == "072024"
    assert len(warnings) == 2


def test_bad_month_skips_row_with_warning():
    warnings = []
    units = normalize_consumption_units([{"consumptionSiteId": "C1", "month": "132024"}], warnings)
    assert units == []
    assert "consumption unit #0" in warnings[0]


def test_shareholding_percentage_spellings():
    rows = normalize_shareholdings([
        {"generatorCompanyId": "G", "shareholderCompanyId": "A", "shareholdingPercentage": "25"},
        {"generatorCompanyId": "G", "shareholderCompanyId": "B", "allocationPercentage": 30},
        {"generatorCompanyId": "G", "shareholderCompanyId": "C", "percentage": "x"},
    ])
    assert [(s.shareholder_company_id, s.percentage) for s in rows] == [("A", 25), ("B", 30), ("C", 0)]


def test_manual_allocation_keys():
    warnings = []
    parsed = normalize_manual_allocations(
        {"P1_C1_C2": "10", ("P2", "C9", "c5"): 4, "garbage": 1, "P1_C1_c7": 3}, warnings
    )
    assert parsed == ((("P1", "C1", "c2"), 10.0), (("P2", "C9", "c5"), 4.0))
    assert len(warnings) == 2
    assert override_key("P1", "C1", "c2") == "P1_C1_c2"


def test_allocation_from_stored_record_uses_keys():
    alloc = allocation_from_record({"pk": "CO1_P1_C9", "sk": "072024", "allocated": {"c1": 5, "c3": "2"}})
    assert alloc.company_id == "CO1"
    assert alloc.pair == ("P1", "C9")
    assert alloc.month == "072024"
    assert alloc.allocated == PeriodUnits(c1=5, c3=2)
    assert alloc.type is AllocationType.ALLOCATION


def test_allocation_from_stored_lapse_reads_root_periods():
    alloc = allocation_from_record({"pk": "CO1_P1", "sk": "072024", "type": "lapse", "c1": 7, "charge": 1})
    assert alloc.type is AllocationType.LAPSE
    assert alloc.consumption_site_id is None
    assert alloc.allocated.c1 == 7
    assert alloc.charge is True
