from datetime import date

import pytest

from packages.energy_alloc_core.periods import PeriodUnits
from packages.energy_alloc_core.records import Allocation, AllocationType
from packages.energy_alloc_core.reporting import (
    OA_CHARGE_CODES,
    SiteDirectories,
    aggregate_banking_by_financial_year,
    group_allocations_by_consumption_site,
    lookup_oa_charges,
    total_oa_charges,
    totals_by_site_and_month,
)

BANKING = [
    {"pk": "G1_P1", "sk": "032024", "type": "BANKING", "c1": 10, "c2": 1},
    {"pk": "G1_P1", "sk": "042024", "type": "BANKING", "c1": 5},
    {"productionSiteId": "P1", "month": "052024", "allocated": {"c1": 7}},
    {"pk": "G1_P2", "sk": "122024", "type": "BANKING", "c3": "4"},
    {"pk": "G1_P1", "sk": "062024", "type": "LAPSE", "c1": 999},
]


def test_banking_by_financial_year_boundary():
    fy2023 = aggregate_banking_by_financial_year(BANKING, "2023-24")
    assert [(t.production_site_id, t.units.c1) for t in fy2023] == [("P1", 10)]
    assert fy2023[0].financial_year == "2023-2024"

    fy2024 = aggregate_banking_by_financial_year(BANKING, 2024)
    by_site = {t.production_site_id: t for t in fy2024}
    assert by_site["P1"].units == PeriodUnits(c1=12)
    assert by_site["P1"].months == ("042024", "052024")
    assert by_site["P1"].company_id == "G1"
    assert by_site["P2"].units.c3 == 4


def test_banking_accepts_allocation_rows():
    rows = [Allocation("P1", None, "052024", PeriodUnits(c1=3), type=AllocationType.BANKING),
            Allocation("P1", None, "052024", PeriodUnits(c1=8), type=AllocationType.LAPSE)]
    totals = aggregate_banking_by_financial_year(rows, "FY2024")
    assert totals[0].total == 3


def test_consumption_site_view_running_columns():
    allocations = [
        Allocation("P-OLD", "CS1", "072024", PeriodUnits(c1=30)),
        Allocation("P-NEW", "CS1", "072024", PeriodUnits(c1=50)),
        Allocation("P-UNDATED", "CS1", "072024", PeriodUnits(c1=10), charge=True),
        Allocation("P-NEW", None, "072024", PeriodUnits(c1=99), type=AllocationType.LAPSE),
    ]
    dirs = SiteDirectories(
        production_sites=[
            {"productionSiteId": "P-OLD", "name": "Old", "dateOfCommission": "2019-01-01"},
            {"productionSiteId": "P-NEW", "name": "New", "dateOfCommission": "2023-06-01T00:00:00Z"},
            {"productionSiteId": "P-UNDATED", "name": "Undated"},
        ],
        consumption_sites={"CS1": {"name": "Factory"}},
        demand={"CS1": {"c1": 100}},
    )
    views = group_allocations_by_consumption_site(allocations, dirs)
    assert len(views) == 1
    view = views[0]
    assert view.consumption_site_name == "Factory"
    assert [r.production_site_id for r in view.rows] == ["P-NEW", "P-OLD", "P-UNDATED"]
    assert [r.available.c1 for r in view.rows] == [100, 50, 20]
    assert [r.remaining.c1 for r in view.rows] == [50, 20, 10]
    assert view.rows[0].commissioning_date == date(2023, 6, 1)
    assert view.rows[2].charge is True
    assert view.rows[0].c24 == 50
    assert view.remaining.c1 == 10


def test_consumption_site_view_without_demand_uses_allocated():
    views = group_allocations_by_consumption_site([
        {"pk": "G1_P1_CS9", "sk": "072024", "allocated": {"c2": 4}},
    ])
    assert views[0].demand == PeriodUnits(c2=4)
    assert views[0].rows[0].available.c2 == 4
    assert views[0].rows[0].remaining.c2 == 0


def test_totals_by_site_and_month():
    allocations = [
        Allocation("P1", "CS1", "072024", PeriodUnits(c1=1)),
        Allocation("P1", "CS2", "072024", PeriodUnits(c1=2)),
        Allocation("P1", "CS1", "062024", PeriodUnits(c2=3)),
        Allocation("P1", None, "072024", PeriodUnits(c1=50), type=AllocationType.LAPSE),
    ]
    by_prod = totals_by_site_and_month(allocations)
    assert list(by_prod) == [("P1", "062024"), ("P1", "072024")]
    assert by_prod[("P1", "072024")].c1 == 3

    by_cons = totals_by_site_and_month(allocations, by="consumption")
    assert by_cons[("CS1", "072024")].c1 == 1

    with_lapse = totals_by_site_and_month(allocations, types=("ALLOCATION", "LAPSE"))
    assert with_lapse[("P1", "072024")].c1 == 53

    with pytest.raises(ValueError):
        totals_by_site_and_month(allocations, by="company")


def test_oa_charges_zero_filled_and_case_insensitive():
    records = [
        {"productionSiteId": "P1", "sk": "072024", "c001": "100", "C003": 50},
        {"pk": "CO1_P1", "sk": "072024", "cValues": {"C010": 5}},
        {"productionSiteId": "P1", "sk": "082024", "C001": 999},
        {"productionSiteId": "P2", "sk": "072024", "C001": 999},
    ]
    charges = lookup_oa_charges(records, "P1", "7-2024")
    assert len(charges) == 11
    assert charges["C001"] == 100
    assert charges["C003"] == 50
    assert charges["C010"] == 5
    assert charges["C002"] == 0
    assert total_oa_charges(records, "P1", "072024") == 155
    assert OA_CHARGE_CODES["C011"] == "WHLC"
