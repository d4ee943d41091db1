# packages/energy_alloc_core/reporting.py
"""
Read-only projections over computed or stored allocations.

Nothing here recomputes or mutates an allocation; inputs may be Allocation
objects or stored payload dicts (see records.allocation_from_record).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from packages.energy_alloc_core.logging_utils import get_logger
from packages.energy_alloc_core.periods import (
    ALL_PERIODS,
    PeriodUnits,
    coerce_units,
    financial_year_label,
    in_financial_year,
    month_sort_key,
    normalize_month_key,
    parse_financial_year,
)
from packages.energy_alloc_core.errors import InvalidMonthError
from packages.energy_alloc_core.records import (
    Allocation,
    AllocationType,
    BankingUnit,
    allocation_from_record,
    normalize_banking_units,
)

logger = get_logger(__name__)

SiteMap = Union[Mapping[str, Mapping[str, Any]], Sequence[Mapping[str, Any]]]

# Open-access adjustment charges levied per production site per month
OA_CHARGE_CODES: Dict[str, str] = {
    "C001": "AMR Meter Reading Charges",
    "C002": "O&M Charges",
    "C003": "Transmission Charges",
    "C004": "System Operation Charges",
    "C005": "RKvah Penalty",
    "C006": "Import Energy Charges",
    "C007": "Scheduling Charges",
    "C008": "Other Charges",
    "C010": "DSM Charges",
    "C011": "WHLC",
}

# Stored charge rows carry C001..C011; C009 has no description but is kept
_CHARGE_KEYS = tuple(f"C{i:03d}" for i in range(1, 12))


# ---------------------- Data Contracts ----------------------- #

@dataclass(frozen=True)
class BankingYearTotal:
    production_site_id: str
    financial_year: str
    units: PeriodUnits
    months: Tuple[str, ...] = ()
    company_id: Optional[str] = None
    site_name: str = ""

    @property
    def total(self) -> float:
        return self.units.total


@dataclass(frozen=True)
class SiteDirectories:
    """Site lookups for the consumption-site view. `demand` is consumption units keyed by consumption site id."""
    production_sites: SiteMap = field(default_factory=dict)
    consumption_sites: SiteMap = field(default_factory=dict)
    demand: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ProductionSiteRow:
    production_site_id: str
    production_site_name: str
    allocated: PeriodUnits
    available: PeriodUnits
    remaining: PeriodUnits
    commissioning_date: Optional[date] = None
    charge: bool = False

    @property
    def c24(self) -> float:
        return self.allocated.total

    @property
    def available_c24(self) -> float:
        return self.available.total

    @property
    def remaining_c24(self) -> float:
        return self.remaining.total


@dataclass(frozen=True)
class ConsumptionSiteView:
    consumption_site_id: str
    consumption_site_name: str
    demand: PeriodUnits
    allocated: PeriodUnits
    rows: Tuple[ProductionSiteRow, ...] = ()

    @property
    def remaining(self) -> PeriodUnits:
        return self.demand.minus_floored(self.allocated)


# -------------------------- Helpers -------------------------- #

def _as_allocations(allocations: Optional[Iterable[Any]]) -> List[Allocation]:
    out = []
    for row in allocations or ():
        try:
            out.append(allocation_from_record(row))
        except (ValueError, InvalidMonthError) as exc:
            logger.warning("Skipped unreadable allocation record: %s", exc)
    return out


def _index_sites(sites: Optional[SiteMap], *id_keys: str) -> Dict[str, Mapping[str, Any]]:
    if not sites:
        return {}
    if isinstance(sites, Mapping):
        return {str(k): v for k, v in sites.items()}
    index = {}
    for site in sites:
        for key in id_keys:
            if site.get(key) not in (None, ""):
                index[str(site[key])] = site
                break
    return index


def _site_name(site: Optional[Mapping[str, Any]], fallback: str) -> str:
    if site:
        for key in ("name", "siteName", "Name"):
            if site.get(key):
                return str(site[key])
    return fallback


def _commissioned(site: Optional[Mapping[str, Any]]) -> Optional[date]:
    if not site:
        return None
    raw = site.get("dateOfCommission") or site.get("commissioningDate") or site.get("commissionDate")
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    try:
        return date.fromisoformat(str(raw)[:10]) if raw else None
    except ValueError:
        return None


def _banking_units(records: Optional[Iterable[Any]]) -> List[BankingUnit]:
    rows = []
    for rec in records or ():
        if isinstance(rec, BankingUnit):
            rows.append(rec)
        elif isinstance(rec, Allocation):
            if rec.type is AllocationType.BANKING:
                rows.append(BankingUnit(rec.production_site_id, rec.company_id, rec.allocated, rec.month, rec.site_name))
        elif isinstance(rec, Mapping):
            if rec.get("type") and str(rec["type"]).upper() != AllocationType.BANKING.value:
                continue
            row = dict(rec)
            if rec.get("allocated") and not any(p in rec or p.upper() in rec for p in ALL_PERIODS):
                row.update(rec["allocated"])
            pk_parts = str(rec.get("pk") or "").split("_")
            if not row.get("productionSiteId") and len(pk_parts) > 1:
                row["productionSiteId"] = pk_parts[1]
                row.setdefault("companyId", pk_parts[0])
            row.setdefault("month", rec.get("sk"))
            rows.append(row)
    return normalize_banking_units(rows)


# --------------------------- Public -------------------------- #

def aggregate_banking_by_financial_year(banking_records: Optional[Iterable[Any]],
                                        financial_year: Any) -> List[BankingYearTotal]:
    """
    Sum banked c1..c5 per production site over April(Y)..March(Y+1).
    Records without a readable month are left out.
    """
    start = parse_financial_year(financial_year)
    grouped: Dict[str, dict] = {}
    for unit in _banking_units(banking_records):
        if not unit.month or not in_financial_year(unit.month, start):
            continue
        slot = grouped.setdefault(unit.production_site_id, {
            "units": PeriodUnits.zero(), "months": set(),
            "company_id": unit.company_id, "site_name": unit.site_name,
        })
        slot["units"] = slot["units"].plus(unit.units)
        slot["months"].add(unit.month)
        slot["site_name"] = slot["site_name"] or unit.site_name

    label = financial_year_label(start)
    totals = [
        BankingYearTotal(
            production_site_id=site_id,
            financial_year=label,
            units=slot["units"],
            months=tuple(sorted(slot["months"], key=month_sort_key)),
            company_id=slot["company_id"],
            site_name=slot["site_name"],
        )
        for site_id, slot in sorted(grouped.items())
    ]
    logger.info("Banking FY %s: %d production site(s)", label, len(totals))
    return totals


def group_allocations_by_consumption_site(allocations: Optional[Iterable[Any]],
                                          site_directories: Optional[SiteDirectories] = None) -> List[ConsumptionSiteView]:
    """
    Per consumption site: production rows newest commissioning first (undated last),
    each with `available` = demand minus what earlier rows took, and `remaining` after it.
    """
    dirs = site_directories or SiteDirectories()
    prod_sites = _index_sites(dirs.production_sites, "productionSiteId", "id")
    cons_sites = _index_sites(dirs.consumption_sites, "consumptionSiteId", "id")

    grouped: Dict[str, Dict[str, Any]] = {}
    for a in _as_allocations(allocations):
        if a.type is not AllocationType.ALLOCATION or not a.consumption_site_id:
            continue
        per_prod = grouped.setdefault(a.consumption_site_id, {})
        prev = per_prod.get(a.production_site_id)
        per_prod[a.production_site_id] = (
            (prev[0].plus(a.allocated), prev[1] or a.charge, prev[2]) if prev else (a.allocated, a.charge, a.site_name)
        )

    views = []
    for cons_id, per_prod in grouped.items():
        allocated_total = PeriodUnits.zero()
        for units, _charge, _name in per_prod.values():
            allocated_total = allocated_total.plus(units)
        demand_rec = dirs.demand.get(cons_id)
        demand = PeriodUnits.from_record(demand_rec) if demand_rec is not None else allocated_total

        def order(prod_id: str):
            commissioned = _commissioned(prod_sites.get(prod_id))
            return (commissioned is None, -(commissioned.toordinal() if commissioned else 0), prod_id)

        cumulative = PeriodUnits.zero()
        rows = []
        for prod_id in sorted(per_prod, key=order):
            units, charge, stored_name = per_prod[prod_id]
            available = demand.minus_floored(cumulative)
            rows.append(ProductionSiteRow(
                production_site_id=prod_id,
                production_site_name=_site_name(prod_sites.get(prod_id), stored_name or f"Production Site {prod_id}"),
                allocated=units,
                available=available,
                remaining=available.minus_floored(units),
                commissioning_date=_commissioned(prod_sites.get(prod_id)),
                charge=charge,
            ))
            cumulative = cumulative.plus(units)

        views.append(ConsumptionSiteView(
            consumption_site_id=cons_id,
            consumption_site_name=_site_name(cons_sites.get(cons_id), "Consumption Site"),
            demand=demand,
            allocated=allocated_total,
            rows=tuple(rows),
        ))

    views.sort(key=lambda v: (v.consumption_site_name, v.consumption_site_id))
    return views


def totals_by_site_and_month(allocations: Optional[Iterable[Any]],
                             by: str = "production",
                             types: Iterable[AllocationType] = (AllocationType.ALLOCATION,)) -> Dict[Tuple[str, str], PeriodUnits]:
    """{(site id, MMYYYY): summed c1..c5} on the production or consumption side."""
    if by not in ("production", "consumption"):
        raise ValueError(f"by must be 'production' or 'consumption', got {by!r}")
    wanted = {AllocationType.parse(t) for t in types}
    totals: Dict[Tuple[str, str], PeriodUnits] = {}
    for a in _as_allocations(allocations):
        if a.type not in wanted:
            continue
        site_id = a.production_site_id if by == "production" else a.consumption_site_id
        if not site_id:
            continue
        key = (site_id, a.month)
        totals[key] = totals.get(key, PeriodUnits.zero()).plus(a.allocated)
    return dict(sorted(totals.items(), key=lambda kv: (kv[0][0], month_sort_key(kv[0][1]))))


def normalize_charge_values(values: Optional[Mapping[str, Any]]) -> Dict[str, float]:
    """C001..C011 with upper- or lower-case keys -> upper-case keys, zero-filled."""
    values = values or {}
    out = {}
    for code in _CHARGE_KEYS:
        raw = values.get(code)
        if raw is None:
            raw = values.get(code.lower())
        out[code] = coerce_units(raw)
    return out


def lookup_oa_charges(charge_records: Optional[Iterable[Mapping[str, Any]]],
                      production_site_id: Any,
                      month: Any) -> Dict[str, float]:
    """Zero-filled OA charges of one production site for one month (summed over matching rows)."""
    month_key = normalize_month_key(month)
    site_id = str(production_site_id)
    found = {code: 0.0 for code in _CHARGE_KEYS}
    for rec in charge_records or ():
        rec_site = rec.get("productionSiteId")
        if rec_site is None and rec.get("pk"):
            parts = str(rec["pk"]).split("_")
            rec_site = parts[1] if len(parts) > 1 else parts[0]
        if str(rec_site) != site_id:
            continue
        try:
            rec_month = normalize_month_key(rec.get("month") or rec.get("sk") or rec.get("date"))
        except InvalidMonthError:
            continue
        if rec_month != month_key:
            continue
        values = rec.get("cValues") if isinstance(rec.get("cValues"), Mapping) else rec
        for code, value in normalize_charge_values(values).items():
            found[code] += value
    return found


def total_oa_charges(charge_records: Optional[Iterable[Mapping[str, Any]]],
                     production_site_id: Any,
                     month: Any) -> float:
    return sum(lookup_oa_charges(charge_records, production_site_id, month).values())
