# packages/energy_alloc_core/calculator.py
"""
Energy Allocation Core: monthly calculator

What this does:
- Splits each production site's C1..C5 units across the consumption sites of its
  generator company's shareholders, proportionally to the shareholding percentage.
- Manual overrides win over the proportional split for their exact cell.
- Consumer demand carries across production sites (solar first, then wind, then
  banking-enabled sites), so nobody receives more than it needs.
- Whatever a site cannot place is BANKING (banking enabled) or LAPSE (otherwise).
- Previously banked units then cover demand that fresh production could not.
- Malformed numbers never raise: they count as 0 and the result carries warnings.
- 32-char lineage hash of the normalized inputs for the audit trail.

`calculate(inputs)` is the single recompute entry point. Callers decide when to
run it (data change, month change, edit); `apply_manual_override` re-derives a
single pair plus its site's remainder without touching anything else.
"""

from __future__ import annotations

import hashlib
import json
import math
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from packages.energy_alloc_core.config import config
from packages.energy_alloc_core.logging_utils import get_logger
from packages.energy_alloc_core.periods import (
    ALL_PERIODS,
    PeriodUnits,
    coerce_units,
    month_sort_key,
    normalize_month_key,
    round_half_up,
    sum_units,
)
from packages.energy_alloc_core.errors import InvalidMonthError
from packages.energy_alloc_core.records import (
    Allocation,
    AllocationType,
    BankingUnit,
    ConsumptionUnit,
    ProductionUnit,
    Shareholding,
    normalize_banking_units,
    normalize_consumption_units,
    normalize_manual_allocations,
    normalize_production_units,
    normalize_shareholdings,
)
from packages.energy_alloc_core.shareholding import SiteAccess, as_site_access, resolve_shareholders

logger = get_logger(__name__)

OverrideKey = Tuple[str, str, str]


# -------------------------- Helpers -------------------------- #

def _clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))


def _rounder(mode: Optional[str]) -> Callable[[float], float]:
    mode = (mode or config.SHARE_ROUNDING or "round").lower()
    if mode == "floor":
        return lambda x: float(math.floor(x))
    return lambda x: float(round_half_up(x))


def _priority(unit: ProductionUnit) -> int:
    if unit.type == "SOLAR" and not unit.banking_enabled:
        return 0
    if not unit.banking_enabled:
        return 1
    return 2


def _lineage(payload: Any) -> str:
    lineage_str = json.dumps(payload, sort_keys=True, default=str)
    return hashlib.sha256(lineage_str.encode()).hexdigest()[:32]


# ---------------------- Data Contracts ----------------------- #

@dataclass(frozen=True)
class AllocationInputs:
    """Immutable snapshot of everything one calculation pass reads."""
    month: Optional[str] = None
    production_units: Tuple[ProductionUnit, ...] = ()
    consumption_units: Tuple[ConsumptionUnit, ...] = ()
    banking_units: Tuple[BankingUnit, ...] = ()
    shareholdings: Tuple[Shareholding, ...] = ()
    manual_allocations: Tuple[Tuple[OverrideKey, float], ...] = ()
    normalization_warnings: Tuple[str, ...] = ()
    # Set when the caller asked for a month that could not be read
    invalid_month: Optional[str] = None

    @classmethod
    def from_raw(cls,
                 production_units: Optional[Iterable] = None,
                 consumption_units: Optional[Iterable] = None,
                 banking_units: Optional[Iterable] = None,
                 manual_allocations: Optional[Mapping] = None,
                 shareholdings: Optional[Iterable] = None,
                 month: Any = None) -> "AllocationInputs":
        warnings: List[str] = []
        month_key = None
        invalid_month = None
        if month not in (None, ""):
            try:
                month_key = normalize_month_key(month)
            except InvalidMonthError as exc:
                invalid_month = str(month)
                warnings.append(str(exc))
                logger.warning("%s", exc)
        return cls(
            month=month_key,
            production_units=tuple(normalize_production_units(production_units, warnings)),
            consumption_units=tuple(normalize_consumption_units(consumption_units, warnings)),
            banking_units=tuple(normalize_banking_units(banking_units, warnings)),
            shareholdings=tuple(normalize_shareholdings(shareholdings, warnings)),
            manual_allocations=normalize_manual_allocations(manual_allocations, warnings),
            normalization_warnings=tuple(warnings),
            invalid_month=invalid_month,
        )

    def with_manual_allocations(self, overrides: Mapping) -> "AllocationInputs":
        """Copy with `overrides` merged over the existing manual allocations."""
        merged = dict(self.manual_allocations)
        merged.update(dict(normalize_manual_allocations(overrides)))
        return replace(self, manual_allocations=tuple(sorted(merged.items())))

    def production_unit(self, production_site_id: str, month: Optional[str] = None) -> Optional[ProductionUnit]:
        month = month or self.month
        for unit in self.production_units:
            if unit.production_site_id == production_site_id and unit.month in (None, month):
                return unit
        return None

    def consumption_unit(self, consumption_site_id: str, month: Optional[str] = None) -> Optional[ConsumptionUnit]:
        month = month or self.month
        for unit in self.consumption_units:
            if unit.consumption_site_id == consumption_site_id and unit.month in (None, month):
                return unit
        return None

    def lineage_payload(self) -> dict:
        data = asdict(self)
        data.pop("normalization_warnings")
        data["manual_allocations"] = [["_".join(k), v] for k, v in self.manual_allocations]
        return data


@dataclass(frozen=True)
class BankingDraw:
    """Banked units (from `source_month`) used to cover a consumption site's demand in `month`."""
    production_site_id: str
    consumption_site_id: str
    month: str
    source_month: Optional[str]
    drawn: PeriodUnits
    company_id: Optional[str] = None


@dataclass(frozen=True)
class AllocationResult:
    month: Optional[str]
    allocations: Tuple[Allocation, ...] = ()
    banking_draws: Tuple[BankingDraw, ...] = ()
    remaining_consumption: Dict[str, PeriodUnits] = field(default_factory=dict)
    banking_balance: Dict[str, PeriodUnits] = field(default_factory=dict)
    warnings: Tuple[str, ...] = ()
    lineage_hash: str = ""
    method_version: str = config.METHOD_VERSION

    @property
    def regular(self) -> List[Allocation]:
        return [a for a in self.allocations if a.type is AllocationType.ALLOCATION]

    @property
    def banking(self) -> List[Allocation]:
        return [a for a in self.allocations if a.type is AllocationType.BANKING]

    @property
    def lapse(self) -> List[Allocation]:
        return [a for a in self.allocations if a.type is AllocationType.LAPSE]

    def find(self, production_site_id: str, consumption_site_id: Optional[str] = None) -> Optional[Allocation]:
        for a in self.allocations:
            if a.type is AllocationType.ALLOCATION and a.pair == (production_site_id, consumption_site_id):
                return a
        return None

    def leftover_for(self, production_site_id: str) -> Optional[Allocation]:
        for a in self.allocations:
            if a.type is not AllocationType.ALLOCATION and a.production_site_id == production_site_id:
                return a
        return None


# ---------------------- Core Calculations -------------------- #

def _select_month(inputs: AllocationInputs, warnings: List[str]) -> Optional[str]:
    if inputs.invalid_month is not None:
        warnings.append(f"Requested month {inputs.invalid_month!r} is not a valid MMYYYY month; nothing calculated.")
        return None
    if inputs.month:
        return inputs.month
    for unit in inputs.production_units:
        if unit.month:
            logger.info("No month supplied; using %s from production data", unit.month)
            return unit.month
    return None


def _for_month(units: Iterable, month: str, key: Callable, label: str, warnings: List[str]) -> list:
    """Keep units of `month` (or undated ones), first occurrence per identity key."""
    seen = set()
    out = []
    for unit in units:
        if unit.month not in (None, month):
            warnings.append(f"Skipped {label} {key(unit)}: month {unit.month} does not match {month}.")
            continue
        k = key(unit)
        if k in seen:
            warnings.append(f"Skipped duplicate {label} {k} for month {month}.")
            continue
        seen.add(k)
        out.append(unit)
    return out


def _site_weight(cons: ConsumptionUnit, siblings: List[ConsumptionUnit], period: str) -> float:
    """Share of a shareholder's percentage going to `cons` among its company's sites."""
    if len(siblings) <= 1:
        return 1.0
    demand_total = sum(s.units.get(period) for s in siblings)
    if demand_total <= 0:
        return 1.0 / len(siblings)
    return cons.units.get(period) / demand_total


def _allocate_site(prod: ProductionUnit,
                   eligible: List[Tuple[ConsumptionUnit, float]],
                   overrides: Dict[str, Dict[str, float]],
                   unmet: Dict[str, Dict[str, float]],
                   rounder: Callable[[float], float],
                   warnings: List[str]) -> Tuple[Dict[str, Dict[str, float]], Dict[str, float]]:
    """Per period: overrides first, then proportional shares. Returns (allocated by consumer, leftover)."""
    siblings: Dict[str, List[ConsumptionUnit]] = {}
    for cons, _pct in eligible:
        siblings.setdefault(cons.company_id, []).append(cons)

    eligible_order = [c.consumption_site_id for c, _ in eligible]
    override_order = sorted(overrides, key=lambda cid: (eligible_order.index(cid) if cid in eligible_order
                                                        else len(eligible_order), cid))

    allocated: Dict[str, Dict[str, float]] = {}
    leftover: Dict[str, float] = {}

    for period in ALL_PERIODS:
        start = prod.units.get(period)
        available = start

        # --- Manual overrides take precedence for their exact cell
        for cons_id in override_order:
            wanted = overrides[cons_id].get(period)
            if wanted is None:
                continue
            given = _clamp(wanted, 0.0, available)
            if given < wanted:
                warnings.append(
                    f"Manual allocation {prod.production_site_id}->{cons_id} {period} clipped "
                    f"from {wanted:g} to {given:g} (units available)."
                )
            available -= given
            allocated.setdefault(cons_id, {})[period] = given
            if cons_id in unmet:
                unmet[cons_id][period] = max(0.0, unmet[cons_id][period] - given)

        # --- Proportional split from the units at the start of the period
        for cons, pct in eligible:
            cons_id = cons.consumption_site_id
            if period in overrides.get(cons_id, {}):
                continue
            weight = _site_weight(cons, siblings[cons.company_id], period)
            share = rounder(start * pct * weight / 100.0)
            share = _clamp(share, 0.0, available)
            share = min(share, unmet[cons_id][period])
            if share <= 0:
                continue
            available -= share
            unmet[cons_id][period] -= share
            allocated.setdefault(cons_id, {})[period] = allocated.get(cons_id, {}).get(period, 0.0) + share

        leftover[period] = max(0.0, available)

    logger.debug("Site %s allocated=%s leftover=%s", prod.production_site_id, allocated, leftover)
    return allocated, leftover


def _draw_from_banking(bank_units: List[BankingUnit],
                       consumers: List[ConsumptionUnit],
                       unmet: Dict[str, Dict[str, float]],
                       shareholders_of: Callable[[Optional[str]], List[str]],
                       month: str) -> Tuple[List[BankingDraw], Dict[str, PeriodUnits]]:
    """Cover demand left after fresh production from earlier banked balances, same period only."""
    ordered = sorted(bank_units, key=lambda b: (month_sort_key(b.month) if b.month else (0, 0), b.production_site_id))
    balance = [b.units.as_dict() for b in ordered]
    drawn: Dict[Tuple[int, str], Dict[str, float]] = {}

    for period in ALL_PERIODS:
        for cons in consumers:
            cons_id = cons.consumption_site_id
            for idx, bank in enumerate(ordered):
                need = unmet[cons_id][period]
                if need <= 0:
                    break
                if cons.company_id not in shareholders_of(bank.company_id):
                    continue
                take = min(balance[idx][period], need)
                if take <= 0:
                    continue
                balance[idx][period] -= take
                unmet[cons_id][period] -= take
                slot = drawn.setdefault((idx, cons_id), {p: 0.0 for p in ALL_PERIODS})
                slot[period] += take

    draws = [
        BankingDraw(
            production_site_id=ordered[idx].production_site_id,
            consumption_site_id=cons_id,
            month=month,
            source_month=ordered[idx].month,
            drawn=PeriodUnits(**periods),
            company_id=ordered[idx].company_id,
        )
        for (idx, cons_id), periods in sorted(drawn.items())
    ]

    closing: Dict[str, PeriodUnits] = {}
    for bank, bal in zip(ordered, balance):
        closing[bank.production_site_id] = closing.get(bank.production_site_id, PeriodUnits.zero()).plus(PeriodUnits(**bal))
    return draws, closing


def _empty(month: Optional[str], warnings: List[str], lineage_hash: str) -> AllocationResult:
    return AllocationResult(month=month, warnings=tuple(warnings), lineage_hash=lineage_hash,
                            method_version=config.METHOD_VERSION)


# --------------------------- Public -------------------------- #

def calculate(inputs: AllocationInputs,
              site_access: Optional[SiteAccess] = None,
              rounding: Optional[str] = None) -> AllocationResult:
    """
    Main entry point.
    Returns an AllocationResult: ALLOCATION rows per (production, consumption) pair,
    one BANKING or LAPSE row per production site, banking draws, and warnings.
    """
    warnings: List[str] = list(inputs.normalization_warnings)
    access = as_site_access(site_access)
    rounder = _rounder(rounding)
    lineage_hash = _lineage({"inputs": inputs.lineage_payload(),
                             "rounding": rounding or config.SHARE_ROUNDING,
                             "method_version": config.METHOD_VERSION})

    month = _select_month(inputs, warnings)
    if month is None:
        warnings.append("No allocation month available; nothing calculated.")
        return _empty(None, warnings, lineage_hash)

    producers = _for_month(inputs.production_units, month,
                           lambda u: (u.company_id, u.production_site_id), "production unit", warnings)
    consumers = _for_month(inputs.consumption_units, month,
                           lambda u: u.consumption_site_id, "consumption unit", warnings)

    if not producers:
        warnings.append(f"No production units for {month}; nothing to allocate.")
        return _empty(month, warnings, lineage_hash)
    if not consumers:
        warnings.append(f"No consumption units for {month}; nothing to allocate.")
        return _empty(month, warnings, lineage_hash)
    if not inputs.shareholdings:
        warnings.append("No shareholding data available; nothing to allocate.")
        return _empty(month, warnings, lineage_hash)

    consumers.sort(key=lambda c: c.consumption_site_id)
    consumer_index = {c.consumption_site_id: c for c in consumers}
    by_company: Dict[Optional[str], List[ConsumptionUnit]] = {}
    for c in consumers:
        by_company.setdefault(c.company_id, []).append(c)
    unmet = {c.consumption_site_id: dict(c.units.as_dict()) for c in consumers}

    resolved_cache: Dict[Optional[str], list] = {}

    def shares_for(company_id: Optional[str]) -> list:
        if company_id not in resolved_cache:
            resolved_cache[company_id] = resolve_shareholders(company_id, inputs.shareholdings, access, warnings)
        return resolved_cache[company_id]

    def shareholders_of(company_id: Optional[str]) -> List[str]:
        return [r.shareholder_company_id for r in shares_for(company_id)]

    manual: Dict[str, Dict[str, Dict[str, float]]] = {}
    for (prod_id, cons_id, period), value in inputs.manual_allocations:
        if cons_id not in consumer_index:
            warnings.append(f"Manual allocation for unknown consumption site {cons_id} ignored.")
            continue
        manual.setdefault(prod_id, {}).setdefault(cons_id, {})[period] = value

    allocations: List[Allocation] = []
    producers.sort(key=lambda u: (_priority(u), u.production_site_id))

    for prod in producers:
        shares = shares_for(prod.company_id)
        if not shares:
            warnings.append(f"Production site {prod.production_site_id} skipped: no shareholders resolved.")
            continue

        eligible = [
            (cons, share.percentage)
            for share in shares
            for cons in by_company.get(share.shareholder_company_id, [])
        ]
        eligible.sort(key=lambda e: (-e[1], e[0].consumption_site_id))
        overrides = manual.get(prod.production_site_id, {})

        allocated, leftover = _allocate_site(prod, eligible, overrides, unmet, rounder, warnings)

        ordered_ids = [c.consumption_site_id for c, _ in eligible]
        ordered_ids += sorted(cid for cid in overrides if cid not in ordered_ids)
        for cons_id in ordered_ids:
            units = PeriodUnits(**{p: allocated.get(cons_id, {}).get(p, 0.0) for p in ALL_PERIODS})
            if units.is_zero() and cons_id not in overrides:
                continue
            allocations.append(Allocation(
                production_site_id=prod.production_site_id,
                consumption_site_id=cons_id,
                month=month,
                allocated=units,
                type=AllocationType.ALLOCATION,
                company_id=prod.company_id,
                site_name=prod.site_name,
                consumption_site_name=consumer_index[cons_id].site_name,
            ))

        allocations.append(Allocation(
            production_site_id=prod.production_site_id,
            consumption_site_id=None,
            month=month,
            allocated=PeriodUnits(**leftover),
            type=AllocationType.BANKING if prod.banking_enabled else AllocationType.LAPSE,
            company_id=prod.company_id,
            site_name=prod.site_name,
        ))

    draws, banking_balance = _draw_from_banking(list(inputs.banking_units), consumers, unmet, shareholders_of, month)

    remaining = {cid: PeriodUnits(**periods) for cid, periods in unmet.items()}
    result = AllocationResult(
        month=month,
        allocations=tuple(allocations),
        banking_draws=tuple(draws),
        remaining_consumption=remaining,
        banking_balance=banking_balance,
        warnings=tuple(warnings),
        lineage_hash=lineage_hash,
        method_version=config.METHOD_VERSION,
    )
    logger.info(
        "Allocation %s: %d allocation(s), %d banking, %d lapse, %d banking draw(s), %d warning(s)",
        month, len(result.regular), len(result.banking), len(result.lapse), len(draws), len(warnings),
    )
    return result


def calculate_allocations(production_units: Optional[Iterable] = None,
                          consumption_units: Optional[Iterable] = None,
                          banking_units: Optional[Iterable] = None,
                          manual_allocations: Optional[Mapping] = None,
                          shareholdings: Optional[Iterable] = None,
                          month: Any = None,
                          site_access: Optional[SiteAccess] = None,
                          rounding: Optional[str] = None) -> AllocationResult:
    """Raw records in (as fetched from the store), AllocationResult out."""
    inputs = AllocationInputs.from_raw(
        production_units=production_units,
        consumption_units=consumption_units,
        banking_units=banking_units,
        manual_allocations=manual_allocations,
        shareholdings=shareholdings,
        month=month,
    )
    return calculate(inputs, site_access=site_access, rounding=rounding)


def apply_manual_override(result: AllocationResult,
                          inputs: AllocationInputs,
                          production_site_id: str,
                          consumption_site_id: str,
                          values: Mapping[str, Any]) -> AllocationResult:
    """
    Incremental recompute after a user edit of one (production, consumption) pair.
    Only that pair's row and the production site's BANKING/LAPSE row change.
    """
    warnings = list(result.warnings)
    prod = inputs.production_unit(str(production_site_id), result.month)
    if prod is None or result.month is None:
        warnings.append(f"Manual edit ignored: production site {production_site_id} not in this month's data.")
        return replace(result, warnings=tuple(warnings))

    edits: Dict[str, float] = {}
    for period, value in values.items():
        p = str(period).lower()
        if p not in ALL_PERIODS:
            warnings.append(f"Manual edit for unknown period {period!r} ignored.")
            continue
        edits[p] = coerce_units(value)

    cons_id = str(consumption_site_id)
    others = [
        a for a in result.regular
        if a.production_site_id == prod.production_site_id and a.consumption_site_id != cons_id
    ]
    others_total = sum_units(a.allocated for a in others)
    existing = result.find(prod.production_site_id, cons_id)

    new_values = {}
    for p in ALL_PERIODS:
        if p in edits:
            cap = max(0.0, prod.units.get(p) - others_total.get(p))
            new_values[p] = min(edits[p], cap)
            if new_values[p] < edits[p]:
                warnings.append(
                    f"Manual allocation {prod.production_site_id}->{cons_id} {p} clipped "
                    f"from {edits[p]:g} to {new_values[p]:g} (units available)."
                )
        else:
            new_values[p] = existing.allocated.get(p) if existing else 0.0

    cons = inputs.consumption_unit(cons_id, result.month)
    pair_row = Allocation(
        production_site_id=prod.production_site_id,
        consumption_site_id=cons_id,
        month=result.month,
        allocated=PeriodUnits(**new_values),
        type=AllocationType.ALLOCATION,
        company_id=prod.company_id,
        site_name=prod.site_name,
        consumption_site_name=cons.site_name if cons else (existing.consumption_site_name if existing else ""),
        charge=existing.charge if existing else False,
        version=existing.version + 1 if existing else 1,
        created_at=existing.created_at if existing else None,
    )

    leftover_units = prod.units.minus_floored(others_total.plus(pair_row.allocated))
    old_left = result.leftover_for(prod.production_site_id)
    left_type = AllocationType.BANKING if prod.banking_enabled else AllocationType.LAPSE
    if old_left is None:
        left_row = Allocation(
            production_site_id=prod.production_site_id, consumption_site_id=None, month=result.month,
            allocated=leftover_units, type=left_type, company_id=prod.company_id, site_name=prod.site_name,
        )
    else:
        changed = old_left.allocated != leftover_units or old_left.type is not left_type
        left_row = replace(old_left, allocated=leftover_units, type=left_type,
                           version=old_left.version + 1 if changed else old_left.version)

    rows: List[Allocation] = []
    pair_placed = False
    for a in result.allocations:
        if a is existing:
            rows.append(pair_row)
            pair_placed = True
        elif a is old_left:
            if not pair_placed:
                rows.append(pair_row)
                pair_placed = True
            rows.append(left_row)
        else:
            rows.append(a)
    if not pair_placed:
        rows.append(pair_row)
    if old_left is None:
        rows.append(left_row)

    logger.info("Manual edit %s->%s %s applied (version %d)",
                prod.production_site_id, cons_id, sorted(edits), pair_row.version)
    return replace(
        result,
        allocations=tuple(rows),
        warnings=tuple(warnings),
        lineage_hash=_lineage({"base": result.lineage_hash,
                               "edit": [prod.production_site_id, cons_id, sorted(edits.items())]}),
    )
