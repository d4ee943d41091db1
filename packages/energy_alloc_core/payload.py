# packages/energy_alloc_core/payload.py
"""
Allocation payload builder.

Turns an Allocation decision into the flat record the persistence layer stores:
- pk = "<companyId>_<productionSiteId>[_<consumptionSiteId>]", sk = "<MMYYYY>"
- period values rounded to non-negative whole units
- version / createdAt / updatedAt stamps (UTC ISO-8601)
- None fields stripped

Unlike the calculator this is strict: missing identities raise named errors.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from packages.energy_alloc_core.config import config
from packages.energy_alloc_core.errors import (
    InvalidMonthError,
    MissingCompanyIdError,
    MissingConsumptionSiteIdError,
    ProductionSiteNotFoundError,
)
from packages.energy_alloc_core.logging_utils import get_logger
from packages.energy_alloc_core.periods import ALL_PERIODS, coerce_units, format_month_key, normalize_month_key, round_half_up
from packages.energy_alloc_core.records import Allocation, AllocationType, allocation_from_record

logger = get_logger(__name__)

SiteDirectory = Union[Sequence[Mapping[str, Any]], Mapping[str, Mapping[str, Any]]]


# ---------------------- Data Contracts ----------------------- #

@dataclass(frozen=True)
class PayloadContext:
    """Company id of the acting user plus the production-site directory used to resolve names."""
    company_id: Optional[str]
    production_sites: SiteDirectory = field(default_factory=tuple)

    def find_site(self, site_id: Any) -> Optional[Mapping[str, Any]]:
        wanted = str(site_id)
        if isinstance(self.production_sites, Mapping):
            site = self.production_sites.get(wanted)
            if site is not None:
                return site
            sites = self.production_sites.values()
        else:
            sites = self.production_sites
        for site in sites:
            for key in ("productionSiteId", "production_site_id", "id"):
                if site.get(key) is not None and str(site.get(key)) == wanted:
                    return site
        return None


# -------------------------- Helpers -------------------------- #

def _now_iso(now: Optional[datetime]) -> str:
    ts = now or datetime.now(timezone.utc)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _whole(value: Any) -> int:
    return max(0, round_half_up(coerce_units(value)))


def _site_field(site: Mapping[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = site.get(key)
        if value not in (None, ""):
            return str(value)
    return None


def _strip_none(record: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in record.items() if v is not None}


def _to_allocation(allocation: Union[Allocation, Mapping[str, Any]], kind: Optional[str],
                   month: Any, year: Any) -> Allocation:
    if isinstance(allocation, Allocation):
        return allocation
    row = dict(allocation)
    if not (row.get("productionSiteId") or row.get("production_site_id") or row.get("pk")):
        raise ProductionSiteNotFoundError(None, kind)
    if not (row.get("month") or row.get("sk")) and month is not None:
        row["month"] = format_month_key(month, year) if year is not None else normalize_month_key(month)
    if not (row.get("month") or row.get("sk")):
        raise InvalidMonthError(month)
    return allocation_from_record(row)


def _resolve_month(allocation: Allocation, month: Any, year: Any) -> str:
    if allocation.month and len(str(allocation.month)) == 6:
        return normalize_month_key(allocation.month)
    if month is not None and year is not None:
        return format_month_key(month, year)
    return normalize_month_key(month if month is not None else allocation.month)


# --------------------------- Public -------------------------- #

def build_payload(allocation: Union[Allocation, Mapping[str, Any]],
                  allocation_type: Optional[Union[str, AllocationType]] = None,
                  month: Any = None,
                  year: Any = None,
                  context: Optional[PayloadContext] = None,
                  now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Storable record for one allocation row.

    Raises:
      MissingCompanyIdError, ProductionSiteNotFoundError, MissingConsumptionSiteIdError,
      InvalidMonthError (month cannot be resolved).
    """
    requested = AllocationType.parse(allocation_type).value if allocation_type else None
    alloc = _to_allocation(allocation, requested, month, year)
    kind = AllocationType.parse(allocation_type, alloc.type)
    context = context or PayloadContext(company_id=alloc.company_id)

    company_id = context.company_id or alloc.company_id
    if not company_id:
        raise MissingCompanyIdError(kind.value, alloc.production_site_id)

    month_key = _resolve_month(alloc, month, year)

    if not alloc.production_site_id:
        raise ProductionSiteNotFoundError(None, kind.value, month_key)
    site = context.find_site(alloc.production_site_id)
    if site is None:
        raise ProductionSiteNotFoundError(alloc.production_site_id, kind.value, month_key)

    production_site_id = _site_field(site, "productionSiteId", "production_site_id", "id") or alloc.production_site_id
    site_name = _site_field(site, "siteName", "name") or alloc.site_name or None
    # The site's owning company wins over the acting company
    company_id = _site_field(site, "companyId", "company_id") or company_id

    consumption_site_id = alloc.consumption_site_id if kind is AllocationType.ALLOCATION else None
    if kind is AllocationType.ALLOCATION and not consumption_site_id:
        raise MissingConsumptionSiteIdError(production_site_id, month_key)

    pk = "_".join(str(part) for part in (company_id, production_site_id, consumption_site_id) if part)
    allocated = {p: _whole(alloc.allocated.get(p)) for p in ALL_PERIODS}
    stamp = _now_iso(now)

    record: Dict[str, Any] = {
        "pk": pk,
        "sk": month_key,
        "type": kind.value,
        "month": month_key,
        "companyId": company_id,
        "productionSiteId": production_site_id,
        "productionSite": site_name,
        "consumptionSiteId": consumption_site_id,
        "consumptionSite": (alloc.consumption_site_name or None) if consumption_site_id else None,
        "allocated": allocated,
        "charge": 1 if alloc.charge else 0,
        "version": alloc.version or config.DEFAULT_VERSION,
        "createdAt": alloc.created_at or stamp,
        "updatedAt": stamp,
    }
    if kind is not AllocationType.ALLOCATION:
        record["siteName"] = site_name
        record.update(allocated)

    logger.debug("Payload %s/%s (%s) v%s", pk, month_key, kind.value, record["version"])
    return _strip_none(record)


def build_payloads(result, context: PayloadContext, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Payloads for every row of an AllocationResult, in result order, sharing one timestamp."""
    stamp = now or datetime.now(timezone.utc)
    payloads = [build_payload(a, context=context, now=stamp) for a in result.allocations]
    logger.info("Built %d payload(s) for %s", len(payloads), result.month)
    return payloads


def bump_version(allocation: Allocation, now: Optional[datetime] = None) -> Allocation:
    """Caller-side edit stamp: version + 1 and a fresh updatedAt; createdAt is set once."""
    stamp = _now_iso(now)
    return replace(
        allocation,
        version=(allocation.version or config.DEFAULT_VERSION) + 1,
        created_at=allocation.created_at or stamp,
        updated_at=stamp,
    )
