# packages/energy_alloc_core/shareholding.py
"""
Shareholding resolver.

Given a generator company and its generator -> shareholder agreements, work out
which shareholder companies get a cut of the generator's production and how big.
Authorization is not decided here: the caller passes a SiteAccess capability once.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Protocol

from packages.energy_alloc_core.logging_utils import get_logger
from packages.energy_alloc_core.records import Shareholding, normalize_shareholdings

logger = get_logger(__name__)


class SiteAccess(Protocol):
    def has_site_access(self, site_id: str, site_type: str) -> bool:
        ...


class AllowAllSiteAccess:
    """Default capability when the caller does no access filtering."""

    def has_site_access(self, site_id: str, site_type: str) -> bool:
        return True


class PredicateSiteAccess:
    """Wraps a plain has_site_access(site_id, site_type) callable."""

    def __init__(self, predicate: Callable[[str, str], bool]):
        self._predicate = predicate

    def has_site_access(self, site_id: str, site_type: str) -> bool:
        return bool(self._predicate(site_id, site_type))


def as_site_access(access) -> SiteAccess:
    if access is None:
        return AllowAllSiteAccess()
    if hasattr(access, "has_site_access"):
        return access
    if callable(access):
        return PredicateSiteAccess(access)
    raise TypeError(f"Unsupported site access capability: {type(access).__name__}")


@dataclass(frozen=True)
class ResolvedShare:
    shareholder_company_id: str
    percentage: float


def resolve_shareholders(generator_company_id: Optional[str],
                         shareholdings: Optional[Iterable],
                         site_access: Optional[SiteAccess] = None,
                         warnings: Optional[List[str]] = None) -> List[ResolvedShare]:
    """
    Returns shareholders of `generator_company_id` ordered by percentage desc, id asc.
    An empty list means "skip allocation for this generator"; the reason lands in `warnings`.
    """
    access = as_site_access(site_access)
    if not generator_company_id:
        _warn(warnings, "No generator company ID; shareholding resolution skipped.")
        return []

    records = [
        s for s in normalize_shareholdings(shareholdings, warnings)
        if s.generator_company_id == str(generator_company_id)
    ]

    if records and not _check_access(access, str(generator_company_id), warnings):
        _warn(warnings, f"No site access for generator company {generator_company_id}; shareholdings ignored.")
        return []

    merged: Dict[str, float] = {}
    for s in records:
        if s.percentage <= 0:
            continue
        merged[s.shareholder_company_id] = merged.get(s.shareholder_company_id, 0.0) + s.percentage

    if not merged:
        _warn(warnings, f"No allocation percentage data available for generator company {generator_company_id}.")
        return []

    total_pct = sum(merged.values())
    if total_pct > 100.0:
        # Tolerated: each consumer is still capped by its own demand and the units left.
        logger.info("Shareholdings of %s sum to %.2f%% (over-committed)", generator_company_id, total_pct)

    resolved = [ResolvedShare(cid, pct) for cid, pct in merged.items()]
    resolved.sort(key=lambda r: (-r.percentage, r.shareholder_company_id))
    logger.debug("Resolved %d shareholder(s) for %s: %s", len(resolved), generator_company_id, resolved)
    return resolved


def shareholding_map(generator_company_id: Optional[str],
                     shareholdings: Optional[Iterable[Shareholding]],
                     site_access: Optional[SiteAccess] = None) -> Dict[str, float]:
    """{shareholderCompanyId: percentage} convenience view of resolve_shareholders."""
    return {
        r.shareholder_company_id: r.percentage
        for r in resolve_shareholders(generator_company_id, shareholdings, site_access)
    }


# -------------------------- Helpers -------------------------- #

def _check_access(access: SiteAccess, site_id: str, warnings: Optional[List[str]]) -> bool:
    try:
        return bool(access.has_site_access(site_id, "production"))
    except Exception as exc:  # collaborator failure is treated as "no access"
        _warn(warnings, f"Site access check failed for {site_id}: {exc}")
        return False


def _warn(warnings: Optional[List[str]], message: str) -> None:
    logger.warning(message)
    if warnings is not None:
        warnings.append(message)
