# packages/energy_alloc_core/validation.py
"""
Checks on allocation payloads before they are persisted.

- pk and sk are required; ALLOCATION rows also need consumptionSiteId
- c1..c5 are required (root level or under `allocated`) and may not be negative
- charge is 0/1; charge=1 is refused on a zero-unit row
- at most one pk per month may carry charge=1
"""

from __future__ import annotations

import math
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from packages.energy_alloc_core.config import config
from packages.energy_alloc_core.errors import AllocationValidationError
from packages.energy_alloc_core.logging_utils import get_logger
from packages.energy_alloc_core.periods import ALL_PERIODS
from packages.energy_alloc_core.records import AllocationType

logger = get_logger(__name__)

# Display-only fields the store does not keep
_DISPLAY_FIELDS = ("siteName", "productionSite", "siteType", "consumptionSite")


def _missing(value: Any) -> bool:
    return value is None or value == ""


def _raw_period(record: Mapping[str, Any], period: str) -> Any:
    if not _missing(record.get(period)):
        return record.get(period)
    allocated = record.get("allocated")
    if isinstance(allocated, Mapping):
        return allocated.get(period)
    return None


def _number(value: Any) -> float:
    try:
        num = float(str(value).replace(",", "")) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        return 0.0
    return 0.0 if math.isnan(num) or math.isinf(num) else num


def _charge_flag(value: Any) -> int:
    return 1 if value is True or value == 1 else 0


def _check_record(record: Mapping[str, Any], charge_by_month: Dict[str, str]) -> Tuple[List[str], Dict[str, Any]]:
    errors: List[str] = []
    try:
        kind = AllocationType.parse(record.get("type"), AllocationType.ALLOCATION)
    except ValueError:
        return [f"Unknown allocation type: {record.get('type')!r}"], dict(record)

    required = ["pk", "sk"] + (["consumptionSiteId"] if kind is AllocationType.ALLOCATION else [])
    missing = [f for f in required if _missing(record.get(f))]
    missing += [p for p in ALL_PERIODS if _missing(_raw_period(record, p))]
    if missing:
        errors.append(f"Missing required fields: {', '.join(missing)}")

    cleaned = dict(record)
    cleaned["type"] = kind.value
    total = 0.0
    for p in ALL_PERIODS:
        value = _number(_raw_period(record, p))
        if value < 0:
            errors.append(f"{p} cannot be negative")
        cleaned[p] = value
        total += value

    charge = _charge_flag(record.get("charge", 0))
    cleaned["charge"] = charge
    if charge == 1:
        if total == 0:
            errors.append("Cannot set charge=1 for an allocation with zero units")
        sk, pk = record.get("sk"), record.get("pk")
        if sk in charge_by_month and charge_by_month[sk] != pk:
            errors.append(f"Month {sk} already has an allocation with charge=1")
        charge_by_month.setdefault(sk, pk)

    if kind is AllocationType.BANKING:
        cleaned["bankingEnabled"] = True
    cleaned["version"] = record.get("version") or config.DEFAULT_VERSION
    for key in _DISPLAY_FIELDS:
        cleaned.pop(key, None)
    return errors, cleaned


def validate_allocation_records(records: Optional[Iterable[Mapping[str, Any]]]) -> List[Dict[str, Any]]:
    """
    Validate a batch (or a single record) of allocation payloads.
    Returns cleaned copies; raises AllocationValidationError listing every bad record.
    """
    if isinstance(records, Mapping):
        records = [records]

    charge_by_month: Dict[str, str] = {}
    cleaned_records: List[Dict[str, Any]] = []
    failures: List[dict] = []

    for idx, record in enumerate(records or ()):
        if not isinstance(record, Mapping):
            failures.append({"index": idx, "allocation": record, "errors": ["Not a record"]})
            continue
        errors, cleaned = _check_record(record, charge_by_month)
        if errors:
            failures.append({"index": idx, "allocation": dict(record), "errors": errors})
        else:
            cleaned_records.append(cleaned)

    if failures:
        logger.warning("Allocation validation failed for %d record(s)", len(failures))
        raise AllocationValidationError(failures)
    return cleaned_records
