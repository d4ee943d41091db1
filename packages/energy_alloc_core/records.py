# packages/energy_alloc_core/records.py
"""
Input boundary: loosely-typed records in, strict frozen records out.

Collaborators hand us plain key/value rows where numbers may be strings and the
same field can have several spellings (percentage vs shareholdingPercentage).
Each row goes through a pydantic inbound model once; everything downstream works
on the frozen dataclasses below and never sees raw values.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from packages.energy_alloc_core.errors import InvalidMonthError
from packages.energy_alloc_core.logging_utils import get_logger
from packages.energy_alloc_core.periods import ALL_PERIODS, PeriodUnits, coerce_units, normalize_month_key

logger = get_logger(__name__)

_TRUTHY = {"1", "true", "yes", "y", "on", "enabled"}


class AllocationType(str, Enum):
    ALLOCATION = "ALLOCATION"
    BANKING = "BANKING"
    LAPSE = "LAPSE"

    @classmethod
    def parse(cls, value: Any, default: "AllocationType" = None) -> "AllocationType":
        if isinstance(value, cls):
            return value
        if value is None or str(value).strip() == "":
            if default is None:
                raise ValueError("Allocation type is required")
            return default
        return cls(str(value).strip().upper())


# ---------------------- Data Contracts ----------------------- #

@dataclass(frozen=True)
class ProductionUnit:
    production_site_id: str
    company_id: Optional[str]
    units: PeriodUnits
    month: Optional[str] = None
    site_name: str = ""
    type: str = "SOLAR"
    banking_enabled: bool = False
    commissioning_date: Optional[str] = None


@dataclass(frozen=True)
class ConsumptionUnit:
    consumption_site_id: str
    company_id: Optional[str]
    units: PeriodUnits
    month: Optional[str] = None
    site_name: str = ""


@dataclass(frozen=True)
class BankingUnit:
    production_site_id: str
    company_id: Optional[str]
    units: PeriodUnits
    month: Optional[str] = None
    site_name: str = ""


@dataclass(frozen=True)
class Shareholding:
    generator_company_id: str
    shareholder_company_id: str
    percentage: float


@dataclass(frozen=True)
class Allocation:
    production_site_id: str
    consumption_site_id: Optional[str]
    month: str
    allocated: PeriodUnits
    type: AllocationType = AllocationType.ALLOCATION
    company_id: Optional[str] = None
    site_name: str = ""
    consumption_site_name: str = ""
    charge: bool = False
    version: int = 1
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def pair(self) -> Tuple[str, Optional[str]]:
        return self.production_site_id, self.consumption_site_id

    @property
    def total(self) -> float:
        return self.allocated.total


# ---------------------- Inbound models ----------------------- #

def _coerce_id(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text or None


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    if isinstance(value, (int, float)):
        return value == 1
    return str(value).strip().lower() in _TRUTHY


def _coerce_month(value: Any) -> Optional[str]:
    if value is None or str(value).strip() == "":
        return None
    return normalize_month_key(value)


class _Inbound(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)


class _UnitsInbound(_Inbound):
    c1: float = Field(0.0, validation_alias=AliasChoices("c1", "C1"))
    c2: float = Field(0.0, validation_alias=AliasChoices("c2", "C2"))
    c3: float = Field(0.0, validation_alias=AliasChoices("c3", "C3"))
    c4: float = Field(0.0, validation_alias=AliasChoices("c4", "C4"))
    c5: float = Field(0.0, validation_alias=AliasChoices("c5", "C5"))
    month: Optional[str] = None
    company_id: Optional[str] = Field(None, validation_alias=AliasChoices("companyId", "company_id"))
    site_name: Optional[str] = Field(None, validation_alias=AliasChoices("siteName", "site_name", "name"))

    @field_validator("c1", "c2", "c3", "c4", "c5", mode="before")
    @classmethod
    def _units(cls, v):
        return coerce_units(v)

    @field_validator("month", mode="before")
    @classmethod
    def _month(cls, v):
        return _coerce_month(v)

    @field_validator("company_id", "site_name", mode="before")
    @classmethod
    def _ids(cls, v):
        return _coerce_id(v)

    def units(self) -> PeriodUnits:
        return PeriodUnits(c1=self.c1, c2=self.c2, c3=self.c3, c4=self.c4, c5=self.c5)


class ProductionUnitInbound(_UnitsInbound):
    production_site_id: str = Field(validation_alias=AliasChoices("productionSiteId", "production_site_id", "id"))
    type: str = "SOLAR"
    banking_enabled: bool = Field(
        False, validation_alias=AliasChoices("bankingEnabled", "banking_enabled", "unitBankingEnabled", "banking")
    )
    commissioning_date: Optional[str] = Field(
        None, validation_alias=AliasChoices("dateOfCommission", "commissioningDate", "commissioning_date")
    )

    @field_validator("production_site_id", mode="before")
    @classmethod
    def _site(cls, v):
        return _coerce_id(v)

    @field_validator("type", mode="before")
    @classmethod
    def _type(cls, v):
        return (str(v).strip() if v is not None else "").upper() or "SOLAR"

    @field_validator("banking_enabled", mode="before")
    @classmethod
    def _banking(cls, v):
        return _coerce_bool(v)

    @field_validator("commissioning_date", mode="before")
    @classmethod
    def _commissioned(cls, v):
        return _coerce_id(v)

    def to_record(self) -> ProductionUnit:
        return ProductionUnit(
            production_site_id=self.production_site_id,
            company_id=self.company_id,
            units=self.units(),
            month=self.month,
            site_name=self.site_name or "",
            type=self.type,
            banking_enabled=self.banking_enabled,
            commissioning_date=self.commissioning_date,
        )


class ConsumptionUnitInbound(_UnitsInbound):
    consumption_site_id: str = Field(validation_alias=AliasChoices("consumptionSiteId", "consumption_site_id", "id"))

    @field_validator("consumption_site_id", mode="before")
    @classmethod
    def _site(cls, v):
        return _coerce_id(v)

    def to_record(self) -> ConsumptionUnit:
        return ConsumptionUnit(
            consumption_site_id=self.consumption_site_id,
            company_id=self.company_id,
            units=self.units(),
            month=self.month,
            site_name=self.site_name or "",
        )


class BankingUnitInbound(_UnitsInbound):
    production_site_id: str = Field(validation_alias=AliasChoices("productionSiteId", "production_site_id", "id"))

    @field_validator("production_site_id", mode="before")
    @classmethod
    def _site(cls, v):
        return _coerce_id(v)

    def to_record(self) -> BankingUnit:
        return BankingUnit(
            production_site_id=self.production_site_id,
            company_id=self.company_id,
            units=self.units(),
            month=self.month,
            site_name=self.site_name or "",
        )


class ShareholdingInbound(_Inbound):
    generator_company_id: str = Field(
        validation_alias=AliasChoices("generatorCompanyId", "generator_company_id", "companyId")
    )
    shareholder_company_id: str = Field(
        validation_alias=AliasChoices("shareholderCompanyId", "shareholder_company_id")
    )
    percentage: float = Field(
        0.0,
        validation_alias=AliasChoices("shareholdingPercentage", "percentage", "allocationPercentage"),
    )

    @field_validator("generator_company_id", "shareholder_company_id", mode="before")
    @classmethod
    def _ids(cls, v):
        return _coerce_id(v)

    @field_validator("percentage", mode="before")
    @classmethod
    def _pct(cls, v):
        return coerce_units(v)

    def to_record(self) -> Shareholding:
        return Shareholding(
            generator_company_id=self.generator_company_id,
            shareholder_company_id=self.shareholder_company_id,
            percentage=self.percentage,
        )


class StoredAllocationInbound(_Inbound):
    """A persisted allocation row (see payload.build_payload) read back for reporting."""
    pk: Optional[str] = None
    sk: Optional[str] = None
    type: AllocationType = AllocationType.ALLOCATION
    production_site_id: Optional[str] = Field(None, validation_alias=AliasChoices("productionSiteId", "production_site_id"))
    consumption_site_id: Optional[str] = Field(None, validation_alias=AliasChoices("consumptionSiteId", "consumption_site_id"))
    company_id: Optional[str] = Field(None, validation_alias=AliasChoices("companyId", "company_id"))
    month: Optional[str] = None
    allocated: Optional[dict] = None
    site_name: Optional[str] = Field(None, validation_alias=AliasChoices("productionSite", "siteName", "site_name"))
    consumption_site_name: Optional[str] = Field(None, validation_alias=AliasChoices("consumptionSite", "consumption_site_name"))
    charge: bool = False
    version: int = 1
    created_at: Optional[str] = Field(None, validation_alias=AliasChoices("createdAt", "created_at"))
    updated_at: Optional[str] = Field(None, validation_alias=AliasChoices("updatedAt", "updated_at"))

    @field_validator("type", mode="before")
    @classmethod
    def _type(cls, v):
        return AllocationType.parse(v, AllocationType.ALLOCATION)

    @field_validator("pk", "sk", "production_site_id", "consumption_site_id", "company_id",
                     "site_name", "consumption_site_name", mode="before")
    @classmethod
    def _ids(cls, v):
        return _coerce_id(v)

    @field_validator("month", mode="before")
    @classmethod
    def _month(cls, v):
        return _coerce_month(v)

    @field_validator("charge", mode="before")
    @classmethod
    def _charge(cls, v):
        return _coerce_bool(v)

    @field_validator("version", mode="before")
    @classmethod
    def _version(cls, v):
        return max(1, int(coerce_units(v))) if v is not None else 1


# --------------------------- Public -------------------------- #

def _normalize(rows: Optional[Iterable[Any]], model, record_type, label: str, warnings: Optional[List[str]]) -> list:
    out = []
    for idx, row in enumerate(rows or ()):
        if isinstance(row, record_type):
            out.append(row)
            continue
        if not isinstance(row, Mapping):
            _warn(warnings, f"Skipped {label} #{idx}: not a record ({type(row).__name__}).")
            continue
        try:
            out.append(model.model_validate(row).to_record())
        except (ValidationError, InvalidMonthError) as exc:
            _warn(warnings, f"Skipped {label} #{idx}: {_first_error(exc)}.")
    return out


def _first_error(exc: Exception) -> str:
    if isinstance(exc, ValidationError):
        err = exc.errors()[0]
        loc = ".".join(str(x) for x in err.get("loc", ())) or "record"
        return f"{loc}: {err.get('msg')}"
    return str(exc)


def _warn(warnings: Optional[List[str]], message: str) -> None:
    logger.warning(message)
    if warnings is not None:
        warnings.append(message)


def normalize_production_units(rows, warnings: Optional[List[str]] = None) -> List[ProductionUnit]:
    return _normalize(rows, ProductionUnitInbound, ProductionUnit, "production unit", warnings)


def normalize_consumption_units(rows, warnings: Optional[List[str]] = None) -> List[ConsumptionUnit]:
    return _normalize(rows, ConsumptionUnitInbound, ConsumptionUnit, "consumption unit", warnings)


def normalize_banking_units(rows, warnings: Optional[List[str]] = None) -> List[BankingUnit]:
    return _normalize(rows, BankingUnitInbound, BankingUnit, "banking unit", warnings)


def normalize_shareholdings(rows, warnings: Optional[List[str]] = None) -> List[Shareholding]:
    return _normalize(rows, ShareholdingInbound, Shareholding, "shareholding", warnings)


def normalize_manual_allocations(overrides: Optional[Mapping[Any, Any]],
                                 warnings: Optional[List[str]] = None) -> Tuple[Tuple[Tuple[str, str, str], float], ...]:
    """
    Sparse override map -> sorted ((prodId, consId, period), value) pairs.
    Keys are "prodId_consId_period" strings or (prodId, consId, period) tuples.
    """
    out = {}
    for key, value in (overrides or {}).items():
        parsed = _parse_override_key(key)
        if parsed is None:
            _warn(warnings, f"Ignored manual allocation with unreadable key {key!r}.")
            continue
        out[parsed] = coerce_units(value)
    return tuple(sorted(out.items()))


def _parse_override_key(key: Any) -> Optional[Tuple[str, str, str]]:
    if isinstance(key, tuple) and len(key) == 3:
        prod, cons, period = (_coerce_id(k) for k in key)
    elif isinstance(key, str):
        head, _, period = key.rpartition("_")
        prod, _, cons = head.partition("_")
    else:
        return None
    period = (period or "").lower()
    if not prod or not cons or period not in ALL_PERIODS:
        return None
    return prod, cons, period


def override_key(production_site_id: str, consumption_site_id: str, period: str) -> str:
    return f"{production_site_id}_{consumption_site_id}_{period}"


def allocation_from_record(row: Any) -> Allocation:
    """Read a stored allocation row (or pass an Allocation through)."""
    if isinstance(row, Allocation):
        return row
    rec = StoredAllocationInbound.model_validate(row)

    prod_id, cons_id, company_id = rec.production_site_id, rec.consumption_site_id, rec.company_id
    if rec.pk:
        parts = rec.pk.split("_")
        company_id = company_id or parts[0]
        if len(parts) > 1:
            prod_id = prod_id or parts[1]
        if len(parts) > 2 and rec.type is AllocationType.ALLOCATION:
            cons_id = cons_id or "_".join(parts[2:])

    month = rec.month or (normalize_month_key(rec.sk) if rec.sk else None)
    if not prod_id or not month:
        raise ValueError(f"Stored allocation is missing production site or month: {row!r}")

    # allocated may be nested or flattened to the root (LAPSE/BANKING rows carry both)
    allocated = PeriodUnits.from_record(rec.allocated if rec.allocated else row)

    return Allocation(
        production_site_id=prod_id,
        consumption_site_id=cons_id if rec.type is AllocationType.ALLOCATION else None,
        month=month,
        allocated=allocated,
        type=rec.type,
        company_id=company_id,
        site_name=rec.site_name or "",
        consumption_site_name=rec.consumption_site_name or "",
        charge=rec.charge,
        version=rec.version,
        created_at=rec.created_at,
        updated_at=rec.updated_at,
    )
