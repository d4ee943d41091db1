# packages/energy_alloc_core/errors.py
"""
Named errors raised by the allocation core.

Only identity/precondition problems are raised. Numeric or empty-input issues
are absorbed by the calculator and reported as warnings on the result.
"""

from __future__ import annotations

from typing import List, Optional


class AllocationError(Exception):
    """Base class for every error raised by the allocation core."""


class InvalidMonthError(AllocationError, ValueError):
    """Raised when a month value cannot be read as MMYYYY."""

    def __init__(self, value):
        self.value = value
        super().__init__(f"Invalid month value: {value!r} (expected MMYYYY)")


class PayloadError(AllocationError):
    """Raised when an allocation cannot be turned into a storable record."""


class MissingCompanyIdError(PayloadError):
    """Raised when no company id is available to build a storage key."""

    def __init__(self, allocation_type: Optional[str] = None, production_site_id: Optional[str] = None):
        self.allocation_type = allocation_type
        self.production_site_id = production_site_id
        super().__init__(
            f"No company ID available for {allocation_type or 'ALLOCATION'} payload"
            + (f" (production site {production_site_id})" if production_site_id else "")
        )


class ProductionSiteNotFoundError(PayloadError):
    """Raised when the referenced production site is absent from the site directory."""

    def __init__(self, site_id: Optional[str], allocation_type: Optional[str] = None, month: Optional[str] = None):
        self.site_id = site_id
        self.allocation_type = allocation_type
        self.month = month
        if site_id is None:
            msg = f"Production site ID is required for {allocation_type or 'ALLOCATION'} allocation"
        else:
            msg = f"Production site not found: {site_id}"
        if month:
            msg += f" (month {month})"
        super().__init__(msg)


class MissingConsumptionSiteIdError(PayloadError):
    """Raised when an ALLOCATION row has no consumption site to key it by."""

    def __init__(self, production_site_id: Optional[str], month: Optional[str] = None):
        self.production_site_id = production_site_id
        self.month = month
        super().__init__(
            f"Consumption site ID is required for ALLOCATION from production site {production_site_id}"
            + (f" (month {month})" if month else "")
        )


class AllocationValidationError(AllocationError):
    """Raised by record validation; `errors` holds one entry per offending record."""

    def __init__(self, errors: List[dict]):
        self.errors = errors
        super().__init__(f"Validation failed for {len(errors)} allocation record(s)")
