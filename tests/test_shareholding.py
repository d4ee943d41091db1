import pytest

from packages.energy_alloc_core.shareholding import (
    ResolvedShare,
    as_site_access,
    resolve_shareholders,
    shareholding_map,
)

SHARES = [
    {"generatorCompanyId": "G", "shareholderCompanyId": "B", "percentage": "30"},
    {"generatorCompanyId": "G", "shareholderCompanyId": "A", "shareholdingPercentage": 30},
    {"generatorCompanyId": "G", "shareholderCompanyId": "B", "percentage": 10},
    {"generatorCompanyId": "G", "shareholderCompanyId": "C", "percentage": 0},
    {"generatorCompanyId": "OTHER", "shareholderCompanyId": "Z", "percentage": 100},
]


def test_merges_and_orders_shareholders():
    assert resolve_shareholders("G", SHARES) == [ResolvedShare("B", 40.0), ResolvedShare("A", 30.0)]


def test_equal_percentages_order_by_id():
    rows = [
        {"generatorCompanyId": "G", "shareholderCompanyId": "Y", "percentage": 50},
        {"generatorCompanyId": "G", "shareholderCompanyId": "X", "percentage": 50},
    ]
    assert [r.shareholder_company_id for r in resolve_shareholders("G", rows)] == ["X", "Y"]


def test_no_access_returns_empty_with_warning():
    warnings = []
    assert resolve_shareholders("G", SHARES, lambda site_id, site_type: False, warnings) == []
    assert "No site access" in warnings[0]


def test_failing_access_check_counts_as_no_access():
    def broken(site_id, site_type):
        raise RuntimeError("directory down")

    warnings = []
    assert resolve_shareholders("G", SHARES, broken, warnings) == []
    assert any("directory down" in w for w in warnings)


def test_access_called_with_production_site_type():
    seen = []

    class Access:
        def has_site_access(self, site_id, site_type):
            seen.append((site_id, site_type))
            return True

    resolve_shareholders("G", SHARES, Access())
    assert seen == [("G", "production")]


def test_missing_data_is_not_an_error():
    warnings = []
    assert resolve_shareholders("G", None, warnings=warnings) == []
    assert resolve_shareholders(None, SHARES, warnings=warnings) == []
    assert len(warnings) == 2


def test_over_committed_shares_are_tolerated():
    rows = [
        {"generatorCompanyId": "G", "shareholderCompanyId": "A", "percentage": 80},
        {"generatorCompanyId": "G", "shareholderCompanyId": "B", "percentage": 80},
    ]
    assert shareholding_map("G", rows) == {"A": 80.0, "B": 80.0}


def test_unsupported_access_object():
    with pytest.raises(TypeError):
        as_site_access(42)
