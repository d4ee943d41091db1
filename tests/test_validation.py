import pytest

from packages.energy_alloc_core.errors import AllocationValidationError
from packages.energy_alloc_core.validation import validate_allocation_records


def _row(pk="G1_P1_CS1", sk="072024", **kwargs):
    row = {"pk": pk, "sk": sk, "type": "ALLOCATION", "consumptionSiteId": pk.split("_")[-1],
           "c1": 10, "c2": 0, "c3": 0, "c4": 0, "c5": 0}
    row.update(kwargs)
    return row


def _errors(records):
    with pytest.raises(AllocationValidationError) as exc:
        validate_allocation_records(records)
    return exc.value.errors


def test_clean_records_are_normalized():
    cleaned = validate_allocation_records([
        _row(c2="5", charge=True, siteName="dropped"),
        {"pk": "G1_P1", "sk": "072024", "type": "BANKING", "c1": 1, "c2": 0, "c3": 0, "c4": 0, "c5": 0},
    ])
    assert cleaned[0]["c2"] == 5
    assert cleaned[0]["charge"] == 1
    assert cleaned[0]["version"] == 1
    assert "siteName" not in cleaned[0]
    assert cleaned[1]["bankingEnabled"] is True
    assert cleaned[1]["charge"] == 0


def test_single_record_is_accepted():
    assert len(validate_allocation_records(_row())) == 1


def test_missing_fields_reported():
    errors = _errors([{"type": "ALLOCATION", "c1": 1}])
    assert errors[0]["index"] == 0
    message = errors[0]["errors"][0]
    assert "pk" in message and "sk" in message and "consumptionSiteId" in message and "c2" in message


def test_periods_under_allocated_are_accepted():
    row = {"pk": "G1_P1_CS1", "sk": "072024", "consumptionSiteId": "CS1",
           "allocated": {"c1": 1, "c2": 2, "c3": 3, "c4": 4, "c5": 5}}
    assert validate_allocation_records([row])[0]["c5"] == 5


def test_negative_period_rejected():
    errors = _errors([_row(c3=-1)])
    assert "c3 cannot be negative" in errors[0]["errors"]


def test_charge_on_zero_units_rejected():
    errors = _errors([_row(c1=0, charge=1)])
    assert "Cannot set charge=1 for an allocation with zero units" in errors[0]["errors"]


def test_one_charged_pk_per_month():
    errors = _errors([
        _row(charge=1),
        _row(charge=1),
        _row(pk="G1_P2_CS1", charge=1),
        _row(pk="G1_P2_CS1", sk="082024", charge=1),
    ])
    assert [e["index"] for e in errors] == [2]
    assert "Month 072024 already has an allocation with charge=1" in errors[0]["errors"]
