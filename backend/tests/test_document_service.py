import pytest

from franchise_ops.errors import FranchiseOpsError
from franchise_ops.services.document_service import (
    DocumentSequenceError,
    next_order_number,
    next_sequence_value,
    next_transfer_reference,
)


def test_sequence_values_are_consecutive_per_key(db_session, location, other_location):
    first = next_sequence_value(location_id=location.id, document_type="ORDER", period="20261019")
    second = next_sequence_value(location_id=location.id, document_type="ORDER", period="20261019")
    next_day = next_sequence_value(location_id=location.id, document_type="ORDER", period="20261020")
    elsewhere = next_sequence_value(location_id=other_location.id, document_type="ORDER", period="20261019")

    assert (first, second, next_day, elsewhere) == (1, 2, 1, 1)


def test_document_number_formats(db_session, location):
    assert next_order_number(location_id=location.id, location_code="MKT01", stamp="20261019") == "MKT01-20261019-0001"
    assert next_order_number(location_id=location.id, location_code=None, stamp="20261019") == "LOC-20261019-0002"
    assert next_transfer_reference(location_id=location.id) == f"TRF-{location.id:03d}-000001"


@pytest.mark.parametrize("kwargs", [
    {"location_id": None, "document_type": "ORDER"},
    {"location_id": 1, "document_type": ""},
])
def test_missing_sequence_key_is_a_client_error(db_session, kwargs):
    with pytest.raises(DocumentSequenceError) as exc_info:
        next_sequence_value(**kwargs)

    assert isinstance(exc_info.value, FranchiseOpsError)
    assert exc_info.value.status_code == 400
    assert exc_info.value.to_dict()["error"] == "document_sequence_error"
