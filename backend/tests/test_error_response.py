import logging
import pytest
from fastapi import HTTPException

from gigflow.utils.errors import ConflictError, error_response


def test_error_response_logs(caplog):
    caplog.set_level(logging.WARNING, logger="gigflow.utils.errors")
    with pytest.raises(HTTPException) as exc:
        raise error_response("Invalid", {"field": "bad"})
    assert exc.value.detail == {"message": "Invalid", "code": "validation_error", "field_errors": {"field": "bad"}}
    assert any(
        "Invalid" in r.getMessage() and "'field': 'bad'" in r.getMessage()
        for r in caplog.records
    )


def test_flow_errors_share_the_envelope():
    err = ConflictError("Artist already applied", {"opportunity_id": "4"})
    assert err.http_status == 409
    assert err.to_detail() == {
        "message": "Artist already applied",
        "code": "conflict",
        "field_errors": {"opportunity_id": "4"},
    }
