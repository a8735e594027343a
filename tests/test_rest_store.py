# tests/test_rest_store.py

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
import requests

from dripster.core.errors import CodeMismatch, StorageError
from dripster.core.security import hash_otp
from dripster.schemas.otp import VerificationRecord
from dripster.services.otp import verify_otp
from dripster.services.verification_store import RestVerificationStore

EMAIL = "student@ssn.edu.in"
NOW = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def _row(**kw):
    data = {
        "id": 3,
        "email": EMAIL,
        "otp_hash": hash_otp("482913"),
        "expires_at": "2026-03-01T09:10:00+00:00",
        "verified": False,
        "attempts": 0,
        "last_attempt_at": None,
        "created_at": "2026-03-01T09:00:00+00:00",
    }
    data.update(kw)
    return data


def _response(status_code=200, json_data=None, text=""):
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = json_data if json_data is not None else []
    resp.text = text
    return resp


@pytest.fixture
def http():
    return MagicMock()


@pytest.fixture
def rest_store(http):
    return RestVerificationStore("https://proj.supabase.test/", "service-key", timeout=5, session=http)


def _call(http):
    args, kwargs = http.request.call_args
    return args[0], args[1], kwargs


def test_requires_credentials():
    with pytest.raises(StorageError):
        RestVerificationStore("", "key")
    with pytest.raises(StorageError):
        RestVerificationStore("https://x", "")


def test_delete_for_email(rest_store, http):
    http.request.return_value = _response(json_data=[_row(), _row(id=4)])
    assert rest_store.delete_for_email(EMAIL) == 2

    method, url, kwargs = _call(http)
    assert method == "DELETE"
    assert url == "https://proj.supabase.test/rest/v1/email_verifications"
    assert kwargs["params"] == {"email": f"eq.{EMAIL}"}
    assert kwargs["headers"]["apikey"] == "service-key"
    assert kwargs["headers"]["Authorization"] == "Bearer service-key"


def test_insert(rest_store, http):
    http.request.return_value = _response(status_code=201, json_data=[_row()])
    record = rest_store.insert(EMAIL, hash_otp("482913"), NOW + timedelta(minutes=10))

    assert record.id == 3
    assert record.expires_at == NOW + timedelta(minutes=10)
    method, _, kwargs = _call(http)
    assert method == "POST"
    assert kwargs["json"] == {
        "email": EMAIL,
        "otp_hash": hash_otp("482913"),
        "expires_at": "2026-03-01T09:10:00+00:00",
        "verified": False,
        "attempts": 0,
    }
    assert kwargs["headers"]["Prefer"] == "return=representation"


def test_find_active_filters_unverified_unexpired(rest_store, http):
    http.request.return_value = _response(json_data=[_row(attempts=2)])
    record = rest_store.find_active(EMAIL, NOW)

    assert record.attempts == 2
    method, _, kwargs = _call(http)
    assert method == "GET"
    assert kwargs["params"]["email"] == f"eq.{EMAIL}"
    assert kwargs["params"]["verified"] == "eq.false"
    assert kwargs["params"]["expires_at"] == "gt.2026-03-01T09:00:00+00:00"
    assert kwargs["params"]["limit"] == "1"


def test_find_active_none(rest_store, http):
    http.request.return_value = _response(json_data=[])
    assert rest_store.find_active(EMAIL, NOW) is None


def test_record_failed_attempt_is_conditional(rest_store, http):
    http.request.return_value = _response(json_data=[_row(attempts=3)])
    record = VerificationRecord.model_validate(_row(attempts=2))

    assert rest_store.record_failed_attempt(record, NOW) is True
    method, _, kwargs = _call(http)
    assert method == "PATCH"
    assert kwargs["params"] == {"id": "eq.3", "verified": "eq.false", "attempts": "eq.2"}
    assert kwargs["json"] == {"attempts": 3, "last_attempt_at": "2026-03-01T09:00:00+00:00"}


def test_record_failed_attempt_retries_after_lost_race(rest_store, http):
    # 다른 요청이 먼저 attempts 를 3 으로 올린 상황
    http.request.side_effect = [
        _response(json_data=[]),
        _response(json_data=[_row(attempts=3)]),
        _response(json_data=[_row(attempts=4)]),
    ]
    record = VerificationRecord.model_validate(_row(attempts=2))

    assert rest_store.record_failed_attempt(record, NOW) is True

    calls = http.request.call_args_list
    assert [c.args[0] for c in calls] == ["PATCH", "GET", "PATCH"]
    assert calls[1].kwargs["params"]["id"] == "eq.3"
    assert calls[1].kwargs["params"]["verified"] == "eq.false"
    assert calls[2].kwargs["params"] == {"id": "eq.3", "verified": "eq.false", "attempts": "eq.3"}
    assert calls[2].kwargs["json"]["attempts"] == 4


def test_record_failed_attempt_on_retired_row(rest_store, http):
    http.request.side_effect = [_response(json_data=[]), _response(json_data=[])]
    record = VerificationRecord.model_validate(_row(attempts=2))

    assert rest_store.record_failed_attempt(record, NOW) is False
    assert http.request.call_count == 2


def test_record_failed_attempt_gives_up_when_always_outrun(rest_store, http):
    stale = [_response(json_data=[]), _response(json_data=[_row(attempts=2)])]
    http.request.side_effect = stale * RestVerificationStore.MAX_INCREMENT_RETRIES
    record = VerificationRecord.model_validate(_row(attempts=2))

    with pytest.raises(StorageError):
        rest_store.record_failed_attempt(record, NOW)
    assert http.request.call_count == 2 * RestVerificationStore.MAX_INCREMENT_RETRIES


def test_mark_verified_reports_lost_race(rest_store, http):
    http.request.return_value = _response(json_data=[])
    record = VerificationRecord.model_validate(_row())
    assert rest_store.mark_verified(record) is False
    _, _, kwargs = _call(http)
    assert kwargs["params"] == {"id": "eq.3", "verified": "eq.false"}
    assert kwargs["json"] == {"verified": True}


def test_http_error_raises_storage_error(rest_store, http):
    http.request.return_value = _response(status_code=500, text="boom")
    with pytest.raises(StorageError):
        rest_store.find_active(EMAIL, NOW)


def test_transport_error_raises_storage_error(rest_store, http):
    http.request.side_effect = requests.Timeout("slow")
    with pytest.raises(StorageError):
        rest_store.delete_for_email(EMAIL)


def test_purge_retired(rest_store, http):
    http.request.return_value = _response(json_data=[_row(verified=True)])
    assert rest_store.purge_retired(NOW) == 1
    _, _, kwargs = _call(http)
    assert kwargs["params"] == {"or": "(verified.is.true,expires_at.lte.2026-03-01T09:00:00+00:00)"}


def test_verify_records_mismatch_after_lost_race(rest_store, http):
    http.request.side_effect = [
        _response(json_data=[_row(attempts=2)]),  # find_active
        _response(json_data=[]),  # PATCH attempts=eq.2, 다른 요청이 먼저 올림
        _response(json_data=[_row(attempts=3)]),  # 다시 읽기
        _response(json_data=[_row(attempts=4)]),  # PATCH attempts=eq.3
    ]
    with pytest.raises(CodeMismatch):
        verify_otp(EMAIL, "000000", rest_store, now=NOW)

    last = http.request.call_args_list[-1]
    assert last.args[0] == "PATCH"
    assert last.kwargs["params"]["attempts"] == "eq.3"
