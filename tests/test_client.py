"""Unit tests for the record store client."""

import asyncio

import httpx
import pytest

from eligibility_engine.client import RecordStoreClient, RecordStoreError


def make_client(handler, token="secret"):
    return RecordStoreClient(
        base_url="http://store.test/",
        token=token,
        timeout=5.0,
        transport=httpx.MockTransport(handler),
    )


def test_get_eligibility_sends_bearer_token():
    seen = {}

    def handler(request):
        seen['path'] = request.url.path
        seen['auth'] = request.headers.get('Authorization')
        return httpx.Response(200, json={"isEligible": True, "reason": "Apto", "absences": 0})

    payload = asyncio.run(make_client(handler).get_eligibility("c1", "s1"))

    assert payload["isEligible"] == True
    assert seen['path'] == "/superadmin/classes/c1/students/s1/certificate-eligibility"
    assert seen['auth'] == "Bearer secret"


def test_no_authorization_header_without_token():
    seen = {}

    def handler(request):
        seen['auth'] = request.headers.get('Authorization')
        return httpx.Response(200, json={})

    asyncio.run(make_client(handler, token="").get_eligibility("c1", "s1"))

    assert seen['auth'] is None


def test_http_error_carries_status_code():
    def handler(request):
        return httpx.Response(503, json={"detail": "maintenance"})

    with pytest.raises(RecordStoreError) as excinfo:
        asyncio.run(make_client(handler).get_eligibility("c1", "s1"))

    assert excinfo.value.status_code == 503


def test_timeout_becomes_record_store_error():
    def handler(request):
        raise httpx.ReadTimeout("too slow", request=request)

    with pytest.raises(RecordStoreError) as excinfo:
        asyncio.run(make_client(handler).get_eligibility("c1", "s1"))

    assert excinfo.value.status_code is None


def test_get_class_enrollments():
    def handler(request):
        assert request.url.path == "/superadmin/students/s1/history"
        return httpx.Response(200, json={"classes": [
            {"classId": "c1", "status": "CONCLUIDA", "attendances": [{"status": "PRESENTE"}]},
        ]})

    enrollments = asyncio.run(make_client(handler).get_class_enrollments("s1"))

    assert len(enrollments) == 1
    assert enrollments[0].class_id == "c1"
    assert len(enrollments[0].attendance_records) == 1


def test_get_class_enrollments_malformed():
    def handler(request):
        return httpx.Response(200, json=[{"classId": "c1", "status": "ARCHIVED"}])

    with pytest.raises(RecordStoreError):
        asyncio.run(make_client(handler).get_class_enrollments("s1"))


def test_get_class_enrollments_non_list_attendances():
    def handler(request):
        return httpx.Response(200, json=[{"classId": "c1", "status": "COMPLETED", "attendances": 5}])

    with pytest.raises(RecordStoreError):
        asyncio.run(make_client(handler).get_class_enrollments("s1"))


def test_get_history_statistics_absent():
    """A 404 means the store has no pre-aggregated statistics."""
    def handler(request):
        return httpx.Response(404, json={"detail": "not found"})

    assert asyncio.run(make_client(handler).get_history_statistics("s1")) is None


def test_get_history_statistics_failure():
    def handler(request):
        return httpx.Response(500, json={"detail": "boom"})

    with pytest.raises(RecordStoreError):
        asyncio.run(make_client(handler).get_history_statistics("s1"))
