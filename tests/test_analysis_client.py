import json
from datetime import date
from decimal import Decimal

import httpx
import pytest
import respx
from httpx import Response

from querycache.core.exceptions import (
    AnalysisServiceError,
    CircuitBreakerError,
    ConfigurationError,
    IntegrationError,
    ServiceUnavailableError,
)
from querycache.models.analysis import OperationType
from querycache.models.cache import decode_rows, encode_rows
from querycache.services.analysis_client import AnalysisServiceClient, serialize_params

BASE_URL = "http://analysis.test"

ANALYSIS = {
    "operation_type": "read",
    "cache_key": {
        "fingerprint": "f1",
        "type": "row-lookup",
        "tables": [{"table": "users"}],
    },
}


@pytest.fixture
def client():
    c = AnalysisServiceClient(BASE_URL, circuit_failure_threshold=3, circuit_recovery_timeout=60)
    yield c
    c.close()


def _body(route) -> dict:
    return json.loads(route.calls.last.request.content)


@pytest.mark.parametrize("url", ["", "analysis.test", "ftp://analysis.test"])
def test_invalid_base_url_fails_fast(url):
    with pytest.raises(ConfigurationError):
        AnalysisServiceClient(url)


def test_analyze_posts_sql_and_params(client):
    with respx.mock(base_url=BASE_URL) as mock:
        route = mock.post("/analyze").mock(return_value=Response(200, json=ANALYSIS))

        analysis = client.analyze("SELECT * FROM users WHERE id = ?", (1,))

    assert _body(route) == {"sql": "SELECT * FROM users WHERE id = ?", "params": [1]}
    assert analysis.operation_type is OperationType.READ
    assert analysis.fingerprint == "f1"
    assert analysis.cache_key.table_names == ["users"]


def test_analyze_without_params_sends_empty_list(client):
    with respx.mock(base_url=BASE_URL) as mock:
        route = mock.post("/analyze").mock(return_value=Response(200, json=ANALYSIS))

        client.analyze("SELECT 1")

    assert _body(route)["params"] == []


def test_analyze_tolerates_missing_and_unknown_fields(client):
    with respx.mock(base_url=BASE_URL) as mock:
        mock.post("/analyze").mock(
            return_value=Response(200, json={"operation_type": "MERGE", "cache_key": None, "x": 1})
        )

        analysis = client.analyze("MERGE INTO t ...")

    assert analysis.operation_type is OperationType.UNKNOWN
    assert analysis.fingerprint is None
    assert analysis.is_read is False


def test_analyze_accepts_bare_table_names(client):
    payload = {"operation_type": "read", "cache_key": {"fingerprint": "f", "tables": ["a", "b"]}}
    with respx.mock(base_url=BASE_URL) as mock:
        mock.post("/analyze").mock(return_value=Response(200, json=payload))

        analysis = client.analyze("SELECT ...")

    assert analysis.cache_key.table_names == ["a", "b"]


@pytest.mark.parametrize("status", [500, 502, 503, 429])
def test_transient_status_raises_service_unavailable(client, status):
    with respx.mock(base_url=BASE_URL) as mock:
        mock.post("/analyze").mock(
            return_value=Response(status, text="busy", headers={"Retry-After": "7"})
        )

        with pytest.raises(ServiceUnavailableError) as exc:
            client.analyze("SELECT 1")

    assert exc.value.details["status_code"] == status
    assert exc.value.retry_after == 7


def test_permanent_status_raises_integration_error(client):
    with respx.mock(base_url=BASE_URL) as mock:
        mock.post("/analyze").mock(return_value=Response(422, text="bad sql"))

        with pytest.raises(IntegrationError) as exc:
            client.analyze("SELEC 1")

    assert exc.value.status_code == 422
    assert "bad sql" in exc.value.details["body_preview"]


def test_transport_error_becomes_analysis_service_error(client):
    with respx.mock(base_url=BASE_URL) as mock:
        mock.post("/analyze").mock(side_effect=httpx.ConnectError("refused"))

        with pytest.raises(AnalysisServiceError):
            client.analyze("SELECT 1")


@pytest.mark.parametrize("body", ["not json", "[1, 2]"])
def test_non_object_json_is_rejected(client, body):
    with respx.mock(base_url=BASE_URL) as mock:
        mock.post("/analyze").mock(return_value=Response(200, text=body))

        with pytest.raises(AnalysisServiceError):
            client.analyze("SELECT 1")


def test_circuit_opens_after_consecutive_transient_failures(client):
    with respx.mock(base_url=BASE_URL) as mock:
        route = mock.post("/analyze").mock(return_value=Response(503))

        for _ in range(3):
            with pytest.raises(ServiceUnavailableError):
                client.analyze("SELECT 1")

        with pytest.raises(CircuitBreakerError):
            client.analyze("SELECT 1")

    assert route.call_count == 3
    assert client.circuit_state() == "open"


def test_permanent_errors_do_not_trip_the_circuit(client):
    with respx.mock(base_url=BASE_URL) as mock:
        mock.post("/analyze").mock(return_value=Response(400))

        for _ in range(5):
            with pytest.raises(IntegrationError):
                client.analyze("SELECT 1")

    assert client.circuit_state() == "closed"


def test_retries_apply_when_configured():
    c = AnalysisServiceClient(BASE_URL, max_retries=2, retry_base_delay=0)
    try:
        with respx.mock(base_url=BASE_URL) as mock:
            route = mock.post("/should-invalidate").mock(
                side_effect=[Response(503), Response(200, json={"should_invalidate": True})]
            )

            assert c.should_invalidate("UPDATE users SET a = 1") is True

        assert route.call_count == 2
    finally:
        c.close()


def test_register_sends_encoded_rows_and_ttl(client):
    rows = [{"id": 1, "price": Decimal("9.99")}]
    with respx.mock(base_url=BASE_URL) as mock:
        route = mock.post("/register").mock(return_value=Response(204))

        client.register("SELECT ...", [1], rows, 120)

    body = _body(route)
    assert body["sql"] == "SELECT ..."
    assert body["params"] == [1]
    assert body["ttl"] == 120
    assert decode_rows(body["result"]) == rows


def test_get_returns_rows_or_none(client):
    rows = [{"id": 1}]
    with respx.mock(base_url=BASE_URL) as mock:
        mock.get("/cache/f1").mock(return_value=Response(200, json={"result": encode_rows(rows)}))
        mock.get("/cache/gone").mock(return_value=Response(404))
        mock.get("/cache/empty").mock(return_value=Response(200, json={"result": ""}))

        assert client.get("f1") == rows
        assert client.get("gone") is None
        assert client.get("empty") is None


@pytest.mark.parametrize(
    "outcome",
    [Response(503), Response(400), Response(200, json=[1, 2]), httpx.ConnectError("refused")],
)
def test_get_reports_service_failures_as_a_miss(client, outcome):
    with respx.mock(base_url=BASE_URL) as mock:
        route = mock.get("/cache/f1")
        if isinstance(outcome, Exception):
            route.mock(side_effect=outcome)
        else:
            route.mock(return_value=outcome)

        assert client.get("f1") is None


def test_get_is_a_miss_while_the_circuit_is_open(client):
    with respx.mock(base_url=BASE_URL) as mock:
        route = mock.get("/cache/f1").mock(return_value=Response(503))
        for _ in range(3):
            assert client.get("f1") is None

        assert client.circuit_state() == "open"
        assert client.get("f1") is None
        assert route.call_count == 3


def test_invalidate_is_best_effort(client):
    with respx.mock(base_url=BASE_URL) as mock:
        route = mock.post("/invalidate").mock(return_value=Response(200, json={}))

        assert client.invalidate("DELETE FROM users WHERE id = ?", [3]) is True
        assert _body(route) == {"sql": "DELETE FROM users WHERE id = ?", "params": [3]}

        route.mock(return_value=Response(500))
        assert client.invalidate("DELETE FROM users") is False

        route.mock(side_effect=httpx.ReadTimeout("slow"))
        assert client.invalidate("DELETE FROM users") is False


def test_invalidate_sync_waits_and_raises(client):
    with respx.mock(base_url=BASE_URL) as mock:
        route = mock.post("/invalidate").mock(return_value=Response(200, json={}))
        client.invalidate_sync("UPDATE users SET a = ?", [1])
        assert _body(route)["sync"] is True

        route.mock(return_value=Response(503))
        with pytest.raises(ServiceUnavailableError):
            client.invalidate_sync("UPDATE users SET a = ?", [1])


def test_clear_table_and_stats(client):
    with respx.mock(base_url=BASE_URL) as mock:
        clear = mock.delete("/table/order_items").mock(return_value=Response(204))
        mock.get("/stats").mock(return_value=Response(200, json={"entries": 12}))

        client.clear_table("order_items")
        assert client.stats() == {"entries": 12}

    assert clear.called


def test_serialize_params_handles_driver_types():
    assert serialize_params(None) == []
    assert serialize_params((1, "a", None)) == [1, "a", None]
    assert serialize_params(
        {"d": date(2024, 1, 2), "n": Decimal("1.5"), "b": b"\x01\x02"}
    ) == {"d": "2024-01-02", "n": "1.5", "b": "0102"}
