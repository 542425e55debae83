import json

import httpx
import pytest

from brand_service.errors import RunsServiceError, TrackingError
from brand_service.services.runs import CostItem, CreateRunParams, RunsClient, RunTracker, TrackingPolicy

PARAMS = CreateRunParams(
    clerk_org_id="org_abc",
    app_id="mcpfactory",
    service_name="brand-service",
    task_name="sales-profile-extraction",
    brand_id="brand-1",
)


def _client(handler) -> RunsClient:
    return RunsClient(base_url="https://runs.test/", api_key="secret", transport=httpx.MockTransport(handler))


def test_create_run_sends_contract_payload() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["headers"] = request.headers
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "run-1", "status": "running", "serviceName": "brand-service"})

    run = _client(handler).create_run(PARAMS)

    assert run.id == "run-1"
    assert seen["url"] == "https://runs.test/v1/runs"
    assert seen["headers"]["x-api-key"] == "secret"
    assert seen["body"] == {
        "clerkOrgId": "org_abc",
        "appId": "mcpfactory",
        "serviceName": "brand-service",
        "taskName": "sales-profile-extraction",
        "brandId": "brand-1",
    }


def test_costs_and_status_updates() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        seen.append((request.method, request.url.path, body))
        if request.method == "PATCH":
            return httpx.Response(200, json={"id": "run-1", "status": body["status"]})
        return httpx.Response(200, json={"costs": [{"id": "c1", **body["items"][0]}]})

    client = _client(handler)
    costs = client.add_costs("run-1", [CostItem("anthropic-haiku-3-tokens-input", 1200)])
    run = client.update_run("run-1", "completed")

    assert costs == [{"id": "c1", "costName": "anthropic-haiku-3-tokens-input", "quantity": 1200}]
    assert run.status == "completed"
    assert seen[0] == (
        "POST",
        "/v1/runs/run-1/costs",
        {"items": [{"costName": "anthropic-haiku-3-tokens-input", "quantity": 1200}]},
    )
    assert seen[1] == ("PATCH", "/v1/runs/run-1", {"status": "completed"})


def test_non_2xx_carries_status_and_body() -> None:
    client = _client(lambda request: httpx.Response(422, text="appId missing"))

    with pytest.raises(RunsServiceError) as excinfo:
        client.create_run(PARAMS)

    assert excinfo.value.status_code == 422
    assert excinfo.value.body == "appId missing"
    assert str(excinfo.value) == "runs-service POST /v1/runs failed: 422 - appId missing"


def test_transport_error_is_a_tracking_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TrackingError):
        _client(handler).update_run("run-1", "failed")


def test_mandatory_tracker_needs_an_identity() -> None:
    tracker = RunTracker(_client(lambda request: httpx.Response(500)), TrackingPolicy.MANDATORY)
    with pytest.raises(TrackingError, match="clerkOrgId is required"):
        tracker.start(None)


def test_best_effort_tracker_degrades_to_untracked() -> None:
    tracker = RunTracker(_client(lambda request: httpx.Response(503, text="down")), TrackingPolicy.BEST_EFFORT)

    assert tracker.start(None) is None
    assert tracker.start(PARAMS) is None
    tracker.record_costs("run-1", [CostItem("anthropic-opus-4.5-tokens-input", 10)])
    tracker.complete("run-1")


def test_mandatory_tracker_propagates_cost_failures() -> None:
    tracker = RunTracker(_client(lambda request: httpx.Response(500, text="boom")), TrackingPolicy.MANDATORY)

    with pytest.raises(RunsServiceError):
        tracker.record_costs("run-1", [CostItem("anthropic-haiku-3-tokens-output", 5)])
    # Marking a run failed never raises.
    tracker.fail("run-1")


def test_unexpected_success_bodies_are_runs_service_errors() -> None:
    client = _client(lambda request: httpx.Response(200, json={"status": "running"}))
    with pytest.raises(RunsServiceError, match="unexpected run"):
        client.create_run(PARAMS)

    client = _client(lambda request: httpx.Response(200, json=["not", "an", "object"]))
    with pytest.raises(RunsServiceError, match="unexpected body"):
        client.add_costs("run-1", [CostItem("anthropic-haiku-3-tokens-input", 1)])


def test_best_effort_tracker_tolerates_a_run_without_an_id() -> None:
    handler = lambda request: httpx.Response(200, json={"status": "running"})
    tracker = RunTracker(_client(handler), TrackingPolicy.BEST_EFFORT)

    assert tracker.start(PARAMS) is None
