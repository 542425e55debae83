from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..errors import RunsServiceError, TrackingError
from ..schemas import RunRecord

logger = logging.getLogger(__name__)

RunStatus = Literal["completed", "failed"]


class TrackingPolicy(str, Enum):
    # Tracking failures abort the operation: no run, no spend; unrecorded spend is an error.
    MANDATORY = "mandatory"
    # Tracking failures are logged and the operation continues untracked.
    BEST_EFFORT = "best_effort"


@dataclass
class CostItem:
    cost_name: str
    quantity: float

    def to_payload(self) -> dict[str, Any]:
        return {"costName": self.cost_name, "quantity": self.quantity}


@dataclass
class CreateRunParams:
    clerk_org_id: str
    app_id: str
    service_name: str
    task_name: str
    brand_id: str | None = None
    parent_run_id: str | None = None
    clerk_user_id: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload = {
            "clerkOrgId": self.clerk_org_id,
            "appId": self.app_id,
            "serviceName": self.service_name,
            "taskName": self.task_name,
            "brandId": self.brand_id,
            "parentRunId": self.parent_run_id,
            "clerkUserId": self.clerk_user_id,
        }
        return {key: value for key, value in payload.items() if value is not None}


class RunsClient:
    """HTTP client for the runs-service (`/v1/runs`)."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 15.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_settings(cls, settings: Settings, transport: httpx.BaseTransport | None = None) -> RunsClient:
        return cls(
            base_url=settings.runs_service_url,
            api_key=settings.runs_service_api_key,
            timeout=settings.runs_service_timeout_seconds,
            transport=transport,
        )

    def _request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        headers = {"Content-Type": "application/json", "X-API-Key": self.api_key}
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                res = client.request(method, f"{self.base_url}{path}", json=json, params=params, headers=headers)
        except httpx.HTTPError as exc:
            raise RunsServiceError(f"runs-service {method} {path} failed: {exc}") from exc

        if res.is_error:
            raise RunsServiceError(
                f"runs-service {method} {path} failed: {res.status_code} - {res.text}",
                status_code=res.status_code,
                body=res.text,
            )
        try:
            return res.json()
        except ValueError as exc:
            raise RunsServiceError(f"runs-service {method} {path} returned invalid JSON") from exc

    def _run_record(self, method: str, path: str, data: Any) -> RunRecord:
        try:
            return RunRecord.model_validate(data)
        except ValidationError as exc:
            raise RunsServiceError(f"runs-service {method} {path} returned an unexpected run: {exc}") from exc

    def create_run(self, params: CreateRunParams) -> RunRecord:
        data = self._request("POST", "/v1/runs", json=params.to_payload())
        return self._run_record("POST", "/v1/runs", data)

    def update_run(self, run_id: str, status: RunStatus) -> RunRecord:
        path = f"/v1/runs/{run_id}"
        return self._run_record("PATCH", path, self._request("PATCH", path, json={"status": status}))

    def add_costs(self, run_id: str, items: list[CostItem]) -> list[dict[str, Any]]:
        path = f"/v1/runs/{run_id}/costs"
        data = self._request("POST", path, json={"items": [i.to_payload() for i in items]})
        costs = data.get("costs", []) if isinstance(data, dict) else None
        if not isinstance(costs, list):
            raise RunsServiceError(f"runs-service POST {path} returned an unexpected body: {data!r}")
        return costs

    def list_runs(self, clerk_org_id: str, **filters: str | int | None) -> dict[str, Any]:
        # Filter names follow the service's query params (appId, brandId, taskName, limit, ...).
        params = {"clerkOrgId": clerk_org_id, **{k: v for k, v in filters.items() if v is not None}}
        return self._request("GET", "/v1/runs", params=params)


class RunTracker:
    """
    One run's lifecycle under an explicit failure policy.

    `start` -> (`record_costs` -> `complete`) on success, `fail` on any error.
    `fail` is always best-effort so it never masks the error that triggered it.
    """

    def __init__(self, client: RunsClient, policy: TrackingPolicy) -> None:
        self.client = client
        self.policy = policy

    @property
    def mandatory(self) -> bool:
        return self.policy == TrackingPolicy.MANDATORY

    def _tolerate(self, action: str, exc: TrackingError) -> None:
        if self.mandatory:
            raise exc
        logger.warning("Run tracking: failed to %s, continuing untracked: %s", action, exc)

    def start(self, params: CreateRunParams | None) -> str | None:
        if params is None:
            if self.mandatory:
                raise TrackingError("clerkOrgId is required for run/cost tracking")
            logger.info("Run tracking skipped: no organization identity to attribute the run to")
            return None
        try:
            run = self.client.create_run(params)
        except TrackingError as exc:
            self._tolerate("create run", exc)
            return None
        logger.info("Started run %s (%s) for brand %s", run.id, params.task_name, params.brand_id)
        return run.id

    def record_costs(self, run_id: str | None, items: list[CostItem]) -> None:
        if run_id is None or not items:
            return
        try:
            self.client.add_costs(run_id, items)
        except TrackingError as exc:
            self._tolerate(f"record costs on run {run_id}", exc)

    def complete(self, run_id: str | None) -> None:
        if run_id is None:
            return
        try:
            self.client.update_run(run_id, "completed")
        except TrackingError as exc:
            self._tolerate(f"complete run {run_id}", exc)

    def fail(self, run_id: str | None) -> None:
        if run_id is None:
            return
        try:
            self.client.update_run(run_id, "failed")
        except Exception:
            logger.warning("Run tracking: could not mark run %s as failed", run_id, exc_info=True)
