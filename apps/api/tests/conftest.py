import json
import os
import tempfile
from collections import defaultdict
from pathlib import Path

# Must be set before brand_service is imported: the engine is built at import time.
_DB_DIR = tempfile.mkdtemp(prefix="brand-service-tests-")
os.environ["DATABASE_URL"] = f"sqlite+pysqlite:///{Path(_DB_DIR) / 'test.db'}"
os.environ.pop("ANTHROPIC_API_KEY", None)

import httpx
import pytest

from brand_service import models
from brand_service.config import Settings
from brand_service.database import Base, SessionLocal, engine
from brand_service.services.extraction import ExtractionPipeline
from brand_service.services.llm import AnthropicClient
from brand_service.services.runs import RunsClient
from brand_service.services.scraping import ScrapingClient

SALES_PROFILE_REPLY = {
    "companyName": "Acme",
    "valueProposition": "Anvils delivered overnight.",
    "customerPainPoints": ["slow delivery"],
    "socialProof": {"caseStudies": ["Coyote Inc."], "testimonials": None},
    "competitors": ["Globex"],
    "keyFeatures": ["overnight shipping", "drop-tested"],
}


@pytest.fixture(autouse=True)
def reset_schema() -> None:
    # Every test starts from an empty store.
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)


@pytest.fixture()
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def org(db) -> models.Organization:
    organization = models.Organization(app_id="mcpfactory", external_org_id="org_abc")
    db.add(organization)
    db.commit()
    return organization


@pytest.fixture()
def brand(db, org) -> models.Brand:
    row = models.Brand(organization_id=org.id, domain="acme.test", url="https://acme.test")
    db.add(row)
    db.commit()
    return row


class FakeUpstreams:
    """Runs-service, scraping service and LLM provider behind httpx.MockTransport."""

    def __init__(self) -> None:
        self.requests: list[tuple[str, str, str]] = []
        self.bodies: dict[tuple[str, str, str], list] = defaultdict(list)
        self.failures: set[str] = set()
        self.site_urls = ["https://acme.test/", "https://acme.test/pricing", "https://acme.test/about"]
        self.extraction_reply: dict = SALES_PROFILE_REPLY
        # Scraped URLs answered with a 200 body that is not a scrape result.
        self.garbled_pages: set[str] = set()

    def _record(self, service: str, request: httpx.Request):
        key = (service, request.method, request.url.path)
        self.requests.append(key)
        body = json.loads(request.content) if request.content else None
        self.bodies[key].append(body)
        return body

    def calls(self, service: str, method: str | None = None, path: str | None = None) -> list:
        return [
            r
            for r in self.requests
            if r[0] == service and (method is None or r[1] == method) and (path is None or r[2] == path)
        ]

    def runs(self, request: httpx.Request) -> httpx.Response:
        body = self._record("runs", request)
        path = request.url.path
        if request.method == "POST" and path == "/v1/runs":
            if "create_run" in self.failures:
                return httpx.Response(503, text="runs-service down")
            if "run_without_id" in self.failures:
                return httpx.Response(200, json={"status": "running"})
            return httpx.Response(200, json={"id": "run-1", "status": "running", **body})
        if request.method == "POST" and path.endswith("/costs"):
            if "add_costs" in self.failures:
                return httpx.Response(500, text="costs rejected")
            return httpx.Response(200, json={"costs": body["items"]})
        if request.method == "PATCH":
            if "update_run" in self.failures:
                return httpx.Response(500, text="update rejected")
            return httpx.Response(200, json={"id": path.rsplit("/", 1)[-1], "status": body["status"]})
        if request.method == "GET" and path == "/v1/runs":
            return httpx.Response(200, json={"runs": [{"id": "run-1", "status": "completed"}]})
        return httpx.Response(404, text="not found")

    def scraping(self, request: httpx.Request) -> httpx.Response:
        body = self._record("scraping", request)
        if request.url.path == "/map":
            if "map" in self.failures:
                return httpx.Response(502, text="map failed")
            return httpx.Response(200, json={"success": True, "urls": self.site_urls})
        if "scrape" in self.failures:
            return httpx.Response(500, text="scrape failed")
        if body["url"] in self.garbled_pages:
            return httpx.Response(200, json=["unexpected"])
        return httpx.Response(200, json={"success": True, "result": {"rawMarkdown": f"# Page {body['url']}"}})

    def llm(self, request: httpx.Request) -> httpx.Response:
        body = self._record("llm", request)
        if "llm" in self.failures:
            return httpx.Response(529, text="overloaded")
        prompt = body["messages"][0]["content"]
        if "JSON array" in prompt:
            text = json.dumps(self.site_urls[1:])
            usage = {"input_tokens": 100, "output_tokens": 10}
        else:
            text = "Here is the profile:\n" + json.dumps(self.extraction_reply)
            usage = {"input_tokens": 1000, "output_tokens": 200}
        return httpx.Response(
            200,
            json={"model": body["model"], "content": [{"type": "text", "text": text}], "usage": usage},
        )


@pytest.fixture()
def upstreams() -> FakeUpstreams:
    return FakeUpstreams()


@pytest.fixture()
def settings() -> Settings:
    return Settings(max_selected_urls=2, map_url_limit=10, service_name="brand-service", default_app_id="mcpfactory")


@pytest.fixture()
def runs_client(upstreams) -> RunsClient:
    return RunsClient(base_url="https://runs.test", api_key="runs-key", transport=httpx.MockTransport(upstreams.runs))


@pytest.fixture()
def pipeline(settings, upstreams, runs_client) -> ExtractionPipeline:
    scraper = ScrapingClient(
        base_url="https://scrape.test", api_key="scrape-key", transport=httpx.MockTransport(upstreams.scraping)
    )
    return ExtractionPipeline(
        settings=settings,
        runs=runs_client,
        scraper=scraper,
        llm_factory=lambda key: AnthropicClient(
            api_key=key, base_url="https://llm.test/v1", transport=httpx.MockTransport(upstreams.llm)
        ),
    )
