from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

import httpx

from ..config import Settings
from ..errors import UpstreamError

logger = logging.getLogger(__name__)


@dataclass
class ScrapedPage:
    url: str
    content: str


class ScrapingClient:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        map_timeout: float = 30.0,
        scrape_timeout: float = 60.0,
        max_workers: int = 5,
        source_service: str = "brand-service",
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.map_timeout = map_timeout
        self.scrape_timeout = scrape_timeout
        self.max_workers = max_workers
        self.source_service = source_service
        self.transport = transport

    @classmethod
    def from_settings(cls, settings: Settings, transport: httpx.BaseTransport | None = None) -> ScrapingClient:
        return cls(
            base_url=settings.scraping_service_url,
            api_key=settings.scraping_service_api_key,
            map_timeout=settings.map_timeout_seconds,
            scrape_timeout=settings.scrape_timeout_seconds,
            max_workers=settings.scrape_concurrency,
            source_service=settings.service_name,
            transport=transport,
        )

    @property
    def _headers(self) -> dict[str, str]:
        return {"X-API-Key": self.api_key, "Content-Type": "application/json"}

    def map_site(self, url: str, limit: int = 100) -> list[str]:
        try:
            with httpx.Client(timeout=self.map_timeout, transport=self.transport) as client:
                res = client.post(f"{self.base_url}/map", json={"url": url, "limit": limit}, headers=self._headers)
            res.raise_for_status()
            payload = res.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise UpstreamError(f"Failed to map site {url}: {exc}") from exc

        if not isinstance(payload, dict) or not payload.get("success"):
            error = payload.get("error") if isinstance(payload, dict) else None
            raise UpstreamError(f"Failed to map site {url}: {error or 'map failed'}")
        urls = payload.get("urls")
        return [u for u in urls if isinstance(u, str) and u] if isinstance(urls, list) else []

    def scrape(self, url: str, source_org_id: str | None = None) -> str | None:
        """Markdown for one page, or None when the page could not be scraped."""
        body = {"url": url, "sourceService": self.source_service}
        if source_org_id:
            body["sourceOrgId"] = source_org_id
        try:
            with httpx.Client(timeout=self.scrape_timeout, transport=self.transport) as client:
                res = client.post(f"{self.base_url}/scrape", json=body, headers=self._headers)
            res.raise_for_status()
            payload = res.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Scrape failed for %s: %s", url, exc)
            return None
        result = payload.get("result") if isinstance(payload, dict) else None
        content = result.get("rawMarkdown") if isinstance(result, dict) else None
        if not isinstance(content, str):
            logger.warning("Scrape returned no markdown for %s: %.200r", url, payload)
            return None
        return content or None

    def scrape_many(self, urls: list[str], source_org_id: str | None = None) -> list[ScrapedPage]:
        """Scrape in parallel; keeps input order and drops pages that yielded nothing."""
        if not urls:
            return []
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(urls))) as pool:
            contents = list(pool.map(lambda u: self.scrape(u, source_org_id), urls))
        return [ScrapedPage(url=u, content=c) for u, c in zip(urls, contents) if c]
