from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session

from .. import models
from ..config import Settings
from ..errors import BrandNotReadyError, ExtractionParseError, UpstreamError
from ..schemas import IcpSuggestion, SalesProfile
from . import cache
from .brands import require_brand
from .cache import ExtractionKind
from .llm import AnthropicClient, LLMResponse, extract_json_array, extract_json_object
from .prompts import combine_pages, icp_suggestion_prompt, sales_profile_prompt, url_selection_prompt
from .runs import CostItem, CreateRunParams, RunsClient, RunTracker, TrackingPolicy
from .scraping import ScrapedPage, ScrapingClient

logger = logging.getLogger(__name__)

URL_SELECTION_MODEL = "claude-3-haiku-20240307"


@dataclass(frozen=True)
class ExtractionSpec:
    kind: ExtractionKind
    task_name: str
    model: str
    max_tokens: int
    payload_model: type[BaseModel]
    build_prompt: Callable[[str], str]
    default_policy: TrackingPolicy


EXTRACTION_SPECS: dict[ExtractionKind, ExtractionSpec] = {
    ExtractionKind.SALES_PROFILE: ExtractionSpec(
        kind=ExtractionKind.SALES_PROFILE,
        task_name="sales-profile-extraction",
        model="claude-3-haiku-20240307",
        max_tokens=4096,
        payload_model=SalesProfile,
        build_prompt=sales_profile_prompt,
        default_policy=TrackingPolicy.MANDATORY,
    ),
    ExtractionKind.ICP_SUGGESTION: ExtractionSpec(
        kind=ExtractionKind.ICP_SUGGESTION,
        task_name="icp-extraction",
        model="claude-opus-4-5",
        max_tokens=1024,
        payload_model=IcpSuggestion,
        build_prompt=icp_suggestion_prompt,
        default_policy=TrackingPolicy.BEST_EFFORT,
    ),
}


@dataclass
class ExtractionOptions:
    skip_cache: bool = False
    clerk_org_id: str | None = None
    app_id: str | None = None
    parent_run_id: str | None = None
    # Overrides the kind's default tracking policy.
    policy: TrackingPolicy | None = None


@dataclass
class ExtractionResult:
    cached: bool
    extraction: models.CachedExtraction
    run_id: str | None = None


@dataclass
class _Usage:
    """Token usage per model across every LLM call of one run."""

    tokens: dict[str, list[int]] = field(default_factory=dict)

    def add(self, model: str, response: LLMResponse) -> None:
        totals = self.tokens.setdefault(model, [0, 0])
        totals[0] += response.input_tokens
        totals[1] += response.output_tokens

    def cost_items(self) -> list[CostItem]:
        items: list[CostItem] = []
        for model, (input_tokens, output_tokens) in self.tokens.items():
            slug = cache.rate_for(model).cost_slug
            if input_tokens:
                items.append(CostItem(f"{slug}-tokens-input", input_tokens))
            if output_tokens:
                items.append(CostItem(f"{slug}-tokens-output", output_tokens))
        return items


def parse_payload(spec: ExtractionSpec, text: str) -> BaseModel:
    raw = extract_json_object(text)
    try:
        return spec.payload_model.model_validate(raw)
    except ValidationError as exc:
        raise ExtractionParseError(f"LLM {spec.kind.value} output does not match the expected shape: {exc}") from exc


class ExtractionPipeline:
    """
    Cached, run-tracked extraction for one brand:
    site map -> URL selection -> scrape -> LLM extraction -> cache write -> cost report.
    """

    def __init__(
        self,
        settings: Settings,
        runs: RunsClient,
        scraper: ScrapingClient,
        llm_factory: Callable[[str], AnthropicClient] | None = None,
    ) -> None:
        self.settings = settings
        self.runs = runs
        self.scraper = scraper
        self.llm_factory = llm_factory or self._default_llm

    def _default_llm(self, api_key: str) -> AnthropicClient:
        return AnthropicClient(
            api_key=api_key,
            base_url=self.settings.anthropic_base_url,
            version=self.settings.anthropic_version,
            timeout=self.settings.llm_timeout_seconds,
        )

    @property
    def ttl(self) -> dt.timedelta:
        return dt.timedelta(days=self.settings.extraction_cache_days)

    def _run_params(
        self, brand: models.Brand, spec: ExtractionSpec, options: ExtractionOptions
    ) -> CreateRunParams | None:
        org = brand.organization
        clerk_org_id = options.clerk_org_id or (org.external_org_id if org else None) or brand.tenant_id
        if not clerk_org_id:
            return None
        app_id = options.app_id or (org.app_id if org else None) or self.settings.default_app_id
        return CreateRunParams(
            clerk_org_id=clerk_org_id,
            app_id=app_id,
            service_name=self.settings.service_name,
            task_name=spec.task_name,
            brand_id=brand.id,
            parent_run_id=options.parent_run_id,
        )

    def select_urls(self, urls: list[str], llm: AnthropicClient, usage: _Usage) -> list[str]:
        limit = self.settings.max_selected_urls
        if len(urls) <= limit:
            return urls

        candidates = urls[: self.settings.map_url_limit]
        try:
            response = llm.complete(url_selection_prompt(candidates, limit), model=URL_SELECTION_MODEL)
        except UpstreamError as exc:
            logger.warning("URL selection failed, keeping the first %d URLs: %s", limit, exc)
            return urls[:limit]
        usage.add(URL_SELECTION_MODEL, response)

        picked = [u for u in extract_json_array(response.text) or [] if isinstance(u, str) and u]
        if not picked:
            logger.warning("URL selection returned no usable list, keeping the first %d URLs", limit)
            return urls[:limit]
        return picked[:limit]

    def collect_pages(self, brand: models.Brand, llm: AnthropicClient, usage: _Usage) -> list[ScrapedPage]:
        logger.info("[%s] Mapping site URLs for %s", brand.id, brand.url)
        all_urls = self.scraper.map_site(brand.url, limit=self.settings.map_url_limit)
        logger.info("[%s] Found %d URLs", brand.id, len(all_urls))

        selected = self.select_urls(all_urls, llm, usage)
        logger.info("[%s] Scraping %d selected pages", brand.id, len(selected))
        pages = self.scraper.scrape_many(selected, source_org_id=brand.organization_id)
        logger.info("[%s] Scraped %d/%d pages", brand.id, len(pages), len(selected))

        if not pages:
            raise UpstreamError(f"Failed to scrape any pages for brand {brand.id}")
        return pages

    def run(
        self,
        db: Session,
        brand_id: str,
        kind: ExtractionKind | str,
        llm_api_key: str,
        options: ExtractionOptions | None = None,
    ) -> ExtractionResult:
        spec = EXTRACTION_SPECS[ExtractionKind(kind)]
        options = options or ExtractionOptions()

        if not options.skip_cache:
            existing = cache.get_cached(db, brand_id, spec.kind)
            if existing is not None:
                logger.info("[%s] %s cache hit (expires %s)", brand_id, spec.kind.value, existing.expires_at)
                return ExtractionResult(cached=True, extraction=existing)
            logger.info("[%s] %s cache miss", brand_id, spec.kind.value)
        else:
            logger.info("[%s] %s cache bypassed", brand_id, spec.kind.value)

        brand = require_brand(db, brand_id)
        if not brand.url:
            raise BrandNotReadyError(f"Brand {brand_id} has no URL to extract from")

        tracker = RunTracker(self.runs, options.policy or spec.default_policy)
        # Under the mandatory policy this raises before any scrape or LLM spend.
        run_id = tracker.start(self._run_params(brand, spec, options))

        try:
            llm = self.llm_factory(llm_api_key)
            usage = _Usage()
            pages = self.collect_pages(brand, llm, usage)

            logger.info("[%s] Extracting %s with %s", brand_id, spec.kind.value, spec.model)
            content = combine_pages([(p.url, p.content) for p in pages])
            response = llm.complete(spec.build_prompt(content), model=spec.model, max_tokens=spec.max_tokens)
            usage.add(spec.model, response)
            payload = parse_payload(spec, response.text)

            saved = cache.upsert_cached(
                db,
                brand_id=brand.id,
                kind=spec.kind,
                payload=payload.model_dump(mode="json", by_alias=True),
                model=spec.model,
                input_tokens=response.input_tokens,
                output_tokens=response.output_tokens,
                ttl=self.ttl,
            )
            tracker.record_costs(run_id, usage.cost_items())
        except Exception:
            tracker.fail(run_id)
            raise
        # The run gets exactly one terminal status: a failed completion is not followed by `fail`.
        tracker.complete(run_id)

        logger.info("[%s] %s extracted and cached (run %s)", brand_id, spec.kind.value, run_id or "untracked")
        return ExtractionResult(cached=False, extraction=saved, run_id=run_id)


def payload_for(extraction: models.CachedExtraction) -> BaseModel:
    spec = EXTRACTION_SPECS[ExtractionKind(extraction.kind)]
    return spec.payload_model.model_validate(extraction.payload)
