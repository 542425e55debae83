from __future__ import annotations

import datetime as dt
import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query
from sqlalchemy.orm import Session

from .config import get_settings
from .database import get_db, init_db
from .errors import (
    BrandNotReadyError,
    BrandServiceError,
    InvalidJobTransition,
    InvalidUrlError,
    NotFoundError,
    TrackingError,
    UpstreamError,
)
from .schemas import (
    BrandData,
    CachedExtractionData,
    ExtractionRequest,
    ExtractionResponse,
    FileProgressData,
    JobData,
    JobProgressData,
    OrganizationData,
    OrganizationRequest,
    TenantBrandRequest,
    TenantBrandResponse,
    UpsertBrandRequest,
    UpsertBrandResponse,
)
from .services import cache
from .services.brands import get_or_create_brand, list_brands, require_brand, resolve_or_merge_brand_by_tenant_id
from .services.cache import ExtractionKind
from .services.extraction import ExtractionOptions, ExtractionPipeline
from .services.jobs import ImportJob, JobSweeper, JobTracker
from .services.organizations import resolve_or_create_organization, resolve_org_id
from .services.runs import RunsClient
from .services.scraping import ScrapingClient

logger = logging.getLogger(__name__)

settings = get_settings()


def configure_logging(level: str = settings.log_level) -> None:
    logging.basicConfig(level=level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")


runs_client = RunsClient.from_settings(settings)
scraping_client = ScrapingClient.from_settings(settings)
pipeline = ExtractionPipeline(settings=settings, runs=runs_client, scraper=scraping_client)
job_tracker = JobTracker(retention=dt.timedelta(seconds=settings.job_retention_seconds))
job_sweeper = JobSweeper(job_tracker, interval_seconds=settings.job_sweep_interval_seconds)


@asynccontextmanager
async def lifespan(_: FastAPI):
    configure_logging()
    init_db()
    job_sweeper.start()
    try:
        yield
    finally:
        job_sweeper.stop()


app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)


def get_pipeline() -> ExtractionPipeline:
    return pipeline


def get_runs_client() -> RunsClient:
    return runs_client


def get_job_tracker() -> JobTracker:
    return job_tracker


def _status_for(exc: BrandServiceError) -> int:
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, InvalidUrlError):
        return 400
    if isinstance(exc, (BrandNotReadyError, InvalidJobTransition)):
        return 409
    if isinstance(exc, (UpstreamError, TrackingError)):
        return 502
    return 500


def _http_error(exc: BrandServiceError) -> HTTPException:
    status = _status_for(exc)
    if status >= 500:
        logger.warning("Request failed: %s", exc)
    return HTTPException(status_code=status, detail=str(exc))


def _job_data(job: ImportJob) -> JobData:
    return JobData(
        job_id=job.job_id,
        status=job.status.value,
        progress=JobProgressData.model_validate(job.progress),
        current_file=job.current_file,
        files=[
            FileProgressData(
                name=f.name, status=f.status.value, asset_id=f.asset_id, mime_type=f.mime_type, error=f.error
            )
            for f in job.files
        ],
        created_at=job.created_at,
        completed_at=job.completed_at,
    )


@app.get("/v1/health")
def health() -> dict:
    return {"status": "ok", "service": settings.service_name}


@app.post("/v1/orgs", response_model=OrganizationData)
def upsert_organization(req: OrganizationRequest, db: Session = Depends(get_db)) -> OrganizationData:
    org = resolve_or_create_organization(db, app_id=req.app_id, external_org_id=req.external_org_id)
    return OrganizationData.model_validate(org)


@app.post("/v1/brands", response_model=UpsertBrandResponse)
def upsert_brand(req: UpsertBrandRequest, db: Session = Depends(get_db)) -> UpsertBrandResponse:
    try:
        resolution = get_or_create_brand(
            db, app_id=req.app_id or settings.default_app_id, external_org_id=req.clerk_org_id, url=req.url
        )
    except BrandServiceError as exc:
        raise _http_error(exc) from exc
    brand = resolution.brand
    return UpsertBrandResponse(
        brand_id=brand.id,
        organization_id=brand.organization_id,
        domain=brand.domain,
        name=brand.name,
        created=resolution.created,
        outcome=resolution.outcome.value,
        foreign_owned=resolution.foreign_owned,
    )


@app.post("/v1/brands/tenant", response_model=TenantBrandResponse)
def upsert_tenant_brand(req: TenantBrandRequest, db: Session = Depends(get_db)) -> TenantBrandResponse:
    try:
        brand_id = resolve_or_merge_brand_by_tenant_id(
            db,
            tenant_id=req.tenant_id,
            name=req.name,
            url=req.url,
            external_organization_id=req.external_organization_id,
        )
    except BrandServiceError as exc:
        raise _http_error(exc) from exc
    return TenantBrandResponse(brand_id=brand_id)


@app.get("/v1/brands", response_model=list[BrandData])
def brands_for_org(
    clerk_org_id: str = Query(..., alias="clerkOrgId", min_length=1),
    app_id: str | None = Query(default=None, alias="appId"),
    db: Session = Depends(get_db),
) -> list[BrandData]:
    try:
        org_id = resolve_org_id(db, external_org_id=clerk_org_id, app_id=app_id or settings.default_app_id)
    except BrandServiceError as exc:
        raise _http_error(exc) from exc
    return [BrandData.model_validate(b) for b in list_brands(db, org_id)]


@app.get("/v1/brands/{brand_id}", response_model=BrandData)
def brand_detail(brand_id: str, db: Session = Depends(get_db)) -> BrandData:
    try:
        return BrandData.model_validate(require_brand(db, brand_id))
    except BrandServiceError as exc:
        raise _http_error(exc) from exc


@app.get("/v1/brands/{brand_id}/runs")
def brand_runs(
    brand_id: str,
    task_name: str | None = Query(default=None, alias="taskName"),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    runs: RunsClient = Depends(get_runs_client),
) -> Any:
    try:
        brand = require_brand(db, brand_id)
        clerk_org_id = (brand.organization.external_org_id if brand.organization else None) or brand.tenant_id
        if not clerk_org_id:
            raise BrandNotReadyError(f"Brand {brand_id} has no organization to list runs for")
        return runs.list_runs(clerk_org_id, brandId=brand.id, taskName=task_name, limit=limit)
    except BrandServiceError as exc:
        raise _http_error(exc) from exc


@app.get("/v1/brands/{brand_id}/extractions/{kind}", response_model=CachedExtractionData)
def cached_extraction(brand_id: str, kind: ExtractionKind, db: Session = Depends(get_db)) -> CachedExtractionData:
    extraction = cache.get_cached(db, brand_id, kind)
    if extraction is None:
        raise HTTPException(status_code=404, detail=f"No live {kind.value} extraction for brand {brand_id}")
    return CachedExtractionData.model_validate(extraction)


@app.post("/v1/brands/{brand_id}/extractions/{kind}", response_model=ExtractionResponse)
def run_extraction(
    brand_id: str,
    kind: ExtractionKind,
    req: ExtractionRequest,
    db: Session = Depends(get_db),
    extraction_pipeline: ExtractionPipeline = Depends(get_pipeline),
) -> ExtractionResponse:
    if not req.skip_cache:
        # A live cached extraction is served without an LLM key.
        existing = cache.get_cached(db, brand_id, kind)
        if existing is not None:
            return ExtractionResponse(cached=True, extraction=CachedExtractionData.model_validate(existing))

    llm_api_key = req.llm_api_key or settings.anthropic_api_key
    if not llm_api_key:
        raise HTTPException(status_code=400, detail="llmApiKey is required (no platform key configured)")

    options = ExtractionOptions(
        skip_cache=req.skip_cache,
        clerk_org_id=req.clerk_org_id,
        app_id=req.app_id,
        parent_run_id=req.parent_run_id,
    )
    try:
        result = extraction_pipeline.run(db, brand_id, kind, llm_api_key=llm_api_key, options=options)
    except BrandServiceError as exc:
        raise _http_error(exc) from exc
    return ExtractionResponse(
        cached=result.cached,
        run_id=result.run_id,
        extraction=CachedExtractionData.model_validate(result.extraction),
    )


@app.get("/v1/jobs/{job_id}", response_model=JobData)
def job_status(job_id: str, tracker: JobTracker = Depends(get_job_tracker)) -> JobData:
    """
    Progress of a bulk import.

    Jobs are created by a `BulkImporter` that an embedding deployment builds around its own
    `MediaImportTarget` and this tracker; the service itself ships no storage backend.
    """
    job = tracker.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
    return _job_data(job)
