from __future__ import annotations

import datetime as dt
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


def _none_as_empty(value: Any) -> Any:
    return [] if value is None else value


def _none_as_default_locations(value: Any) -> Any:
    return ["United States"] if value is None else value


# --- Extraction payloads -----------------------------------------------------
# LLM output is validated here. Absent or null collections become empty lists,
# absent scalars become None; anything of the wrong shape is rejected.

TextList = Annotated[list[str], BeforeValidator(_none_as_empty)]


class SocialProof(CamelModel):
    case_studies: TextList = Field(default_factory=list, alias="caseStudies")
    testimonials: TextList = Field(default_factory=list)
    results: TextList = Field(default_factory=list)


class SalesProfile(CamelModel):
    company_name: str | None = Field(default=None, alias="companyName")
    value_proposition: str | None = Field(default=None, alias="valueProposition")
    customer_pain_points: TextList = Field(default_factory=list, alias="customerPainPoints")
    call_to_action: str | None = Field(default=None, alias="callToAction")
    social_proof: Annotated[SocialProof, BeforeValidator(lambda v: {} if v is None else v)] = Field(
        default_factory=SocialProof, alias="socialProof"
    )
    company_overview: str | None = Field(default=None, alias="companyOverview")
    additional_context: str | None = Field(default=None, alias="additionalContext")
    competitors: TextList = Field(default_factory=list)
    product_differentiators: TextList = Field(default_factory=list, alias="productDifferentiators")
    target_audience: str | None = Field(default=None, alias="targetAudience")
    key_features: TextList = Field(default_factory=list, alias="keyFeatures")


class IcpSuggestion(CamelModel):
    target_titles: TextList = Field(default_factory=list, alias="person_titles")
    target_industries: TextList = Field(default_factory=list, alias="q_organization_keyword_tags")
    target_locations: Annotated[list[str], BeforeValidator(_none_as_default_locations)] = Field(
        default_factory=lambda: ["United States"], alias="organization_locations"
    )


# --- Read models --------------------------------------------------------------


class OrganizationData(CamelModel):
    id: str
    app_id: str = Field(alias="appId")
    external_org_id: str = Field(alias="externalOrgId")
    created_at: dt.datetime = Field(alias="createdAt")


class BrandData(CamelModel):
    id: str
    organization_id: str | None = Field(default=None, alias="organizationId")
    tenant_id: str | None = Field(default=None, alias="tenantId")
    external_organization_id: str | None = Field(default=None, alias="externalOrganizationId")
    domain: str | None = None
    url: str | None = None
    name: str | None = None


class CachedExtractionData(CamelModel):
    id: int
    brand_id: str = Field(alias="brandId")
    kind: str
    payload: dict[str, Any]
    extraction_model: str = Field(alias="extractionModel")
    input_tokens: int = Field(alias="inputTokens")
    output_tokens: int = Field(alias="outputTokens")
    cost_usd: float = Field(alias="costUsd")
    extracted_at: dt.datetime = Field(alias="extractedAt")
    expires_at: dt.datetime = Field(alias="expiresAt")


class RunRecord(CamelModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str
    status: str
    task_name: str | None = Field(default=None, alias="taskName")
    brand_id: str | None = Field(default=None, alias="brandId")
    parent_run_id: str | None = Field(default=None, alias="parentRunId")


# --- Requests / responses -----------------------------------------------------


class OrganizationRequest(CamelModel):
    app_id: str = Field(alias="appId", min_length=1, max_length=120)
    external_org_id: str = Field(alias="externalOrgId", min_length=1, max_length=255)


class UpsertBrandRequest(CamelModel):
    app_id: str | None = Field(default=None, alias="appId", max_length=120)
    clerk_org_id: str = Field(alias="clerkOrgId", min_length=1, max_length=255)
    url: str = Field(min_length=1, max_length=2048)


class UpsertBrandResponse(CamelModel):
    brand_id: str = Field(alias="brandId")
    organization_id: str | None = Field(default=None, alias="organizationId")
    domain: str | None = None
    name: str | None = None
    created: bool
    outcome: str
    # True when the domain belongs to another organization's brand; nothing was reassigned.
    foreign_owned: bool = Field(alias="foreignOwned")


class TenantBrandRequest(CamelModel):
    tenant_id: str = Field(alias="tenantId", min_length=1, max_length=255)
    name: str | None = Field(default=None, max_length=255)
    url: str | None = Field(default=None, max_length=2048)
    external_organization_id: str | None = Field(default=None, alias="externalOrganizationId", max_length=255)


class TenantBrandResponse(CamelModel):
    brand_id: str = Field(alias="brandId")


class ExtractionRequest(CamelModel):
    llm_api_key: str | None = Field(default=None, alias="llmApiKey")
    skip_cache: bool = Field(default=False, alias="skipCache")
    clerk_org_id: str | None = Field(default=None, alias="clerkOrgId")
    app_id: str | None = Field(default=None, alias="appId")
    parent_run_id: str | None = Field(default=None, alias="parentRunId")


class ExtractionResponse(CamelModel):
    cached: bool
    run_id: str | None = Field(default=None, alias="runId")
    extraction: CachedExtractionData


class FileProgressData(CamelModel):
    name: str
    status: str
    asset_id: str | None = Field(default=None, alias="assetId")
    mime_type: str | None = Field(default=None, alias="mimeType")
    error: str | None = None


class JobProgressData(CamelModel):
    total: int
    processed: int
    succeeded: int
    failed: int
    skipped: int


class JobData(CamelModel):
    job_id: str = Field(alias="jobId")
    status: str
    progress: JobProgressData
    current_file: str | None = Field(default=None, alias="currentFile")
    files: list[FileProgressData]
    created_at: dt.datetime = Field(alias="createdAt")
    completed_at: dt.datetime | None = Field(default=None, alias="completedAt")
