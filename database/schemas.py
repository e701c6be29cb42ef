"""Pydantic schemas -- API request/response serialization.

Ratio fields (uniproduct_ratio, duplicates_score) are 0-1 floats; total_score
is an integer 0-100. secondary_ads_count is null unless the candidate was
approved for the reference-market check.
"""

from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


# ── Run creation ──
class CriteriaFilters(BaseModel):
    min_active_ads: int | None = Field(
        default=None, ge=1,
        validation_alias=AliasChoices("min_active_ads", "minActiveAds"),
    )
    min_uniproduct_ratio: float | None = Field(
        default=None, ge=0, le=1,
        validation_alias=AliasChoices("min_uniproduct_ratio", "minUniproductRatio"),
    )
    min_duplicates_score: float | None = Field(
        default=None, ge=0, le=1,
        validation_alias=AliasChoices("min_duplicates_score", "minDuplicatesScore"),
    )


class CreateRunRequest(BaseModel):
    # Optional here so missing fields map to 400, not 422
    country: str | None = None
    keywords: list[str] | None = None
    filters: CriteriaFilters | None = None


class CreateRunResponse(BaseModel):
    run_id: str
    status: str
    message: str


# ── Run ──
class RunOut(BaseModel):
    id: str
    country: str
    language: str
    keywords: list[str]
    status: str
    summary: str | None = None
    created_at: datetime
    finished_at: datetime | None = None
    candidates_count: int = 0


class RunSummaryOut(BaseModel):
    id: str
    country: str
    keywords: list[str]
    status: str
    created_at: datetime
    finished_at: datetime | None = None
    summary: str | None = None


# ── Candidate ──
class CandidateOut(BaseModel):
    id: str
    run_id: str
    keyword_origin: str
    platform_origin: str | None = None
    advertiser_name: str
    ad_library_page_url: str | None = None
    product_detected: str | None = None
    active_ads_count: int
    uniproduct_ratio: float
    duplicates_score: float
    total_score: int
    validation_reasons: str | None = None
    status: str
    secondary_ads_count: int | None = None
    secondary_check_status: str | None = None
    model_config = ConfigDict(from_attributes=True)


# ── Market ──
class MarketOut(BaseModel):
    code: str
    name: str
    language: str
