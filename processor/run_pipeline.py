"""Run pipeline: ad library search -> aggregate -> validate -> cross-market check -> DB.

Lifecycle of a run:

    in_progress --(all stages ok)--> completed
         `--(any stage 1-4 error)--> error

``RunOrchestrator.create_run`` writes the run record and hands ``execute`` to
the supervisor; the caller gets a ``RunHandle`` back without waiting for the
pipeline. Clients poll the run status afterwards.
"""

from __future__ import annotations

from collections.abc import Sequence

from loguru import logger

from crawler.ad_library import AdLibrarySource
from database.models import CandidateStatus, RunStatus
from database.run_store import RunStore, utcnow
from processor.advertiser_aggregator import AdvertiserProfile, aggregate_advertisers
from processor.advertiser_validator import DEFAULT_CRITERIA, ValidationCriteria, validate_advertiser
from processor.config import MARKET_LANGUAGES, PipelineSettings, language_for_market, pipeline_settings
from processor.cross_market import CrossMarketScorer
from processor.run_supervisor import BoundedWorker, RunHandle, RunOutcome, RunSupervisor

UNKNOWN_PRODUCT = "Unknown Product"


class RunInputError(ValueError):
    """Rejected before any run record is written."""


def validate_run_input(market: str | None, keywords: Sequence[str] | None) -> tuple[str, list[str]]:
    market = (market or "").strip().upper()
    cleaned = [k.strip() for k in (keywords or []) if isinstance(k, str) and k.strip()]
    if not market or not cleaned:
        raise RunInputError("Missing required fields: country, keywords")
    if market not in MARKET_LANGUAGES:
        raise RunInputError(f"Unsupported country: {market}")
    return market, cleaned


def _override(filters: dict, key: str):
    value = filters.get(key)
    return getattr(DEFAULT_CRITERIA, key) if value is None else value


def criteria_from_filters(filters: dict | None) -> ValidationCriteria:
    """Override defaults with whichever criteria the request supplied."""
    filters = filters or {}
    return ValidationCriteria(
        min_active_ads=_override(filters, "min_active_ads"),
        min_uniproduct_ratio=_override(filters, "min_uniproduct_ratio"),
        min_duplicates_score=_override(filters, "min_duplicates_score"),
    )


def extract_product_name(ad_text: str | None) -> str:
    """Rough label from ad copy: first five words, max 50 chars."""
    if not ad_text:
        return UNKNOWN_PRODUCT
    return " ".join(ad_text.split(" ")[:5])[:50]


def detect_product(keywords: Sequence[str], profile: AdvertiserProfile) -> str:
    if keywords and keywords[0]:
        return keywords[0]
    first_text = profile.ads[0].ad_text if profile.ads else None
    return extract_product_name(first_text)


class RunOrchestrator:
    """Owns run and candidate lifecycles; services are injected."""

    def __init__(
        self,
        store: RunStore,
        source: AdLibrarySource,
        supervisor: RunSupervisor | None = None,
        scorer: CrossMarketScorer | None = None,
        settings: PipelineSettings | None = None,
    ):
        self.settings = settings or pipeline_settings
        self.store = store
        self.source = source
        self.supervisor = supervisor or RunSupervisor()
        self.scorer = scorer or CrossMarketScorer(
            source,
            reference_market=self.settings.reference_market,
            result_cap=self.settings.reference_result_cap,
        )
        self.worker = BoundedWorker(self.settings.cross_check_concurrency)

    async def create_run(
        self,
        market: str | None,
        keywords: Sequence[str] | None,
        filters: dict | None = None,
    ) -> RunHandle:
        """Validate, write the in_progress record, start the pipeline, return."""
        market, keywords = validate_run_input(market, keywords)
        filters = {k: v for k, v in (filters or {}).items() if v is not None}

        run_id = await self.store.create_run(
            target_country=market,
            language=language_for_market(market),
            keywords_input=keywords,
            filter_params=filters,
            status=RunStatus.IN_PROGRESS.value,
        )
        logger.info("[run {}] created: market={} keywords={}", run_id, market, keywords)

        criteria = criteria_from_filters(filters)
        return self.supervisor.submit(run_id, self.execute(run_id, market, keywords, criteria))

    async def execute(
        self,
        run_id: str,
        market: str,
        keywords: list[str],
        criteria: ValidationCriteria = DEFAULT_CRITERIA,
    ) -> RunOutcome:
        """Stages 1-4. Any failure before the final write turns the run to error."""
        try:
            # 1) one search for the whole keyword list
            logger.info("[run {}] searching {} for {} keyword(s)", run_id, market, len(keywords))
            records = await self.source.search(market, keywords, self.settings.primary_result_cap)
            profiles = aggregate_advertisers(records)
            logger.info("[run {}] found {} advertisers in {} ads", run_id, len(profiles), len(records))

            # 2) validate every advertiser
            candidates = [
                self._build_candidate(run_id, keywords, profile, criteria)
                for profile in profiles.values()
            ]

            # 3) reference-market check for approved candidates only
            await self._cross_check(run_id, candidates)

            # 4) single batch write
            await self.store.insert_candidates(candidates)
            logger.info("[run {}] saved {} candidates", run_id, len(candidates))
        except Exception as exc:
            logger.exception("[run {}] processing failed", run_id)
            message = str(exc) or type(exc).__name__
            await self._mark_error(run_id, message)
            return RunOutcome(run_id, RunStatus.ERROR.value, message)

        summary = f"Found {len(profiles)} advertisers, {len(candidates)} candidates saved"
        try:
            await self.store.update_run(
                run_id,
                status=RunStatus.COMPLETED.value,
                finished_at=utcnow(),
                summary_logs=summary,
            )
        except Exception:
            # Work is done; the record may stay in_progress
            logger.exception("[run {}] could not record completion", run_id)
        else:
            logger.info("[run {}] processing complete", run_id)
        return RunOutcome(run_id, RunStatus.COMPLETED.value, summary)

    def _build_candidate(
        self,
        run_id: str,
        keywords: list[str],
        profile: AdvertiserProfile,
        criteria: ValidationCriteria,
    ) -> dict:
        metrics = validate_advertiser(profile, criteria)
        status = (
            CandidateStatus.APPROVED_FOR_SECONDARY_CHECK
            if metrics.passed
            else CandidateStatus.PENDING
        )
        return {
            "run_id": run_id,
            "keyword_origin": keywords[0],
            "advertiser_name": profile.name,
            "ad_library_page_url": profile.page_url,
            "product_detected": detect_product(keywords, profile),
            "active_ads_count": metrics.active_ads_count,
            "uniproduct_ratio": metrics.uniproduct_ratio,
            "duplicates_score": metrics.duplicates_score,
            "total_score": metrics.total_score,
            "validation_reasons": " | ".join(metrics.reasons),
            "status": status.value,
            "secondary_ads_count": None,
            "secondary_check_status": None,
        }

    async def _cross_check(self, run_id: str, candidates: list[dict]):
        approved = [
            c for c in candidates
            if c["status"] == CandidateStatus.APPROVED_FOR_SECONDARY_CHECK.value
        ]
        if not approved:
            return

        async def _check(candidate: dict):
            logger.info(
                "[run {}] cross-checking {} ('{}') in {}",
                run_id, candidate["advertiser_name"], candidate["product_detected"],
                self.scorer.reference_market,
            )
            return await self.scorer.score(candidate["product_detected"])

        results = await self.worker.map(_check, approved)
        for candidate, result in zip(approved, results):
            candidate["secondary_ads_count"] = result.ads_count
            candidate["secondary_check_status"] = result.check_status

    async def _mark_error(self, run_id: str, message: str):
        try:
            await self.store.update_run(
                run_id,
                status=RunStatus.ERROR.value,
                finished_at=utcnow(),
                summary_logs=f"Error: {message}",
            )
        except Exception:
            logger.exception("[run {}] could not record error status", run_id)
