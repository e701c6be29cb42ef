"""Ad inventory sources -- Meta Ad Library via Apify actor, Graph API, or demo data.

Every source answers the same call:

    records = await source.search("BR", ["ebook fitness"], 50)

and returns a flat list of ``AdRecord`` in the order the provider returned them.
Grouping by advertiser happens later in ``processor.advertiser_aggregator``.

Providers:
  - apify (default): runs the Facebook Ads Library scraper actor synchronously
    and reads its dataset items. Needs APIFY_API_TOKEN.
  - meta_api: official Graph API ``ads_archive`` endpoint. Needs META_ACCESS_TOKEN.
  - mock: deterministic demo advertisers per market, no network.
"""

from __future__ import annotations

import asyncio
import json
import re
from datetime import UTC, datetime, timedelta
from urllib.parse import quote

import httpx
from loguru import logger
from pydantic import BaseModel, Field, field_validator

from crawler.config import AdLibrarySettings, ad_library_settings

AD_LIBRARY_BASE = "https://www.facebook.com/ads/library/"
META_GRAPH_BASE = "https://graph.facebook.com"

AUTH_ERROR_CODES = {102, 104, 190}
QUOTA_ERROR_CODES = {4, 17, 32, 613}

_HTML_TAG = re.compile(r"<[^>]*>?")


class AdLibraryError(RuntimeError):
    """Inventory source call failed (network, auth, quota, bad payload)."""


class AdRecord(BaseModel):
    """One ad as returned by the inventory source."""

    ad_id: str = ""
    advertiser_name: str = "Unknown"
    advertiser_page_url: str = ""
    ad_text: str = ""
    image_urls: list[str] = Field(default_factory=list)
    video_urls: list[str] = Field(default_factory=list)
    landing_page_url: str | None = None
    start_date: datetime | None = None
    is_active: bool = False

    @field_validator("advertiser_name", mode="before")
    @classmethod
    def default_name(cls, v: str | None) -> str:
        if not v or not str(v).strip():
            return "Unknown"
        return str(v)

    @field_validator("ad_text", mode="before")
    @classmethod
    def clean_text(cls, v: str | None) -> str:
        if not v:
            return ""
        return " ".join(str(v).split()).strip()


def build_ad_library_url(market: str, query: str) -> str:
    """Public Ad Library search URL for a market and free-text query."""
    return (
        f"{AD_LIBRARY_BASE}?active_status=all&ad_type=all&country={market}"
        f"&q={quote(query, safe='')}&search_type=keyword_unordered&media_type=all"
    )


def build_page_url(market: str, page_id: str | None) -> str:
    if not page_id:
        return ""
    return (
        f"{AD_LIBRARY_BASE}?active_status=all&ad_type=all&country={market}"
        f"&view_all_page_id={page_id}"
    )


def _strip_html(markup: str) -> str:
    return " ".join(_HTML_TAG.sub(" ", markup).split()).strip()


def _first_text(value) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        cleaned = " ".join(value.split()).strip()
        return cleaned or None
    if isinstance(value, dict):
        for key in ("text", "title", "name", "body", "value"):
            candidate = value.get(key)
            if isinstance(candidate, str) and candidate.strip():
                return " ".join(candidate.split()).strip()
        return None
    if isinstance(value, list):
        for item in value:
            found = _first_text(item)
            if found:
                return found
    return None


def _parse_epoch(value) -> datetime | None:
    if value is None or value == "":
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=UTC)
    except (ValueError, TypeError, OSError):
        return None


def _parse_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def apify_item_to_record(item: dict, market: str) -> AdRecord | None:
    """Map one Apify dataset item to an AdRecord.

    Items carrying an ``error`` key are the actor's per-URL failures and are
    skipped (None).
    """
    if not isinstance(item, dict) or item.get("error"):
        return None

    snapshot = item.get("snapshot") or {}
    page_id = str(item.get("pageId") or "")
    page_url = item.get("pageProfilePictureUrl") or build_page_url(market, page_id)

    ad_text = ""
    markup = ((snapshot.get("body") or {}).get("markup") or {}).get("__html")
    if markup:
        ad_text = _strip_html(markup)
    elif snapshot.get("title"):
        ad_text = snapshot["title"]

    image_urls = [
        img.get("originalImageUrl") or (img.get("resizedImageUrls") or [""])[0] or ""
        for img in snapshot.get("images") or []
        if isinstance(img, dict)
    ]
    video_urls = [
        vid.get("videoHdUrl") or vid.get("videoSdUrl") or ""
        for vid in snapshot.get("videos") or []
        if isinstance(vid, dict)
    ]
    landing = snapshot.get("ctaUrl") or snapshot.get("linkUrl") or snapshot.get("displayUrl") or None

    is_active = item.get("isActive")
    return AdRecord(
        ad_id=str(item.get("id") or item.get("adId") or item.get("adArchiveID") or ""),
        advertiser_name=item.get("pageName"),
        advertiser_page_url=page_url,
        ad_text=ad_text,
        image_urls=[u for u in image_urls if u],
        video_urls=[u for u in video_urls if u],
        landing_page_url=landing,
        start_date=_parse_epoch(item.get("startDate")),
        is_active=is_active is True or is_active == "true",
    )


def graph_item_to_record(item: dict, market: str) -> AdRecord:
    """Map one Graph API ``ads_archive`` row to an AdRecord."""
    page_id = str(item.get("page_id") or "")
    page_url = build_page_url(market, page_id) or item.get("ad_snapshot_url") or ""
    ad_text = (
        _first_text(item.get("ad_creative_bodies"))
        or _first_text(item.get("ad_creative_link_titles"))
        or ""
    )
    return AdRecord(
        ad_id=str(item.get("id") or ""),
        advertiser_name=item.get("page_name"),
        advertiser_page_url=page_url,
        ad_text=ad_text,
        landing_page_url=item.get("ad_snapshot_url"),
        start_date=_parse_iso(item.get("ad_delivery_start_time")),
        is_active=True,
    )


def classify_meta_api_error(
    status_code: int, payload: dict | None, response_text: str = "",
) -> tuple[str, bool, str]:
    """Classify Graph API failures -> (category, retryable, message)."""
    error = payload.get("error") if isinstance(payload, dict) else None

    message = ""
    if isinstance(error, dict):
        message = str(error.get("message") or "").strip()
    if not message:
        message = (response_text or "").strip()
    message = message[:240]

    code: int | None = None
    if isinstance(error, dict) and error.get("code") is not None:
        try:
            code = int(error["code"])
        except (TypeError, ValueError):
            code = None

    lowered = message.lower()
    if status_code in {401, 403} or code in AUTH_ERROR_CODES or ("oauth" in lowered and "invalid" in lowered):
        return ("auth", False, message or "authentication error")
    if status_code == 429 or code in QUOTA_ERROR_CODES or "rate limit" in lowered or "request limit" in lowered:
        return ("quota", True, message or "rate limit error")
    if status_code >= 500 or status_code in {408, 409, 425}:
        return ("transient", True, message or "transient server error")
    if status_code >= 400:
        return ("fatal", False, message or f"http {status_code}")
    return ("unknown", False, message or f"http {status_code}")


class AdLibrarySource:
    """Base class for inventory sources."""

    name = "base"

    async def search(self, market: str, terms: list[str], result_cap: int) -> list[AdRecord]:
        raise NotImplementedError

    async def close(self):
        pass


class _HttpSource(AdLibrarySource):
    def __init__(self, settings: AdLibrarySettings, client: httpx.AsyncClient | None = None):
        self.settings = settings
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.settings.request_timeout_sec)
        return self._client

    async def close(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


class ApifyAdLibrarySource(_HttpSource):
    """Facebook Ads Library scraper actor on Apify."""

    name = "apify"

    async def search(self, market: str, terms: list[str], result_cap: int) -> list[AdRecord]:
        token = self.settings.apify_token
        if not token:
            raise AdLibraryError("APIFY_API_TOKEN is not configured")

        # Terms share one query; the actor takes a single start URL
        query = " ".join(terms)
        start_url = build_ad_library_url(market, query)
        actor = self.settings.apify_actor_id.replace("/", "~")
        endpoint = f"{self.settings.apify_base_url}/acts/{actor}/run-sync-get-dataset-items"
        run_input = {
            "startUrls": [{"url": start_url}],
            "maxAds": result_cap,
            "maxItems": result_cap,
        }

        logger.info("[apify] actor={} market={} query='{}' cap={}", actor, market, query, result_cap)
        try:
            resp = await self._get_client().post(endpoint, params={"token": token}, json=run_input)
        except httpx.HTTPError as exc:
            raise AdLibraryError(f"Apify request failed: {exc}") from exc

        if resp.status_code not in (200, 201):
            raise AdLibraryError(f"Apify returned {resp.status_code}: {resp.text[:240]}")

        try:
            items = resp.json()
        except ValueError as exc:
            raise AdLibraryError("Apify returned a non-JSON dataset") from exc
        if not isinstance(items, list):
            raise AdLibraryError("Apify dataset payload is not a list")

        records = [r for r in (apify_item_to_record(item, market) for item in items) if r is not None]
        skipped = len(items) - len(records)
        logger.info(
            "[apify] market={} query='{}': {} items, {} records ({} skipped)",
            market, query, len(items), len(records), skipped,
        )
        return records[:result_cap]


class MetaGraphAdLibrarySource(_HttpSource):
    """Official Ad Library API (graph.facebook.com/<version>/ads_archive)."""

    name = "meta_api"

    FIELDS = (
        "id", "page_id", "page_name",
        "ad_creative_bodies", "ad_creative_link_titles",
        "ad_delivery_start_time", "ad_snapshot_url",
    )

    async def search(self, market: str, terms: list[str], result_cap: int) -> list[AdRecord]:
        token = self.settings.meta_access_token
        if not token:
            raise AdLibraryError("META_ACCESS_TOKEN is not configured")

        query = " ".join(terms)
        endpoint = f"{META_GRAPH_BASE}/{self.settings.meta_api_version}/ads_archive"
        params: dict | None = {
            "search_terms": query,
            "ad_reached_countries": json.dumps([market]),
            "ad_type": "ALL",
            "ad_active_status": "ALL",
            "fields": ",".join(self.FIELDS),
            "limit": min(result_cap, self.settings.meta_page_size),
            "access_token": token,
        }

        records: list[AdRecord] = []
        next_url: str | None = endpoint
        page = 0
        while next_url and len(records) < result_cap:
            page += 1
            payload = await self._request_ads_archive(next_url, params, query, page)
            for item in payload.get("data") or []:
                records.append(graph_item_to_record(item, market))
            next_url = (payload.get("paging") or {}).get("next")
            params = None  # the next link carries its own query string

        logger.info("[meta_api] market={} query='{}': {} records in {} page(s)", market, query, len(records), page)
        return records[:result_cap]

    async def _request_ads_archive(self, url: str, params: dict | None, query: str, page: int) -> dict:
        max_attempts = self.settings.max_retries + 1
        for attempt in range(1, max_attempts + 1):
            try:
                resp = await self._get_client().get(url, params=params)
            except httpx.RequestError as exc:
                if attempt >= max_attempts:
                    raise AdLibraryError(f"Meta API request failed: {exc}") from exc
                wait_ms = self.settings.retry_backoff_ms * (2 ** (attempt - 1))
                logger.warning(
                    "[meta_api] request error query='{}' page={} attempt {}/{}; retry in {}ms: {}",
                    query, page, attempt, max_attempts, wait_ms, exc,
                )
                await asyncio.sleep(wait_ms / 1000)
                continue

            payload: dict | None = None
            try:
                parsed = resp.json()
                if isinstance(parsed, dict):
                    payload = parsed
            except ValueError:
                payload = None

            if resp.status_code == 200 and payload is not None:
                return payload

            category, retryable, message = classify_meta_api_error(resp.status_code, payload, resp.text)
            if category in ("auth", "quota"):
                logger.error(
                    "[meta_api][ALERT] {} error query='{}' page={} status={} msg={}",
                    category, query, page, resp.status_code, message,
                )
            else:
                logger.warning(
                    "[meta_api] API error [{}] query='{}' page={} status={} msg={}",
                    category, query, page, resp.status_code, message,
                )

            if retryable and attempt < max_attempts:
                wait_ms = self.settings.retry_backoff_ms * (2 ** (attempt - 1))
                await asyncio.sleep(wait_ms / 1000)
                continue

            raise AdLibraryError(f"Meta API {category} error {resp.status_code}: {message}")

        raise AdLibraryError("Meta API request exhausted retries")


# ── Demo data ──

MOCK_ADVERTISERS: dict[str, list[tuple[str, str]]] = {
    "BR": [
        ("NutriForce Brasil", "https://facebook.com/nutriforce"),
        ("FitShop BR", "https://facebook.com/fitshopbr"),
        ("Suplementos Pro", "https://facebook.com/suplpro"),
    ],
    "MX": [
        ("Proteína MX", "https://facebook.com/protmx"),
        ("GymStore México", "https://facebook.com/gymstore"),
    ],
    "AR": [
        ("MuscleAR", "https://facebook.com/musclear"),
        ("Suplementos BA", "https://facebook.com/suplba"),
    ],
    "CO": [("NutriCo Colombia", "https://facebook.com/nutrico")],
    "CL": [("FitCenter Chile", "https://facebook.com/fitcl")],
    "US": [
        ("ProteinWorld US", "https://facebook.com/pwus"),
        ("GNC Official", "https://facebook.com/gnc"),
    ],
}

_MOCK_TEMPLATES = (
    "Los mejores productos de {kw}. Envío gratis. ¡Oferta por tiempo limitado!",
    "Transforma tu cuerpo con nuestra línea {kw}. Calidad garantizada.",
    "{kw} profesional directo de fábrica. Precio especial hoy.",
)


class MockAdLibrarySource(AdLibrarySource):
    """Deterministic demo inventory for local runs without provider tokens."""

    name = "mock"

    def __init__(self, now: datetime | None = None):
        self._now = now or datetime(2026, 1, 1, tzinfo=UTC)

    async def search(self, market: str, terms: list[str], result_cap: int) -> list[AdRecord]:
        pool = MOCK_ADVERTISERS.get(market) or MOCK_ADVERTISERS["BR"]
        records: list[AdRecord] = []
        for name, page_url in pool:
            for i, text in enumerate(t.format(kw=kw) for kw in terms for t in _MOCK_TEMPLATES):
                records.append(AdRecord(
                    ad_id=f"mock_{name}_{i}",
                    advertiser_name=name,
                    advertiser_page_url=page_url,
                    ad_text=text,
                    start_date=self._now - timedelta(days=i * 5),
                    is_active=True,
                ))
        return records[:result_cap]


def get_ad_library_source(settings: AdLibrarySettings | None = None) -> AdLibrarySource:
    """Return the inventory source configured by AD_LIBRARY_PROVIDER."""
    settings = settings or ad_library_settings
    provider = settings.provider.strip().lower()
    if provider == "apify":
        return ApifyAdLibrarySource(settings)
    if provider == "meta_api":
        return MetaGraphAdLibrarySource(settings)
    if provider == "mock":
        return MockAdLibrarySource()
    raise ValueError(f"Unknown ad library provider: {settings.provider}")
