"""Ad library source settings."""

from dotenv import load_dotenv
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings

load_dotenv()


class AdLibrarySettings(BaseSettings):
    # apify | meta_api | mock
    provider: str = "apify"

    # Apify (Facebook Ads Library scraper actor)
    apify_token: str = Field(
        default="",
        validation_alias=AliasChoices("AD_LIBRARY_APIFY_TOKEN", "APIFY_API_TOKEN", "apify_token"),
    )
    apify_actor_id: str = Field(
        default="apify/facebook-ads-scraper",
        validation_alias=AliasChoices("AD_LIBRARY_APIFY_ACTOR_ID", "APIFY_ACTOR_ID", "apify_actor_id"),
    )
    apify_base_url: str = "https://api.apify.com/v2"

    # Meta Graph API (ads_archive)
    meta_access_token: str = Field(
        default="",
        validation_alias=AliasChoices(
            "AD_LIBRARY_META_ACCESS_TOKEN", "META_ACCESS_TOKEN", "meta_access_token",
        ),
    )
    meta_api_version: str = "v21.0"
    meta_page_size: int = 100

    # Actor runs take tens of seconds
    request_timeout_sec: float = 120.0

    # Retries (Graph API only, retryable categories)
    max_retries: int = 2
    retry_backoff_ms: int = 1_500

    model_config = {"env_prefix": "AD_LIBRARY_", "populate_by_name": True}


ad_library_settings = AdLibrarySettings()
