"""Run pipeline settings and market constants."""

from dotenv import load_dotenv
from pydantic_settings import BaseSettings

load_dotenv()

# ── Markets ──
MARKET_LANGUAGES: dict[str, str] = {
    "BR": "PT",
    "MX": "ES",
    "CO": "ES",
    "CL": "ES",
    "US": "EN",
    "AR": "ES",
}

MARKET_NAMES: dict[str, str] = {
    "BR": "Brazil",
    "MX": "Mexico",
    "CO": "Colombia",
    "CL": "Chile",
    "US": "United States",
    "AR": "Argentina",
}


def language_for_market(market: str) -> str:
    """Market code -> language code (BR -> PT)."""
    return MARKET_LANGUAGES[market]


class PipelineSettings(BaseSettings):
    # Fixed comparison market for saturation checks
    reference_market: str = "AR"

    # Result caps (reference query is larger for a steadier estimate)
    primary_result_cap: int = 50
    reference_result_cap: int = 100

    # Cross-market checks in flight at once
    cross_check_concurrency: int = 1

    model_config = {"env_prefix": "PIPELINE_"}


pipeline_settings = PipelineSettings()
