"""Cross-market saturation check for approved candidates.

Re-queries the reference market with the candidate's product label and sums
the ads of every advertiser found there: total competing volume, not a match
against the original advertiser.
"""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from crawler.ad_library import AdLibrarySource
from processor.advertiser_aggregator import aggregate_advertisers, total_active_ads

MEASURED = "measured"
UNMEASURED = "unmeasured"


@dataclass(frozen=True)
class CrossMarketResult:
    ads_count: int
    measured: bool
    error: str | None = None

    @property
    def check_status(self) -> str:
        return MEASURED if self.measured else UNMEASURED


class CrossMarketScorer:
    def __init__(self, source: AdLibrarySource, reference_market: str = "AR", result_cap: int = 100):
        self.source = source
        self.reference_market = reference_market
        self.result_cap = result_cap

    async def score(self, product_label: str) -> CrossMarketResult:
        """Count reference-market ads for ``product_label``.

        A failed query returns ``ads_count=0, measured=False``; never raises.
        """
        try:
            records = await self.source.search(self.reference_market, [product_label], self.result_cap)
        except Exception as exc:
            logger.warning(
                "[cross_market] {} check failed for '{}': {}",
                self.reference_market, product_label, exc,
            )
            return CrossMarketResult(ads_count=0, measured=False, error=str(exc))

        profiles = aggregate_advertisers(records)
        total = total_active_ads(profiles)
        logger.info(
            "[cross_market] {} ads across {} advertisers in {} for '{}'",
            total, len(profiles), self.reference_market, product_label,
        )
        return CrossMarketResult(ads_count=total, measured=True)
