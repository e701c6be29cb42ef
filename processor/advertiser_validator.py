"""Advertiser validation engine -- active ads, uniproduct ratio, duplicate score.

An advertiser is a candidate when it runs many ads (active-ad signal), most of
them push one product (uniproduct signal) and a good share repeat the same copy
or creative (duplicate signal). All three gates must pass on their own; the
composite 0-100 score is for ranking only.

Used by processor.run_pipeline.
"""

from __future__ import annotations

import math
import re
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field

from crawler.ad_library import AdRecord
from processor.advertiser_aggregator import AdvertiserProfile

# ── Composite weights ──
W_ACTIVE = 40
W_UNIPRODUCT = 30
W_DUPLICATES = 30

PRODUCT_KEY_WORDS = 5
PRODUCT_KEY_MIN_WORD_LEN = 4
DUPLICATE_MIN_TEXT_LEN = 11  # texts of 10 chars or less are never flagged

_PUNCT = re.compile(r"[^\w\s]")
_SPACES = re.compile(r"\s+")
_IMAGE_KEY = re.compile(r"/([a-f0-9]+)_")


@dataclass(frozen=True)
class ValidationCriteria:
    min_active_ads: int = 20
    min_uniproduct_ratio: float = 0.8
    min_duplicates_score: float = 0.3


DEFAULT_CRITERIA = ValidationCriteria()


@dataclass(frozen=True)
class ValidationMetrics:
    active_ads_count: int
    uniproduct_ratio: float
    duplicates_score: float
    total_score: int
    passed: bool
    reasons: tuple[str, ...] = field(default_factory=tuple)


def normalize_text(text: str | None) -> str:
    """Lower-case, drop punctuation, collapse whitespace."""
    if not text:
        return ""
    return _SPACES.sub(" ", _PUNCT.sub("", text.lower())).strip()


def extract_product_key(ad_text: str | None) -> str:
    """Product signature: first five words longer than three chars."""
    if not ad_text:
        return "unknown"
    normalized = _SPACES.sub(" ", _PUNCT.sub(" ", ad_text.lower().strip()))
    words = [w for w in normalized.split(" ") if len(w) >= PRODUCT_KEY_MIN_WORD_LEN]
    key = " ".join(words[:PRODUCT_KEY_WORDS])
    return key or "unknown"


def extract_image_key(url: str) -> str:
    """Content id from a CDN path (``/<hex>_...``); the URL itself otherwise."""
    match = _IMAGE_KEY.search(url)
    return match.group(1) if match else url


def detect_uniproduct(ads: list[AdRecord]) -> float:
    """Share of ads in the largest product-key group (0-1)."""
    if not ads:
        return 0.0
    groups = Counter(extract_product_key(ad.ad_text) for ad in ads)
    return max(groups.values()) / len(ads)


def detect_duplicates(ads: list[AdRecord]) -> float:
    """Share of ads repeating earlier copy or creative (0-1)."""
    if len(ads) < 2:
        return 0.0

    duplicates = 0
    seen_texts: set[str] = set()
    seen_images: set[str] = set()

    for ad in ads:
        text = normalize_text(ad.ad_text)
        if text in seen_texts and len(text) >= DUPLICATE_MIN_TEXT_LEN:
            duplicates += 1
        else:
            seen_texts.add(text)

        for url in ad.image_urls:
            key = extract_image_key(url)
            if key in seen_images:
                duplicates += 1
            else:
                seen_images.add(key)

    return min(duplicates / len(ads), 1.0)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def calculate_overall_score(
    active_ads_count: int,
    uniproduct_ratio: float,
    duplicates_score: float,
    criteria: ValidationCriteria = DEFAULT_CRITERIA,
) -> int:
    """Composite 0-100. The active-ad term saturates at the minimum."""
    if criteria.min_active_ads <= 0:
        active_part = float(W_ACTIVE)
    else:
        active_part = min(active_ads_count / criteria.min_active_ads, 1.0) * W_ACTIVE
    score = active_part + uniproduct_ratio * W_UNIPRODUCT + duplicates_score * W_DUPLICATES
    return max(0, min(100, _round_half_up(score)))


def _pct(value: float) -> str:
    return f"{value * 100:.0f}%"


def validate_advertiser(
    profile: AdvertiserProfile,
    criteria: ValidationCriteria = DEFAULT_CRITERIA,
) -> ValidationMetrics:
    """Score one advertiser profile against the criteria."""
    reasons: list[str] = []

    active = profile.active_ads_count
    active_ok = active >= criteria.min_active_ads
    if active_ok:
        reasons.append(f"✓ Has {active} active ads (≥{criteria.min_active_ads})")
    else:
        reasons.append(f"✗ Only {active} active ads (<{criteria.min_active_ads})")

    uniproduct = detect_uniproduct(profile.ads)
    uniproduct_ok = uniproduct >= criteria.min_uniproduct_ratio
    mark, op = ("✓", "≥") if uniproduct_ok else ("✗", "<")
    reasons.append(f"{mark} Uniproduct ratio {_pct(uniproduct)} ({op}{_pct(criteria.min_uniproduct_ratio)})")

    duplicates = detect_duplicates(profile.ads)
    duplicates_ok = duplicates >= criteria.min_duplicates_score
    mark, op = ("✓", "≥") if duplicates_ok else ("✗", "<")
    reasons.append(f"{mark} Duplicates score {_pct(duplicates)} ({op}{_pct(criteria.min_duplicates_score)})")

    return ValidationMetrics(
        active_ads_count=active,
        uniproduct_ratio=uniproduct,
        duplicates_score=duplicates,
        total_score=calculate_overall_score(active, uniproduct, duplicates, criteria),
        passed=active_ok and uniproduct_ok and duplicates_ok,
        reasons=tuple(reasons),
    )


def batch_validate(
    profiles: Iterable[AdvertiserProfile],
    criteria: ValidationCriteria = DEFAULT_CRITERIA,
) -> dict[str, ValidationMetrics]:
    return {p.name: validate_advertiser(p, criteria) for p in profiles}
