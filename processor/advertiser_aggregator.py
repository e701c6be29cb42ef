"""Fold raw ad records into per-advertiser profiles.

Profiles are keyed by the advertiser display name exactly as the source
returned it (case-sensitive). Two sellers sharing a display name collapse into
one profile and minor spelling variants stay apart.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from crawler.ad_library import AdRecord


@dataclass
class AdvertiserProfile:
    name: str
    page_url: str = ""
    active_ads_count: int = 0
    ads: list[AdRecord] = field(default_factory=list)


def aggregate_advertisers(records: Iterable[AdRecord]) -> dict[str, AdvertiserProfile]:
    """Group records by advertiser name, preserving arrival order per advertiser.

    Every fetched record counts toward ``active_ads_count`` regardless of its
    ``is_active`` flag.
    """
    profiles: dict[str, AdvertiserProfile] = {}
    for record in records:
        profile = profiles.get(record.advertiser_name)
        if profile is None:
            profile = AdvertiserProfile(name=record.advertiser_name, page_url=record.advertiser_page_url)
            profiles[record.advertiser_name] = profile
        profile.ads.append(record)
        profile.active_ads_count += 1
    return profiles


def total_active_ads(profiles: dict[str, AdvertiserProfile]) -> int:
    return sum(p.active_ads_count for p in profiles.values())
