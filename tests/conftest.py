import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import pytest
import pytest_asyncio

from crawler.ad_library import AdLibrarySource, AdRecord
from database import init_db, make_engine, make_session_factory
from database.run_store import RunStore

CREATIVE_URL = "https://scontent.xx.fbcdn.net/v/t39.30808-6/4f2a9c_n.jpg"


def build_ads(
    advertiser: str,
    count: int,
    text: str = "Ebook fitness completo para treinar oferta {i}",
    image_url: str | None = None,
    page_url: str = "",
) -> list[AdRecord]:
    return [
        AdRecord(
            ad_id=f"{advertiser}-{i}",
            advertiser_name=advertiser,
            advertiser_page_url=page_url or f"https://facebook.com/{advertiser.lower().replace(' ', '')}",
            ad_text=text.format(i=i),
            image_urls=[image_url] if image_url else [],
            is_active=True,
        )
        for i in range(count)
    ]


class FakeSource(AdLibrarySource):
    """Canned records per market; records every call."""

    name = "fake"

    def __init__(self, by_market=None, errors=None, delay: float = 0.0):
        self.by_market = by_market or {}
        self.errors = errors or {}
        self.delay = delay
        self.calls: list[tuple[str, list[str], int]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False

    async def search(self, market, terms, result_cap):
        self.calls.append((market, list(terms), result_cap))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if market in self.errors:
                raise self.errors[market]
            return list(self.by_market.get(market, []))[:result_cap]
        finally:
            self.in_flight -= 1

    async def close(self):
        self.closed = True


@pytest.fixture
def make_ads():
    return build_ads


@pytest.fixture
def scenario_ads():
    """Three BR advertisers: one scalable single-product seller, two that miss a gate."""
    scalable = build_ads("NutriForce Brasil", 25, image_url=CREATIVE_URL)
    small = build_ads("Loja Pequena", 5, image_url=CREATIVE_URL)
    varied = build_ads("Mega Variedades", 25, text="Produto{i} diferente categoria{i} chegou agora")
    return scalable + small + varied


@pytest.fixture
def reference_ads():
    return build_ads("MuscleAR", 4) + build_ads("Suplementos BA", 3)


@pytest.fixture
def fake_source():
    def _factory(by_market=None, errors=None, delay=0.0):
        return FakeSource(by_market=by_market, errors=errors, delay=delay)
    return _factory


@pytest_asyncio.fixture
async def store(tmp_path):
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'runs.db'}")
    await init_db(engine)
    try:
        yield RunStore(make_session_factory(engine))
    finally:
        await engine.dispose()
