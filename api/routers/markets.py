"""Supported target markets."""

from fastapi import APIRouter

from database.schemas import MarketOut
from processor.config import MARKET_LANGUAGES, MARKET_NAMES

router = APIRouter(prefix="/api/markets", tags=["markets"])


@router.get("", response_model=list[MarketOut])
async def list_markets():
    return [
        MarketOut(code=code, name=MARKET_NAMES.get(code, code), language=language)
        for code, language in MARKET_LANGUAGES.items()
    ]
