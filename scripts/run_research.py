"""Run one advertiser research pass from the command line and print candidates.

Usage:
    python scripts/run_research.py --country BR --keywords "ebook fitness,emagrecer"
    python scripts/run_research.py --country MX --keywords "curso ingles" --provider mock
    python scripts/run_research.py --country US --keywords "keto" --min-active-ads 10
"""

import argparse
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from loguru import logger

from crawler.ad_library import get_ad_library_source
from crawler.config import ad_library_settings
from database import async_session, engine, init_db
from database.run_store import RunStore
from processor.run_pipeline import RunInputError, RunOrchestrator
from processor.run_supervisor import RunSupervisor


def _positive_int(value):
    n = int(value)
    if n < 1:
        raise argparse.ArgumentTypeError(f"must be >= 1, got {value}")
    return n


def _fraction(value):
    x = float(value)
    if not 0 <= x <= 1:
        raise argparse.ArgumentTypeError(f"must be between 0 and 1, got {value}")
    return x


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Meta Ad Library advertiser research")
    p.add_argument("--country", required=True, help="BR, MX, CO, CL, US or AR")
    p.add_argument("--keywords", required=True, help="comma-separated keywords")
    p.add_argument("--provider", choices=["apify", "meta_api", "mock"], default=None)
    p.add_argument("--min-active-ads", type=_positive_int, default=None)
    p.add_argument("--min-uniproduct-ratio", type=_fraction, default=None)
    p.add_argument("--min-duplicates-score", type=_fraction, default=None)
    return p.parse_args(argv)


def _print_candidates(candidates):
    if not candidates:
        print("  (no candidates)")
        return
    for c in candidates:
        secondary = "-" if c.secondary_ads_count is None else c.secondary_ads_count
        print(
            f"  {c.total_score:>3}  {c.status:<30} {c.advertiser_name[:40]:<40} "
            f"ads={c.active_ads_count:<4} ref={secondary}"
        )


async def main(argv=None) -> int:
    args = parse_args(argv)
    if args.provider:
        ad_library_settings.provider = args.provider

    await init_db()
    store = RunStore(async_session)
    source = get_ad_library_source(ad_library_settings)
    supervisor = RunSupervisor()
    orchestrator = RunOrchestrator(store, source, supervisor=supervisor)

    filters = {
        "min_active_ads": args.min_active_ads,
        "min_uniproduct_ratio": args.min_uniproduct_ratio,
        "min_duplicates_score": args.min_duplicates_score,
    }
    keywords = [k.strip() for k in args.keywords.split(",")]

    try:
        handle = await orchestrator.create_run(args.country, keywords, filters)
    except RunInputError as exc:
        logger.error("[research] {}", exc)
        await source.close()
        await engine.dispose()
        return 2

    try:
        outcome = await supervisor.wait(handle.run_id)
        run = await store.get_run(handle.run_id)
        print(f"\nRun {handle.run_id} [{run.status}] {run.summary_logs or ''}")
        _print_candidates(await store.list_candidates(handle.run_id))
    finally:
        await source.close()
        await engine.dispose()

    return 0 if outcome is not None and outcome.status == "completed" else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
