"""
Production pipeline entry point.

Runs a single-shot recommendation cycle:
  1. Load the candidate watch-list (local JSON or the Firebase golden-cross
     node).
  2. Fetch prices and ratios for each candidate from the selected provider.
  3. Classify, detect golden crosses, optionally enrich with Gemini and
     gate through dual confirmation.
  4. Persist BUY recommendations.
  5. Archive the run report and log to a timestamped folder.

Usage::

    uv run main.py --watchlist vn30
    uv run main.py --source firebase --horizon long --no-ai
    uv run main.py --watchlist banks --confirmation technical --limit 20
"""
import argparse
import json
import os
import shutil
import sys
from datetime import datetime

from dotenv import load_dotenv
from loguru import logger

from src.vnsignal.utils.logger import LOG_FILE_PREFIX, setup_logger

setup_logger()
load_dotenv()

from src.vnsignal.config import load_engine_config  # noqa: E402
from src.vnsignal.data.factory import ProviderFactory  # noqa: E402
from src.vnsignal.data.watchlist import (  # noqa: E402
    FirebaseWatchlistProvider,
    JsonWatchlistProvider,
)
from src.vnsignal.enrichment.gemini_enricher import GeminiNarrativeEnricher  # noqa: E402
from src.vnsignal.indicators.snapshot import SnapshotCache  # noqa: E402
from src.vnsignal.pipeline.recommendation import RecommendationPipeline  # noqa: E402
from src.vnsignal.storage.firebase_store import FirebaseRecommendationStore  # noqa: E402
from src.vnsignal.storage.json_store import JsonFileRecommendationStore  # noqa: E402


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def create_outcome_dir(watchlist: str, horizon: str, confirmation: str) -> str:
    """Create and return a timestamped output directory under ``outcomes/``."""
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    folder_name = f"{timestamp}_{watchlist}_{horizon.upper()}_{confirmation.upper()}"

    target_dir = os.path.join("outcomes", folder_name)
    os.makedirs(target_dir, exist_ok=True)

    logger.info(f"Output directory created: {target_dir}")
    return target_dir


def save_json(data, folder: str, filename: str) -> None:
    """Serialise *data* as pretty-printed JSON into *folder*/*filename*."""
    path = os.path.join(folder, filename)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
    logger.success(f"Saved {filename}")


def archive_current_log(target_dir: str) -> None:
    """Copy today's log file into *target_dir* for post-mortem analysis."""
    log_dir = "logs"
    try:
        today_str = datetime.now().strftime("%Y-%m-%d")
        src_log = os.path.join(log_dir, f"{LOG_FILE_PREFIX}_{today_str}.log")

        if os.path.exists(src_log):
            dst_log = os.path.join(target_dir, "execution.log")
            shutil.copy2(src_log, dst_log)
            logger.info(f"Archived execution log to {dst_log}")
        else:
            logger.warning("Log file not found for archiving.")
    except OSError as e:
        logger.warning(f"Failed to archive log: {e}")


# ---------------------------------------------------------------------------
# Main pipeline
# ---------------------------------------------------------------------------

def main() -> None:
    parser = argparse.ArgumentParser(
        description="VN Signal Engine: Golden-Cross Recommendation Run",
    )
    parser.add_argument(
        "--watchlist", type=str, default="default",
        help="Watch-list name in watchlists/watchlists.json (json source)",
    )
    parser.add_argument(
        "--source", type=str, default="json", choices=["json", "firebase"],
        help="Where candidate symbols come from",
    )
    parser.add_argument(
        "--provider", type=str, default="vndirect", choices=["vndirect", "yfinance"],
        help="Market data provider",
    )
    parser.add_argument(
        "--store", type=str, default="json", choices=["json", "firebase"],
        help="Where BUY recommendations are persisted",
    )
    parser.add_argument(
        "--horizon", type=str, default=None, choices=["short", "long"],
        help="Golden-cross horizon: short (MA10/MA30) or long (MA50/MA200)",
    )
    parser.add_argument(
        "--confirmation", type=str, default=None, choices=["strict", "technical"],
        help="strict: technical + narrative dual confirmation; technical: engine only",
    )
    parser.add_argument(
        "--limit", type=int, default=None,
        help="Maximum watch-list size requested from the source",
    )
    parser.add_argument(
        "--no-ai", action="store_true",
        help="Disable Gemini narrative enrichment",
    )
    parser.add_argument(
        "--config", type=str, default=None,
        help="Optional JSON file with engine config overrides",
    )
    args = parser.parse_args()

    config = load_engine_config(args.config)
    if args.horizon:
        config.detector.horizon = args.horizon
    if args.confirmation:
        config.pipeline.confirmation_mode = args.confirmation
    if args.no_ai:
        config.enrichment.enabled = False

    label = args.watchlist if args.source == "json" else "goldenCross"
    output_dir = create_outcome_dir(
        label, config.detector.horizon, config.pipeline.confirmation_mode
    )
    enricher = None
    try:
        logger.info(
            f"Starting engine for [{label}] via [{args.provider.upper()}] "
            f"({config.pipeline.confirmation_mode} confirmation)..."
        )

        # ---- Collaborators ----
        firebase_url = os.getenv("FIREBASE_URL")
        firebase_secret = os.getenv("FIREBASE_SECRET")

        if args.source == "firebase":
            watchlist = FirebaseWatchlistProvider(firebase_url, firebase_secret)
        else:
            watchlist = JsonWatchlistProvider(watchlist_name=args.watchlist)

        provider = ProviderFactory.get_provider(
            args.provider,
            stale_tolerance_pct=config.pipeline.stale_price_tolerance_pct,
        )

        if args.store == "firebase":
            store = FirebaseRecommendationStore(firebase_url, firebase_secret)
        else:
            store = JsonFileRecommendationStore(
                os.path.join(output_dir, "recommendations.json")
            )

        if config.enrichment.enabled:
            api_key = os.getenv("GEMINI_API_KEY")
            if api_key:
                enricher = GeminiNarrativeEnricher(api_key, config.enrichment)
            else:
                logger.warning("GEMINI_API_KEY not set; running without enrichment")

        # ---- Run ----
        pipeline = RecommendationPipeline(
            provider=provider,
            watchlist=watchlist,
            store=store,
            config=config,
            enricher=enricher,
            cache=SnapshotCache(ttl_seconds=config.pipeline.snapshot_ttl_seconds),
        )
        report = pipeline.run(limit=args.limit)

        save_json(report.model_dump(mode="json"), output_dir, "report.json")

        for result in report.results:
            if result.signal is not None:
                logger.info(
                    f"{result.symbol:<6} {result.signal.direction:<5} "
                    f"conf={result.signal.confidence:5.1f} "
                    f"tech={result.signal.technical_score:5.1f} "
                    f"fund={result.signal.fundamental_score:5.1f}"
                )
            elif result.insufficient is not None:
                logger.info(f"{result.symbol:<6} INSUFFICIENT DATA")
        for failure in report.failures:
            logger.warning(f"{failure.symbol:<6} FAILED at {failure.stage}: {failure.message}")

        logger.success("-" * 30)
        logger.success("PRODUCTION RUN COMPLETE")
        logger.success(f"Recommendations: {len(report.recommendations)}")
        logger.success(f"Results archived to: {output_dir}")
        logger.success("-" * 30)

        archive_current_log(output_dir)

    except Exception as e:
        logger.exception(f"Pipeline failed: {e}")
        archive_current_log(output_dir)
        sys.exit(1)


if __name__ == "__main__":
    main()
