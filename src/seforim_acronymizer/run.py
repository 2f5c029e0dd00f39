"""
CLI runner for seforim-acronymizer.

Usage:
    python -m seforim_acronymizer.run [OPTIONS]

    # Acronymize all book titles from the Seforim database in $seforim_db
    python -m seforim_acronymizer.run

    # Acronymize table-of-contents entries instead
    python -m seforim_acronymizer.run --toc

    # Acronymize texts listed one per line in a file
    python -m seforim_acronymizer.run --items-file titles.txt
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from .config import AcronymizerConfig
from .errors import AcronymizerError, ConfigError
from .llm import make_session_factory
from .models import ResultStore, ResultTable, RunStatus, RunSummary
from .pipeline import BatchProcessor, SessionFactory
from .source import SeforimSource, SourceKind, SourceProvider, TextFileSource

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("seforim-acronymizer")


async def run_once(
    config: AcronymizerConfig,
    source: SourceProvider,
    table: ResultTable = ResultTable.BOOK_TITLES,
    session_factory: SessionFactory | None = None,
    limit: int | None = None,
) -> RunSummary:
    """
    Acronymize every item from the source once.

    Store initialization errors are fatal; per-item errors are counted in
    the returned summary.
    """
    store = ResultStore(config.db_path, table)
    store.initialize()

    items = source.list_items()
    if limit is not None:
        items = items[:limit]

    run = store.create_run(items_total=len(items), config=config.to_dict())
    logger.info(f"Starting run {run.run_id} on {table.value}")

    processor = BatchProcessor(
        config,
        store,
        session_factory or make_session_factory(config.llm),
    )

    try:
        summary = await processor.run(items)
        store.complete_run(run.run_id, summary, RunStatus.COMPLETED)
        logger.info(f"Run {run.run_id} completed. Results stored in {config.db_path}")
    except Exception as e:
        logger.exception("Run failed with error")
        store.complete_run(run.run_id, RunSummary(total=len(items)), RunStatus.FAILED, str(e))
        raise

    return summary


def build_source(config: AcronymizerConfig, args: argparse.Namespace) -> SourceProvider:
    """Pick the source provider from CLI arguments and config."""
    if args.items_file:
        return TextFileSource(args.items_file)
    kind = SourceKind.TOC_TEXTS if args.toc else SourceKind.BOOK_TITLES
    return SeforimSource(config.require_source_db(), kind)


def dry_run(config: AcronymizerConfig, source: SourceProvider, table: ResultTable) -> int:
    """Log which items would be sent to the LLM without calling it."""
    store = ResultStore(config.db_path, table)
    pending = []
    for item in source.list_items():
        terms = store.latest_terms(item)
        if not (terms and terms.strip()):
            pending.append(item)

    logger.info(f"Dry run: would query {len(pending)} item(s)")
    for item in pending:
        logger.info(f"  - {item[:50]}")
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="seforim-acronymizer: attested acronyms for Seforim titles",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment:
    seforim_db                  Path to the Seforim library database (required)
    acronymizer_db              Path to the result database (default: acronymizer.db)
    OPEN_AI_KEY                 API key for the LLM endpoint
    OPENAI_TPM_LIMIT            Tokens-per-minute quota (default: 30000)
    OPENAI_EST_TOKENS_PER_REQ   Estimated tokens per request (default: 1400)
    OPENAI_BASE_DELAY_MS        Base retry delay in ms (default: 1200)
        """,
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=Path("acronymizer.yaml"),
        help="Path to config file (default: acronymizer.yaml)",
    )
    parser.add_argument(
        "--db",
        type=Path,
        help="Override result database path",
    )
    parser.add_argument(
        "--source-db",
        type=Path,
        help="Override Seforim database path",
    )
    parser.add_argument(
        "--items-file",
        type=Path,
        help="Read texts one per line from a file instead of the Seforim database",
    )
    parser.add_argument(
        "--toc",
        action="store_true",
        help="Process table-of-contents texts instead of book titles",
    )
    parser.add_argument(
        "--limit",
        type=int,
        help="Process at most this many items",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be queried without calling the LLM",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    config = AcronymizerConfig.from_yaml(args.config).apply_env()
    if args.db:
        config.db_path = args.db
    if args.source_db:
        config.source_db_path = args.source_db

    table = ResultTable.TOC_TEXTS if args.toc else ResultTable.BOOK_TITLES
    if args.toc:
        config.batch.item_delay_seconds = config.batch.item_delay_seconds or 0.05
        config.batch.progress_every = 100

    logger.info(f"Result database: {config.db_path}")
    logger.info(
        f"Rate limit: tpm={config.rate_limit.tpm_limit}, "
        f"est_tokens={config.rate_limit.est_tokens_per_request}, "
        f"min_delay={config.rate_limit.min_delay_ms()}ms"
    )

    try:
        source = build_source(config, args)

        if args.dry_run:
            return dry_run(config, source, table)

        if not config.llm.get_api_key():
            raise ConfigError(f"Environment variable {config.llm.api_key_env} is not set")

        summary = asyncio.run(run_once(config, source, table, limit=args.limit))
    except ConfigError as e:
        logger.error(str(e))
        return 1
    except AcronymizerError as e:
        logger.error(f"Run aborted: {e}")
        return 1

    return 0 if summary.errored == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
