"""
Batch processing pipeline for seforim-acronymizer.

Walks the source texts in order, skips anything that already has a usable
result, asks the LLM for the rest (paced and retried), and writes results
back to the store. Per-item failures are logged and never stop the run.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable

from .config import AcronymizerConfig
from .homogenizer import Homogenizer
from .llm import AcronymSession
from .models import (
    AcronymList,
    AcronymRecord,
    ItemOutcome,
    ResultStore,
    RunSummary,
)
from .pacing import Pacer
from .retry import RetryGuard

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AcronymSession]


def _short(text: str, length: int = 80) -> str:
    return text if len(text) <= length else text[:length] + "..."


class BatchProcessor:
    """
    Acronymizes a list of source texts into a ResultStore.

    The LLM session is created through ``session_factory`` and replaced every
    ``session_reset_every`` queried items so the model's context stays small.
    """

    def __init__(
        self,
        config: AcronymizerConfig,
        store: ResultStore,
        session_factory: SessionFactory,
        pacer: Pacer | None = None,
        retry_guard: RetryGuard | None = None,
        homogenizer: Homogenizer | None = None,
        on_session_reset: Callable[[int], None] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize the processor.

        Args:
            config: Acronymizer configuration
            store: Result store for the table being processed
            session_factory: Opens a fresh LLM session
            pacer: Shared pacer (one is built from config if omitted)
            retry_guard: Retry policy (built from config if omitted)
            homogenizer: Optional Homogenizer (for testing)
            on_session_reset: Called with the queried-item count after each reset
            sleep: Async sleep used for inter-item and reset delays
        """
        self.config = config
        self.store = store
        self.session_factory = session_factory
        self.pacer = pacer or Pacer(config.rate_limit)
        self.retry_guard = retry_guard or RetryGuard.from_config(config.rate_limit)
        self.homogenizer = homogenizer or Homogenizer(
            store,
            self.pacer,
            self.retry_guard,
            self._uniformize,
            threshold=config.batch.homogenize_every,
        )
        self.on_session_reset = on_session_reset
        self._sleep = sleep

        self.session: AcronymSession | None = None
        self.batch: list[AcronymRecord] = []
        self.queried = 0

    # -------------------------------------------------------------------------
    # Session handling
    # -------------------------------------------------------------------------

    def _ensure_session(self) -> AcronymSession:
        if self.session is None:
            self.session = self.session_factory()
        return self.session

    async def _close_session(self) -> None:
        if self.session is not None:
            session, self.session = self.session, None
            await session.aclose()

    async def _reset_session(self) -> None:
        """Replace the LLM session with a fresh one."""
        delay = self.config.batch.session_reset_delay_seconds
        logger.info(
            f"Reinitializing LLM session after {self.queried} items, waiting {delay}s"
        )
        if delay > 0:
            await self._sleep(delay)
        await self._close_session()
        self._ensure_session()
        if self.on_session_reset is not None:
            self.on_session_reset(self.queried)

    async def _uniformize(self, entries: list[AcronymList]) -> list[AcronymList]:
        return await self._ensure_session().uniformize(entries)

    # -------------------------------------------------------------------------
    # Items
    # -------------------------------------------------------------------------

    async def _query(self, key: str) -> AcronymList:
        """Ask the LLM for one key, honoring session resets, pacing and retries."""
        reset_every = self.config.batch.session_reset_every
        if self.queried > 0:
            if reset_every > 0 and self.queried % reset_every == 0:
                await self._reset_session()
            elif self.config.batch.item_delay_seconds > 0:
                await self._sleep(self.config.batch.item_delay_seconds)
        self.queried += 1

        session = self._ensure_session()
        await self.pacer.acquire_slot()
        return await self.retry_guard.run_with_retries(lambda: session.acronymize(key))

    async def process_item(self, key: str) -> ItemOutcome:
        """
        Process a single source text.

        Returns the outcome. Errors are logged with the key and reported as
        ItemOutcome.ERROR rather than raised.
        """
        try:
            update_row_id: int | None = None
            if self.store.exists(key):
                latest_terms = self.store.latest_terms(key)
                if latest_terms and latest_terms.strip():
                    logger.debug(f"Skipping (already processed) {_short(key, 40)!r}")
                    return ItemOutcome.SKIPPED
                # Row exists with blank terms: retry and update it in place
                update_row_id = self.store.latest_row_id(key)
                logger.debug(f"Retrying (existing empty terms) {_short(key, 40)!r}")

            result = await self._query(key)

            items = [i.strip() for i in result.items if i and i.strip()]
            if not items:
                logger.info(
                    f"No items returned by LLM for {_short(key, 40)!r}, skipping persistence"
                )
                return ItemOutcome.EMPTY

            if update_row_id is not None:
                self.store.update(update_row_id, items)
                outcome = ItemOutcome.UPDATED
            else:
                self.store.insert(key, items)
                outcome = ItemOutcome.INSERTED

            record = self.store.latest_record(key)
            if record is not None:
                self.batch.append(record)
            return outcome

        except Exception:
            logger.exception(f"Failed processing {_short(key)!r}")
            return ItemOutcome.ERROR

    async def run(self, items: Iterable[str]) -> RunSummary:
        """Process every item in order and return per-outcome counts."""
        items = list(items)
        summary = RunSummary(total=len(items))
        progress_every = self.config.batch.progress_every
        logger.info(f"Found {len(items)} items. Processing...")

        try:
            for idx, key in enumerate(items):
                outcome = await self.process_item(key)
                summary.record(outcome)

                if outcome in (ItemOutcome.INSERTED, ItemOutcome.UPDATED):
                    summary.homogenized += await self.homogenizer.flush(self.batch)

                if progress_every > 0 and (idx + 1) % progress_every == 0:
                    logger.info(
                        f"Processed {idx + 1}/{len(items)}: {summary.inserted} inserted, "
                        f"{summary.updated} updated, {summary.skipped} skipped, "
                        f"{summary.errored} errors"
                    )

            summary.homogenized += await self.homogenizer.flush(self.batch, force=True)
        finally:
            await self._close_session()

        logger.info(
            f"Done: {summary.inserted} inserted, {summary.updated} updated, "
            f"{summary.empty} empty, {summary.skipped} skipped, "
            f"{summary.errored} errors, {summary.homogenized} homogenized"
        )
        return summary
