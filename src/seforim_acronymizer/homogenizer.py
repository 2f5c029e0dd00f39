"""
Block-level homogenization of acronym results.

Titles are acronymized one at a time, so related titles (several sections of
the same work, say) can come back with inconsistent variant sets. Every so
often the accumulated block is sent back to the model to be made consistent,
and any entries whose set changed are written back to the store.

Homogenization is best effort: if it fails, what the batch processor already
stored stands.
"""

import logging
from collections.abc import Awaitable, Callable

from .errors import HomogenizationMismatchError
from .models import AcronymList, AcronymRecord, ResultStore
from .pacing import Pacer
from .retry import RetryGuard

logger = logging.getLogger(__name__)

UniformizeCall = Callable[[list[AcronymList]], Awaitable[list[AcronymList]]]


class Homogenizer:
    """Reconciles acronym sets across a batch of freshly written records."""

    def __init__(
        self,
        store: ResultStore,
        pacer: Pacer,
        retry_guard: RetryGuard,
        uniformize: UniformizeCall,
        threshold: int = 50,
    ):
        self.store = store
        self.pacer = pacer
        self.retry_guard = retry_guard
        self.uniformize = uniformize
        self.threshold = threshold

    async def flush(self, batch: list[AcronymRecord], force: bool = False) -> int:
        """
        Homogenize the batch if it is due, then clear it.

        Returns the number of records whose terms were changed.
        """
        if not batch:
            return 0
        if not force and len(batch) < self.threshold:
            return 0

        try:
            return await self._homogenize(batch)
        except HomogenizationMismatchError as e:
            logger.warning(f"{e}; discarding homogenization for this block")
            return 0
        except Exception:
            logger.exception(f"Homogenization failed for block of {len(batch)}")
            return 0
        finally:
            batch.clear()

    async def _homogenize(self, batch: list[AcronymRecord]) -> int:
        entries = [AcronymList(term=r.source_key, items=r.items) for r in batch]
        logger.info(f"Homogenizing block of {len(entries)} entries")

        await self.pacer.acquire_slot()
        results = await self.retry_guard.run_with_retries(
            lambda: self.uniformize(entries)
        )

        if len(results) != len(entries):
            raise HomogenizationMismatchError(len(entries), len(results))

        updated = 0
        for original, result in zip(entries, results):
            new_items = [i.strip() for i in result.items if i and i.strip()]
            if set(new_items) == set(original.items):
                continue

            try:
                row_id = self.store.latest_row_id(original.term)
                if row_id is not None:
                    self.store.update(row_id, new_items)
                else:
                    logger.warning(
                        f"No stored row for {original.term[:80]!r}, inserting"
                    )
                    self.store.insert(original.term, new_items)
            except Exception:
                logger.exception(f"Failed applying homogenized terms for {original.term[:80]!r}")
                continue
            updated += 1

        logger.info(f"Homogenization updated {updated}/{len(entries)} entries")
        return updated
