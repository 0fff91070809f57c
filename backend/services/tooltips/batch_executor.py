"""
Executes one batch against the generation service, with split-and-retry.
"""
import logging
import threading
import time
from typing import Dict, List

from core.config import MAX_RETRIES, MIN_BATCH_SIZE
from models.tooltip_models import Batch, SubjectContext
from services.tooltips.batch_planner import BatchPlanner

logger = logging.getLogger(__name__)


def merge_explanations(target: Dict[str, str], incoming: Dict[str, str]) -> Dict[str, str]:
    """
    Add incoming explanations for terms not yet present in target.

    A term that already has an explanation keeps it, so merging the same
    result twice (or out of order) changes nothing. Returns target.
    """
    for term, explanation in incoming.items():
        if term not in target:
            target[term] = explanation
    return target


class BatchExecutor:
    """
    Resolves a batch to explanations: cache first, then the generation
    service, then halving retries for whatever is still missing.

    ``execute`` never raises; an unrecoverable batch resolves to whatever
    was obtained, possibly nothing.
    """

    def __init__(
        self,
        generator,
        cache,
        selector,
        context: SubjectContext = None,
        max_retries: int = MAX_RETRIES,
        min_batch_size: int = MIN_BATCH_SIZE,
        log_prefix: str = "",
    ):
        self.generator = generator
        self.cache = cache
        self.selector = selector
        self.context = context or SubjectContext()
        self.max_retries = max_retries
        self.min_batch_size = min_batch_size
        self.log_prefix = log_prefix
        self.service_calls = 0
        self._calls_lock = threading.Lock()

    def _tag(self, batch: Batch) -> str:
        return f"{self.log_prefix}Batch {batch.index}"

    def _can_retry(self, batch: Batch, retry_depth: int) -> bool:
        return retry_depth < self.max_retries and len(batch.terms) > self.min_batch_size

    def _retry_size(self, batch: Batch) -> int:
        return max(self.min_batch_size, len(batch.terms) // 2)

    def _call_service(self, terms: List[str]) -> Dict[str, str]:
        """Call the generator and keep only non-empty explanations for requested terms."""
        with self._calls_lock:
            self.service_calls += 1

        response = self.generator.generate(terms, self.context) or {}
        requested = set(terms)
        return {
            term: text
            for term, text in response.items()
            if term in requested and isinstance(text, str) and text.strip()
        }

    def _run_sub_batches(self, parent: Batch, terms: List[str], retry_depth: int) -> Dict[str, str]:
        """Split terms into halved sub-batches and execute them one after another."""
        results: Dict[str, str] = {}
        source = Batch(index=parent.index, terms=terms)
        for sub_batch in BatchPlanner.split(source, self._retry_size(parent)):
            sub_results = self.execute(sub_batch, retry_depth + 1)
            # A retry only resolves terms still missing, so the latest success wins
            results.update(sub_results)
        return results

    def execute(self, batch: Batch, retry_depth: int = 0) -> Dict[str, str]:
        """
        Resolve every term in batch that can be resolved.

        Args:
            batch: Batch to resolve
            retry_depth: Number of splits above this batch (0 for planned batches)

        Returns:
            Term -> explanation for the resolved subset of batch.terms
        """
        # Step 1: cache short-circuit
        hits, misses = self.cache.lookup(batch.terms)
        if not misses:
            logger.debug(f"{self._tag(batch)} fully cached, skipping service call")
            return hits

        # Step 2: generation service for cache misses
        logger.debug(f"{self._tag(batch)}: requesting {len(misses)} terms ({len(hits)} cached)")
        start = time.monotonic()
        try:
            fresh = self._call_service(misses)
        except Exception as e:
            # Step 4: total failure, split the entire batch
            logger.warning(f"{self._tag(batch)} failed at depth {retry_depth}: {e}")
            if self._can_retry(batch, retry_depth):
                logger.info(f"{self._tag(batch)} completely failed. Retrying with smaller batches.")
                result = dict(hits)
                merge_explanations(result, self._run_sub_batches(batch, batch.terms, retry_depth))
                return result

            logger.error(
                f"{self._tag(batch)} failed after {retry_depth} retries; "
                f"{len(misses)} terms left unresolved"
            )
            return hits

        duration_ms = (time.monotonic() - start) * 1000
        logger.debug(
            f"{self._tag(batch)} completed in {round(duration_ms)}ms, "
            f"received {len(fresh)}/{len(misses)} explanations"
        )

        self.selector.record(len(misses), len(misses), duration_ms, len(fresh))
        self.cache.store(fresh)

        result = dict(hits)
        result.update(fresh)

        # Step 3: partial failure, retry only what is missing
        missing = [term for term in batch.terms if term not in result]
        if missing and self._can_retry(batch, retry_depth):
            logger.info(
                f"{self._tag(batch)} partially failed, received {len(result)}/{len(batch.terms)} "
                f"explanations. Retrying failed terms with smaller batches."
            )
            result.update(self._run_sub_batches(batch, missing, retry_depth))
        elif missing:
            # Step 5: budget exhausted or batch already minimal
            logger.warning(
                f"{self._tag(batch)} gave up on {len(missing)} terms at depth {retry_depth}: "
                f"{', '.join(missing)}"
            )

        return result
