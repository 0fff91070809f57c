"""
Slices a term list into batches, with a small first batch for fast feedback.
"""
from typing import List

from core.config import FIRST_BATCH_SIZE
from models.tooltip_models import Batch


class BatchPlanner:
    """Turns a flat term list into an ordered batch sequence."""

    def __init__(self, first_batch_size: int = FIRST_BATCH_SIZE):
        if first_batch_size < 1:
            raise ValueError(f"first_batch_size must be >= 1, got {first_batch_size}")
        self.first_batch_size = first_batch_size

    def plan(self, terms: List[str], size: int) -> List[Batch]:
        """
        Plan the batches for one run.

        Batch 0 holds the first ``first_batch_size`` terms regardless of
        ``size`` so the caller sees results quickly; the rest are sliced
        into batches of ``size`` (the last one may be shorter). A term list
        no longer than the first batch becomes a single batch.

        Args:
            terms: Terms to explain, in display order
            size: Batch size for everything after batch 0

        Returns:
            Batches indexed "0", "1", ...
        """
        if size < 1:
            raise ValueError(f"Batch size must be >= 1, got {size}")
        if not terms:
            return []

        if len(terms) <= self.first_batch_size:
            return [Batch(index="0", terms=list(terms))]

        batches = [Batch(index="0", terms=list(terms[:self.first_batch_size]))]
        for start in range(self.first_batch_size, len(terms), size):
            batches.append(Batch(index=str(len(batches)), terms=list(terms[start:start + size])))
        return batches

    @staticmethod
    def split(batch: Batch, size: int) -> List[Batch]:
        """Chunk a batch into lineage-tagged sub-batches of at most size terms."""
        if size < 1:
            raise ValueError(f"Batch size must be >= 1, got {size}")
        return [
            batch.child(position, batch.terms[start:start + size])
            for position, start in enumerate(range(0, len(batch.terms), size))
        ]
