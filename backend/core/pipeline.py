"""
Tooltip pipeline wiring: cache, batch-size selector, generator and scheduler
over one persistent store.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence

from core.database import db
from models.tooltip_models import SubjectContext
from services.tooltips.batch_size_selector import BatchSizeSelector
from services.tooltips.explanation_cache import ExplanationCache
from services.tooltips.generator import TooltipGenerator
from services.tooltips.scheduler import TooltipRun, TooltipScheduler

logger = logging.getLogger(__name__)


class TooltipPipeline:
    """Entry point used by the API layer and by embedding hosts."""

    def __init__(self, store=None, generator=None, scheduler_options: Optional[Dict[str, Any]] = None):
        self.store = store if store is not None else db
        self.generator = generator or TooltipGenerator()
        self.cache = ExplanationCache(self.store)
        self.selector = BatchSizeSelector(self.store)
        self.scheduler = TooltipScheduler(
            self.generator,
            self.cache,
            self.selector,
            **(scheduler_options or {}),
        )

    def start_run(self, terms: Sequence[str], context: Optional[SubjectContext] = None) -> TooltipRun:
        """
        Validate terms and return a run to iterate for streaming events.

        Raises:
            TermListError: malformed term list
        """
        return self.scheduler.run(terms, context)

    def generate(self, terms: Sequence[str], context: Optional[SubjectContext] = None) -> TooltipRun:
        """Run to completion; the returned run carries explanations and progress."""
        run = self.start_run(terms, context)
        run.collect()
        return run

    def get_explanation(self, term: str) -> Optional[str]:
        return self.cache.get(term)

    def batch_metrics(self) -> List[Dict[str, Any]]:
        return self.selector.formatted_metrics()

    def is_exploring(self) -> bool:
        return self.selector.is_exploring()

    def reset_batch_metrics(self) -> None:
        self.selector.reset()

    def clear_cache(self) -> None:
        self.cache.clear()
        logger.info("Tooltip cache cleared")


# Global pipeline instance
pipeline = TooltipPipeline()
