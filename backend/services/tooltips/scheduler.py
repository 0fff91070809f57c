"""
Concurrency controller that streams tooltip results batch by batch.

Batch 0 runs inline so the first explanations show up quickly; the
remaining batches run on a thread pool with at most ``concurrency_limit``
in flight and a short pause between launches to stay under the service's
rate limit. Every settled batch yields one TooltipEvent.
"""
import logging
import threading
import time
import uuid
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Callable, Dict, Iterator, List, Optional, Sequence

from core.config import CONCURRENCY_LIMIT, LAUNCH_DELAY_MS
from core.errors import TermListError
from models.tooltip_models import Batch, Progress, RunState, SubjectContext, TooltipEvent
from services.tooltips.batch_executor import BatchExecutor, merge_explanations
from services.tooltips.batch_planner import BatchPlanner

logger = logging.getLogger(__name__)


def new_run_id() -> str:
    """Short id used to tag the log lines of one run."""
    return f"tooltip_{int(time.time() * 1000)}_{uuid.uuid4().hex[:5]}"


def validate_terms(terms: Sequence[str]) -> List[str]:
    """
    Check a caller-supplied term list and drop duplicates.

    Raises:
        TermListError: terms is not a list/tuple of non-empty strings
    """
    if not isinstance(terms, (list, tuple)):
        raise TermListError(f"Expected a list of terms, got {type(terms).__name__}")

    unique: List[str] = []
    seen = set()
    for position, term in enumerate(terms):
        if not isinstance(term, str):
            raise TermListError(f"Term at position {position} is {type(term).__name__}, expected str")
        if not term.strip():
            raise TermListError(f"Term at position {position} is empty")
        if term not in seen:
            seen.add(term)
            unique.append(term)
    return unique


class TooltipRun:
    """
    One scheduling run over a term list.

    Iterate it to drive the run and receive TooltipEvents; ``explanations``
    and ``progress`` always reflect what has been yielded so far.
    """

    def __init__(self, scheduler: "TooltipScheduler", terms: List[str], context: SubjectContext):
        self.scheduler = scheduler
        self.terms = terms
        self.context = context
        self.run_id = new_run_id()
        self.state = RunState.IDLE
        self.explanations: Dict[str, str] = {}
        self.progress = Progress()
        self.batches: List[Batch] = []
        self.batch_size: Optional[int] = None
        self.cancelled = False
        self._cancel_event = threading.Event()
        self._events: Optional[Iterator[TooltipEvent]] = None

    def __iter__(self) -> Iterator[TooltipEvent]:
        if self._events is None:
            self._events = self.scheduler._drive(self)
        return self._events

    def cancel(self) -> None:
        """Stop launching batches and stop emitting events; in-flight work finishes unobserved."""
        self._cancel_event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._cancel_event.is_set()

    @property
    def missing_terms(self) -> List[str]:
        return [term for term in self.terms if term not in self.explanations]

    def collect(self) -> Dict[str, str]:
        """Drain the event stream and return the final explanation map."""
        for _ in self:
            pass
        return dict(self.explanations)


class TooltipScheduler:
    """Plans a run, executes batch 0 inline, then fans out the rest."""

    def __init__(
        self,
        generator,
        cache,
        selector,
        planner: Optional[BatchPlanner] = None,
        concurrency_limit: int = CONCURRENCY_LIMIT,
        launch_delay_ms: int = LAUNCH_DELAY_MS,
        sleep: Callable[[float], None] = time.sleep,
        executor_factory: Optional[Callable[..., BatchExecutor]] = None,
    ):
        if concurrency_limit < 1:
            raise ValueError(f"concurrency_limit must be >= 1, got {concurrency_limit}")
        self.generator = generator
        self.cache = cache
        self.selector = selector
        self.planner = planner or BatchPlanner()
        self.concurrency_limit = concurrency_limit
        self.launch_delay_ms = launch_delay_ms
        self.sleep = sleep
        self.executor_factory = executor_factory or BatchExecutor

    def run(self, terms: Sequence[str], context: Optional[SubjectContext] = None) -> TooltipRun:
        """
        Start a run over terms.

        The term list is validated immediately, before any service call;
        the batches themselves run as the returned TooltipRun is iterated.

        Raises:
            TermListError: malformed term list
        """
        unique_terms = validate_terms(terms)
        return TooltipRun(self, unique_terms, context or SubjectContext())

    def _emit(self, run: TooltipRun, batch: Batch, completed: int, total: int) -> TooltipEvent:
        run.progress = Progress.of(completed, total)
        return TooltipEvent(
            explanations=dict(run.explanations),
            progress=run.progress,
            batch_index=batch.index,
            final=completed >= total,
        )

    def _drive(self, run: TooltipRun) -> Iterator[TooltipEvent]:
        prefix = f"[{run.run_id}] "

        # PLANNING
        run.state = RunState.PLANNING
        if not run.terms:
            run.progress = Progress.of(0, 0)
            run.state = RunState.DONE
            logger.info(f"{prefix}No terms to explain")
            yield TooltipEvent(explanations={}, progress=run.progress, batch_index="", final=True)
            return

        run.batch_size = self.selector.choose_size(len(run.terms))
        run.batches = self.planner.plan(run.terms, run.batch_size)
        total = len(run.batches)
        run.progress = Progress.of(0, total)
        logger.info(
            f"{prefix}Split {len(run.terms)} terms into {total} batches with sizes: "
            f"{', '.join(str(len(batch)) for batch in run.batches)} (batch size {run.batch_size})"
        )

        executor = self.executor_factory(
            self.generator,
            self.cache,
            self.selector,
            context=run.context,
            log_prefix=prefix,
        )

        # FIRST_BATCH_RUNNING: executed inline for the fastest first result
        run.state = RunState.FIRST_BATCH_RUNNING
        first_batch = run.batches[0]
        first_start = time.monotonic()
        merge_explanations(run.explanations, self._settle(executor, first_batch, prefix))
        logger.info(
            f"{prefix}First batch completed in {round((time.monotonic() - first_start) * 1000)}ms"
        )
        if run.is_cancelled:
            self._finish_cancelled(run, prefix)
            return
        yield self._emit(run, first_batch, 1, total)

        # REMAINING_BATCHES_RUNNING
        remaining = run.batches[1:]
        if remaining:
            run.state = RunState.REMAINING_BATCHES_RUNNING
            pool = ThreadPoolExecutor(
                max_workers=self.concurrency_limit,
                thread_name_prefix="tooltip-batch",
            )
            in_flight: Dict[Future, Batch] = {}
            try:
                for position, batch in enumerate(remaining):
                    # Wait for a free slot before launching more
                    while len(in_flight) >= self.concurrency_limit and not run.is_cancelled:
                        done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                        yield from self._harvest(run, in_flight, done, total)

                    if run.is_cancelled:
                        self._finish_cancelled(run, prefix)
                        return

                    in_flight[pool.submit(self._settle, executor, batch, prefix)] = batch

                    # Small delay between launches to avoid bursting the rate limiter
                    if position < len(remaining) - 1 and self.launch_delay_ms > 0:
                        self.sleep(self.launch_delay_ms / 1000)

                    finished = {future for future in in_flight if future.done()}
                    yield from self._harvest(run, in_flight, finished, total)

                # Drain everything still running
                while in_flight and not run.is_cancelled:
                    done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                    yield from self._harvest(run, in_flight, done, total)

                if run.is_cancelled:
                    self._finish_cancelled(run, prefix)
                    return
            finally:
                # Never block here: an abandoned run leaves its batches to finish unobserved
                pool.shutdown(wait=False)

        run.state = RunState.DONE
        self._log_summary(run, prefix)

    def _harvest(
        self,
        run: TooltipRun,
        in_flight: Dict[Future, Batch],
        done,
        total: int,
    ) -> Iterator[TooltipEvent]:
        """Merge finished batches into the run, one event per batch."""
        for future in done:
            batch = in_flight.pop(future)
            if run.is_cancelled:
                continue
            merge_explanations(run.explanations, future.result())
            yield self._emit(run, batch, run.progress.completed + 1, total)

    @staticmethod
    def _settle(executor: BatchExecutor, batch: Batch, prefix: str) -> Dict[str, str]:
        """Run one batch; an unexpected error resolves to an empty result."""
        try:
            return executor.execute(batch)
        except Exception as e:
            logger.exception(f"{prefix}Unexpected error executing batch {batch.index}: {e}")
            return {}

    def _finish_cancelled(self, run: TooltipRun, prefix: str) -> None:
        run.cancelled = True
        run.state = RunState.DONE
        logger.info(f"{prefix}Run cancelled after {run.progress.completed}/{run.progress.total} batches")

    def _log_summary(self, run: TooltipRun, prefix: str) -> None:
        success = len(run.explanations) / len(run.terms) if run.terms else 1.0
        logger.info(
            f"{prefix}Complete: {len(run.terms)} terms, batch size: {run.batch_size}, "
            f"success: {success:.2f}"
        )
        logger.info(f"{prefix}ACCUMULATED: {self.selector.formatted_metrics()}")
