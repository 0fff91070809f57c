"""
Tooltip API routes.
"""
import json
import logging
from typing import Iterator

from fastapi import APIRouter, HTTPException
from fastapi.responses import StreamingResponse

from api.models.requests import TooltipRunRequest
from api.models.responses import (
    BatchMetricResponse,
    BatchMetricsResponse,
    ExplanationResponse,
    ProgressResponse,
    TooltipEventResponse,
    TooltipRunResponse,
)
from core.errors import TermListError
from core.pipeline import pipeline
from services.tooltips.scheduler import TooltipRun

logger = logging.getLogger(__name__)

router = APIRouter()


def _ndjson(run: TooltipRun) -> Iterator[str]:
    try:
        for event in run:
            yield json.dumps(TooltipEventResponse.from_event(run.run_id, event).model_dump()) + "\n"
    finally:
        # Client went away before the run finished
        if run.progress.completed < run.progress.total:
            run.cancel()


@router.post("/stream")
def stream_tooltips(request: TooltipRunRequest):
    """
    Explain terms, streaming one NDJSON line per settled batch.
    The last line has "final": true.
    """
    try:
        run = pipeline.start_run(request.terms, request.to_context())
    except TermListError as e:
        raise HTTPException(status_code=422, detail=str(e))

    logger.info(f"Streaming tooltip run {run.run_id} for {len(run.terms)} terms")
    return StreamingResponse(_ndjson(run), media_type="application/x-ndjson")


@router.post("", response_model=TooltipRunResponse)
def generate_tooltips(request: TooltipRunRequest):
    """Explain terms and return the final map once every batch has settled."""
    try:
        run = pipeline.generate(request.terms, request.to_context())
    except TermListError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return TooltipRunResponse(
        run_id=run.run_id,
        explanations=run.explanations,
        progress=ProgressResponse.from_progress(run.progress),
        batch_size=run.batch_size,
        missing_terms=run.missing_terms,
    )


@router.get("/metrics", response_model=BatchMetricsResponse)
def get_metrics():
    """Accumulated batch-size statistics."""
    return BatchMetricsResponse(
        exploring=pipeline.is_exploring(),
        metrics=[BatchMetricResponse(**row) for row in pipeline.batch_metrics()],
    )


@router.delete("/metrics")
def reset_metrics():
    """Forget all batch-size statistics."""
    pipeline.reset_batch_metrics()
    return {"status": "reset"}


@router.get("/cache/{term}", response_model=ExplanationResponse)
def get_cached_explanation(term: str):
    """Cached explanation for a single term."""
    explanation = pipeline.get_explanation(term)
    if explanation is None:
        raise HTTPException(status_code=404, detail=f"No cached explanation for: {term}")
    return ExplanationResponse(term=term, explanation=explanation)


@router.delete("/cache")
def clear_cache():
    """Forget every cached explanation."""
    pipeline.clear_cache()
    return {"status": "cleared"}
