"""
Pydantic response models for API endpoints.
"""
from pydantic import BaseModel, Field
from typing import Dict, List, Optional

from models.tooltip_models import Progress, TooltipEvent


class ProgressResponse(BaseModel):
    """Batch-level progress of a run."""
    total: int
    completed: int
    percentage: int = Field(ge=0, le=100, description="Progress percentage")

    @classmethod
    def from_progress(cls, progress: Progress) -> "ProgressResponse":
        return cls(**progress.to_dict())


class TooltipEventResponse(BaseModel):
    """One line of the NDJSON event stream."""
    run_id: str
    batch_index: str
    explanations: Dict[str, str]
    progress: ProgressResponse
    final: bool = False

    @classmethod
    def from_event(cls, run_id: str, event: TooltipEvent) -> "TooltipEventResponse":
        return cls(
            run_id=run_id,
            batch_index=event.batch_index,
            explanations=event.explanations,
            progress=ProgressResponse.from_progress(event.progress),
            final=event.final,
        )


class TooltipRunResponse(BaseModel):
    """Final result of a tooltip run."""
    run_id: str
    explanations: Dict[str, str]
    progress: ProgressResponse
    batch_size: Optional[int] = None
    missing_terms: List[str] = []


class BatchMetricResponse(BaseModel):
    """Accumulated statistics for one batch size."""
    size: int
    time: int = Field(description="Average milliseconds per term")
    success: float = Field(ge=0.0, le=1.0)
    samples: int


class BatchMetricsResponse(BaseModel):
    """All accumulated batch-size statistics."""
    exploring: bool
    metrics: List[BatchMetricResponse] = []


class ExplanationResponse(BaseModel):
    """Cached explanation for a single term."""
    term: str
    explanation: str
