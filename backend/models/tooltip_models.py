"""
Data models for tooltip batch scheduling.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List


class RunState(Enum):
    """Lifecycle of one scheduling run."""
    IDLE = "idle"
    PLANNING = "planning"
    FIRST_BATCH_RUNNING = "first_batch_running"
    REMAINING_BATCHES_RUNNING = "remaining_batches_running"
    DONE = "done"


@dataclass
class SubjectContext:
    """Caller metadata forwarded to the generation prompt; opaque to the scheduler."""
    subject: str = ""
    module_title: str = ""
    module_description: str = ""


@dataclass
class Batch:
    """Ordered group of terms submitted together to the generation service"""
    index: str  # "3" for planned batches, "3.1" for retry sub-batches
    terms: List[str] = field(default_factory=list)

    @property
    def depth(self) -> int:
        """Retry depth encoded in the lineage index."""
        return self.index.count(".")

    def child(self, position: int, terms: List[str]) -> "Batch":
        """Sub-batch produced when this batch is split during retry."""
        return Batch(index=f"{self.index}.{position}", terms=list(terms))

    def __len__(self) -> int:
        return len(self.terms)


@dataclass
class BatchSizeMetric:
    """Running performance statistics for one batch size"""
    batch_size: int
    average_time_per_term: float = 0.0  # ms per term
    success_rate: float = 0.0  # 0.0-1.0
    total_terms: int = 0
    samples: int = 0  # number of service calls observed at this size

    def to_dict(self) -> Dict[str, Any]:
        """Serialize using the persisted metrics-store schema."""
        return {
            "batchSize": self.batch_size,
            "averageTimePerConcept": self.average_time_per_term,
            "successRate": self.success_rate,
            "totalConcepts": self.total_terms,
            "samples": self.samples,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BatchSizeMetric":
        return cls(
            batch_size=int(data["batchSize"]),
            average_time_per_term=float(data.get("averageTimePerConcept", 0.0)),
            success_rate=float(data.get("successRate", 0.0)),
            total_terms=int(data.get("totalConcepts", 0)),
            samples=int(data.get("samples", 0)),
        )


@dataclass
class Progress:
    """Batch-level completion of a run"""
    total: int = 0
    completed: int = 0
    percentage: int = 0

    @classmethod
    def of(cls, completed: int, total: int) -> "Progress":
        """Build a Progress with the percentage rounded half-up."""
        if total <= 0:
            return cls(total=0, completed=0, percentage=100)
        percentage = int(completed * 100 / total + 0.5)
        return cls(total=total, completed=completed, percentage=percentage)

    def to_dict(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "completed": self.completed,
            "percentage": self.percentage,
        }


@dataclass
class TooltipEvent:
    """One entry of a run's result stream"""
    explanations: Dict[str, str]  # snapshot of everything ready so far
    progress: Progress
    batch_index: str
    final: bool = False
