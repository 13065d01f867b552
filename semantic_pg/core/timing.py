"""
Timing instrumentation for the stages of the query pipeline.
"""

import time
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict

logger = logging.getLogger(__name__)


@dataclass
class TimingBreakdown:
    """
    Container for timing measurements across the pipeline.

    Attributes:
        embed_time_ms: Time spent generating the query embedding
        retrieval_time_ms: Time spent loading metadata and ranking entities
        generation_time_ms: Time spent in the completion service
        execution_time_ms: Time spent executing the statement
        total_time_ms: Total end-to-end time
        additional: Optional dictionary for extra timing details
    """
    embed_time_ms: float = 0.0
    retrieval_time_ms: float = 0.0
    generation_time_ms: float = 0.0
    execution_time_ms: float = 0.0
    total_time_ms: float = 0.0
    additional: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, float]:
        """Convert to dictionary for serialization."""
        result = {
            'embed_time_ms': round(self.embed_time_ms, 2),
            'retrieval_time_ms': round(self.retrieval_time_ms, 2),
            'generation_time_ms': round(self.generation_time_ms, 2),
            'execution_time_ms': round(self.execution_time_ms, 2),
            'total_time_ms': round(self.total_time_ms, 2)
        }
        if self.additional:
            result['additional'] = {k: round(v, 2) for k, v in self.additional.items()}
        return result


@contextmanager
def timed(breakdown: TimingBreakdown, attribute: str):
    """
    Add the elapsed wall time of the block to ``breakdown.<attribute>``.

    Unknown attribute names are recorded under ``breakdown.additional``.
    """
    start_time = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - start_time) * 1000.0
        if hasattr(breakdown, attribute) and attribute != 'additional':
            setattr(breakdown, attribute, getattr(breakdown, attribute) + elapsed_ms)
        else:
            breakdown.additional[attribute] = breakdown.additional.get(attribute, 0.0) + elapsed_ms
        logger.debug(f"{attribute} took {elapsed_ms:.2f}ms")
