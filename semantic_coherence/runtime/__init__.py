"""
Semantic Coherence Runtime

- CoherenceContext: per-call state
- TransformationRecord: audit snapshot of a run
- TransformPipeline: validate -> transform -> validate -> reverse-validate
- StreamProcessor: per-reading validation for continuous streams
"""

from semantic_coherence.runtime.context import CoherenceContext, PipelineState, TransformationRecord
from semantic_coherence.runtime.pipeline import TransformPipeline, TransformResult
from semantic_coherence.runtime.stream import StreamProcessor, StreamVerdict

__all__ = [
    "CoherenceContext",
    "PipelineState",
    "TransformationRecord",
    "TransformPipeline",
    "TransformResult",
    "StreamProcessor",
    "StreamVerdict",
]
