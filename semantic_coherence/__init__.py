"""
Semantic Coherence Engine

Guards transformations of domain data against semantic drift: layered
constraint validation, verb-noun task checking, coherence scoring,
round-trip verification, QA gating and majority-vote correction.

Exports:
- create_context / destroy_context / EngineContext: scoped entry point
- SemanticModel, VerbNounPair, VerbNounRule, LayerConstraint: domain description
- EngineConfig and friends: pydantic configuration
- ResultKind, FailureReason and the exception types
"""

from semantic_coherence.config import (
    EngineConfig,
    FaultToleranceConfig,
    QAStage,
    QAThresholds,
    ScoreWeights,
    StreamBounds,
)
from semantic_coherence.engine import EngineContext, create_context, destroy_context
from semantic_coherence.errors import (
    CoherenceError,
    ContextClosed,
    FailureReason,
    InternalCallbackFailure,
    ModelNotFound,
    ResultKind,
)
from semantic_coherence.governance import CorrectionResult, RedundancySet, RedundantEncoding
from semantic_coherence.registry import (
    ConstraintLayer,
    LayerConstraint,
    ModelHandle,
    ModelRegistry,
    SemanticModel,
    VerbNounPair,
    VerbNounRule,
)
from semantic_coherence.runtime import TransformationRecord, TransformResult
from semantic_coherence.validation import CheckMode, VerbNounVerdict

__version__ = "0.1.0"

__all__ = [
    "create_context",
    "destroy_context",
    "EngineContext",
    "EngineConfig",
    "FaultToleranceConfig",
    "QAStage",
    "QAThresholds",
    "ScoreWeights",
    "StreamBounds",
    "CoherenceError",
    "ContextClosed",
    "FailureReason",
    "InternalCallbackFailure",
    "ModelNotFound",
    "ResultKind",
    "CorrectionResult",
    "RedundancySet",
    "RedundantEncoding",
    "ConstraintLayer",
    "LayerConstraint",
    "ModelHandle",
    "ModelRegistry",
    "SemanticModel",
    "VerbNounPair",
    "VerbNounRule",
    "TransformationRecord",
    "TransformResult",
    "CheckMode",
    "VerbNounVerdict",
]
