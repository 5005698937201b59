"""
Semantic Coherence Engine

Scoped entry point for callers. An EngineContext wraps a model registry,
default QA thresholds and the shared, stateless collaborators (validator,
scorer, pipeline, corrector). Destroying the context releases every model it
registered.

    with create_context() as ctx:
        handle = ctx.register_model(model)
        result = ctx.transform_with_coherence(handle, value, "json", to_json, from_json)
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, Mapping, Optional, Set, Union

from semantic_coherence.config import EngineConfig, FaultToleranceConfig, QAStage, StreamBounds
from semantic_coherence.errors import ContextClosed, ModelNotFound
from semantic_coherence.governance.corrector import CorrectionResult, FaultTolerantCorrector, RedundancySet, RedundantEncoder
from semantic_coherence.governance.ledger import AuditLedger
from semantic_coherence.governance.qa_gate import QAGate
from semantic_coherence.registry import ModelHandle, ModelRegistry, SemanticModel
from semantic_coherence.runtime.pipeline import ReverseFn, TransformFn, TransformPipeline, TransformResult
from semantic_coherence.runtime.stream import StreamProcessor, StreamVerdict
from semantic_coherence.scoring import CoherenceScorer
from semantic_coherence.validation.constraints import CheckMode, ConstraintValidator
from semantic_coherence.validation.verb_noun import VerbNounChecker, VerbNounVerdict

logger = logging.getLogger(__name__)


class EngineContext:
    """
    Scoped engine resource.

    Safe for concurrent transform/correct calls: each call builds its own
    CoherenceContext, and the only shared mutable structure is the registry.
    """

    def __init__(self, config: Optional[EngineConfig] = None, registry: Optional[ModelRegistry] = None):
        self.config = config or EngineConfig()
        self.registry = registry if registry is not None else ModelRegistry()
        self.checker = VerbNounChecker()
        self.validator = ConstraintValidator(verb_noun_checker=self.checker)
        self.scorer = CoherenceScorer(weights=self.config.weights, checker=self.checker)
        self.pipeline = TransformPipeline(
            validator=self.validator,
            scorer=self.scorer,
            round_trip_threshold=self.config.round_trip_threshold,
        )
        self.gate = QAGate(self.config.qa_thresholds)
        self.corrector = FaultTolerantCorrector(self.pipeline)
        self.ledger = AuditLedger(capacity=self.config.audit_capacity)
        self._handles: Set[ModelHandle] = set()
        self._lock = threading.Lock()
        self._closed = False

    # -- lifecycle -------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Release every model registered through this context. Idempotent."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            handles, self._handles = self._handles, set()
        for handle in handles:
            if handle in self.registry:
                self.registry.unregister(handle)
        logger.debug(f"Engine context closed, released {len(handles)} model(s)")

    def __enter__(self) -> "EngineContext":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _check_open(self) -> None:
        if self._closed:
            raise ContextClosed("engine context has been destroyed")

    # -- models ----------------------------------------------------------

    def register_model(self, model: SemanticModel) -> ModelHandle:
        self._check_open()
        handle = self.registry.register(model)
        with self._lock:
            self._handles.add(handle)
        return handle

    def model(self, handle: ModelHandle) -> SemanticModel:
        """Resolve a handle; raises ModelNotFound for unknown or released handles."""
        self._check_open()
        return self.registry.lookup(handle)

    # -- validation ------------------------------------------------------

    def transform_with_coherence(self,
                                 handle: ModelHandle,
                                 value: Any,
                                 target_format: Any,
                                 transform_fn: TransformFn,
                                 reverse_fn: Optional[ReverseFn] = None,
                                 *,
                                 bidirectional: bool = True,
                                 source_format: Any = None,
                                 staged: bool = True) -> TransformResult:
        """
        Run the bidirectional pipeline for one value.

        With ``staged`` the context's QA thresholds gate each checkpoint.
        Records are appended to the audit ledger when audit_records is on.
        """
        model = self.model(handle)
        result = self.pipeline.run(
            model, value, target_format, transform_fn, reverse_fn,
            bidirectional=bidirectional,
            source_format=source_format,
            gate=self.gate if staged else None,
        )
        if self.config.audit_records:
            self.ledger.append(result.record)
        return result

    def validate_semantic_coherence(self, handle: ModelHandle, value: Any) -> bool:
        """True when ``value`` passes every layer of the model (fast path)."""
        return self.validator.check(value, self.model(handle), CheckMode.FAST).passed

    def validate_bidirectional_integrity(self, handle: ModelHandle, source: Any, target: Any) -> bool:
        intact, _ = self.pipeline.bidirectional_integrity(self.model(handle), source, target)
        return intact

    def validate_pair(self, pair: Any, handle: ModelHandle) -> VerbNounVerdict:
        return self.checker.validate_pair(pair, self.model(handle))

    def compute_coherence(self, source: Any, target: Any, handle: ModelHandle) -> float:
        return self.scorer.score(source, target, self.model(handle))

    # -- QA --------------------------------------------------------------

    def set_qa_threshold(self, stage: Union[QAStage, str], threshold: float) -> None:
        self._check_open()
        self.gate.set_threshold(stage, threshold)

    # -- streams ---------------------------------------------------------

    def create_stream_processor(self,
                                handle: ModelHandle,
                                bounds: Union[StreamBounds, Mapping[str, Any]],
                                on_drift: Optional[Callable[[StreamVerdict], None]] = None) -> StreamProcessor:
        if not isinstance(bounds, StreamBounds):
            bounds = StreamBounds.model_validate(dict(bounds))
        return StreamProcessor(self.model(handle), bounds, validator=self.validator, on_drift=on_drift)

    def validate_stream_coherence(self, processor: StreamProcessor, reading: Any) -> bool:
        self._check_open()
        return processor.validate(reading)

    # -- fault tolerance -------------------------------------------------

    def encode(self, value: Any, config: Optional[FaultToleranceConfig] = None,
               encode_fn: Optional[Callable[[Any, int], Any]] = None) -> RedundancySet:
        self._check_open()
        return RedundantEncoder(config or self.config.fault_tolerance).encode(value, encode_fn)

    def correct(self, redundancy_set: RedundancySet, config: Optional[FaultToleranceConfig],
                handle: ModelHandle) -> CorrectionResult:
        """Majority-vote correction; ``config`` defaults to the context's fault tolerance."""
        model = self.model(handle)
        return self.corrector.correct(redundancy_set, config or self.config.fault_tolerance, model)

    def describe(self) -> Dict[str, Any]:
        return {
            "closed": self._closed,
            "models": len(self._handles),
            "qa_thresholds": self.gate.thresholds.model_dump(),
            "weights": self.config.weights.model_dump(),
            "ledger_entries": len(self.ledger),
        }


def create_context(config: Optional[EngineConfig] = None,
                   registry: Optional[ModelRegistry] = None) -> EngineContext:
    """Create a scoped engine context; pass ``registry`` to share models across contexts."""
    return EngineContext(config=config, registry=registry)


def destroy_context(ctx: EngineContext) -> None:
    ctx.close()


__all__ = [
    "EngineContext",
    "ModelNotFound",
    "create_context",
    "destroy_context",
]
