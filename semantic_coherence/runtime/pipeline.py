"""
Bidirectional Transform Pipeline

The central state machine:

    IDLE -> VALIDATING_INPUT -> TRANSFORMING -> VALIDATING_OUTPUT
         -> [REVERSE_VALIDATING] -> DONE | REJECTED

1. Validate the input (fast path); a failing layer rejects before any
   transform is attempted.
2. Delegate to the caller's transform_fn.
3. Validate the output under the same model.
4. Score input against output.
5. Optionally reverse-transform and require the reconstruction to pass the
   same layers and to stay coherent with the original input; divergence is
   COHERENCE_LOST.

The pipeline never retries. Retry policy belongs to the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple

from semantic_coherence.config import QAStage
from semantic_coherence.errors import FailureReason, InternalCallbackFailure, ResultKind, callback_name
from semantic_coherence.governance.qa_gate import GateDecision, QAGate
from semantic_coherence.registry import ConstraintLayer, SemanticModel, format_key
from semantic_coherence.runtime.context import CoherenceContext, PipelineState, TransformationRecord
from semantic_coherence.scoring import CoherenceScorer
from semantic_coherence.validation.constraints import CheckMode, ConstraintValidator, ValidationReport

logger = logging.getLogger(__name__)

TransformFn = Callable[[Any, Any], Any]
ReverseFn = Callable[[Any], Any]


@dataclass(frozen=True)
class TransformResult:
    """Outcome of one pipeline run."""
    kind: ResultKind
    record: TransformationRecord
    output: Any = None
    score: Optional[float] = None
    state: Optional[PipelineState] = None
    layer: Optional[ConstraintLayer] = None
    reason: Optional[str] = None
    gate: Optional[GateDecision] = None

    @property
    def ok(self) -> bool:
        return self.kind is ResultKind.SUCCESS

    def __bool__(self) -> bool:
        return self.ok


class TransformPipeline:
    """
    Runs transformations through validation, scoring and round-trip checks.

    A pipeline holds only shared, stateless collaborators; every run builds
    its own CoherenceContext, so one pipeline may serve concurrent callers.
    """

    def __init__(self,
                 validator: Optional[ConstraintValidator] = None,
                 scorer: Optional[CoherenceScorer] = None,
                 round_trip_threshold: float = 1.0):
        self.validator = validator or ConstraintValidator()
        self.scorer = scorer or CoherenceScorer(checker=self.validator.verb_noun_checker)
        self.round_trip_threshold = round_trip_threshold

    def run(self,
            model: SemanticModel,
            value: Any,
            target_format: Any,
            transform_fn: TransformFn,
            reverse_fn: Optional[ReverseFn] = None,
            *,
            bidirectional: bool = True,
            source_format: Any = None,
            gate: Optional[QAGate] = None) -> TransformResult:
        """
        Transform ``value`` into ``target_format`` with coherence checks.

        Args:
            model: Semantic model for every validation step
            value: Input representation
            target_format: Opaque target representation identifier
            transform_fn: ``transform_fn(value, target_format) -> output``
            reverse_fn: ``reverse_fn(output) -> reconstructed input``
            bidirectional: Run the reverse check when reverse_fn is given
            source_format: Identifier of the input representation, for records
            gate: QA gate applied at Intake, Processing and Completion

        Returns:
            TransformResult; failures are values, not exceptions

        Raises:
            InternalCallbackFailure: a caller-supplied function raised
        """
        ctx = CoherenceContext(model=model)
        input_format = format_key(source_format) if source_format is not None else type(value).__name__
        output_format = format_key(target_format)

        def reject(kind: ResultKind, layer: Optional[ConstraintLayer] = None,
                   reason: Optional[str] = None, score: Optional[float] = None,
                   decision: Optional[GateDecision] = None) -> TransformResult:
            failed_in = ctx.state
            ctx.advance(PipelineState.REJECTED)
            logger.info(f"{model.domain}: rejected in {failed_in.value} with {kind.value} ({reason})")
            record = TransformationRecord.from_context(ctx, input_format, output_format, kind, score, reason)
            return TransformResult(kind=kind, record=record, score=score, state=failed_in,
                                   layer=layer, reason=reason, gate=decision)

        def violation(report: ValidationReport) -> TransformResult:
            failure = report.first_failure
            return reject(report.result_kind(), layer=failure.layer, reason=failure.reason)

        # Intake
        self._enter(ctx, PipelineState.VALIDATING_INPUT, QAStage.INTAKE)
        if not model.allows_format(target_format):
            return reject(ResultKind.CONTEXTUAL_VIOLATION, layer=ConstraintLayer.CONTEXTUAL,
                          reason=FailureReason.UNSUPPORTED_TARGET_FORMAT.value)
        input_report = self.validator.check(value, model, CheckMode.FAST)
        ctx.record("input", input_report)
        if not input_report.passed:
            return violation(input_report)
        decision = self._gate(ctx, gate, QAStage.INTAKE, self.scorer.coverage(value, model))
        if decision is not None and not decision.passed:
            return reject(ResultKind.QA_GATE_FAILED, reason=QAStage.INTAKE.value,
                          score=decision.score, decision=decision)

        # Processing
        self._enter(ctx, PipelineState.TRANSFORMING, QAStage.PROCESSING)
        output = self._call(transform_fn, "transform", value, target_format)

        self._enter(ctx, PipelineState.VALIDATING_OUTPUT, QAStage.COMPLETION)
        output_report = self.validator.check(output, model, CheckMode.FAST)
        ctx.record("output", output_report)
        if not output_report.passed:
            return violation(output_report)

        forward = self.scorer.score(value, output, model)
        decision = self._gate(ctx, gate, QAStage.PROCESSING, forward)
        if decision is not None and not decision.passed:
            return reject(ResultKind.QA_GATE_FAILED, reason=QAStage.PROCESSING.value,
                          score=forward, decision=decision)

        # Completion
        final = forward
        if reverse_fn is not None and bidirectional:
            self._enter(ctx, PipelineState.REVERSE_VALIDATING, QAStage.COMPLETION)
            reconstructed = self._call(reverse_fn, "reverse", output)
            intact, round_trip, reverse_report = self.round_trip_intact(value, reconstructed, model)
            ctx.record("reverse", reverse_report)
            if not intact:
                return reject(ResultKind.COHERENCE_LOST, reason=FailureReason.ROUND_TRIP_DIVERGED.value,
                              score=round_trip)
            final = min(forward, round_trip)

        decision = self._gate(ctx, gate, QAStage.COMPLETION, final)
        if decision is not None and not decision.passed:
            return reject(ResultKind.QA_GATE_FAILED, reason=QAStage.COMPLETION.value,
                          score=final, decision=decision)

        ctx.advance(PipelineState.DONE)
        record = TransformationRecord.from_context(ctx, input_format, output_format, ResultKind.SUCCESS, final)
        logger.debug(f"{model.domain}: {input_format} -> {output_format} done, score={final:.4f}")
        return TransformResult(kind=ResultKind.SUCCESS, record=record, output=output,
                               score=final, state=PipelineState.DONE, gate=decision)

    def validate_input(self, value: Any, model: SemanticModel) -> ValidationReport:
        return self.validator.check(value, model, CheckMode.FAST)

    def validate_output(self, value: Any, model: SemanticModel) -> ValidationReport:
        """The output-validation step on its own; the corrector re-enters here."""
        return self.validator.check(value, model, CheckMode.FAST)

    def round_trip_intact(self, original: Any, reconstructed: Any,
                          model: SemanticModel) -> Tuple[bool, float, ValidationReport]:
        """
        Check a reconstruction against the original input.

        Every layer the original passes must pass on the reconstruction, and
        their coherence must reach round_trip_threshold.

        Returns:
            Tuple of (intact, round-trip score, reconstruction report)
        """
        original_report = self.validator.check(original, model, CheckMode.FULL)
        reverse_report = self.validator.check(reconstructed, model, CheckMode.FULL)
        for verdict in original_report.verdicts:
            if verdict.passed and not reverse_report.verdict_for(verdict.layer).passed:
                return False, 0.0, reverse_report
        round_trip = self.scorer.score(original, reconstructed, model)
        return round_trip >= self.round_trip_threshold, round_trip, reverse_report

    def bidirectional_integrity(self, model: SemanticModel, source: Any, target: Any) -> Tuple[bool, float]:
        """
        Check that two representations are mutually coherent.

        Both must pass every layer, and the weaker of the two directional
        scores must reach round_trip_threshold.
        """
        if not self.validator.check(source, model, CheckMode.FAST).passed:
            return False, 0.0
        if not self.validator.check(target, model, CheckMode.FAST).passed:
            return False, 0.0
        score = min(self.scorer.score(source, target, model), self.scorer.score(target, source, model))
        return score >= self.round_trip_threshold, score

    @staticmethod
    def _enter(ctx: CoherenceContext, state: PipelineState, stage: QAStage) -> None:
        ctx.advance(state)
        ctx.qa_stage = stage
        logger.debug(f"{ctx.model.domain}: entering {state.value}")

    @staticmethod
    def _gate(ctx: CoherenceContext, gate: Optional[QAGate], stage: QAStage,
              score: float) -> Optional[GateDecision]:
        ctx.stage_scores[stage.value] = score
        if gate is None:
            return None
        return gate.gate(stage, score)

    @staticmethod
    def _call(fn: Callable[..., Any], stage: str, *args: Any) -> Any:
        try:
            return fn(*args)
        except Exception as exc:
            raise InternalCallbackFailure(stage=stage, callback=callback_name(fn, stage), original=exc) from exc
