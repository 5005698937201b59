"""
Constraint Validators

Three independent layers are checked against a value and a model, always in
the order Semantic -> Structural -> Contextual:

- FULL mode evaluates every layer (diagnostic report)
- FAST mode stops at the first failing predicate (pass/fail decision)

Each registered predicate is invoked at most once per check call. When the
value carries a verb-noun task, the Contextual layer validates it with the
VerbNounChecker before any caller predicate runs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from semantic_coherence.errors import InternalCallbackFailure, ResultKind
from semantic_coherence.extraction import extract_task
from semantic_coherence.registry import (
    LAYER_ORDER,
    ConstraintLayer,
    LayerConstraint,
    SemanticModel,
    VerbNounPair,
)
from semantic_coherence.validation.verb_noun import VerbNounChecker, VerbNounVerdict

logger = logging.getLogger(__name__)

LAYER_RESULT_KIND = {
    ConstraintLayer.SEMANTIC: ResultKind.SEMANTIC_VIOLATION,
    ConstraintLayer.STRUCTURAL: ResultKind.STRUCTURAL_VIOLATION,
    ConstraintLayer.CONTEXTUAL: ResultKind.CONTEXTUAL_VIOLATION,
}


class CheckMode(Enum):
    FULL = "full"
    FAST = "fast"


@dataclass(frozen=True)
class LayerVerdict:
    """Pass/fail verdict for one layer."""
    layer: ConstraintLayer
    passed: bool
    failed_tags: Tuple[str, ...] = ()
    evaluated: int = 0
    skipped: bool = False

    @property
    def reason(self) -> Optional[str]:
        return self.failed_tags[0] if self.failed_tags else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "layer": self.layer.value,
            "passed": self.passed,
            "failed_tags": list(self.failed_tags),
            "evaluated": self.evaluated,
            "skipped": self.skipped,
        }


@dataclass(frozen=True)
class ValidationReport:
    """Per-layer verdicts for one check call, in layer order."""
    mode: CheckMode
    verdicts: Tuple[LayerVerdict, ...] = field(default_factory=tuple)

    @property
    def passed(self) -> bool:
        return all(v.passed for v in self.verdicts)

    @property
    def first_failure(self) -> Optional[LayerVerdict]:
        for verdict in self.verdicts:
            if not verdict.passed:
                return verdict
        return None

    @property
    def pass_ratio(self) -> float:
        """Fraction of layers that passed; skipped layers count as not passed."""
        if not self.verdicts:
            return 1.0
        return sum(1 for v in self.verdicts if v.passed) / len(self.verdicts)

    def verdict_for(self, layer: ConstraintLayer) -> LayerVerdict:
        for verdict in self.verdicts:
            if verdict.layer is layer:
                return verdict
        raise KeyError(layer)

    def result_kind(self) -> ResultKind:
        failure = self.first_failure
        return ResultKind.SUCCESS if failure is None else LAYER_RESULT_KIND[failure.layer]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.value,
            "passed": self.passed,
            "verdicts": [v.to_dict() for v in self.verdicts],
        }


class ConstraintValidator:
    """
    Runs a model's layered constraints against a value.

    The validator holds no per-call state and may be shared across threads.
    """

    def __init__(self,
                 verb_noun_checker: Optional[VerbNounChecker] = None,
                 task_extractor: Callable[[Any], Optional[VerbNounPair]] = extract_task):
        self.verb_noun_checker = verb_noun_checker or VerbNounChecker()
        self.task_extractor = task_extractor

    def check(self, value: Any, model: SemanticModel, mode: CheckMode = CheckMode.FULL) -> ValidationReport:
        """
        Check all three layers.

        Args:
            value: Representation under test
            model: Semantic model holding the constraints
            mode: FULL for a diagnostic report, FAST to stop at the first failure

        Returns:
            ValidationReport; in FAST mode layers after the first failure are
            reported as skipped
        """
        fast = mode is CheckMode.FAST
        verdicts: List[LayerVerdict] = []
        failed = False
        for layer in LAYER_ORDER:
            if failed and fast:
                verdicts.append(LayerVerdict(layer=layer, passed=False, skipped=True))
                continue
            verdict = self.check_layer(layer, value, model, fast=fast)
            verdicts.append(verdict)
            failed = failed or not verdict.passed
        report = ValidationReport(mode=mode, verdicts=tuple(verdicts))
        if not report.passed:
            first = report.first_failure
            logger.debug(f"{model.domain}: {first.layer.value} layer failed ({first.reason})")
        return report

    def check_layer(self, layer: ConstraintLayer, value: Any, model: SemanticModel,
                    fast: bool = False) -> LayerVerdict:
        """Evaluate one layer. With ``fast`` the first failing predicate ends the layer."""
        failed: List[str] = []
        evaluated = 0

        if layer is ConstraintLayer.CONTEXTUAL:
            task_verdict = self.check_task(value, model)
            if task_verdict is not None:
                evaluated += 1
                if not task_verdict.valid:
                    failed.append(f"verb_noun:{task_verdict.reason.value}")
                    if fast:
                        return LayerVerdict(layer, False, tuple(failed), evaluated)

        for constraint in model.constraints_for(layer):
            evaluated += 1
            if not self._invoke(constraint, value, model):
                failed.append(constraint.tag)
                if fast:
                    break

        return LayerVerdict(layer=layer, passed=not failed, failed_tags=tuple(failed), evaluated=evaluated)

    def check_task(self, value: Any, model: SemanticModel) -> Optional[VerbNounVerdict]:
        """Validate the value's verb-noun task, or None if it carries none."""
        task = self.task_extractor(value)
        if task is None:
            return None
        return self.verb_noun_checker.validate_pair(task, model)

    @staticmethod
    def _invoke(constraint: LayerConstraint, value: Any, model: SemanticModel) -> bool:
        try:
            return bool(constraint.predicate(value, model))
        except Exception as exc:
            raise InternalCallbackFailure(
                stage=f"{constraint.layer.value} check",
                callback=constraint.tag,
                original=exc,
            ) from exc
