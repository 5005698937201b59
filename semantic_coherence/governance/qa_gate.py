"""
QA Gate Controller

Stage-scoped pass/fail thresholds around the transform pipeline. The three
ordered stages map to the pipeline checkpoints:

- INTAKE: input validation, scored by core-concept coverage
- PROCESSING: forward transform
- COMPLETION: output (and round-trip) validation

A gate passes when score >= threshold[stage]. Thresholds are usually
tightened from Intake to Completion, but that ordering is a caller
convention; the gate only reports it.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from semantic_coherence.config import QA_STAGE_ORDER, QAStage, QAThresholds

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GateDecision:
    """Outcome of one gate evaluation."""
    stage: QAStage
    score: float
    threshold: float
    passed: bool

    def __bool__(self) -> bool:
        return self.passed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage.value,
            "score": self.score,
            "threshold": self.threshold,
            "passed": self.passed,
            "decision": "PASS" if self.passed else "FAIL",
        }


class QAGate:
    """Evaluates coherence scores against per-stage thresholds."""

    def __init__(self, thresholds: Optional[QAThresholds] = None):
        self.thresholds = thresholds or QAThresholds()

    def set_threshold(self, stage: Union[QAStage, str], value: float) -> None:
        """
        Replace the threshold of one stage.

        Raises:
            ValueError: if value is outside [0, 1]
        """
        stage = QAStage(stage)
        self.thresholds = self.thresholds.with_threshold(stage, value)
        if not self.is_monotonic():
            logger.warning(f"QA thresholds are not monotonic: {self.thresholds.model_dump()}")

    def gate(self, stage: Union[QAStage, str], score: float) -> GateDecision:
        """Compare ``score`` against the stage threshold. NaN never passes."""
        stage = QAStage(stage)
        threshold = self.thresholds.for_stage(stage)
        passed = not math.isnan(score) and score >= threshold
        if not passed:
            logger.info(f"QA gate {stage.value} failed: score={score:.4f} < threshold={threshold:.4f}")
        return GateDecision(stage=stage, score=score, threshold=threshold, passed=passed)

    def is_monotonic(self) -> bool:
        """True when Completion >= Processing >= Intake."""
        values = [self.thresholds.for_stage(stage) for stage in QA_STAGE_ORDER]
        return all(a <= b for a, b in zip(values, values[1:]))
