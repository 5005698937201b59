"""
Per-call coherence state and audit records.

Key classes:
- PipelineState: states of the transform pipeline
- CoherenceContext: mutable, owned by exactly one pipeline run
- TransformationRecord: immutable snapshot of a completed run
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from semantic_coherence.config import QAStage
from semantic_coherence.errors import ResultKind
from semantic_coherence.registry import SemanticModel
from semantic_coherence.validation.constraints import ValidationReport


class PipelineState(Enum):
    IDLE = "IDLE"
    VALIDATING_INPUT = "VALIDATING_INPUT"
    TRANSFORMING = "TRANSFORMING"
    VALIDATING_OUTPUT = "VALIDATING_OUTPUT"
    REVERSE_VALIDATING = "REVERSE_VALIDATING"
    DONE = "DONE"
    REJECTED = "REJECTED"


TERMINAL_STATES = frozenset({PipelineState.DONE, PipelineState.REJECTED})

# Allowed forward transitions; any non-terminal state may also reject.
_TRANSITIONS = {
    PipelineState.IDLE: {PipelineState.VALIDATING_INPUT},
    PipelineState.VALIDATING_INPUT: {PipelineState.TRANSFORMING},
    PipelineState.TRANSFORMING: {PipelineState.VALIDATING_OUTPUT},
    PipelineState.VALIDATING_OUTPUT: {PipelineState.REVERSE_VALIDATING, PipelineState.DONE},
    PipelineState.REVERSE_VALIDATING: {PipelineState.DONE},
}


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class CoherenceContext:
    """
    Request-scoped state for one pipeline run.

    Created per call and never shared; holds the model reference for the
    duration of the call only.
    """
    model: SemanticModel
    state: PipelineState = PipelineState.IDLE
    reports: Dict[str, ValidationReport] = field(default_factory=dict)
    history: List[PipelineState] = field(default_factory=lambda: [PipelineState.IDLE])
    qa_stage: Optional[QAStage] = None
    stage_scores: Dict[str, float] = field(default_factory=dict)

    def advance(self, state: PipelineState) -> None:
        """Move to ``state``; terminal states are final."""
        if self.state in TERMINAL_STATES:
            raise RuntimeError(f"pipeline already finished in {self.state.value}")
        if state is not PipelineState.REJECTED and state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"illegal transition {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def record(self, phase: str, report: ValidationReport) -> None:
        self.reports[phase] = report

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES


@dataclass(frozen=True)
class TransformationRecord:
    """
    Immutable snapshot of one completed pipeline run.

    Digests follow the receipt hash-chaining rule: sha256 over canonical JSON
    of every field but the digest, with the previous digest appended.
    """
    domain: str
    input_format: str
    output_format: str
    result: ResultKind
    score: Optional[float]
    verdicts: Tuple[Tuple[str, ValidationReport], ...] = ()
    stage_scores: Tuple[Tuple[str, float], ...] = ()
    states: Tuple[str, ...] = ()
    reason: Optional[str] = None
    timestamp: str = field(default_factory=_utc_now)

    @classmethod
    def from_context(cls,
                     ctx: CoherenceContext,
                     input_format: str,
                     output_format: str,
                     result: ResultKind,
                     score: Optional[float],
                     reason: Optional[str] = None) -> "TransformationRecord":
        return cls(
            domain=ctx.model.domain,
            input_format=input_format,
            output_format=output_format,
            result=result,
            score=score,
            verdicts=tuple(ctx.reports.items()),
            stage_scores=tuple(ctx.stage_scores.items()),
            states=tuple(s.value for s in ctx.history),
            reason=reason,
        )

    def report(self, phase: str) -> Optional[ValidationReport]:
        return dict(self.verdicts).get(phase)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": "transformation_record",
            "domain": self.domain,
            "input_format": self.input_format,
            "output_format": self.output_format,
            "result": self.result.value,
            "score": self.score,
            "verdicts": {phase: report.to_dict() for phase, report in self.verdicts},
            "stage_scores": dict(self.stage_scores),
            "states": list(self.states),
            "reason": self.reason,
            "timestamp": self.timestamp,
        }

    def compute_digest(self, prev_hash: Optional[str] = None) -> str:
        """Compute the record digest, chained to ``prev_hash`` when given."""
        canon = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))
        payload = canon.encode("utf-8")
        if prev_hash:
            payload += prev_hash.encode("utf-8")
        return "sha256:" + hashlib.sha256(payload).hexdigest()
