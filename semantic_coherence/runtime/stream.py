"""
Stream coherence processor.

Validates continuous readings (e.g. sensor ingestion) one at a time: the
model's layers run first, then the caller's numeric bounds as an extra
contextual check. A bad reading is reported, counted and handed to the
optional drift hook; it never stops the stream.
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass
from numbers import Real
from typing import Any, Callable, Mapping, Optional

from semantic_coherence.config import StreamBounds
from semantic_coherence.errors import FailureReason, InternalCallbackFailure, ResultKind, callback_name
from semantic_coherence.registry import SemanticModel
from semantic_coherence.validation.constraints import CheckMode, ConstraintValidator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StreamVerdict:
    """Outcome for one reading."""
    reading: Any
    accepted: bool
    kind: ResultKind = ResultKind.SUCCESS
    reason: Optional[str] = None
    value: Optional[float] = None

    def __bool__(self) -> bool:
        return self.accepted


class StreamProcessor:
    """Per-stream validator bound to one model and one set of bounds."""

    def __init__(self,
                 model: SemanticModel,
                 bounds: StreamBounds,
                 validator: Optional[ConstraintValidator] = None,
                 on_drift: Optional[Callable[[StreamVerdict], None]] = None):
        self.model = model
        self.bounds = bounds
        self.validator = validator or ConstraintValidator()
        self.on_drift = on_drift
        self.accepted = 0
        self.rejected = 0
        self.last_violation: Optional[StreamVerdict] = None
        self._lock = threading.Lock()

    def validate(self, reading: Any) -> bool:
        return self.check(reading).accepted

    def check(self, reading: Any) -> StreamVerdict:
        """Validate one reading and update the counters."""
        verdict = self._evaluate(reading)
        with self._lock:
            if verdict.accepted:
                self.accepted += 1
            else:
                self.rejected += 1
                self.last_violation = verdict
        if not verdict.accepted:
            logger.info(f"{self.model.domain}/{self.bounds.quantity}: reading rejected ({verdict.reason})")
            if self.on_drift is not None:
                try:
                    self.on_drift(verdict)
                except Exception as exc:
                    raise InternalCallbackFailure(
                        stage="stream drift", callback=callback_name(self.on_drift, "on_drift"), original=exc
                    ) from exc
        return verdict

    def _evaluate(self, reading: Any) -> StreamVerdict:
        value, problem = self._numeric(reading)
        if problem is not None:
            return StreamVerdict(reading, False, ResultKind.CONTEXTUAL_VIOLATION, problem)

        report = self.validator.check(reading, self.model, CheckMode.FAST)
        if not report.passed:
            return StreamVerdict(reading, False, report.result_kind(), report.first_failure.reason, value)

        if math.isnan(value) or math.isinf(value) or not self.bounds.contains(value):
            reason = (f"{FailureReason.OUT_OF_BOUNDS.value}: {value} not in "
                      f"[{self.bounds.low}, {self.bounds.high}]")
            return StreamVerdict(reading, False, ResultKind.CONTEXTUAL_VIOLATION, reason, value)
        return StreamVerdict(reading, True, value=value)

    def _numeric(self, reading: Any):
        raw = reading
        if isinstance(reading, Mapping):
            quantity = reading.get("quantity")
            if quantity is not None and quantity != self.bounds.quantity:
                return None, f"quantity {quantity!r} != {self.bounds.quantity!r}"
            unit = reading.get("unit")
            if unit is not None and self.bounds.unit is not None and unit != self.bounds.unit:
                return None, f"unit {unit!r} != {self.bounds.unit!r}"
            raw = reading.get("value")
        if isinstance(raw, bool) or not isinstance(raw, Real):
            return None, f"non-numeric reading {raw!r}"
        return float(raw), None
