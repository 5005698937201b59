"""
Semantic Coherence Configuration

Caller-supplied configuration is expressed as frozen pydantic models so that
range invariants are checked once, at construction:

- ScoreWeights: weighting of the three coherence sub-scores
- QAThresholds: minimum score per QA stage
- FaultToleranceConfig: redundancy and correction parameters
- StreamBounds: numeric range check for stream readings
- EngineConfig: defaults bundled into an engine context
"""

from __future__ import annotations

import logging
import math
from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

logger = logging.getLogger(__name__)


class QAStage(Enum):
    """Ordered QA checkpoints."""
    INTAKE = "intake"
    PROCESSING = "processing"
    COMPLETION = "completion"


QA_STAGE_ORDER = (QAStage.INTAKE, QAStage.PROCESSING, QAStage.COMPLETION)


class ScoreWeights(BaseModel):
    """Weights for concept overlap, structural correspondence and task terms."""
    model_config = ConfigDict(frozen=True)

    concept: float = Field(1.0 / 3.0, ge=0.0)
    structure: float = Field(1.0 / 3.0, ge=0.0)
    task: float = Field(1.0 / 3.0, ge=0.0)

    @model_validator(mode="after")
    def _check_total(self) -> "ScoreWeights":
        if self.concept + self.structure + self.task <= 0.0:
            raise ValueError("at least one score weight must be positive")
        return self

    def as_tuple(self) -> Tuple[float, float, float]:
        return (self.concept, self.structure, self.task)


class QAThresholds(BaseModel):
    """Minimum acceptable coherence score per QA stage, each in [0, 1]."""
    model_config = ConfigDict(frozen=True)

    intake: float = Field(0.0, ge=0.0, le=1.0)
    processing: float = Field(0.0, ge=0.0, le=1.0)
    completion: float = Field(0.0, ge=0.0, le=1.0)

    def for_stage(self, stage: QAStage) -> float:
        return getattr(self, stage.value)

    def with_threshold(self, stage: QAStage, value: float) -> "QAThresholds":
        """Return a copy with one stage replaced (validated)."""
        data = self.model_dump()
        data[stage.value] = value
        return QAThresholds(**data)


class FaultToleranceConfig(BaseModel):
    """
    Parameters for redundant encoding and majority-vote correction.

    redundancy_factor should be odd; an even factor is accepted but can
    produce tied votes, which the corrector resolves by refusing to guess.
    """
    model_config = ConfigDict(frozen=True)

    expected_error_rate: float = Field(0.0, ge=0.0, le=1.0)
    redundancy_factor: int = Field(3, ge=2)
    correction_threshold: float = Field(0.9, gt=0.0, le=1.0)

    @field_validator("redundancy_factor")
    @classmethod
    def _warn_even(cls, value: int) -> int:
        if value % 2 == 0:
            logger.warning(f"redundancy_factor={value} is even; tied votes are uncorrectable")
        return value

    @property
    def majority_size(self) -> int:
        """Smallest group size that is a strict majority of N."""
        return self.redundancy_factor // 2 + 1

    def failure_probability(self) -> float:
        """
        Probability that fewer than a strict majority of replicas survive.

        Assumes each replica is corrupted independently with probability
        expected_error_rate.
        """
        n = self.redundancy_factor
        p = self.expected_error_rate
        max_corrupt = n - self.majority_size
        survive = sum(
            math.comb(n, k) * (p ** k) * ((1.0 - p) ** (n - k))
            for k in range(max_corrupt + 1)
        )
        return min(1.0, max(0.0, 1.0 - survive))


class StreamBounds(BaseModel):
    """Numeric range for a stream quantity, e.g. temperature in [-40, 85]."""
    model_config = ConfigDict(frozen=True)

    quantity: str
    range: Tuple[float, float]
    unit: Optional[str] = None

    @field_validator("range")
    @classmethod
    def _check_range(cls, value: Tuple[float, float]) -> Tuple[float, float]:
        low, high = value
        if math.isnan(low) or math.isnan(high):
            raise ValueError("range bounds must be numbers")
        if low > high:
            raise ValueError(f"range lower bound {low} exceeds upper bound {high}")
        return value

    @property
    def low(self) -> float:
        return self.range[0]

    @property
    def high(self) -> float:
        return self.range[1]

    def contains(self, value: float) -> bool:
        return self.low <= value <= self.high


class EngineConfig(BaseModel):
    """Defaults carried by an engine context."""
    model_config = ConfigDict(frozen=True)

    weights: ScoreWeights = Field(default_factory=ScoreWeights)
    qa_thresholds: QAThresholds = Field(default_factory=QAThresholds)
    fault_tolerance: FaultToleranceConfig = Field(default_factory=FaultToleranceConfig)
    # Minimum score between the original input and its round-trip reconstruction.
    round_trip_threshold: float = Field(1.0, ge=0.0, le=1.0)
    audit_records: bool = True
    # Entries kept in the audit ledger; older entries are evicted first.
    audit_capacity: int = Field(1024, ge=1)
