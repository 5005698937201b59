"""
Fault-Tolerant Encoder/Corrector

A channel produces N independent encodings of one logical value; any of them
may be corrupted. Correction is classical N-way redundancy with
similarity-graph clustering:

1. Pairwise coherence scores form an N x N similarity matrix.
2. Members whose similarity reaches correction_threshold are joined into
   agreement groups (union-find).
3. The largest group must be a strict majority of N, otherwise the set is
   Uncorrectable; the engine does not guess on split evidence.
4. The group's representative is re-validated through the pipeline's
   output-validation step; majority agreement alone never bypasses the
   domain constraints.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from semantic_coherence.config import FaultToleranceConfig
from semantic_coherence.errors import FailureReason, InternalCallbackFailure, ResultKind, callback_name
from semantic_coherence.registry import SemanticModel
from semantic_coherence.validation.constraints import ValidationReport

if TYPE_CHECKING:
    from semantic_coherence.runtime.pipeline import TransformPipeline

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RedundantEncoding:
    """One replica of the logical value, tagged with its provenance index."""
    provenance: int
    value: Any


@dataclass(frozen=True)
class RedundancySet:
    """N >= 2 encodings of one logical value, ordered by provenance."""
    members: Tuple[RedundantEncoding, ...]

    def __post_init__(self):
        members = tuple(sorted(self.members, key=lambda m: m.provenance))
        if len(members) < 2:
            raise ValueError(f"a redundancy set needs at least 2 members, got {len(members)}")
        provenances = [m.provenance for m in members]
        if len(set(provenances)) != len(provenances):
            raise ValueError(f"duplicate provenance indices: {provenances}")
        object.__setattr__(self, "members", members)

    @classmethod
    def from_values(cls, values: Iterable[Any]) -> "RedundancySet":
        return cls(tuple(RedundantEncoding(i, v) for i, v in enumerate(values)))

    @property
    def values(self) -> List[Any]:
        return [m.value for m in self.members]

    def __len__(self) -> int:
        return len(self.members)

    def __iter__(self):
        return iter(self.members)


@dataclass
class CorrectionResult:
    """Outcome of a correction attempt."""
    kind: ResultKind
    value: Any = None
    reason: Optional[FailureReason] = None
    group: Tuple[int, ...] = ()
    required_majority: int = 0
    similarity: Optional[np.ndarray] = None
    validation: Optional[ValidationReport] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def corrected(self) -> bool:
        return self.kind is ResultKind.SUCCESS

    def __bool__(self) -> bool:
        return self.corrected

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "reason": self.reason.value if self.reason else None,
            "group": list(self.group),
            "required_majority": self.required_majority,
            "similarity": self.similarity.tolist() if self.similarity is not None else None,
            "details": self.details,
        }


class RedundantEncoder:
    """Produces redundancy_factor independent encodings of a value."""

    def __init__(self, config: Optional[FaultToleranceConfig] = None):
        self.config = config or FaultToleranceConfig()

    def encode(self, value: Any, encode_fn: Optional[Callable[[Any, int], Any]] = None) -> RedundancySet:
        """
        Encode ``value`` N times.

        Args:
            value: Logical value
            encode_fn: ``encode_fn(value, provenance) -> encoding``; defaults
                to an independent deep copy per replica
        """
        members = []
        for provenance in range(self.config.redundancy_factor):
            if encode_fn is None:
                encoded = copy.deepcopy(value)
            else:
                try:
                    encoded = encode_fn(value, provenance)
                except Exception as exc:
                    raise InternalCallbackFailure(
                        stage="encode", callback=callback_name(encode_fn, "encode"), original=exc
                    ) from exc
            members.append(RedundantEncoding(provenance, encoded))
        return RedundancySet(tuple(members))


class NoisyChannel:
    """
    Simulated fault-prone channel.

    Each replica is corrupted independently with probability error_rate by
    the caller's ``corrupt_fn(value, rng)``.
    """

    def __init__(self, error_rate: float, corrupt_fn: Callable[[Any, np.random.Generator], Any],
                 seed: Optional[int] = None):
        if not 0.0 <= error_rate <= 1.0:
            raise ValueError(f"error_rate must be in [0, 1], got {error_rate}")
        self.error_rate = error_rate
        self.corrupt_fn = corrupt_fn
        self.rng = np.random.default_rng(seed)
        self.last_corrupted: Tuple[int, ...] = ()

    def transmit(self, redundancy_set: RedundancySet) -> RedundancySet:
        hits = self.rng.random(len(redundancy_set)) < self.error_rate
        members = []
        corrupted = []
        for member, hit in zip(redundancy_set, hits):
            if hit:
                corrupted.append(member.provenance)
                members.append(RedundantEncoding(member.provenance, self.corrupt_fn(member.value, self.rng)))
            else:
                members.append(member)
        self.last_corrupted = tuple(corrupted)
        return RedundancySet(tuple(members))


class _DisjointSet:
    def __init__(self, size: int):
        self.parent = list(range(size))

    def find(self, i: int) -> int:
        while self.parent[i] != i:
            self.parent[i] = self.parent[self.parent[i]]
            i = self.parent[i]
        return i

    def union(self, a: int, b: int) -> None:
        ra, rb = self.find(a), self.find(b)
        if ra != rb:
            # lower index stays root so groups keep a stable representative
            self.parent[max(ra, rb)] = min(ra, rb)


def _same(a: Any, b: Any) -> bool:
    if a is b:
        return True
    try:
        return bool(a == b)
    except (TypeError, ValueError):
        return False


def _plurality(members: Sequence[RedundantEncoding]) -> List[RedundantEncoding]:
    """Members equal to the most common value; ties go to the lowest provenance."""
    ordered = sorted(members, key=lambda m: m.provenance)
    best, best_count = ordered[0], 0
    for member in ordered:
        count = sum(1 for other in ordered if _same(member.value, other.value))
        if count > best_count:
            best, best_count = member, count
    return [m for m in ordered if _same(best.value, m.value)]


class FaultTolerantCorrector:
    """Majority-vote correction tied to the pipeline's validation path."""

    def __init__(self, pipeline: Optional["TransformPipeline"] = None):
        if pipeline is None:
            # runtime imports governance.qa_gate, so resolve the pipeline late
            from semantic_coherence.runtime.pipeline import TransformPipeline
            pipeline = TransformPipeline()
        self.pipeline = pipeline

    @property
    def scorer(self):
        return self.pipeline.scorer

    def similarity_matrix(self, values: Sequence[Any], model: SemanticModel) -> np.ndarray:
        """Symmetric N x N matrix of the weaker directional coherence score."""
        n = len(values)
        matrix = np.ones((n, n), dtype=float)
        for i in range(n):
            for j in range(i + 1, n):
                score = min(
                    self.scorer.score(values[i], values[j], model),
                    self.scorer.score(values[j], values[i], model),
                )
                matrix[i, j] = matrix[j, i] = score
        return matrix

    @staticmethod
    def agreement_groups(similarity: np.ndarray, threshold: float) -> List[Tuple[int, ...]]:
        """Connected components of the thresholded similarity graph, largest first."""
        n = similarity.shape[0]
        forest = _DisjointSet(n)
        for i, j in np.argwhere(np.triu(similarity >= threshold, k=1)):
            forest.union(int(i), int(j))
        groups: Dict[int, List[int]] = {}
        for i in range(n):
            groups.setdefault(forest.find(i), []).append(i)
        # ties go to the group holding the lowest index
        return sorted((tuple(g) for g in groups.values()), key=lambda g: (-len(g), g[0]))

    def correct(self, redundancy_set: RedundancySet, config: FaultToleranceConfig,
                model: SemanticModel) -> CorrectionResult:
        """
        Reconstruct the logical value from a redundancy set.

        Args:
            redundancy_set: N encodings of one value
            config: Fault tolerance parameters
            model: Semantic model used for scoring and re-validation

        Returns:
            CorrectionResult; UNCORRECTABLE carries NO_MAJORITY or
            CORRECTION_FAILED_VALIDATION
        """
        members = list(redundancy_set)
        n = len(members)
        if n != config.redundancy_factor:
            logger.warning(f"redundancy set has {n} members, config expects {config.redundancy_factor}")

        similarity = self.similarity_matrix([m.value for m in members], model)
        groups = self.agreement_groups(similarity, config.correction_threshold)
        majority = [members[i] for i in groups[0]]
        if not all(isinstance(m.value, Mapping) for m in majority):
            # scores ignore scalar payloads, so only equal values agree
            majority = _plurality(majority)
        required = n // 2 + 1
        group = tuple(m.provenance for m in majority)
        details = {
            "group_sizes": [len(g) for g in groups],
            "expected_failure_probability": config.failure_probability(),
        }

        if len(majority) < required:
            logger.warning(
                f"{model.domain}: no majority among {n} encodings "
                f"(largest agreeing group {len(majority)} < {required})"
            )
            return CorrectionResult(kind=ResultKind.UNCORRECTABLE, reason=FailureReason.NO_MAJORITY,
                                    group=group, required_majority=required,
                                    similarity=similarity, details=details)

        candidate = self.representative(majority)
        report = self.pipeline.validate_output(candidate, model)
        if not report.passed:
            logger.warning(
                f"{model.domain}: majority candidate failed {report.first_failure.layer.value} validation"
            )
            return CorrectionResult(kind=ResultKind.UNCORRECTABLE,
                                    reason=FailureReason.CORRECTION_FAILED_VALIDATION,
                                    group=group, required_majority=required, similarity=similarity,
                                    validation=report, details=details)

        outliers = [m.provenance for m in members if m.provenance not in group]
        if outliers:
            logger.info(f"{model.domain}: corrected value; discarded encodings {outliers}")
        return CorrectionResult(kind=ResultKind.SUCCESS, value=candidate, group=group,
                                required_majority=required, similarity=similarity,
                                validation=report, details=details)

    @staticmethod
    def representative(group: Sequence[RedundantEncoding]) -> Any:
        """
        Value standing for an agreement group.

        Identical members yield that value; mappings are merged field by
        field (majority per field, ties to the lowest provenance); anything
        else takes the most common value, ties to the lowest provenance.
        """
        ordered = sorted(group, key=lambda m: m.provenance)
        first = ordered[0].value
        if all(_same(first, m.value) for m in ordered[1:]):
            return first
        if not all(isinstance(m.value, Mapping) for m in ordered):
            return _plurality(ordered)[0].value

        merged: Dict[Any, Any] = {}
        keys: List[Any] = []
        for member in ordered:
            for key in member.value:
                if key not in keys:
                    keys.append(key)
        for key in keys:
            candidates = [m.value[key] for m in ordered if key in m.value]
            if len(candidates) * 2 <= len(ordered):
                continue
            best, best_count = candidates[0], 0
            for candidate in candidates:
                count = sum(1 for other in candidates if _same(candidate, other))
                if count > best_count:
                    best, best_count = candidate, count
            merged[key] = best
        return merged
