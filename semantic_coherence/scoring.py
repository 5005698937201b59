"""
Coherence Scorer

Scores how well two representations of one logical value agree under a
semantic model. The score is a weighted mean of three sub-scores:

- concept: Jaccard overlap of the model's core concepts found in each side
- structure: fraction of required fields preserved with a compatible type
- task: verb-noun compatibility of the target's task

score(X, X, M) == 1.0 for any X; every score lies in [0, 1] and is
non-decreasing in each sub-score. 1.0 means no detected drift, nothing more.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Set, Tuple

from semantic_coherence.config import ScoreWeights
from semantic_coherence.extraction import extract_concepts, extract_fields, extract_task
from semantic_coherence.registry import SemanticModel, VerbNounPair
from semantic_coherence.validation.verb_noun import VerbNounChecker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScoreBreakdown:
    """Sub-scores and the weighted total."""
    concept: float
    structure: float
    task: float
    score: float

    def to_dict(self) -> Dict[str, float]:
        return {
            "concept": self.concept,
            "structure": self.structure,
            "task": self.task,
            "score": self.score,
        }


def _type_compatible(value: Any, types: Tuple[type, ...]) -> bool:
    # bool is never a number here; int and float are interchangeable
    for expected in types:
        if expected is bool or isinstance(value, bool):
            if expected is bool and isinstance(value, bool):
                return True
            continue
        if expected in (int, float) and isinstance(value, (int, float)):
            return True
        if isinstance(value, expected):
            return True
    return False


def jaccard(left: Set[str], right: Set[str]) -> float:
    """Jaccard ratio; two empty sets agree perfectly."""
    union = left | right
    if not union:
        return 1.0
    return len(left & right) / len(union)


class CoherenceScorer:
    """
    Computes coherence between a source and a target representation.

    Extractors are pluggable so that byte-packed or otherwise opaque formats
    can expose their concepts, fields and task to the scorer.
    """

    def __init__(self,
                 weights: Optional[ScoreWeights] = None,
                 checker: Optional[VerbNounChecker] = None,
                 concept_extractor: Callable[[Any], Set[str]] = extract_concepts,
                 field_extractor: Callable[[Any], Optional[Mapping[str, Any]]] = extract_fields,
                 task_extractor: Callable[[Any], Optional[VerbNounPair]] = extract_task):
        self.weights = weights or ScoreWeights()
        self.checker = checker or VerbNounChecker()
        self.concept_extractor = concept_extractor
        self.field_extractor = field_extractor
        self.task_extractor = task_extractor

    def score(self, source: Any, target: Any, model: SemanticModel) -> float:
        """Return the coherence score in [0, 1]."""
        return self.breakdown(source, target, model).score

    def breakdown(self, source: Any, target: Any, model: SemanticModel) -> ScoreBreakdown:
        """Return the three sub-scores along with the weighted score."""
        concept = self.concept_score(source, target, model)
        structure = self.structure_score(source, target, model)
        task = self.task_score(source, target, model)

        weights = self.weights.as_tuple()
        total = math.fsum(w * s for w, s in zip(weights, (concept, structure, task)))
        score = min(1.0, max(0.0, total / math.fsum(weights)))
        logger.debug(
            f"{model.domain}: coherence={score:.4f} "
            f"(concept={concept:.3f}, structure={structure:.3f}, task={task:.3f})"
        )
        return ScoreBreakdown(concept=concept, structure=structure, task=task, score=score)

    def concept_score(self, source: Any, target: Any, model: SemanticModel) -> float:
        src = self.concept_extractor(source)
        tgt = self.concept_extractor(target)
        core = set(model.concepts)
        if core:
            src &= core
            tgt &= core
        return jaccard(src, tgt)

    def coverage(self, value: Any, model: SemanticModel) -> float:
        """Fraction of the model's core concepts present in ``value``; 1.0 without core concepts."""
        core = set(model.concepts)
        if not core:
            return 1.0
        return len(self.concept_extractor(value) & core) / len(core)

    def structure_score(self, source: Any, target: Any, model: SemanticModel) -> float:
        src_fields = self.field_extractor(source)
        tgt_fields = self.field_extractor(target)

        if model.required_fields:
            # Only fields the source itself satisfies can be lost by a transform.
            if src_fields is None:
                return 1.0 if tgt_fields is None else 0.0
            expected = {
                name: types for name, types in model.required_fields.items()
                if name in src_fields and _type_compatible(src_fields[name], types)
            }
        elif src_fields is not None:
            expected = {name: (type(value),) for name, value in src_fields.items()}
        else:
            if tgt_fields is not None:
                return 0.0
            return 1.0 if _type_compatible(target, (type(source),)) else 0.0

        if tgt_fields is None:
            return 0.0
        if not expected:
            return 1.0
        kept = sum(
            1 for name, types in expected.items()
            if name in tgt_fields and _type_compatible(tgt_fields[name], types)
        )
        return kept / len(expected)

    def task_score(self, source: Any, target: Any, model: SemanticModel) -> float:
        src_task = self.task_extractor(source)
        tgt_task = self.task_extractor(target)
        if tgt_task == src_task:
            return 1.0
        if tgt_task is None:
            return 0.0
        return 1.0 if self.checker.validate_pair(tgt_task, model).valid else 0.0
