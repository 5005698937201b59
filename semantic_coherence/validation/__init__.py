"""
Semantic Coherence Validation

- ConstraintValidator: layered semantic/structural/contextual checks
- VerbNounChecker: closed-world verb-noun task validation
"""

from semantic_coherence.validation.constraints import (
    CheckMode,
    ConstraintValidator,
    LayerVerdict,
    ValidationReport,
)
from semantic_coherence.validation.verb_noun import VerbNounChecker, VerbNounVerdict

__all__ = [
    "CheckMode",
    "ConstraintValidator",
    "LayerVerdict",
    "ValidationReport",
    "VerbNounChecker",
    "VerbNounVerdict",
]
