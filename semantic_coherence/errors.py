"""
Semantic Coherence Error Model

Result kinds are returned as values from the call that detected them.
Exceptions are reserved for misuse (unknown handles, closed contexts) and
for caller-supplied callbacks that fail.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ResultKind(Enum):
    """Outcome of a pipeline run or correction attempt."""
    SUCCESS = "SUCCESS"
    SEMANTIC_VIOLATION = "SEMANTIC_VIOLATION"
    STRUCTURAL_VIOLATION = "STRUCTURAL_VIOLATION"
    CONTEXTUAL_VIOLATION = "CONTEXTUAL_VIOLATION"
    COHERENCE_LOST = "COHERENCE_LOST"
    QA_GATE_FAILED = "QA_GATE_FAILED"
    UNCORRECTABLE = "UNCORRECTABLE"


class FailureReason(Enum):
    """Machine-readable reason tags attached to failed results."""
    DOMAIN_MISMATCH = "DomainMismatch"
    UNKNOWN_VERB_NOUN_COMBINATION = "UnknownVerbNounCombination"
    UNSUPPORTED_TARGET_FORMAT = "UnsupportedTargetFormat"
    ROUND_TRIP_DIVERGED = "RoundTripDiverged"
    NO_MAJORITY = "NoMajority"
    CORRECTION_FAILED_VALIDATION = "CorrectionFailedValidation"
    OUT_OF_BOUNDS = "OutOfBounds"


class CoherenceError(Exception):
    """Base class for engine exceptions."""


class ModelNotFound(CoherenceError, KeyError):
    """Raised when a handle references an unregistered or destroyed model."""

    def __init__(self, handle: object):
        self.handle = handle
        super().__init__(f"No semantic model registered for {handle!r}")

    def __str__(self) -> str:
        return self.args[0]


class ContextClosed(CoherenceError, RuntimeError):
    """Raised when an engine context is used after destroy_context()."""


class InternalCallbackFailure(CoherenceError):
    """
    A caller-supplied predicate or transform raised.

    The engine does not retry or correct; the original exception is chained
    as ``__cause__``.
    """

    def __init__(self, stage: str, callback: str, original: BaseException):
        self.stage = stage
        self.callback = callback
        self.original = original
        super().__init__(
            f"Callback {callback!r} failed during {stage}: "
            f"{type(original).__name__}: {original}"
        )


def callback_name(fn: object, fallback: Optional[str] = None) -> str:
    """Best-effort printable name for a callback."""
    name = getattr(fn, "__qualname__", None) or getattr(fn, "__name__", None)
    return name or fallback or repr(fn)
