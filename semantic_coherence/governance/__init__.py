"""
Semantic Coherence Governance

- QAGate: stage-scoped score thresholds
- FaultTolerantCorrector: majority-vote correction over redundancy sets
- AuditLedger: hash-chained transformation records
"""

from semantic_coherence.governance.qa_gate import GateDecision, QAGate
from semantic_coherence.governance.corrector import (
    CorrectionResult,
    FaultTolerantCorrector,
    NoisyChannel,
    RedundancySet,
    RedundantEncoder,
    RedundantEncoding,
)
from semantic_coherence.governance.ledger import AuditLedger, LedgerEntry

__all__ = [
    "GateDecision",
    "QAGate",
    "CorrectionResult",
    "FaultTolerantCorrector",
    "NoisyChannel",
    "RedundancySet",
    "RedundantEncoder",
    "RedundantEncoding",
    "AuditLedger",
    "LedgerEntry",
]
