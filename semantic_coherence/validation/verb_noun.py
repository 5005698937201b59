"""
Verb-Noun Constraint Checker

Closed-world membership test for task descriptors: a pair is valid only if
the model declares it exactly, or one of the model's wildcard rules for the
pair's domain subsumes it. Absence of a rule is a rejection.

Lookup is a hashed index keyed by (domain, noun) then verb; wildcard rules
are scanned per domain in declaration order.
"""

from __future__ import annotations

import logging
import weakref
from dataclasses import dataclass
from fnmatch import fnmatchcase
from typing import Dict, FrozenSet, List, Optional, Set, Tuple

from semantic_coherence.errors import FailureReason
from semantic_coherence.registry import SemanticModel, VerbNounPair, VerbNounRule

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VerbNounVerdict:
    """Result of validating one verb-noun pair."""
    pair: VerbNounPair
    valid: bool
    reason: Optional[FailureReason] = None
    matched_rule: Optional[VerbNounRule] = None
    detail: str = ""

    def __bool__(self) -> bool:
        return self.valid

    def to_dict(self):
        return {
            "pair": self.pair.to_dict(),
            "valid": self.valid,
            "reason": self.reason.value if self.reason else None,
            "matched_rule": str(self.matched_rule) if self.matched_rule else None,
            "detail": self.detail,
        }


@dataclass(frozen=True)
class _PairIndex:
    verbs_by_key: Dict[Tuple[str, str], FrozenSet[str]]
    domains_by_combo: Dict[Tuple[str, str], FrozenSet[str]]
    rules_by_domain: Dict[str, Tuple[VerbNounRule, ...]]
    domains: FrozenSet[str]

    @classmethod
    def from_model(cls, model: SemanticModel) -> "_PairIndex":
        verbs: Dict[Tuple[str, str], Set[str]] = {}
        combos: Dict[Tuple[str, str], Set[str]] = {}
        for pair in model.verb_noun_pairs:
            verbs.setdefault((pair.domain, pair.noun), set()).add(pair.verb)
            combos.setdefault((pair.verb, pair.noun), set()).add(pair.domain)

        rules: Dict[str, List[VerbNounRule]] = {}
        for rule in model.wildcard_rules:
            rules.setdefault(rule.domain, []).append(rule)

        domains = {pair.domain for pair in model.verb_noun_pairs} | set(rules)
        return cls(
            verbs_by_key={k: frozenset(v) for k, v in verbs.items()},
            domains_by_combo={k: frozenset(v) for k, v in combos.items()},
            rules_by_domain={k: tuple(v) for k, v in rules.items()},
            domains=frozenset(domains),
        )


class VerbNounChecker:
    """
    Validates verb-noun pairs against a SemanticModel.

    Indexes are built lazily per model and cached for the model's lifetime;
    models are immutable so a cached index never goes stale.
    """

    def __init__(self):
        self._indexes: "weakref.WeakKeyDictionary[SemanticModel, _PairIndex]" = weakref.WeakKeyDictionary()

    def _index(self, model: SemanticModel) -> _PairIndex:
        index = self._indexes.get(model)
        if index is None:
            index = _PairIndex.from_model(model)
            self._indexes[model] = index
        return index

    def validate_pair(self, pair, model: SemanticModel) -> VerbNounVerdict:
        """
        Validate a verb-noun pair.

        Args:
            pair: VerbNounPair, (verb, noun, domain) tuple or mapping
            model: Semantic model declaring the allowed pairs

        Returns:
            VerbNounVerdict; invalid verdicts carry DOMAIN_MISMATCH or
            UNKNOWN_VERB_NOUN_COMBINATION
        """
        pair = VerbNounPair.coerce(pair)
        index = self._index(model)

        if pair.verb in index.verbs_by_key.get((pair.domain, pair.noun), frozenset()):
            return VerbNounVerdict(pair=pair, valid=True)

        for rule in index.rules_by_domain.get(pair.domain, ()):
            if self._rule_matches(rule, pair, model):
                return VerbNounVerdict(pair=pair, valid=True, matched_rule=rule)

        reason, detail = self._classify_rejection(pair, index)
        logger.debug(f"Rejected {pair.verb}/{pair.noun}@{pair.domain}: {reason.value} ({detail})")
        return VerbNounVerdict(pair=pair, valid=False, reason=reason, detail=detail)

    @staticmethod
    def _rule_matches(rule: VerbNounRule, pair: VerbNounPair, model: SemanticModel) -> bool:
        if not fnmatchcase(pair.verb, rule.verb_pattern):
            return False
        tag = rule.noun_tag
        if tag is not None:
            return tag in model.noun_tags.get(pair.noun, frozenset())
        return fnmatchcase(pair.noun, rule.noun_pattern)

    @staticmethod
    def _classify_rejection(pair: VerbNounPair, index: _PairIndex) -> Tuple[FailureReason, str]:
        if pair.domain not in index.domains:
            return FailureReason.DOMAIN_MISMATCH, f"domain {pair.domain!r} is not declared"
        allowed = index.verbs_by_key.get((pair.domain, pair.noun))
        if allowed:
            return (FailureReason.DOMAIN_MISMATCH,
                    f"{pair.noun!r} in {pair.domain!r} allows only {sorted(allowed)}")
        elsewhere = index.domains_by_combo.get((pair.verb, pair.noun))
        if elsewhere:
            return (FailureReason.DOMAIN_MISMATCH,
                    f"{pair.verb}/{pair.noun} is declared only in {sorted(elsewhere)}")
        return (FailureReason.UNKNOWN_VERB_NOUN_COMBINATION,
                f"no pair or rule covers {pair.verb}/{pair.noun} in {pair.domain!r}")
