"""
Semantic Model Registry

A SemanticModel is the immutable description of a domain: its core concepts,
the representations it may be transformed into, and the verb-noun tasks that
are legal in it. Models are registered once during setup and looked up by
handle on the hot path.

Key classes:
- VerbNounPair, VerbNounRule: task descriptors and wildcard rules
- ConstraintLayer, LayerConstraint: caller predicates bound to a layer
- SemanticModel: frozen domain description
- ModelRegistry: single-writer/many-reader handle store
"""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from semantic_coherence.errors import ModelNotFound

logger = logging.getLogger(__name__)


def _tag(value: str) -> str:
    return str(value).strip().lower()


@dataclass(frozen=True)
class VerbNounPair:
    """Task descriptor: an action, its subject and the domain it applies in."""
    verb: str
    noun: str
    domain: str

    def __post_init__(self):
        object.__setattr__(self, "verb", _tag(self.verb))
        object.__setattr__(self, "noun", _tag(self.noun))
        object.__setattr__(self, "domain", _tag(self.domain))

    @classmethod
    def coerce(cls, value: Any) -> "VerbNounPair":
        """Accept a pair, a (verb, noun, domain) tuple or a mapping."""
        if isinstance(value, VerbNounPair):
            return value
        if isinstance(value, Mapping):
            return cls(value["verb"], value["noun"], value["domain"])
        verb, noun, domain = value
        return cls(verb, noun, domain)

    def to_dict(self) -> Dict[str, str]:
        return {"verb": self.verb, "noun": self.noun, "domain": self.domain}


@dataclass(frozen=True)
class VerbNounRule:
    """
    Wildcard rule subsuming a family of verb-noun pairs within one domain.

    Patterns are shell-style globs. A noun pattern starting with ``@`` names a
    noun tag instead, e.g. ``@ground-vehicle``.
    """
    verb_pattern: str
    noun_pattern: str
    domain: str

    def __post_init__(self):
        object.__setattr__(self, "verb_pattern", _tag(self.verb_pattern))
        object.__setattr__(self, "noun_pattern", _tag(self.noun_pattern))
        object.__setattr__(self, "domain", _tag(self.domain))

    @property
    def noun_tag(self) -> Optional[str]:
        if self.noun_pattern.startswith("@"):
            return self.noun_pattern[1:]
        return None

    def __str__(self) -> str:
        return f"{self.verb_pattern}:{self.noun_pattern}@{self.domain}"


class ConstraintLayer(Enum):
    """Constraint layers, declared in their fixed evaluation order."""
    SEMANTIC = "semantic"
    STRUCTURAL = "structural"
    CONTEXTUAL = "contextual"


LAYER_ORDER = (ConstraintLayer.SEMANTIC, ConstraintLayer.STRUCTURAL, ConstraintLayer.CONTEXTUAL)

Predicate = Callable[[Any, "SemanticModel"], bool]


def format_key(target_format: Any) -> str:
    """Format identifiers may be enums or strings; compare by value."""
    return str(getattr(target_format, "value", target_format))


@dataclass(frozen=True)
class LayerConstraint:
    """A caller predicate ``(value, model) -> bool`` bound to one layer."""
    layer: ConstraintLayer
    predicate: Predicate
    tag: str


@dataclass(frozen=True, eq=False)
class SemanticModel:
    """
    Immutable description of a domain.

    Use ``SemanticModel.build`` to construct one from plain iterables; it
    normalizes tags and freezes every collection.
    """
    domain: str
    concepts: Tuple[str, ...] = ()
    target_formats: FrozenSet[str] = frozenset()
    verb_noun_pairs: FrozenSet[VerbNounPair] = frozenset()
    wildcard_rules: Tuple[VerbNounRule, ...] = ()
    noun_tags: Mapping[str, FrozenSet[str]] = field(default_factory=lambda: MappingProxyType({}))
    required_fields: Mapping[str, Tuple[type, ...]] = field(default_factory=lambda: MappingProxyType({}))
    constraints: Tuple[LayerConstraint, ...] = ()

    @classmethod
    def build(cls,
              domain: str,
              concepts: Iterable[str] = (),
              target_formats: Iterable[str] = (),
              verb_noun_pairs: Iterable[Any] = (),
              wildcard_rules: Iterable[Any] = (),
              noun_tags: Optional[Mapping[str, Iterable[str]]] = None,
              required_fields: Optional[Mapping[str, Any]] = None,
              constraints: Iterable[LayerConstraint] = ()) -> "SemanticModel":
        """
        Build a model from plain Python collections.

        Args:
            domain: Domain name, e.g. "transportation"
            concepts: Core concept tags; order is kept, duplicates dropped
            target_formats: Allowed target representation identifiers
            verb_noun_pairs: VerbNounPair objects or (verb, noun, domain) tuples
            wildcard_rules: VerbNounRule objects or (verb_pattern, noun_pattern, domain) tuples
            noun_tags: noun -> category tags used by ``@tag`` rules
            required_fields: field name -> type or tuple of accepted types
            constraints: LayerConstraint predicates

        Returns:
            Frozen SemanticModel
        """
        ordered: List[str] = []
        for concept in concepts:
            tag = _tag(concept)
            if tag not in ordered:
                ordered.append(tag)

        rules = tuple(
            rule if isinstance(rule, VerbNounRule) else VerbNounRule(*rule)
            for rule in wildcard_rules
        )
        tags = {
            _tag(noun): frozenset(_tag(t) for t in noun_tag_list)
            for noun, noun_tag_list in (noun_tags or {}).items()
        }
        fields = {}
        for name, types in (required_fields or {}).items():
            fields[name] = tuple(types) if isinstance(types, (tuple, list)) else (types,)

        return cls(
            domain=_tag(domain),
            concepts=tuple(ordered),
            target_formats=frozenset(format_key(f) for f in target_formats),
            verb_noun_pairs=frozenset(VerbNounPair.coerce(p) for p in verb_noun_pairs),
            wildcard_rules=rules,
            noun_tags=MappingProxyType(tags),
            required_fields=MappingProxyType(fields),
            constraints=tuple(constraints),
        )

    def constraints_for(self, layer: ConstraintLayer) -> Tuple[LayerConstraint, ...]:
        return tuple(c for c in self.constraints if c.layer is layer)

    def allows_format(self, target_format: Any) -> bool:
        """An empty format set places no restriction."""
        return not self.target_formats or format_key(target_format) in self.target_formats


@dataclass(frozen=True)
class ModelHandle:
    """Opaque reference to a registered model."""
    id: int
    domain: str


class ModelRegistry:
    """
    Handle store for semantic models.

    Writers serialize on a lock and publish a fresh mapping; readers use the
    currently published mapping and never block.
    """

    def __init__(self):
        self._write_lock = threading.Lock()
        self._counter = itertools.count(1)
        self._models: Mapping[ModelHandle, SemanticModel] = MappingProxyType({})

    def register(self, model: SemanticModel) -> ModelHandle:
        """Register a model. The same domain registered twice yields two handles."""
        if not isinstance(model, SemanticModel):
            raise TypeError(f"expected SemanticModel, got {type(model).__name__}")
        with self._write_lock:
            handle = ModelHandle(id=next(self._counter), domain=model.domain)
            models = dict(self._models)
            models[handle] = model
            self._models = MappingProxyType(models)
        logger.debug(f"Registered model {model.domain!r} as handle {handle.id}")
        return handle

    def lookup(self, handle: ModelHandle) -> SemanticModel:
        """Return the model for ``handle`` or raise ModelNotFound."""
        try:
            return self._models[handle]
        except (KeyError, TypeError):
            raise ModelNotFound(handle) from None

    def unregister(self, handle: ModelHandle) -> None:
        with self._write_lock:
            if handle not in self._models:
                raise ModelNotFound(handle)
            models = dict(self._models)
            del models[handle]
            self._models = MappingProxyType(models)
        logger.debug(f"Unregistered model handle {handle.id}")

    def handles_for(self, domain: str) -> List[ModelHandle]:
        domain = _tag(domain)
        return sorted((h for h in self._models if h.domain == domain), key=lambda h: h.id)

    def __contains__(self, handle: object) -> bool:
        return handle in self._models

    def __len__(self) -> int:
        return len(self._models)
