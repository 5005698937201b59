"""
Default extractors for representations.

Representations are opaque to the engine; these helpers read what they can
from common Python shapes (mappings, sequences, dataclasses, strings, UTF-8
bytes). Callers with byte-packed or custom formats pass their own extractors
to the scorer.
"""

from __future__ import annotations

import dataclasses
import re
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Set

from semantic_coherence.registry import VerbNounPair

_TOKEN = re.compile(r"[a-z0-9][a-z0-9_\-]*")
_TASK_KEYS = ("verb", "noun", "domain")


def _as_mapping(value: Any) -> Optional[Mapping[str, Any]]:
    if isinstance(value, Mapping):
        return value
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: getattr(value, f.name) for f in dataclasses.fields(value)}
    if isinstance(value, tuple) and hasattr(value, "_asdict"):
        return value._asdict()
    return None


def extract_concepts(value: Any) -> Set[str]:
    """Collect lower-case tokens from keys and textual leaves."""
    found: Set[str] = set()
    seen: Set[int] = set()

    def walk(node: Any) -> None:
        if isinstance(node, Enum):
            node = node.value
        if isinstance(node, str):
            found.update(_TOKEN.findall(node.lower()))
            return
        if isinstance(node, (bytes, bytearray)):
            found.update(_TOKEN.findall(bytes(node).decode("utf-8", errors="ignore").lower()))
            return
        if isinstance(node, VerbNounPair):
            found.update((node.verb, node.noun, node.domain))
            return
        mapping = _as_mapping(node)
        if mapping is not None or isinstance(node, (list, tuple, set, frozenset)):
            if id(node) in seen:
                return
            seen.add(id(node))
        if mapping is not None:
            for key, item in mapping.items():
                walk(key)
                walk(item)
        elif isinstance(node, (list, tuple, set, frozenset)):
            for item in node:
                walk(item)

    walk(value)
    return found


def extract_fields(value: Any) -> Optional[Dict[str, Any]]:
    """Top-level named fields of a structured value, or None for scalars."""
    mapping = _as_mapping(value)
    if mapping is None:
        return None
    return {str(k): v for k, v in mapping.items()}


def extract_task(value: Any) -> Optional[VerbNounPair]:
    """
    Find the verb-noun task a value carries.

    Recognized: a VerbNounPair, a mapping with a ``task`` entry, or a mapping
    with ``verb``, ``noun`` and ``domain`` keys.
    """
    if isinstance(value, VerbNounPair):
        return value
    mapping = _as_mapping(value)
    if mapping is None:
        return None
    task = mapping.get("task")
    if task is not None and not isinstance(task, str):
        try:
            return VerbNounPair.coerce(task)
        except (KeyError, TypeError, ValueError):
            return None
    if all(key in mapping for key in _TASK_KEYS):
        return VerbNounPair(*(mapping[key] for key in _TASK_KEYS))
    return None
