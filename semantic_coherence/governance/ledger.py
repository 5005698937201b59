"""
Audit Ledger

Append-only, hash-chained log of TransformationRecords. Each entry's digest
covers the record and the previous entry's digest, so any edit or reordering
breaks the chain.
"""

from __future__ import annotations

import json
import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, Iterator, List, Optional, Tuple

from semantic_coherence.runtime.context import TransformationRecord
from semantic_coherence.schemas import record_errors, validate_record

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerEntry:
    index: int
    record: TransformationRecord
    parent_digest: Optional[str]
    digest: str

    def to_dict(self) -> Dict[str, Any]:
        payload = self.record.to_dict()
        payload["index"] = self.index
        payload["parent_digest"] = self.parent_digest
        payload["digest"] = self.digest
        return payload


class AuditLedger:
    """
    Hash-chained record log.

    With ``validate`` set, each record is checked against the bundled
    transformation_record schema before it is appended. With ``capacity``
    set, only the newest ``capacity`` entries are kept; the digest of the
    last evicted entry anchors the retained window so it still verifies.
    """

    def __init__(self, validate: bool = True, capacity: Optional[int] = None):
        if capacity is not None and capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.validate = validate
        self.capacity = capacity
        self._entries: Deque[LedgerEntry] = deque(maxlen=capacity)
        self._anchor: Optional[str] = None
        self._next_index = 0
        self._lock = threading.Lock()

    def append(self, record: TransformationRecord) -> str:
        """
        Append a record and return its chained digest.

        Raises:
            jsonschema.ValidationError: If validation is on and the record is malformed
        """
        if self.validate:
            validate_record(record.to_dict())
        with self._lock:
            parent = self._entries[-1].digest if self._entries else self._anchor
            digest = record.compute_digest(parent)
            if self.capacity is not None and len(self._entries) == self.capacity:
                self._anchor = self._entries[0].digest
            self._entries.append(LedgerEntry(self._next_index, record, parent, digest))
            self._next_index += 1
        return digest

    @property
    def dropped(self) -> int:
        """Number of entries evicted to respect ``capacity``."""
        return self._next_index - len(self._entries)

    def verify_chain(self) -> Tuple[bool, List[str]]:
        """
        Recompute every retained digest and check the parent links.

        The first retained entry must link to the last evicted one.

        Returns:
            Tuple of (is_valid, errors)
        """
        errors = []
        with self._lock:
            entries = list(self._entries)
            prev = self._anchor
        for entry in entries:
            if entry.parent_digest != prev:
                errors.append(f"Entry {entry.index}: chain break, parent {entry.parent_digest} != {prev}")
            expected = entry.record.compute_digest(entry.parent_digest)
            if expected != entry.digest:
                errors.append(f"Entry {entry.index}: digest mismatch, expected {expected}, got {entry.digest}")
            if self.validate:
                errors.extend(f"Entry {entry.index}: {e}" for e in record_errors(entry.record.to_dict()))
            prev = entry.digest
        if errors:
            logger.warning(f"Audit ledger failed verification with {len(errors)} error(s)")
        return len(errors) == 0, errors

    def to_jsonl(self) -> str:
        return "\n".join(json.dumps(e.to_dict(), sort_keys=True) for e in self)

    @property
    def head(self) -> Optional[str]:
        return self._entries[-1].digest if self._entries else None

    def __iter__(self) -> Iterator[LedgerEntry]:
        with self._lock:
            return iter(list(self._entries))

    def __len__(self) -> int:
        return len(self._entries)
