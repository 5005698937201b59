"""Test governance module (qa_gate, ledger, schemas)."""
import dataclasses
import json
import logging
import pytest
import sys
from pathlib import Path
from typing import Any, Dict

import jsonschema
from hypothesis import given, strategies as st

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from semantic_coherence.config import QAStage, QAThresholds
from semantic_coherence.governance.ledger import AuditLedger, LedgerEntry
from semantic_coherence.governance.qa_gate import QAGate
from semantic_coherence.registry import SemanticModel
from semantic_coherence.runtime.pipeline import TransformPipeline
from semantic_coherence.schemas import RECORD_SCHEMA, get_schema_path, load_schema, record_errors, validate_record

from conftest import from_record, to_record

unit = st.floats(min_value=0.0, max_value=1.0)


class TestQAGate:
    """Tests for QAGate."""

    def test_default_thresholds_pass_everything(self):
        """Test zero thresholds accept any score."""
        gate = QAGate()
        assert gate.gate(QAStage.INTAKE, 0.0).passed
        assert gate.gate("completion", 0.0).passed

    def test_gate_at_threshold_passes(self):
        """Test score == threshold passes."""
        gate = QAGate(QAThresholds(completion=0.9))
        assert gate.gate(QAStage.COMPLETION, 0.9)
        assert not gate.gate(QAStage.COMPLETION, 0.8999)

    def test_nan_never_passes(self):
        """Test NaN scores fail every stage."""
        assert not QAGate().gate(QAStage.INTAKE, float("nan")).passed

    def test_set_threshold_out_of_range(self):
        """Test thresholds outside [0, 1] are rejected."""
        gate = QAGate()
        with pytest.raises(ValueError):
            gate.set_threshold(QAStage.PROCESSING, 1.5)
        with pytest.raises(ValueError):
            gate.set_threshold("processing", -0.1)
        assert gate.thresholds.processing == 0.0

    def test_unknown_stage(self):
        """Test unknown stage names are rejected."""
        with pytest.raises(ValueError):
            QAGate().set_threshold("shipping", 0.5)

    def test_non_monotonic_thresholds_warn(self, caplog):
        """Test decreasing thresholds are accepted and logged."""
        gate = QAGate()
        with caplog.at_level(logging.WARNING, logger="semantic_coherence.governance.qa_gate"):
            gate.set_threshold(QAStage.INTAKE, 0.9)
        assert not gate.is_monotonic()
        assert gate.thresholds.intake == 0.9
        assert "not monotonic" in caplog.text

    def test_decision_to_dict(self):
        """Test decision serialization."""
        data = QAGate(QAThresholds(intake=0.5)).gate(QAStage.INTAKE, 0.25).to_dict()
        assert data == {"stage": "intake", "score": 0.25, "threshold": 0.5, "passed": False, "decision": "FAIL"}

    @given(score=unit, low=unit, high=unit)
    def test_gate_monotone_in_threshold(self, score: float, low: float, high: float):
        """Test passing a stricter threshold implies passing a looser one."""
        low, high = min(low, high), max(low, high)
        strict = QAGate(QAThresholds(processing=high)).gate(QAStage.PROCESSING, score)
        loose = QAGate(QAThresholds(processing=low)).gate(QAStage.PROCESSING, score)
        if strict.passed:
            assert loose.passed


class TestSchemas:
    """Tests for bundled record schema."""

    def test_schema_is_bundled(self):
        """Test the record schema ships with the package."""
        assert get_schema_path(RECORD_SCHEMA).exists()
        assert load_schema()["title"] == "TransformationRecord"

    def test_missing_schema(self):
        """Test unknown schema names raise FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            get_schema_path("nope.schema.json")

    def test_invalid_record(self):
        """Test malformed records are rejected."""
        record = {"kind": "transformation_record", "domain": "", "result": "MAYBE"}
        with pytest.raises(jsonschema.ValidationError):
            validate_record(record)
        assert record_errors(record)


class TestAuditLedger:
    """Tests for the hash-chained audit ledger."""

    @pytest.fixture
    def ledger(self, transportation_model: SemanticModel, vehicle_reading: Dict[str, Any]) -> AuditLedger:
        pipeline = TransformPipeline()
        ledger = AuditLedger()
        ledger.append(pipeline.run(transportation_model, vehicle_reading, "record", to_record, from_record).record)
        ledger.append(pipeline.run(transportation_model, {"speed": 1.0}, "record", to_record).record)
        ledger.append(pipeline.run(transportation_model, vehicle_reading, "xml", to_record).record)
        return ledger

    def test_chain_verifies(self, ledger: AuditLedger):
        """Test an untouched ledger verifies."""
        ok, errors = ledger.verify_chain()
        assert ok, errors
        assert len(ledger) == 3

    def test_entries_link_to_parent(self, ledger: AuditLedger):
        """Test each entry names its predecessor's digest."""
        entries = list(ledger)
        assert entries[0].parent_digest is None
        assert entries[1].parent_digest == entries[0].digest
        assert entries[2].parent_digest == entries[1].digest
        assert ledger.head == entries[2].digest
        assert all(e.digest.startswith("sha256:") for e in entries)

    def test_tampered_record_detected(self, ledger: AuditLedger):
        """Test editing a record breaks its digest."""
        entry = ledger._entries[1]
        tampered = dataclasses.replace(entry.record, reason=None)
        ledger._entries[1] = LedgerEntry(entry.index, tampered, entry.parent_digest, entry.digest)
        ok, errors = ledger.verify_chain()
        assert not ok
        assert any("digest mismatch" in e for e in errors)

    def test_reordered_entries_detected(self, ledger: AuditLedger):
        """Test reordering breaks the parent links."""
        ledger._entries[0], ledger._entries[1] = ledger._entries[1], ledger._entries[0]
        ok, errors = ledger.verify_chain()
        assert not ok
        assert any("chain break" in e for e in errors)

    def test_jsonl_export(self, ledger: AuditLedger):
        """Test each exported line is a schema-valid record."""
        lines = ledger.to_jsonl().splitlines()
        assert len(lines) == 3
        first = json.loads(lines[0])
        assert first["result"] == "SUCCESS"
        assert first["index"] == 0
        assert json.loads(lines[1])["result"] == "SEMANTIC_VIOLATION"
        assert json.loads(lines[2])["reason"] == "UnsupportedTargetFormat"

    def test_capacity_bounds_ledger(self, transportation_model: SemanticModel, vehicle_reading: Dict[str, Any]):
        """Test a capped ledger keeps the newest entries and still verifies."""
        pipeline = TransformPipeline()
        ledger = AuditLedger(capacity=3)
        digests = [
            ledger.append(pipeline.run(transportation_model, dict(vehicle_reading, speed=float(i)),
                                       "record", to_record).record)
            for i in range(5)
        ]
        assert len(ledger) == 3
        assert ledger.dropped == 2
        entries = list(ledger)
        assert [e.index for e in entries] == [2, 3, 4]
        assert entries[0].parent_digest == digests[1]
        assert ledger.head == digests[4]
        ok, errors = ledger.verify_chain()
        assert ok, errors

    def test_capped_ledger_detects_tampering(self, transportation_model: SemanticModel,
                                             vehicle_reading: Dict[str, Any]):
        """Test a retained window whose first link is replaced fails verification."""
        pipeline = TransformPipeline()
        ledger = AuditLedger(capacity=2)
        for i in range(4):
            ledger.append(pipeline.run(transportation_model, dict(vehicle_reading, speed=float(i)),
                                       "record", to_record).record)
        first = ledger._entries[0]
        ledger._entries[0] = LedgerEntry(first.index, first.record, None, first.record.compute_digest(None))
        ok, errors = ledger.verify_chain()
        assert not ok
        assert any("chain break" in e for e in errors)

    def test_capacity_must_be_positive(self):
        """Test a zero capacity is refused."""
        with pytest.raises(ValueError):
            AuditLedger(capacity=0)
