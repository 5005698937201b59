"""Test the engine context entry point."""
import pytest
import sys
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Dict

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import semantic_coherence
from semantic_coherence import (
    ContextClosed,
    EngineConfig,
    FaultToleranceConfig,
    ModelNotFound,
    ModelRegistry,
    QAThresholds,
    RedundancySet,
    ResultKind,
    SemanticModel,
    create_context,
    destroy_context,
)

from conftest import from_record, to_record


class TestEngineLifecycle:
    """Tests for context creation and destruction."""

    def test_version(self):
        """Test the package exposes a version."""
        assert semantic_coherence.__version__

    def test_destroy_releases_models(self, transportation_model: SemanticModel):
        """Test destroyed contexts release their handles."""
        ctx = create_context()
        handle = ctx.register_model(transportation_model)
        destroy_context(ctx)
        assert ctx.closed
        with pytest.raises(ModelNotFound):
            ctx.registry.lookup(handle)
        with pytest.raises(ContextClosed):
            ctx.model(handle)
        with pytest.raises(ContextClosed):
            ctx.register_model(transportation_model)

    def test_destroy_is_idempotent(self):
        """Test destroying twice is harmless."""
        ctx = create_context()
        destroy_context(ctx)
        destroy_context(ctx)
        assert ctx.closed

    def test_context_manager(self, sensor_model: SemanticModel):
        """Test leaving the with-block destroys the context."""
        with create_context() as ctx:
            handle = ctx.register_model(sensor_model)
            assert ctx.model(handle) is sensor_model
        assert ctx.closed
        assert handle not in ctx.registry

    def test_shared_registry(self, transportation_model: SemanticModel, sensor_model: SemanticModel):
        """Test destroying one context leaves another context's models alone."""
        registry = ModelRegistry()
        first = create_context(registry=registry)
        second = create_context(registry=registry)
        kept = second.register_model(sensor_model)
        first.register_model(transportation_model)
        destroy_context(first)
        assert second.model(kept) is sensor_model
        assert len(registry) == 1

    def test_unknown_handle(self, transportation_model: SemanticModel):
        """Test another registry's handle is not found."""
        other = create_context()
        handle = other.register_model(transportation_model)
        with create_context() as ctx:
            with pytest.raises(ModelNotFound):
                ctx.compute_coherence({}, {}, handle)


class TestEngineOperations:
    """Tests for EngineContext operations."""

    @pytest.fixture
    def ctx(self):
        ctx = create_context()
        yield ctx
        destroy_context(ctx)

    def test_transform_with_coherence(self, ctx, transportation_model: SemanticModel,
                                      vehicle_reading: Dict[str, Any]):
        """Test a staged round-trip transform is recorded in the ledger."""
        handle = ctx.register_model(transportation_model)
        result = ctx.transform_with_coherence(handle, vehicle_reading, "record", to_record, from_record)
        assert result.kind is ResultKind.SUCCESS
        assert len(ctx.ledger) == 1
        ok, errors = ctx.ledger.verify_chain()
        assert ok, errors

    def test_transform_gated_by_context_thresholds(self, ctx, transportation_model: SemanticModel,
                                                   vehicle_reading: Dict[str, Any]):
        """Test context thresholds gate staged calls only."""
        handle = ctx.register_model(transportation_model)
        ctx.set_qa_threshold("completion", 0.95)

        def drop_route(value, target_format):
            return {k: v for k, v in value.items() if k != "route"}

        gated = ctx.transform_with_coherence(handle, vehicle_reading, "dict", drop_route)
        assert gated.kind is ResultKind.QA_GATE_FAILED
        assert gated.reason == "completion"
        ungated = ctx.transform_with_coherence(handle, vehicle_reading, "dict", drop_route, staged=False)
        assert ungated.ok
        assert len(ctx.ledger) == 2

    def test_audit_records_off(self, transportation_model: SemanticModel, vehicle_reading: Dict[str, Any]):
        """Test records are not kept when auditing is disabled."""
        with create_context(EngineConfig(audit_records=False)) as ctx:
            handle = ctx.register_model(transportation_model)
            ctx.transform_with_coherence(handle, vehicle_reading, "record", to_record, from_record)
            assert len(ctx.ledger) == 0

    def test_validate_semantic_coherence(self, ctx, transportation_model: SemanticModel,
                                         vehicle_reading: Dict[str, Any]):
        """Test the all-layer check."""
        handle = ctx.register_model(transportation_model)
        assert ctx.validate_semantic_coherence(handle, vehicle_reading)
        assert not ctx.validate_semantic_coherence(handle, {"vehicle": "car", "speed": -1})

    def test_validate_pair(self, ctx, transportation_model: SemanticModel):
        """Test the speeding and flying car scenarios through the context."""
        handle = ctx.register_model(transportation_model)
        assert ctx.validate_pair(("speeding", "car", "ground"), handle).valid
        assert ctx.validate_pair(("flying", "car", "ground"), handle).reason.value == "DomainMismatch"

    def test_validate_bidirectional_integrity(self, ctx, transportation_model: SemanticModel,
                                              vehicle_reading: Dict[str, Any]):
        """Test mutual coherence of a dict and its record form."""
        handle = ctx.register_model(transportation_model)
        assert ctx.validate_bidirectional_integrity(handle, vehicle_reading, to_record(vehicle_reading, "record"))
        assert not ctx.validate_bidirectional_integrity(handle, vehicle_reading, {"vehicle": "car", "speed": -1})

    def test_compute_coherence(self, ctx, transportation_model: SemanticModel, vehicle_reading: Dict[str, Any]):
        """Test self-coherence through the context."""
        handle = ctx.register_model(transportation_model)
        assert ctx.compute_coherence(vehicle_reading, vehicle_reading, handle) == 1.0

    def test_configured_weights(self, transportation_model: SemanticModel, vehicle_reading: Dict[str, Any]):
        """Test score weights come from the engine config."""
        config = EngineConfig.model_validate({"weights": {"concept": 0.0, "structure": 1.0, "task": 0.0}})
        with create_context(config) as ctx:
            handle = ctx.register_model(transportation_model)
            target = {k: v for k, v in vehicle_reading.items() if k != "route"}
            assert ctx.compute_coherence(vehicle_reading, target, handle) == 1.0

    def test_set_qa_threshold_validates(self, ctx):
        """Test thresholds outside [0, 1] raise."""
        with pytest.raises(ValueError):
            ctx.set_qa_threshold("completion", 1.5)
        ctx.set_qa_threshold("intake", 0.2)
        assert ctx.describe()["qa_thresholds"]["intake"] == 0.2

    def test_default_thresholds_from_config(self):
        """Test the context starts from the configured thresholds."""
        with create_context(EngineConfig(qa_thresholds=QAThresholds(processing=0.7))) as ctx:
            assert ctx.gate.thresholds.processing == 0.7

    def test_stream_processing(self, ctx, sensor_model: SemanticModel):
        """Test the temperature scenario with bounds given as a mapping."""
        handle = ctx.register_model(sensor_model)
        processor = ctx.create_stream_processor(handle, {"quantity": "temperature", "range": (-40, 85)})
        assert ctx.validate_stream_coherence(processor, 90.0) is False
        assert ctx.validate_stream_coherence(processor, 22.5) is True

    def test_encode_and_correct(self, ctx, transportation_model: SemanticModel, vehicle_reading: Dict[str, Any]):
        """Test encode then correct with one replica replaced."""
        handle = ctx.register_model(transportation_model)
        encoded = ctx.encode(vehicle_reading)
        values = encoded.values
        values[2] = {"noise": 1}
        result = ctx.correct(RedundancySet.from_values(values), None, handle)
        assert result.corrected
        assert result.value == vehicle_reading

    def test_correct_with_explicit_config(self, ctx, transportation_model: SemanticModel,
                                          vehicle_reading: Dict[str, Any]):
        """Test an explicit config overrides the context default."""
        handle = ctx.register_model(transportation_model)
        config = FaultToleranceConfig(redundancy_factor=5)
        encoded = ctx.encode(vehicle_reading, config)
        assert len(encoded) == 5
        result = ctx.correct(encoded, config, handle)
        assert result.corrected
        assert result.group == (0, 1, 2, 3, 4)

    def test_audit_capacity(self, transportation_model: SemanticModel, vehicle_reading: Dict[str, Any]):
        """Test the ledger never grows past the configured capacity."""
        with create_context(EngineConfig(audit_capacity=5)) as ctx:
            handle = ctx.register_model(transportation_model)
            for i in range(20):
                ctx.transform_with_coherence(handle, dict(vehicle_reading, speed=float(i)),
                                             "record", to_record, from_record)
            assert len(ctx.ledger) == 5
            assert ctx.ledger.dropped == 15
            ok, errors = ctx.ledger.verify_chain()
            assert ok, errors

    def test_concurrent_calls_are_isolated(self, transportation_model: SemanticModel,
                                           vehicle_reading: Dict[str, Any]):
        """Test parallel transforms and corrections each see only their own value."""
        with create_context(EngineConfig(audit_capacity=64)) as ctx:
            handle = ctx.register_model(transportation_model)
            barrier = threading.Barrier(8)

            def work(speed: float):
                value = dict(vehicle_reading, speed=speed)
                barrier.wait()
                results = []
                for _ in range(10):
                    result = ctx.transform_with_coherence(handle, value, "record", to_record, from_record)
                    replicas = ctx.encode(value).values
                    replicas[0] = {"noise": speed}
                    correction = ctx.correct(RedundancySet.from_values(replicas), None, handle)
                    results.append((result, correction))
                return speed, results

            with ThreadPoolExecutor(max_workers=8) as pool:
                outcomes = list(pool.map(work, [float(i) for i in range(8)]))

            for speed, results in outcomes:
                for result, correction in results:
                    assert result.ok
                    assert result.output.speed == speed
                    assert result.record.states[-1] == "DONE"
                    assert correction.corrected
                    assert correction.value["speed"] == speed
            assert len(ctx.ledger) == 64
            assert ctx.ledger.dropped == 16
            ok, errors = ctx.ledger.verify_chain()
            assert ok, errors
