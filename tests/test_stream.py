"""Test stream coherence processing."""
import pytest
import sys
import threading
from pathlib import Path
from typing import List

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from semantic_coherence.config import StreamBounds
from semantic_coherence.errors import InternalCallbackFailure, ResultKind
from semantic_coherence.registry import ConstraintLayer, LayerConstraint, SemanticModel
from semantic_coherence.runtime.stream import StreamProcessor, StreamVerdict


class TestStreamBounds:
    """Tests for StreamBounds configuration."""

    def test_bounds(self, temperature_bounds: StreamBounds):
        """Test range accessors."""
        assert temperature_bounds.low == -40.0
        assert temperature_bounds.high == 85.0
        assert temperature_bounds.contains(85.0)
        assert not temperature_bounds.contains(85.01)

    def test_inverted_range_rejected(self):
        """Test low > high is rejected."""
        with pytest.raises(ValueError):
            StreamBounds(quantity="temperature", range=(10.0, -10.0))


class TestStreamProcessor:
    """Tests for StreamProcessor."""

    def test_temperature_readings(self, sensor_model: SemanticModel, temperature_bounds: StreamBounds):
        """Test 90.0 is out of range and 22.5 is accepted."""
        processor = StreamProcessor(sensor_model, temperature_bounds)
        assert processor.validate(90.0) is False
        assert processor.validate(22.5) is True
        assert processor.accepted == 1
        assert processor.rejected == 1
        assert processor.last_violation.reading == 90.0

    def test_violation_kind(self, sensor_model: SemanticModel, temperature_bounds: StreamBounds):
        """Test out-of-range readings are contextual violations."""
        verdict = StreamProcessor(sensor_model, temperature_bounds).check(-41)
        assert verdict.kind is ResultKind.CONTEXTUAL_VIOLATION
        assert verdict.reason.startswith("OutOfBounds")

    @pytest.mark.parametrize("reading", [float("nan"), float("inf"), float("-inf"), "22.5", None, True])
    def test_non_finite_and_non_numeric(self, sensor_model: SemanticModel,
                                        temperature_bounds: StreamBounds, reading):
        """Test NaN, infinities and non-numbers are rejected without raising."""
        assert StreamProcessor(sensor_model, temperature_bounds).validate(reading) is False

    def test_mapping_readings(self, sensor_model: SemanticModel, temperature_bounds: StreamBounds):
        """Test readings carrying quantity and unit."""
        processor = StreamProcessor(sensor_model, temperature_bounds)
        assert processor.validate({"value": 22.5, "quantity": "temperature", "unit": "celsius"})
        assert not processor.validate({"value": 22.5, "quantity": "humidity"})
        assert not processor.validate({"value": 22.5, "unit": "fahrenheit"})
        assert not processor.validate({"quantity": "temperature"})

    def test_model_constraints_apply(self, temperature_bounds: StreamBounds):
        """Test the model's layers run before the range check."""
        model = SemanticModel.build("sensors", constraints=[
            LayerConstraint(ConstraintLayer.STRUCTURAL, lambda v, m: isinstance(v, dict), "structured"),
        ])
        processor = StreamProcessor(model, temperature_bounds)
        verdict = processor.check(22.5)
        assert verdict.kind is ResultKind.STRUCTURAL_VIOLATION
        assert processor.validate({"value": 22.5})

    def test_drift_hook(self, sensor_model: SemanticModel, temperature_bounds: StreamBounds):
        """Test the drift hook sees every rejected reading and the stream continues."""
        seen: List[StreamVerdict] = []
        processor = StreamProcessor(sensor_model, temperature_bounds, on_drift=seen.append)
        for reading in (20.0, 120.0, 21.0, -50.0, 22.0):
            processor.validate(reading)
        assert [v.reading for v in seen] == [120.0, -50.0]
        assert processor.accepted == 3

    def test_failing_drift_hook(self, sensor_model: SemanticModel, temperature_bounds: StreamBounds):
        """Test drift hook exceptions surface as InternalCallbackFailure."""
        def broken(verdict):
            raise IOError("alert sink down")

        processor = StreamProcessor(sensor_model, temperature_bounds, on_drift=broken)
        with pytest.raises(InternalCallbackFailure):
            processor.validate(99.0)
        assert processor.rejected == 1

    def test_concurrent_readings(self, sensor_model: SemanticModel, temperature_bounds: StreamBounds):
        """Test counters stay consistent across threads."""
        processor = StreamProcessor(sensor_model, temperature_bounds)

        def feed():
            for i in range(100):
                processor.validate(float(i))

        threads = [threading.Thread(target=feed) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert processor.accepted == 4 * 86
        assert processor.rejected == 4 * 14
