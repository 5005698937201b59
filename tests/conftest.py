"""Test fixtures for the semantic coherence test suite."""
import dataclasses
import pytest
import sys
from pathlib import Path
from typing import Any, Dict, Optional

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from semantic_coherence.config import StreamBounds
from semantic_coherence.extraction import extract_fields
from semantic_coherence.registry import ConstraintLayer, LayerConstraint, SemanticModel


@dataclasses.dataclass
class VehicleRecord:
    """Alternate representation of a vehicle observation."""
    vehicle: str
    speed: float
    route: Optional[str] = None
    task: Optional[Dict[str, str]] = None


def to_record(value: Dict[str, Any], target_format: Any) -> VehicleRecord:
    return VehicleRecord(
        vehicle=value["vehicle"],
        speed=value["speed"],
        route=value.get("route"),
        task=dict(value["task"]) if value.get("task") else None,
    )


def from_record(record: VehicleRecord) -> Dict[str, Any]:
    data = dataclasses.asdict(record)
    return {k: v for k, v in data.items() if v is not None}


def has_vehicle(value: Any, model: SemanticModel) -> bool:
    fields = extract_fields(value)
    return fields is not None and isinstance(fields.get("vehicle"), str)


def speed_non_negative(value: Any, model: SemanticModel) -> bool:
    fields = extract_fields(value) or {}
    speed = fields.get("speed")
    return isinstance(speed, (int, float)) and not isinstance(speed, bool) and speed >= 0


@pytest.fixture
def transportation_model() -> SemanticModel:
    """Transportation domain with ground and air tasks."""
    return SemanticModel.build(
        domain="transportation",
        concepts=["vehicle", "speed", "route"],
        target_formats=["record", "dict"],
        verb_noun_pairs=[
            ("speeding", "car", "ground"),
            ("parking", "car", "ground"),
            ("flying", "plane", "air"),
        ],
        wildcard_rules=[
            ("tow*", "@ground-vehicle", "ground"),
            ("boarding", "bus-*", "ground"),
        ],
        noun_tags={"car": ["ground-vehicle"], "truck": ["ground-vehicle"]},
        required_fields={"vehicle": str, "speed": (int, float)},
        constraints=[
            LayerConstraint(ConstraintLayer.SEMANTIC, has_vehicle, "has_vehicle"),
            LayerConstraint(ConstraintLayer.STRUCTURAL, speed_non_negative, "speed_non_negative"),
        ],
    )


@pytest.fixture
def sensor_model() -> SemanticModel:
    """Temperature sensor domain without caller predicates."""
    return SemanticModel.build(domain="sensors", concepts=["temperature", "value", "unit"])


@pytest.fixture
def vehicle_reading() -> Dict[str, Any]:
    """A valid transportation value carrying a task."""
    return {
        "vehicle": "car",
        "speed": 88.0,
        "route": "A1",
        "task": {"verb": "speeding", "noun": "car", "domain": "ground"},
    }


@pytest.fixture
def temperature_bounds() -> StreamBounds:
    """Operating range of a temperature sensor."""
    return StreamBounds(quantity="temperature", range=(-40.0, 85.0), unit="celsius")
