"""
Semantic Coherence Schemas

Access to the bundled JSON schemas and validation of audit records against
them.
"""

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List

from jsonschema import Draft7Validator

RECORD_SCHEMA = "transformation_record.schema.json"


def get_schema_dir() -> Path:
    """Get the path to the schemas directory."""
    return Path(__file__).parent


def get_schema_path(schema_name: str) -> Path:
    """
    Get the full path to a schema file.

    Raises:
        FileNotFoundError: If schema is not found
    """
    schema_path = get_schema_dir() / schema_name
    if not schema_path.exists():
        raise FileNotFoundError(f"Schema '{schema_name}' not found in {get_schema_dir()}")
    return schema_path


@lru_cache(maxsize=None)
def load_schema(schema_name: str = RECORD_SCHEMA) -> Dict[str, Any]:
    """Load and parse a schema; results are cached per name."""
    with open(get_schema_path(schema_name), "r", encoding="utf-8") as f:
        return json.load(f)


@lru_cache(maxsize=None)
def record_validator(schema_name: str = RECORD_SCHEMA) -> Draft7Validator:
    """Validator for a schema; the schema itself is checked once, on first use."""
    schema = load_schema(schema_name)
    Draft7Validator.check_schema(schema)
    return Draft7Validator(schema)


def validate_record(record: Dict[str, Any], schema_name: str = RECORD_SCHEMA) -> bool:
    """
    Validate a record dict against a schema.

    Raises:
        jsonschema.ValidationError: If validation fails
    """
    record_validator(schema_name).validate(record)
    return True


def record_errors(record: Dict[str, Any], schema_name: str = RECORD_SCHEMA) -> List[str]:
    """All schema violations of a record, as messages; empty when valid."""
    validator = record_validator(schema_name)
    return [
        f"{'/'.join(str(p) for p in error.path) or '<root>'}: {error.message}"
        for error in sorted(validator.iter_errors(record), key=lambda e: [str(p) for p in e.path])
    ]


__all__ = [
    "RECORD_SCHEMA",
    "get_schema_dir",
    "get_schema_path",
    "load_schema",
    "record_validator",
    "validate_record",
    "record_errors",
]
