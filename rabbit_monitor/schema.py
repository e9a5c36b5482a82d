from __future__ import annotations

from dataclasses import asdict
from importlib import resources
import json
from typing import Any

from jsonschema import Draft202012Validator

from rabbit_monitor import __version__
from rabbit_monitor.models import Snapshot

SCHEMA_FILE = "schemas/snapshot.schema.json"


def load_schema() -> dict[str, Any]:
    schema_path = resources.files("rabbit_monitor").joinpath(SCHEMA_FILE)
    return json.loads(schema_path.read_text(encoding="utf-8"))


def get_validator() -> Draft202012Validator:
    return Draft202012Validator(schema=load_schema())


def snapshot_to_dict(snapshot: Snapshot) -> dict[str, Any]:
    payload = asdict(snapshot)
    return {"version": __version__, **payload}


def validate_payload(payload: dict[str, Any]) -> list[str]:
    validator = get_validator()
    errors = sorted(validator.iter_errors(payload), key=lambda e: list(e.path))
    return [error.message for error in errors]
