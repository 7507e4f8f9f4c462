import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List

from jsonschema import Draft202012Validator

SCHEMA_DIR = Path(__file__).resolve().parent

APP_PAYLOAD_SCHEMA = "app_payload.v1.schema.json"
DRAFT_PAYLOAD_SCHEMA = "draft_payload.v1.schema.json"


@lru_cache(maxsize=None)
def load_schema(name: str) -> Dict[str, Any]:
    return json.loads((SCHEMA_DIR / name).read_text())


def validate_payload(payload: Any, name: str) -> List[str]:
    validator = Draft202012Validator(load_schema(name))
    errors = []
    for error in sorted(validator.iter_errors(payload), key=lambda e: [str(p) for p in e.path]):
        path = ".".join(str(p) for p in error.path) if error.path else "root"
        errors.append(f"{path}: {error.message}")
    return errors
