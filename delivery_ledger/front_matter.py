"""
Front matter codec for ledger artifacts.

An artifact is a `---` delimited YAML header followed by a free-form
Markdown body:

    ---
    command: research-plan
    kind: plan
    related:
      spec: spec/spec.md
    ---
    # Plan
    ...

The header is flat, or nested one level (for maps such as `related`).
Values are strings, numbers, booleans, null, or lists of those.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any

import jsonschema
import yaml

from .errors import MalformedArtifact


DELIMITER = "---"
_HEADER_RE = re.compile(r"\A---[ \t]*\r?\n(.*?)^---[ \t]*(?:\r?\n|\Z)", re.DOTALL | re.MULTILINE)

_SCALAR = {"type": ["string", "number", "boolean", "null"]}
_SCALAR_LIST = {"type": "array", "items": _SCALAR}
_FLAT_VALUE = {"anyOf": [_SCALAR, _SCALAR_LIST]}
FRONT_MATTER_SCHEMA: dict[str, Any] = {
    "type": "object",
    "propertyNames": {"type": "string", "minLength": 1},
    "additionalProperties": {
        "anyOf": [
            _FLAT_VALUE,
            {"type": "object", "additionalProperties": _FLAT_VALUE},
        ]
    },
}


def _normalize(value: Any) -> Any:
    # Hand-edited headers often carry bare YAML dates.
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _normalize(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_normalize(v) for v in value]
    return value


def validate(front_matter: Any) -> None:
    try:
        jsonschema.validate(instance=front_matter, schema=FRONT_MATTER_SCHEMA)
    except jsonschema.ValidationError as exc:
        raise MalformedArtifact(f"unsupported front matter shape: {exc.message}") from exc


def parse(raw: str) -> tuple[dict[str, Any], str]:
    m = _HEADER_RE.match(raw)
    if not m:
        if raw.startswith(DELIMITER):
            raise MalformedArtifact("unterminated front matter block")
        raise MalformedArtifact("missing front matter block")
    try:
        loaded = yaml.safe_load(m.group(1))
    except yaml.YAMLError as exc:
        raise MalformedArtifact(f"invalid front matter yaml: {exc}") from exc
    if loaded is None:
        loaded = {}
    if not isinstance(loaded, dict):
        raise MalformedArtifact("front matter must be a mapping")
    front_matter = _normalize(loaded)
    validate(front_matter)
    return front_matter, raw[m.end():]


def serialize(front_matter: dict[str, Any], body: str) -> str:
    validate(front_matter)
    header = ""
    if front_matter:
        header = yaml.safe_dump(
            front_matter,
            sort_keys=False,
            default_flow_style=False,
            allow_unicode=True,
            width=float("inf"),
        )
    return f"{DELIMITER}\n{header}{DELIMITER}\n{body}"
