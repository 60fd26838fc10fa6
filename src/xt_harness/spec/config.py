from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from jsonschema import Draft202012Validator


class ConfigError(RuntimeError):
    pass


_CHECK_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["target"],
    "additionalProperties": False,
    "properties": {
        "target": {"type": "string", "minLength": 1},
        "host_env": {"type": ["string", "null"]},
        "features": {
            "type": ["array", "null"],
            "items": {"type": "string", "minLength": 1},
        },
        "no_default_features": {"type": "boolean"},
        "niche": {"type": "boolean"},
    },
}

_CRATE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["name", "checks"],
    "additionalProperties": False,
    "properties": {
        "name": {"type": "string", "minLength": 1},
        "checks": {"type": "array", "items": _CHECK_SCHEMA},
        "examples": {"type": "array", "items": {"type": "string", "minLength": 1}},
    },
}

CONFIG_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "oneOf": [
        {"type": "array", "items": _CRATE_SCHEMA},
        {
            "type": "object",
            "required": ["crates"],
            "additionalProperties": False,
            "properties": {"crates": {"type": "array", "items": _CRATE_SCHEMA}},
        },
    ],
}


@dataclass(frozen=True)
class Check:
    """One configuration a crate is checked under."""

    target_triple: str
    host_env: Optional[str] = None
    features: Optional[Tuple[str, ...]] = None
    no_default_features: bool = False
    # Skipped in the general CI case.
    niche: bool = False


@dataclass(frozen=True)
class Crate:
    name: str
    checks: Tuple[Check, ...] = ()
    examples: Tuple[str, ...] = field(default_factory=tuple)


def load_document(path: Path) -> Any:
    """Load a YAML/JSON file; the top level may be a list or an object."""
    if not path.exists():
        raise FileNotFoundError(path)

    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix.lower() in {".yaml", ".yml"}:
            return yaml.safe_load(text)
        if path.suffix.lower() == ".json":
            return json.loads(text)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigError(f"Unable to parse {path}: {e}") from e
    raise ValueError(f"Unsupported config file extension: {path}")


def validate_config(instance: Any, *, where: str) -> None:
    validator = Draft202012Validator(CONFIG_SCHEMA)
    errors = sorted(validator.iter_errors(instance), key=lambda e: list(e.path))
    if errors:
        msgs = []
        for e in errors[:20]:
            loc = "/".join([str(p) for p in e.path])
            msgs.append(f"- {where}:{loc}: {e.message}")
        if len(errors) > 20:
            msgs.append(f"... ({len(errors)-20} more)")
        raise ConfigError("\n".join(msgs))


def _check_from_dict(raw: Dict[str, Any]) -> Check:
    features = raw.get("features")
    return Check(
        target_triple=raw["target"],
        host_env=raw.get("host_env"),
        features=tuple(features) if features is not None else None,
        no_default_features=bool(raw.get("no_default_features", False)),
        niche=bool(raw.get("niche", False)),
    )


def crates_from_data(data: Any, *, where: str = "<config>") -> List[Crate]:
    validate_config(data, where=where)
    raw_crates = data["crates"] if isinstance(data, dict) else data
    return [
        Crate(
            name=raw["name"],
            checks=tuple(_check_from_dict(c) for c in raw["checks"]),
            examples=tuple(raw.get("examples", ())),
        )
        for raw in raw_crates
    ]


def load_crates(path: Path) -> List[Crate]:
    """Read the crate matrix from a YAML or JSON file."""
    path = Path(path)
    return crates_from_data(load_document(path), where=str(path))
