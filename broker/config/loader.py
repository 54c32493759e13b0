"""YAML config loader with hashing and dotted-key lookup."""

import hashlib
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel

from broker.config.schema import BrokerConfig


def load_config(path: str | Path) -> BrokerConfig:
    """Load and validate config from a YAML file.

    A missing or empty file yields the defaults.
    """
    path = Path(path)
    if not path.exists():
        return BrokerConfig()
    with open(path) as f:
        raw = yaml.safe_load(f) or {}
    return BrokerConfig(**raw)


def config_hash(config: BrokerConfig) -> str:
    """Compute a deterministic SHA256 hash of the config."""
    data = config.model_dump_json(indent=None)
    return hashlib.sha256(data.encode()).hexdigest()[:16]


def get_config_value(config: BrokerConfig, dotted_key: str) -> Any:
    """Get a config value by dotted key path. E.g. 'expiry.deal_timeout_hours'."""
    parts = dotted_key.split(".")
    obj: Any = config
    for part in parts:
        if isinstance(obj, list):
            obj = obj[int(part)]
        elif isinstance(obj, BaseModel) and part in type(obj).model_fields:
            obj = getattr(obj, part)
        elif isinstance(obj, dict):
            obj = obj[part]
        else:
            raise KeyError(f"Config key not found: {dotted_key}")
    return obj
