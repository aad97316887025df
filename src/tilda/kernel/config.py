"""Per-instance configuration for tilda.

Each instance reads $TILDA_HOME/config_<instance>.yaml. Keys not present in
the file fall back to DEFAULT_CONFIG; unknown keys are an error on lookup.
"""
from __future__ import annotations

from typing import Any, Dict

import yaml  # type: ignore

from ..paths import config_path
from ..util.fs import atomic_write_text


DEFAULT_CONFIG: Dict[str, Any] = {
    "command": "",
    "working_dir": "",
    "log_level": "INFO",
    "connect_timeout": 1.0,
    "call_timeout": 5.0,
}


def load_config(instance_id: int = 0) -> Dict[str, Any]:
    """Load the instance config merged over the defaults."""
    merged = dict(DEFAULT_CONFIG)
    p = config_path(instance_id)
    if not p.exists():
        return merged
    try:
        doc = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError):
        return merged
    if isinstance(doc, dict):
        merged.update({str(k): v for k, v in doc.items()})
    return merged


def save_config(config: Dict[str, Any], instance_id: int = 0) -> None:
    p = config_path(instance_id)
    atomic_write_text(p, yaml.safe_dump(config, allow_unicode=True, sort_keys=False))


def _require_key(key: str) -> None:
    if key not in DEFAULT_CONFIG:
        raise KeyError(f"unknown config key: {key}")


def config_getstr(key: str, instance_id: int = 0) -> str:
    _require_key(key)
    value = load_config(instance_id).get(key)
    return "" if value is None else str(value)


def config_setstr(key: str, value: str, instance_id: int = 0) -> None:
    _require_key(key)
    config = load_config(instance_id)
    config[key] = str(value)
    save_config(config, instance_id)


def config_getfloat(key: str, instance_id: int = 0) -> float:
    _require_key(key)
    if not isinstance(DEFAULT_CONFIG[key], (int, float)):
        raise KeyError(f"config key is not numeric: {key}")
    value = load_config(instance_id).get(key)
    try:
        return float(value)
    except (TypeError, ValueError):
        return float(DEFAULT_CONFIG[key])
