from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict

import yaml

DEFAULTS_PATH = Path(__file__).resolve().parent / "defaults.yaml"
LOCAL_PATH = Path("config/local.yaml")
ENV_PREFIX = "TRACE_VIEW__"


def _deep_merge(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(a)
    for k, v in b.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _coerce(value: str) -> Any:
    if value.lower() in {"true", "false"}:
        return value.lower() == "true"
    try:
        return int(value)
    except ValueError:
        try:
            return float(value)
        except ValueError:
            return value


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_config(overrides_path: str | Path | None = None) -> Dict[str, Any]:
    """Return the merged configuration.

    Layers, lowest first: packaged ``defaults.yaml``, ``overrides_path`` (or
    ``config/local.yaml`` when present), then ``TRACE_VIEW__SECTION__KEY``
    environment variables.
    """
    cfg = _load_yaml(DEFAULTS_PATH)
    override_file = Path(overrides_path) if overrides_path else LOCAL_PATH
    cfg = _deep_merge(cfg, _load_yaml(override_file))
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        parts = key[len(ENV_PREFIX) :].lower().split("__")
        d = cfg
        for p in parts[:-1]:
            d = d.setdefault(p, {})
        d[parts[-1]] = _coerce(value)
    return cfg
