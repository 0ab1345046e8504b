# config/loader.py
from __future__ import annotations
import copy
from pathlib import Path
from typing import Any, Dict

# Python 3.11 has tomllib; fall back to "tomli" on older versions if needed
try:
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore[no-redef]


DEFAULTS: Dict[str, Any] = {
    "database": {"path": "data/sindicato.sqlite", "timeout": 5.0, "exclusive": True},
    "logging": {"level": "INFO"},
    "declaration": {"city": "Indiaroba", "state": "Sergipe", "validity_days": 30},
    "backup": {"directory": "data/backups"},
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _merge(out[key], value)
        else:
            out[key] = value
    return out


def load_config(config_path: Path | None = None, *, optional: bool = False) -> Dict[str, Any]:
    """
    Load config.toml from repo root by default, layered over DEFAULTS.
    With optional=True a missing file just yields the defaults.
    """
    if config_path is None:
        # repo root is parent of this file's parent
        repo = Path(__file__).resolve().parents[1]
        config_path = repo / "config.toml"

    if not config_path.exists():
        if optional:
            return copy.deepcopy(DEFAULTS)
        raise FileNotFoundError(f"Config not found: {config_path}")

    with config_path.open("rb") as f:
        return _merge(DEFAULTS, tomllib.load(f))
