# src/codr/config_loader.py

from __future__ import annotations
from pathlib import Path
from typing import Any, Dict
import yaml

from codr.core.models import DEFAULT_LANGUAGE, DEFAULT_TEMPERATURE

PROVIDER_KEYS = ("google", "openai", "anthropic", "mistral", "deepseek")
STORAGE_BACKENDS = ("file", "none")


class ConfigError(ValueError):
    pass


def _require(d: Dict[str, Any], dotted: str, typ: type) -> Any:
    cur: Any = d
    for k in dotted.split("."):
        if not isinstance(cur, dict) or k not in cur:
            raise ConfigError(f"Missing config key: {dotted}")
        cur = cur[k]
    if typ is bool and not isinstance(cur, bool):
        raise ConfigError(f"'{dotted}' must be a boolean")
    if typ is str and not isinstance(cur, str):
        raise ConfigError(f"'{dotted}' must be a string")
    return cur


def load_config(path: Path) -> Dict[str, Any]:
    if not path or not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict) or not raw:
        raise ConfigError(f"Config is empty or invalid YAML: {path}")

    # Required keys (no defaults here)
    _require(raw, "model.provider", str)
    _require(raw, "model.name", str)
    _require(raw, "storage.backend", str)          # 'file' or 'none'
    _require(raw, "storage.transcripts_dir", str)  # path string

    model = raw["model"]
    provider = model["provider"].strip().lower()
    if provider not in PROVIDER_KEYS:
        raise ConfigError(f"Unknown model.provider '{provider}' (expected one of {', '.join(PROVIDER_KEYS)}).")
    model["provider"] = provider

    use_builtin = model.setdefault("use_builtin_key", True)
    if not isinstance(use_builtin, bool):
        raise ConfigError("'model.use_builtin_key' must be a boolean")
    model.setdefault("api_key", None)

    backend = raw["storage"]["backend"].strip().lower()
    if backend not in STORAGE_BACKENDS:
        raise ConfigError(f"Unknown storage.backend '{backend}' (expected 'file' or 'none').")
    raw["storage"]["backend"] = backend

    chat = raw.get("chat") or {}
    temperature = chat.get("temperature", DEFAULT_TEMPERATURE)
    if isinstance(temperature, bool) or not isinstance(temperature, (int, float)):
        raise ConfigError("'chat.temperature' must be a number")
    if not 0.0 <= float(temperature) <= 1.0:
        raise ConfigError("'chat.temperature' must be within [0, 1]")
    chat["temperature"] = float(temperature)
    chat.setdefault("language", DEFAULT_LANGUAGE)
    chat["custom_instructions"] = chat.get("custom_instructions") or ""
    raw["chat"] = chat

    providers = raw.get("providers") or {}
    unknown = sorted(set(providers) - set(PROVIDER_KEYS))
    if unknown:
        raise ConfigError(f"Unknown provider sections under 'providers': {unknown}")
    raw["providers"] = providers

    # Leave paths as provided; resolve them later in bootstrap/composition
    return raw
