"""
Configuration module for loading settings from config.yaml.
"""

from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any, Optional

import yaml

from ..core.prompt_builder import DEFAULT_SYSTEM_PROMPT
from ..core.rubric_entity import MatchWeights
from ..core.transport import (
    DEFAULT_ENDPOINT,
    DEFAULT_MAX_TOKENS,
    DEFAULT_MODEL,
    DEFAULT_TEMPERATURE,
)


# Config file lives next to the package modules
CONFIG_PATH = Path(__file__).parent.parent / "config.yaml"

DEFAULT_SETTINGS: dict[str, Any] = {
    "llm": {
        "endpoint": DEFAULT_ENDPOINT,
        "api_key": "",
        "model": DEFAULT_MODEL,
        "temperature": DEFAULT_TEMPERATURE,
        "max_tokens": DEFAULT_MAX_TOKENS,
    },
    "prompts": {
        "system_prompt": "",
        "question_text": "",
        "solution_text": "",
    },
    "browser": {},
    "screenshot": {
        "max_width": 1280,
        "jpeg_quality": 75,
    },
    "replay": {
        "retry_delay_ms": 200,
        "max_retries": 5,
        "pointer_events": True,
    },
    "matching": {},
}

ENV_OVERRIDES = (
    ("GRADECOPILOT_ENDPOINT", "endpoint"),
    ("GRADECOPILOT_MODEL", "model"),
    ("OPENAI_API_KEY", "api_key"),
)


_settings_cache: Optional[dict] = None


def _merge(base: dict, override: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        elif value is not None:
            merged[key] = value
    return merged


def load_settings(force_reload: bool = False, path: Optional[Path] = None) -> dict:
    """
    Load settings from YAML, merged over the built-in defaults.
    Caches the result for performance.

    Environment variables override the llm section:
    GRADECOPILOT_ENDPOINT, GRADECOPILOT_MODEL, OPENAI_API_KEY.

    Returns:
        dict: Settings data
    """
    global _settings_cache

    if _settings_cache is not None and not force_reload and path is None:
        return _settings_cache

    config_path = path or CONFIG_PATH
    raw: dict = {}
    if config_path.exists():
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                loaded = yaml.safe_load(f)
            raw = loaded if isinstance(loaded, dict) else {}
        except Exception as e:
            print(f"❌ Failed to load settings: {e}")
    else:
        print(f"⚠️ Settings file not found: {config_path}")

    settings = _merge(DEFAULT_SETTINGS, raw)
    for env_name, key in ENV_OVERRIDES:
        value = os.getenv(env_name)
        if value:
            settings["llm"][key] = value

    if path is None:
        _settings_cache = settings
    return settings


def get_system_prompt(settings: Optional[dict] = None) -> str:
    """
    Get the system prompt, falling back to the built-in default.

    Returns:
        str: System prompt text
    """
    prompts = (settings or load_settings()).get("prompts", {}) or {}
    text = (prompts.get("system_prompt") or "").strip()
    return text or DEFAULT_SYSTEM_PROMPT


def get_matching_weights(settings: Optional[dict] = None) -> MatchWeights:
    return MatchWeights.from_dict((settings or load_settings()).get("matching"))


def public_settings(settings: Optional[dict] = None) -> dict:
    """Settings safe to return over the API (api_key never leaves the process)."""
    data = copy.deepcopy(settings or load_settings())
    llm_cfg = data.get("llm", {})
    llm_cfg["api_key_set"] = bool(llm_cfg.pop("api_key", ""))
    return data
