"""Service settings: YAML file plus environment overrides.

Settings are read once at startup and treated as immutable afterwards.
"""
from __future__ import annotations
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

from codegen_service.common.schema import CompletionOptions

DEFAULT_CONFIG_PATH = "configs/service.yaml"


@dataclass(frozen=True)
class CallSettings:
    """Sampling parameters for one kind of completion call."""
    temperature: float
    max_tokens: int

    def options(self, model: str) -> CompletionOptions:
        return CompletionOptions(model=model, temperature=self.temperature, max_output_tokens=self.max_tokens)


@dataclass(frozen=True)
class Settings:
    base_url: str = "https://api.openai.com/v1"
    model_id: str = "gpt-4o-mini"
    api_key: str = field(default="", repr=False)
    timeout_s: float = 60.0
    context_max_chars: int | None = 4000
    generation: CallSettings = CallSettings(temperature=0.3, max_tokens=2048)
    explanation: CallSettings = CallSettings(temperature=0.7, max_tokens=1024)


def load_cfg(path: str | Path) -> dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping at the top level")
    return data


def _call_settings(raw: Mapping[str, Any] | None, default: CallSettings, name: str) -> CallSettings:
    raw = raw or {}
    if not isinstance(raw, Mapping):
        raise ValueError(f"{name} must be a mapping, got {type(raw).__name__}")
    temperature = float(raw.get("temperature", default.temperature))
    max_tokens = int(raw.get("max_tokens", default.max_tokens))
    if not 0.0 <= temperature <= 2.0:
        raise ValueError(f"{name}.temperature must be between 0.0 and 2.0, got {temperature}")
    if max_tokens < 1:
        raise ValueError(f"{name}.max_tokens must be positive, got {max_tokens}")
    return CallSettings(temperature=temperature, max_tokens=max_tokens)


def load_settings(
    path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    require_api_key: bool = True,
) -> Settings:
    """
    Build Settings from a YAML file and the environment.

    Args:
        path: Config file. Defaults to $CODEGEN_CONFIG, then configs/service.yaml;
            the default file is optional, an explicit one is not.
        env: Environment mapping (defaults to os.environ).
        require_api_key: Raise if the credential variable is unset.

    Returns:
        Immutable settings.

    Raises:
        FileNotFoundError: If an explicitly requested config file is missing.
        ValueError: If a value is out of range or the API key is missing.
    """
    env = os.environ if env is None else env
    explicit = path is not None or "CODEGEN_CONFIG" in env
    cfg_path = Path(path if path is not None else env.get("CODEGEN_CONFIG", DEFAULT_CONFIG_PATH))

    if cfg_path.exists():
        cfg = load_cfg(cfg_path)
    elif explicit:
        raise FileNotFoundError(f"Config file not found at {cfg_path}")
    else:
        cfg = {}

    defaults = Settings()
    base_url = env.get("CODEGEN_BASE_URL") or cfg.get("base_url", defaults.base_url)
    model_id = env.get("CODEGEN_MODEL_ID") or cfg.get("model_id", defaults.model_id)
    timeout_s = float(env.get("CODEGEN_TIMEOUT_S") or cfg.get("timeout_s", defaults.timeout_s))
    if timeout_s <= 0:
        raise ValueError(f"timeout_s must be positive, got {timeout_s}")

    context_max_chars = cfg.get("context_max_chars", defaults.context_max_chars)
    if context_max_chars is not None:
        context_max_chars = int(context_max_chars)
        if context_max_chars < 0:
            raise ValueError(f"context_max_chars must not be negative, got {context_max_chars}")

    api_key_env = cfg.get("api_key_env", "OPENAI_API_KEY")
    api_key = env.get(api_key_env, "")
    if require_api_key and not api_key:
        raise ValueError(f"Missing environment variable: {api_key_env}")

    return Settings(
        base_url=str(base_url).rstrip("/"),
        model_id=str(model_id),
        api_key=api_key,
        timeout_s=timeout_s,
        context_max_chars=context_max_chars,
        generation=_call_settings(cfg.get("generation"), defaults.generation, "generation"),
        explanation=_call_settings(cfg.get("explanation"), defaults.explanation, "explanation"),
    )
