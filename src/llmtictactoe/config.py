"""
Configuration and environment loading for LLM Tic-Tac-Toe.

- Loads settings.yml (YAML) from repo root if present; falls back to environment variables.
- Exposes SETTINGS with keys used across the project (API key, endpoint, retry knobs, history path).
"""
from dataclasses import dataclass
import logging
import os
from typing import Any, Callable

import yaml
from dotenv import load_dotenv

load_dotenv()

log = logging.getLogger("config")


def _repo_root() -> str:
    # this file: src/llmtictactoe/config.py → repo root is two levels up
    return os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))


def _load_yaml(path: str) -> dict:
    if not os.path.isfile(path):
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError):
        log.exception("Failed to read %s; using environment only", path)
        return {}
    return data if isinstance(data, dict) else {}


_cfg = _load_yaml(os.environ.get("LLMTTT_SETTINGS_FILE") or os.path.join(_repo_root(), "settings.yml"))


def _get(name: str, default: Any, cast: Callable[[Any], Any] | None = None) -> Any:
    if name in _cfg:
        val = _cfg[name]
        return cast(val) if cast else val
    env = os.environ.get(name)
    if env is not None:
        return cast(env) if cast else env
    return default


@dataclass(frozen=True)
class Settings:
    # Auth / endpoint (OpenAI-compatible wire format; OpenRouter by default)
    llm_api_key: str
    api_base: str

    # Transport knobs
    responses_timeout_s: float
    responses_retries: int

    # Agent turn budget: parse/illegal-square failures allowed before the turn stalls
    agent_max_attempts: int

    # Persistence
    history_path: str
    conversation_log_dir: str | None


SETTINGS = Settings(
    llm_api_key=_get("LLMTTT_LLM_API_KEY", _get("OPENROUTER_API_KEY", "")),
    api_base=_get("LLMTTT_LLM_BASE_URL", "https://openrouter.ai/api/v1"),
    responses_timeout_s=float(_get("LLMTTT_RESPONSES_TIMEOUT_S", 60.0, cast=float)),
    responses_retries=int(_get("LLMTTT_RESPONSES_RETRIES", 2, cast=int)),
    agent_max_attempts=int(_get("LLMTTT_AGENT_MAX_ATTEMPTS", 3, cast=int)),
    history_path=_get("LLMTTT_HISTORY_PATH", os.path.join("data", "match_history.json")),
    conversation_log_dir=_get("LLMTTT_CONVERSATION_LOG_DIR", None),
)
