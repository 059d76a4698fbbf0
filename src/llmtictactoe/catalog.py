"""
ModelCatalog: owned cache of the provider's model list.

- ensure_loaded(): idempotent; concurrent callers share one in-flight fetch (single flight).
- Entries without an id, name, context length or parsable pricing are skipped.
- Only the outer surfaces (server, CLI, cost accounting) use it; the core accepts opaque model ids.

"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional

from openai import OpenAI

from .config import SETTINGS

log = logging.getLogger("catalog")


@dataclass(frozen=True)
class ModelInfo:
    id: str
    name: str
    context_length: int
    prompt_cost_per_m: float
    completion_cost_per_m: float

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "context_length": self.context_length,
            "prompt_cost_per_m": self.prompt_cost_per_m,
            "completion_cost_per_m": self.completion_cost_per_m,
        }


def _per_million(raw) -> Optional[float]:
    try:
        return float(raw) * 1_000_000
    except (TypeError, ValueError):
        return None


def model_info_from_raw(raw: dict) -> Optional[ModelInfo]:
    pricing = raw.get("pricing") or {}
    prompt = _per_million(pricing.get("prompt"))
    completion = _per_million(pricing.get("completion"))
    if not raw.get("id") or not raw.get("name") or raw.get("context_length") is None:
        return None
    if prompt is None or completion is None:
        return None
    return ModelInfo(
        id=raw["id"],
        name=raw["name"],
        context_length=int(raw["context_length"]),
        prompt_cost_per_m=prompt,
        completion_cost_per_m=completion,
    )


class ModelCatalog:
    def __init__(self, client: Optional[OpenAI] = None):
        self._client = client
        self._models: Dict[str, ModelInfo] = {}
        self._loaded = False
        self._lock = threading.Lock()

    @property
    def loaded(self) -> bool:
        return self._loaded

    def _get_client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI(api_key=SETTINGS.llm_api_key or None, base_url=SETTINGS.api_base or None)
        return self._client

    def ensure_loaded(self) -> None:
        if self._loaded:
            return
        # second caller blocks here until the first fetch finishes, then sees _loaded
        with self._lock:
            if self._loaded:
                return
            log.info("Fetching model list...")
            try:
                models = {}
                for entry in self._get_client().models.list():
                    raw = entry if isinstance(entry, dict) else entry.model_dump()
                    info = model_info_from_raw(raw)
                    if info is not None:
                        models[info.id] = info
            except Exception:
                log.exception("Error fetching model list")
                self._models = {}
                raise
            self._models = models
            self._loaded = True
            log.info("Fetched and cached %d models", len(models))

    def get(self, model_id: str) -> Optional[ModelInfo]:
        return self._models.get(model_id)

    def models(self) -> List[ModelInfo]:
        return sorted(self._models.values(), key=lambda m: m.id)

    def clear(self) -> None:
        with self._lock:
            self._models = {}
            self._loaded = False
