"""Read-only catalog of hosted model capabilities.

The catalog is a JSON file shipped with the package (``data/models.json``).
It is parsed once per registry instance on first access; afterwards every
lookup reads a frozen mapping.
"""

import json
import logging
import re
import threading
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

from llm_dispatch.llm.types import ModelCategory, ModelMetadata

logger = logging.getLogger(__name__)

DEFAULT_CATALOG = Path(__file__).resolve().parent / "data" / "models.json"

# Parameters the host renders first-class widgets for
KNOWN_PARAMS = frozenset({
    "temperature",
    "top_p",
    "max_output_tokens",
    "max_tokens",
    "n",
    "stop",
    "tools",
    "response_format",
    "store",
    "dimensions",
    "encoding_format",
    "user",
    "reasoning.effort",
    "reasoning.summary",
})

DEFAULT_PARAMS: dict[ModelCategory, tuple[str, ...]] = {
    ModelCategory.CHAT: ("temperature", "top_p", "max_output_tokens", "n", "stop", "tools", "store"),
    ModelCategory.REASONING: ("reasoning.effort", "reasoning.summary", "tools", "store", "max_output_tokens"),
    ModelCategory.COMPLETION: ("temperature", "top_p", "max_tokens", "best_of", "logprobs", "stop"),
    ModelCategory.IMAGE: ("n", "size", "response_format"),
    ModelCategory.AUDIO: ("language", "response_format", "temperature"),
    ModelCategory.EMBEDDING: ("dimensions", "encoding_format", "user"),
}

DEFAULT_ENDPOINTS: dict[ModelCategory, dict[str, str]] = {
    ModelCategory.CHAT: {"chat": "v1/chat/completions"},
    ModelCategory.REASONING: {"chat": "v1/chat/completions", "responses": "v1/responses"},
    ModelCategory.EMBEDDING: {"embeddings": "v1/embeddings", "batch": "v1/batch"},
    ModelCategory.IMAGE: {
        "image_generation": "v1/images/generations",
        "image_edit": "v1/images/edits",
    },
    ModelCategory.AUDIO: {"transcription": "v1/audio/transcriptions"},
    ModelCategory.COMPLETION: {},
}

_REASONING_PREFIX = re.compile(r"^o\d")
_IMAGE_HINT = re.compile(r"dall-?e|image", re.IGNORECASE)
_AUDIO_HINTS = ("whisper", "tts", "audio", "transcribe")


def classify(model_id: str) -> ModelCategory:
    """Guess a category from the id alone. Order matters: the first rule that matches wins."""
    mid = model_id.lower()
    if "embedding" in mid:
        return ModelCategory.EMBEDDING
    if _IMAGE_HINT.search(mid):
        return ModelCategory.IMAGE
    if any(h in mid for h in _AUDIO_HINTS):
        return ModelCategory.AUDIO
    if _REASONING_PREFIX.match(mid) or (mid.startswith("gpt-5") and "chat" not in mid):
        return ModelCategory.REASONING
    if mid.startswith("gpt-") or "chatgpt" in mid:
        return ModelCategory.CHAT
    return ModelCategory.COMPLETION


def heuristic_metadata(model_id: str) -> ModelMetadata:
    """Metadata synthesized from the id for models the catalog does not know."""
    category = classify(model_id)
    return ModelMetadata(
        id=model_id,
        category=category,
        supported_params=frozenset(DEFAULT_PARAMS[category]),
        reasoning_required=category is ModelCategory.REASONING,
        endpoints=dict(DEFAULT_ENDPOINTS[category]),
        heuristic=True,
    )


class ModelRegistry:
    """Lazy, thread-safe view over a model catalog file."""

    def __init__(self, catalog_path: Path | None = None) -> None:
        self._path = catalog_path or DEFAULT_CATALOG
        self._lock = threading.Lock()
        self._by_id: Mapping[str, ModelMetadata] | None = None

    def _load(self) -> Mapping[str, ModelMetadata]:
        if self._by_id is not None:
            return self._by_id
        with self._lock:
            if self._by_id is None:
                self._by_id = self._parse()
        return self._by_id

    def _parse(self) -> Mapping[str, ModelMetadata]:
        data: Any = json.loads(self._path.read_text(encoding="utf-8"))
        models = data.get("models") if isinstance(data, dict) else None
        if not isinstance(models, list):
            raise ValueError(f"{self._path.name}: expected top-level 'models' array")
        by_id = {}
        for raw in models:
            meta = ModelMetadata.model_validate(raw)
            by_id[meta.id] = meta
        logger.debug("Loaded %d models from %s", len(by_id), self._path)
        return MappingProxyType(by_id)

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._load()

    def __len__(self) -> int:
        return len(self._load())

    def list_models(self) -> list[str]:
        """All catalog ids, sorted lexicographically."""
        return sorted(self._load())

    def get_meta(self, model_id: str) -> ModelMetadata | None:
        """Exact lookup, then strip trailing '-segment' suffixes until a catalog hit."""
        by_id = self._load()
        if model_id in by_id:
            return by_id[model_id]
        candidate = model_id
        while "-" in candidate:
            candidate = candidate.rsplit("-", 1)[0]
            if candidate in by_id:
                return by_id[candidate]
        return None

    def list_by_category(self, category: ModelCategory | str) -> list[ModelMetadata]:
        cat = ModelCategory(category)
        return [m for m in self._load().values() if m.category is cat]

    def resolve(self, model_id: str) -> ModelMetadata:
        """Catalog metadata when available, otherwise heuristic metadata. Never absent."""
        meta = self.get_meta(model_id)
        if meta is not None:
            return meta
        logger.info("Model %s not in catalog; classifying heuristically", model_id)
        return heuristic_metadata(model_id)

    def endpoint_for(self, model_id: str, operation: str) -> str | None:
        meta = self.get_meta(model_id)
        return meta.endpoint(operation) if meta else None

    def unknown_params(self, meta: ModelMetadata) -> list[str]:
        """Supported params without first-class handling, in sorted order."""
        return sorted(p for p in meta.supported_params if p not in KNOWN_PARAMS)


_default: ModelRegistry | None = None
_default_lock = threading.Lock()


def get_registry() -> ModelRegistry:
    """Process-wide registry over the bundled catalog."""
    global _default
    if _default is None:
        with _default_lock:
            if _default is None:
                _default = ModelRegistry()
    return _default
