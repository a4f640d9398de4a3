"""Backend adapter contract shared by every inference backend."""

from typing import Any, Protocol, runtime_checkable

from llm_dispatch.llm.types import (
    CompletionRequest,
    EmbeddingRequest,
    ImageRequest,
    NormalizedResponse,
)

Vector = list[float]
EmbeddingResult = Vector | list[Vector]


@runtime_checkable
class BackendAdapter(Protocol):
    """One adapter per backend kind. Configs arrive already merged with call overrides."""

    backend: str
    supports_images: bool

    async def complete(self, cfg: Any, request: CompletionRequest) -> NormalizedResponse:
        ...

    async def embed(self, cfg: Any, request: EmbeddingRequest) -> EmbeddingResult:
        """Single input -> single vector; list input -> list of vectors in input order."""
        ...

    async def generate_image(self, cfg: Any, request: ImageRequest) -> dict[str, Any]:
        """Provider-native JSON. Raises UnsupportedOperation when supports_images is False."""
        ...
