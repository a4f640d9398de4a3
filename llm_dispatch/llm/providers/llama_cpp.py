"""llama.cpp binary run once per completion."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from llm_dispatch.errors import (
    AuthorizationDenied,
    CallCancelled,
    MissingRequiredField,
    ProviderError,
    UnsupportedOperation,
)
from llm_dispatch.llm.config import LlamaCppConfig
from llm_dispatch.llm.transport import DEFAULT_TIMEOUT, cancellable
from llm_dispatch.llm.types import (
    CompletionRequest,
    EmbeddingRequest,
    ImageRequest,
    NormalizedResponse,
    TextResponse,
)

logger = logging.getLogger(__name__)

BACKEND = "Local llama.cpp"


@dataclass(frozen=True)
class ExecutionContext:
    """Tenant the current call runs under. Local processes are root-only."""

    tenant: str = "public"
    root_tenant: str = "public"

    @property
    def is_root(self) -> bool:
        return self.tenant == self.root_tenant


def build_argv(cfg: LlamaCppConfig, request: CompletionRequest) -> list[str]:
    argv = [cfg.executable, "-m", cfg.model_path, "-p", request.prompt]
    options = request.sampling_options()
    n_tokens = options.get("max_output_tokens", options.get("ntokens"))
    if n_tokens is not None:
        argv += ["-n", str(int(n_tokens))]
    if options.get("temperature") is not None:
        argv += ["--temp", str(options["temperature"])]
    if options.get("top_p") is not None:
        argv += ["--top-p", str(options["top_p"])]
    return argv


class LlamaCppAdapter:
    backend = "llama_cpp"
    supports_images = False

    def __init__(self, context: ExecutionContext, default_timeout: float = DEFAULT_TIMEOUT) -> None:
        self._context = context
        self._default_timeout = default_timeout

    async def complete(self, cfg: LlamaCppConfig, request: CompletionRequest) -> NormalizedResponse:
        if not self._context.is_root:
            raise AuthorizationDenied(
                f"{BACKEND} inference is only permitted in the root tenant "
                f"(current tenant {self._context.tenant!r})"
            )
        if not request.prompt:
            raise MissingRequiredField("prompt", f"{BACKEND} completion")
        argv = build_argv(cfg, request)
        timeout = request.timeout or self._default_timeout
        logger.debug("Spawning %s in %s", argv[0], cfg.llama_dir)
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                cwd=cfg.llama_dir,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            # Missing binary or llama_dir
            raise ProviderError(BACKEND, f"cannot start {argv[0]} in {cfg.llama_dir}: {e}") from e
        try:
            stdout, stderr = await cancellable(
                proc.communicate(), backend=BACKEND, timeout=timeout, cancel=request.cancel
            )
        except CallCancelled:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            raise
        if proc.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()
            raise ProviderError(BACKEND, f"exited with status {proc.returncode}: {detail}")
        text = stdout.decode("utf-8", errors="replace").strip()
        if request.debug:
            logger.info("<- %s output %s", BACKEND, text[:4000])
        return TextResponse(text)

    async def embed(self, cfg: LlamaCppConfig, request: EmbeddingRequest) -> Any:
        raise UnsupportedOperation(f"Embeddings are not supported by backend {BACKEND!r}")

    async def generate_image(self, cfg: LlamaCppConfig, request: ImageRequest) -> dict[str, Any]:
        raise UnsupportedOperation(f"Image generation is not available for backend {BACKEND!r}")
