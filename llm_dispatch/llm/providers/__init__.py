"""Built-in backend adapters."""

from llm_dispatch.llm.providers.compatible import CompatibleAdapter
from llm_dispatch.llm.providers.llama_cpp import ExecutionContext, LlamaCppAdapter
from llm_dispatch.llm.providers.ollama import OllamaAdapter
from llm_dispatch.llm.providers.openai import HostedOpenAIAdapter
from llm_dispatch.llm.providers.vertex import VertexAdapter

__all__ = [
    "CompatibleAdapter",
    "ExecutionContext",
    "HostedOpenAIAdapter",
    "LlamaCppAdapter",
    "OllamaAdapter",
    "VertexAdapter",
]
