"""Multi-backend LLM inference dispatcher."""

from llm_dispatch.dispatcher import Dispatcher

__version__ = "0.1.0"

__all__ = ["Dispatcher", "__version__"]
