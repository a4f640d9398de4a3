"""Cross-process signals."""

from llm_dispatch.events.journal import RefreshJournal

__all__ = ["RefreshJournal"]
