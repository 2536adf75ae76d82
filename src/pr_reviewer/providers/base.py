"""Base provider interface for the AI consolidation pipeline."""

from __future__ import annotations

import abc


class LLMProvider(abc.ABC):
    """One vendor SDK behind a single async text-generation call.

    Subclasses set ``name``, ``env_key`` and ``models`` and implement
    ``generate``. A provider instance makes exactly one attempt per call;
    retry and fallback live in the pipeline.
    """

    name: str = ""
    env_key: str = ""
    models: tuple[str, ...] = ()
    temperature: float = 0.2
    max_tokens: int = 4096

    def __init__(self, api_key: str) -> None:
        self.api_key = api_key

    @abc.abstractmethod
    async def generate(self, model: str, prompt: str) -> str:
        """Return the model's text for *prompt*. Raise on any failure."""
        ...
