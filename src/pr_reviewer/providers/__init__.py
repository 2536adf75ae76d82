"""AI providers used by the consolidation pipeline, keyed by name."""

from __future__ import annotations

from pr_reviewer.providers.anthropic import AnthropicProvider
from pr_reviewer.providers.base import LLMProvider
from pr_reviewer.providers.google import GoogleProvider
from pr_reviewer.providers.openai import OpenAIProvider

# Display and availability order.
PROVIDERS: dict[str, type[LLMProvider]] = {
    GoogleProvider.name: GoogleProvider,
    OpenAIProvider.name: OpenAIProvider,
    AnthropicProvider.name: AnthropicProvider,
}

__all__ = ["PROVIDERS", "AnthropicProvider", "GoogleProvider", "LLMProvider", "OpenAIProvider"]
