"""AI Consolidation Pipeline: fold review comments through a provider fallback chain."""

from __future__ import annotations

import logging
import os
from collections.abc import Awaitable, Callable, Mapping, Sequence

from pr_reviewer.db import AppConfigStore
from pr_reviewer.delivery import format_comments
from pr_reviewer.errors import (
    AggregateProviderFailure,
    GenerationError,
    ProviderUnavailableError,
    ValidationError,
)
from pr_reviewer.models import AISettings, Comment
from pr_reviewer.providers import PROVIDERS

logger = logging.getLogger(__name__)

PROVIDER_KEY = "ai_provider"
MODEL_KEY = "ai_model"

# Cheapest first.
FALLBACK_CHAIN: tuple[tuple[str, str], ...] = (
    ("google", "gemini-2.5-flash"),
    ("openai", "gpt-4o-mini"),
    ("google", "gemini-2.5-pro"),
    ("openai", "gpt-4o"),
    ("anthropic", "claude-sonnet-4-20250514"),
)

PROCESSING_PROMPT = """\
You are a code review assistant. Your task is to process and improve code review comments.

Given a list of comments about code changes, please:
1. Remove any duplicate or redundant comments
2. Combine related comments that address the same issue
3. Prioritize comments by importance (critical issues first, then improvements, then style)
4. Improve clarity and actionability of each comment
5. Keep the file path and line number context

Format your response as a list of improved comments, each with:
- File path and line number (if applicable)
- The improved comment text

Be concise but thorough. Focus on actionable feedback."""

Attempt = Callable[[str, str, str], Awaitable[str]]


def build_prompt(comments: Sequence[Comment]) -> str:
    return f"{PROCESSING_PROMPT}\n\nHere are the comments to process:\n\n{format_comments(comments)}"


def _label(provider: str, model: str) -> str:
    return f"{provider}/{model}"


class ConsolidationPipeline:
    """Provider availability, persisted preference and the fallback fold.

    ``attempt(provider, model, prompt)`` makes one stateless call and is
    injectable so tests never touch a vendor SDK.
    """

    def __init__(
        self,
        config_store: AppConfigStore,
        env: Mapping[str, str] | None = None,
        attempt: Attempt | None = None,
    ) -> None:
        self.config_store = config_store
        self._env = env
        self._attempt = attempt or self._call_provider

    @property
    def env(self) -> Mapping[str, str]:
        return os.environ if self._env is None else self._env

    def _api_key(self, provider: str) -> str:
        return self.env.get(PROVIDERS[provider].env_key, "")

    def get_available_providers(self) -> list[str]:
        return [name for name in PROVIDERS if self._api_key(name)]

    def get_models_for_provider(self, provider: str) -> list[str]:
        if provider not in PROVIDERS:
            raise ValidationError(f"Unknown AI provider: {provider}")
        return list(PROVIDERS[provider].models)

    def provider_models(self) -> dict[str, list[str]]:
        return {name: list(cls.models) for name, cls in PROVIDERS.items()}

    # --- Settings ---

    def get_settings(self) -> AISettings:
        return AISettings(
            provider=self.config_store.get(PROVIDER_KEY),
            model=self.config_store.get(MODEL_KEY),
        )

    def save_settings(self, provider: str, model: str) -> AISettings:
        models = self.get_models_for_provider(provider)
        if model not in models:
            raise ValidationError(f"Unknown model for {provider}: {model}")
        self.config_store.set(PROVIDER_KEY, provider)
        self.config_store.set(MODEL_KEY, model)
        logger.info("AI settings saved: %s", _label(provider, model))
        return AISettings(provider=provider, model=model)

    # --- Processing ---

    def candidates(self) -> list[tuple[str, str]]:
        """Saved preference first, then the fallback chain without repeats."""
        ordered: list[tuple[str, str]] = []
        settings = self.get_settings()
        if (
            settings.provider in PROVIDERS
            and settings.model in PROVIDERS[settings.provider].models
        ):
            ordered.append((settings.provider, settings.model))
        for pair in FALLBACK_CHAIN:
            if pair not in ordered:
                ordered.append(pair)
        return ordered

    async def _call_provider(self, provider: str, model: str, prompt: str) -> str:
        api_key = self._api_key(provider)
        if not api_key:
            raise ProviderUnavailableError(provider, PROVIDERS[provider].env_key)
        client = PROVIDERS[provider](api_key)
        return await client.generate(model, prompt)

    async def process_comments(self, comments: Sequence[Comment]) -> str:
        if not comments:
            raise ValidationError("No comments to process")

        prompt = build_prompt(comments)
        attempted: list[str] = []
        skipped: list[str] = []

        for provider, model in self.candidates():
            label = _label(provider, model)
            if not self._api_key(provider):
                skipped.append(label)
                logger.debug("Skipping %s: %s", label, ProviderUnavailableError(provider, PROVIDERS[provider].env_key))
                continue

            attempted.append(label)
            try:
                text = await self._attempt(provider, model, prompt)
                if not text or not text.strip():
                    raise GenerationError(provider, model, "empty response")
            except Exception as e:
                error = e if isinstance(e, GenerationError) else GenerationError(provider, model, str(e) or type(e).__name__)
                logger.warning("AI processing attempt failed: %s", error)
                continue

            logger.info("Processed %d comment(s) with %s", len(comments), label)
            return text

        raise AggregateProviderFailure(attempted, skipped)
