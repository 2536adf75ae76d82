"""Error taxonomy shared by the store, resolver and AI pipeline."""

from __future__ import annotations


class ReviewerError(Exception):
    """Base class for all local-pr-reviewer errors."""


class ValidationError(ReviewerError, ValueError):
    """Bad input from the caller. Surfaced as HTTP 400."""


class NotFoundError(ReviewerError, KeyError):
    """An id that does not exist. Surfaced as HTTP 404."""

    def __init__(self, kind: str, identifier: str) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the message readable.
        return str(self.args[0])


class TransportError(ReviewerError):
    """A discovery source (tmux, process table, registry) could not be queried."""


class ProviderUnavailableError(ReviewerError):
    """The provider's API key is not present in the environment."""

    def __init__(self, provider: str, env_key: str = "") -> None:
        self.provider = provider
        self.env_key = env_key
        detail = f" ({env_key} not set)" if env_key else ""
        super().__init__(f"Provider unavailable: {provider}{detail}")


class GenerationError(ReviewerError):
    """A provider call was attempted and failed."""

    def __init__(self, provider: str, model: str, reason: str) -> None:
        self.provider = provider
        self.model = model
        self.reason = reason
        super().__init__(f"{provider}/{model} failed: {reason}")


class AggregateProviderFailure(ReviewerError):
    """Every entry of the fallback chain failed or was unavailable."""

    def __init__(self, attempted: list[str], skipped: list[str] | None = None) -> None:
        self.attempted = list(attempted)
        self.skipped = list(skipped or [])
        if self.attempted:
            message = "All AI providers failed (tried: " + ", ".join(self.attempted) + ")."
        else:
            message = "No AI providers available."
        if self.skipped:
            message += " Skipped without an API key: " + ", ".join(self.skipped) + "."
        message += " Please check your API keys."
        super().__init__(message)
