from __future__ import annotations

from anthropic import AsyncAnthropic

from pr_reviewer.providers.base import LLMProvider


class AnthropicProvider(LLMProvider):
    name = "anthropic"
    env_key = "ANTHROPIC_API_KEY"
    models = ("claude-sonnet-4-20250514",)
    temperature = 0.3

    def __init__(self, api_key: str) -> None:
        super().__init__(api_key)
        self.client = AsyncAnthropic(api_key=api_key)

    async def generate(self, model: str, prompt: str) -> str:
        response = await self.client.messages.create(
            model=model,
            messages=[{"role": "user", "content": prompt}],
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        text_blocks = [block.text for block in response.content if getattr(block, "type", "") == "text"]
        return "".join(text_blocks).strip()
