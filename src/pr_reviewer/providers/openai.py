from __future__ import annotations

from openai import AsyncOpenAI

from pr_reviewer.providers.base import LLMProvider


class OpenAIProvider(LLMProvider):
    name = "openai"
    env_key = "OPENAI_API_KEY"
    models = ("gpt-4o-mini", "gpt-4o")

    def __init__(self, api_key: str) -> None:
        super().__init__(api_key)
        self.client = AsyncOpenAI(api_key=api_key)

    async def generate(self, model: str, prompt: str) -> str:
        response = await self.client.chat.completions.create(
            model=model,
            messages=[{"role": "user", "content": prompt}],
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        return response.choices[0].message.content or ""
