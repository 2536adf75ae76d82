from __future__ import annotations

from google import genai
from google.genai import types

from pr_reviewer.providers.base import LLMProvider


class GoogleProvider(LLMProvider):
    name = "google"
    env_key = "GOOGLE_API_KEY"
    models = ("gemini-2.5-flash", "gemini-2.5-pro")

    def __init__(self, api_key: str) -> None:
        super().__init__(api_key)
        self.client = genai.Client(api_key=api_key)

    async def generate(self, model: str, prompt: str) -> str:
        response = await self.client.aio.models.generate_content(
            model=model,
            contents=prompt,
            config=types.GenerateContentConfig(
                max_output_tokens=self.max_tokens,
                temperature=self.temperature,
            ),
        )
        # .text is None when the candidate was blocked.
        return response.text or ""
