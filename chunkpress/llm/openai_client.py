"""
OpenAI-compatible chat client — works with DeepSeek, OpenAI, Groq and any
other provider that implements the chat/completions API.
"""

import logging

import requests

from .base import ApiError, JsonError, LLMClient, RequestError
from ..cli_display import token_tracker

logger = logging.getLogger(__name__)


class OpenAIClient(LLMClient):

    def __init__(self, base_url: str, model: str, api_key: str,
                 temperature: float = 0.0, max_tokens: int = 8192,
                 json_mode: bool = False, **kwargs):
        super().__init__(**kwargs)
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.api_key = api_key
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.json_mode = json_mode

    def _headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    def _payload(self, system_prompt: str, prompt: str) -> dict:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "stream": False,
        }
        if self.json_mode:
            payload["response_format"] = {"type": "json_object"}
        return payload

    def _generate(self, system_prompt: str, prompt: str) -> str:
        est_tokens = int(len(prompt.split()) * 1.3)
        logger.debug("[OpenAI] Sending ~%d est. tokens to %s", est_tokens, self.model)
        logger.debug("[OpenAI] Prompt:\n%s", prompt)

        url = f"{self.base_url}/chat/completions"
        try:
            response = requests.post(url, headers=self._headers(),
                                     json=self._payload(system_prompt, prompt),
                                     timeout=(10, 300))
        except requests.exceptions.RequestException as e:
            raise RequestError(f"Request to {url} failed: {e}") from e

        if not response.ok:
            raise RequestError(
                f"HTTP {response.status_code}: {response.text[:500]}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise JsonError(f"Response body is not JSON: {e}") from e

        if not isinstance(data, dict):
            raise JsonError("Response body is not a JSON object")
        if data.get("error"):
            raise ApiError(f"Service error: {data['error']}")

        try:
            response_text = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise JsonError(f"Response has no completion content: {e}") from e
        if not isinstance(response_text, str):
            raise JsonError("Completion content is not a string")

        usage = data.get("usage") or {}
        prompt_tokens = usage.get("prompt_tokens", est_tokens)
        completion_tokens = usage.get("completion_tokens", 0)
        token_tracker.record(
            prompt_tokens if isinstance(prompt_tokens, int) else est_tokens,
            completion_tokens if isinstance(completion_tokens, int) else 0,
        )
        logger.debug("[OpenAI] Usage: prompt=%s completion=%s",
                     prompt_tokens, completion_tokens)
        logger.debug("[OpenAI] Response:\n%s", response_text)
        return response_text
