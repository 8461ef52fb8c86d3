"""OpenRouter client: JSON chat completions over a list of model IDs (try in order, fallback on failure)."""

import time
from dataclasses import dataclass

import httpx

from printscout.core.config import config
from printscout.core.logger import logger


@dataclass
class LLMResponse:
    text: str
    model: str
    tokens_used: int = 0


class OpenRouterClient:
    def __init__(
        self,
        api_key: str | None = None,
        models: list[str] | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.models = models if models is not None else config.openrouter_models
        self.api_key = (config.openrouter_api_key if api_key is None else api_key).strip()
        self.base_url = (base_url or config.openrouter_base_url).rstrip("/")
        self._timeout = timeout if timeout is not None else config.ai_timeout_seconds
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.api_key and self.models)

    def _should_retry(self, e: Exception) -> bool:
        if isinstance(e, httpx.HTTPStatusError):
            return e.response.status_code in (429, 500, 502, 503, 504)
        return True

    async def complete_json(
        self,
        system_message: str,
        prompt: str,
        max_tokens: int = 500,
        temperature: float = 0.2,
    ) -> LLMResponse:
        """Chat completion asking for a JSON object. Raises the last error if every model fails."""
        if not self.enabled:
            raise RuntimeError("No OpenRouter API key or models configured")
        payload_base = {
            "messages": [
                {"role": "system", "content": system_message},
                {"role": "user", "content": prompt},
            ],
            "max_tokens": max_tokens,
            "temperature": temperature,
            "response_format": {"type": "json_object"},
        }
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }
        last_error: Exception | None = None
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            for model in self.models:
                logger.llm_request(model=model, prompt_preview=prompt[-200:])
                t0 = time.monotonic()
                try:
                    response = await client.post(
                        f"{self.base_url}/chat/completions",
                        json={**payload_base, "model": model},
                        headers=headers,
                    )
                    response.raise_for_status()
                    data = response.json()
                    if not isinstance(data, dict):
                        raise ValueError("unexpected completion shape")
                except (httpx.HTTPError, ValueError) as e:
                    last_error = e
                    if isinstance(e, httpx.HTTPStatusError):
                        logger.error(f"OpenRouter {model} {e.response.status_code}")
                    else:
                        logger.error(f"OpenRouter {model} failed: {type(e).__name__}")
                    if self._should_retry(e):
                        logger.debug(f"OpenRouter {model} failed, trying next model")
                        continue
                    raise
                choices = data.get("choices") or [{}]
                text = (choices[0].get("message") or {}).get("content") or ""
                tokens_used = (data.get("usage") or {}).get("total_tokens", 0)
                used = data.get("model") or model
                logger.llm_response(
                    used,
                    token_count=tokens_used,
                    duration_seconds=time.monotonic() - t0,
                    chars=len(text),
                )
                return LLMResponse(text=text, model=used, tokens_used=tokens_used)
        if last_error:
            raise last_error
        raise RuntimeError("No OpenRouter models configured")
