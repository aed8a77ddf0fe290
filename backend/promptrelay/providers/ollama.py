from typing import List, Optional

import httpx

from promptrelay.core.exceptions import ProviderError
from promptrelay.core.logging import get_logger
from promptrelay.models.request import ChatMessage, OutputFormat
from promptrelay.models.routing import Completion, Usage
from promptrelay.providers.base import BaseProvider

logger = get_logger(__name__)


class OllamaProvider(BaseProvider):
    """Ollama local provider, via its /api/chat endpoint."""

    provider_name = "ollama"

    def __init__(self, base_url: str = "http://localhost:11434", transport: httpx.AsyncBaseTransport = None):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.AsyncClient(base_url=self.base_url, timeout=120.0, transport=transport)

    async def complete(
        self,
        model: str,
        messages: List[ChatMessage],
        max_tokens: int,
        temperature: Optional[float] = None,
        format: OutputFormat = OutputFormat.TEXT,
    ) -> Completion:
        options = {"num_predict": max_tokens}
        if temperature is not None:
            options["temperature"] = temperature
        payload = {
            "model": model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "stream": False,
            "options": options,
        }
        if format == OutputFormat.JSON:
            payload["format"] = "json"

        try:
            response = await self.client.post("/api/chat", json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as e:
            raise ProviderError(f"timeout: {e}", self.provider_name, 408)
        except httpx.HTTPStatusError as e:
            raise ProviderError(str(e), self.provider_name, e.response.status_code)
        except Exception as e:
            raise ProviderError(str(e), self.provider_name)

        usage = None
        if "prompt_eval_count" in data or "eval_count" in data:
            usage = Usage(
                prompt_tokens=data.get("prompt_eval_count", 0),
                completion_tokens=data.get("eval_count", 0),
            )
        return Completion(
            raw_text=data.get("message", {}).get("content", ""),
            usage=usage,
            cost_usd=0.0,
        )

    async def health_check(self) -> bool:
        try:
            response = await self.client.get("/api/tags")
            return response.status_code == 200
        except Exception:
            return False
