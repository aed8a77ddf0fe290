from typing import List, Optional

import openai as openai_lib

from promptrelay.core.exceptions import ProviderError
from promptrelay.core.logging import get_logger
from promptrelay.models.request import ChatMessage, OutputFormat
from promptrelay.models.routing import Completion, Usage
from promptrelay.providers.base import BaseProvider

logger = get_logger(__name__)


class OpenAIProvider(BaseProvider):
    provider_name = "openai"

    def __init__(self, api_key: str, base_url: str = None):
        self.client = openai_lib.AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
        )

    def _build_messages(self, messages: List[ChatMessage]) -> list:
        return [{"role": msg.role, "content": msg.content} for msg in messages]

    async def complete(
        self,
        model: str,
        messages: List[ChatMessage],
        max_tokens: int,
        temperature: Optional[float] = None,
        format: OutputFormat = OutputFormat.TEXT,
    ) -> Completion:
        try:
            kwargs = dict(
                model=model,
                messages=self._build_messages(messages),
                max_tokens=max_tokens,
                stream=False,
            )
            if temperature is not None:
                kwargs["temperature"] = temperature
            if format == OutputFormat.JSON:
                kwargs["response_format"] = {"type": "json_object"}

            response = await self.client.chat.completions.create(**kwargs)

            choice = response.choices[0]
            return Completion(
                raw_text=choice.message.content or "",
                usage=Usage(
                    prompt_tokens=response.usage.prompt_tokens,
                    completion_tokens=response.usage.completion_tokens,
                ) if response.usage else None,
            )
        except openai_lib.APITimeoutError as e:
            raise ProviderError(f"timeout: {e}", self.provider_name, 408)
        except openai_lib.APIStatusError as e:
            raise ProviderError(str(e), self.provider_name, e.status_code)
        except Exception as e:
            raise ProviderError(str(e), self.provider_name)

    async def health_check(self) -> bool:
        try:
            await self.client.models.list()
            return True
        except Exception:
            return False
