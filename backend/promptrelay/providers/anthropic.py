from typing import List, Optional

import anthropic

from promptrelay.core.exceptions import ProviderError
from promptrelay.core.logging import get_logger
from promptrelay.models.request import ChatMessage, OutputFormat
from promptrelay.models.routing import Completion, Usage
from promptrelay.providers.base import BaseProvider

logger = get_logger(__name__)


class AnthropicProvider(BaseProvider):
    provider_name = "anthropic"

    def __init__(self, api_key: str):
        self.client = anthropic.AsyncAnthropic(api_key=api_key)

    def _build_messages(self, messages: List[ChatMessage]):
        system_prompt = None
        built = []
        for msg in messages:
            if msg.role == "system":
                system_prompt = msg.content
            else:
                built.append({"role": msg.role, "content": msg.content})
        return system_prompt, built

    async def complete(
        self,
        model: str,
        messages: List[ChatMessage],
        max_tokens: int,
        temperature: Optional[float] = None,
        format: OutputFormat = OutputFormat.TEXT,
    ) -> Completion:
        system_prompt, built = self._build_messages(messages)
        try:
            kwargs = dict(
                model=model,
                messages=built,
                max_tokens=max_tokens,
            )
            if system_prompt:
                kwargs["system"] = system_prompt
            if temperature is not None:
                kwargs["temperature"] = temperature

            response = await self.client.messages.create(**kwargs)

            content = "".join(
                block.text for block in response.content if getattr(block, "type", "") == "text"
            )
            return Completion(
                raw_text=content,
                usage=Usage(
                    prompt_tokens=response.usage.input_tokens,
                    completion_tokens=response.usage.output_tokens,
                ),
            )
        except anthropic.APITimeoutError as e:
            raise ProviderError(f"timeout: {e}", self.provider_name, 408)
        except anthropic.APIStatusError as e:
            raise ProviderError(str(e), self.provider_name, e.status_code)
        except Exception as e:
            raise ProviderError(str(e), self.provider_name)

    async def health_check(self) -> bool:
        try:
            await self.client.models.list()
            return True
        except Exception:
            return False
