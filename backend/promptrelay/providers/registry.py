import asyncio
from typing import Dict, List, Optional

from promptrelay.core.config import Settings
from promptrelay.core.exceptions import ProviderError
from promptrelay.core.logging import get_logger
from promptrelay.models.request import ChatMessage, OutputFormat
from promptrelay.models.routing import Completion
from promptrelay.providers.anthropic import AnthropicProvider
from promptrelay.providers.base import BaseProvider
from promptrelay.providers.ollama import OllamaProvider
from promptrelay.providers.openai import OpenAIProvider

logger = get_logger(__name__)


def infer_provider(model: str) -> str:
    """Infer provider from model name prefix."""
    if model.startswith("claude"):
        return "anthropic"
    if model.startswith("gpt") or model.startswith("o1") or model.startswith("o3"):
        return "openai"
    if any(x in model.lower() for x in ["llama", "codellama", "deepseek", "mistral", "phi", "qwen"]):
        return "ollama"
    return "openai"


class ProviderRegistry:
    """Registry of provider adapters; dispatches a model id to its adapter."""

    def __init__(self, providers: Optional[Dict[str, BaseProvider]] = None):
        self._providers: Dict[str, BaseProvider] = dict(providers or {})

    @classmethod
    def from_settings(cls, settings: Settings) -> "ProviderRegistry":
        registry = cls()
        if settings.anthropic_api_key:
            registry.register(AnthropicProvider(api_key=settings.anthropic_api_key))
        if settings.openai_api_key:
            registry.register(OpenAIProvider(api_key=settings.openai_api_key))
        # Ollama is always available (local)
        registry.register(OllamaProvider(base_url=settings.ollama_base_url))
        return registry

    def register(self, provider: BaseProvider) -> None:
        self._providers[provider.provider_name] = provider
        logger.info("provider_registered", provider=provider.provider_name)

    def get(self, provider_name: str) -> Optional[BaseProvider]:
        return self._providers.get(provider_name)

    def available_providers(self) -> List[str]:
        return list(self._providers.keys())

    async def complete(
        self,
        model: str,
        messages: List[ChatMessage],
        max_tokens: int,
        temperature: Optional[float] = None,
        format: OutputFormat = OutputFormat.TEXT,
    ) -> Completion:
        provider_name = infer_provider(model)
        provider = self.get(provider_name)
        if not provider:
            logger.warning("provider_not_found", provider=provider_name, model=model)
            raise ProviderError(
                f"No provider configured for model '{model}'", provider_name, 503
            )
        return await provider.complete(
            model, messages, max_tokens=max_tokens, temperature=temperature, format=format
        )

    async def health_check_all(self) -> Dict[str, bool]:
        async def _check(name: str, provider: BaseProvider) -> tuple[str, bool]:
            try:
                ok = await asyncio.wait_for(provider.health_check(), timeout=3.0)
                return name, ok
            except Exception:
                return name, False

        checks = await asyncio.gather(*[_check(n, p) for n, p in self._providers.items()])
        return dict(checks)
