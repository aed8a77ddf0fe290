from abc import ABC, abstractmethod
from typing import List, Optional, Protocol

from promptrelay.models.request import ChatMessage, OutputFormat
from promptrelay.models.routing import Completion


class ModelClient(Protocol):
    """Anything that can turn messages into a completion for a named model."""

    async def complete(
        self,
        model: str,
        messages: List[ChatMessage],
        max_tokens: int,
        temperature: Optional[float] = None,
        format: OutputFormat = OutputFormat.TEXT,
    ) -> Completion:
        ...


class BaseProvider(ABC):
    """Abstract base class for all LLM provider adapters."""

    provider_name: str = ""

    @abstractmethod
    async def complete(
        self,
        model: str,
        messages: List[ChatMessage],
        max_tokens: int,
        temperature: Optional[float] = None,
        format: OutputFormat = OutputFormat.TEXT,
    ) -> Completion:
        """Non-streaming completion. Failures surface as ProviderError."""
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Returns True if the provider is reachable."""
        ...
