from abc import ABC, abstractmethod
from typing import Any, Dict, Sequence


class Fetcher(ABC):
    """
    A named capability that retrieves auxiliary context for prompt enrichment.

    Subclasses implement ``fetch`` and may declare ``required_params`` and
    ``allowed_params``. An empty ``allowed_params`` accepts any parameter.
    The returned map is merged into the prompt context at top level.
    """

    description: str = "Generic data fetcher"
    required_params: Sequence[str] = ()
    allowed_params: Sequence[str] = ()

    @abstractmethod
    async def fetch(self, params: Dict[str, Any]) -> Dict[str, Any]:
        ...
