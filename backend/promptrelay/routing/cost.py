from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

import yaml

from promptrelay.core.logging import get_logger
from promptrelay.models.request import OutputFormat

logger = get_logger(__name__)


@dataclass(frozen=True)
class ModelPrice:
    input_cost_per_mtok: float   # USD per million input tokens
    output_cost_per_mtok: float  # USD per million output tokens


DEFAULT_PRICES: Dict[str, ModelPrice] = {
    "gpt-4": ModelPrice(30.0, 60.0),
    "gpt-4-turbo": ModelPrice(10.0, 30.0),
    "gpt-4o": ModelPrice(5.0, 15.0),
    "gpt-4o-mini": ModelPrice(0.15, 0.60),
    "gpt-3.5-turbo": ModelPrice(1.5, 2.0),
    "claude-3-opus": ModelPrice(15.0, 75.0),
    "claude-3-sonnet": ModelPrice(3.0, 15.0),
    "claude-3-haiku": ModelPrice(0.25, 1.25),
}

MAX_OUTPUT_TOKENS: Dict[OutputFormat, int] = {
    OutputFormat.TEXT: 200,
    OutputFormat.JSON: 500,
    OutputFormat.MARKDOWN: 1000,
    OutputFormat.HTML: 200,
}


def estimate_tokens(text: str, chars_per_token: int = 4) -> int:
    """Rough token count: ~4 characters per token for English text."""
    return len(text) // max(chars_per_token, 1)


def max_output_tokens(format: OutputFormat) -> int:
    return MAX_OUTPUT_TOKENS.get(OutputFormat(format), MAX_OUTPUT_TOKENS[OutputFormat.TEXT])


class CostEstimator:
    """Per-model pricing table; estimates are priced per million tokens."""

    def __init__(self, prices: Optional[Dict[str, ModelPrice]] = None):
        self._prices: Dict[str, ModelPrice] = dict(DEFAULT_PRICES)
        if prices:
            self._prices.update(prices)

    @classmethod
    def from_yaml(cls, path: str) -> "CostEstimator":
        p = Path(path)
        if not p.exists():
            logger.warning("models_config_missing", path=path)
            return cls()

        try:
            with open(p) as f:
                data = yaml.safe_load(f) or {}
        except Exception as e:
            logger.warning("models_config_load_failed", path=path, error=str(e))
            return cls()

        prices: Dict[str, ModelPrice] = {}
        for m in data.get("models", []):
            model_id = m.get("model_id")
            if not model_id:
                continue
            prices[model_id] = ModelPrice(
                input_cost_per_mtok=float(m.get("input_cost_per_mtok", 0.0)),
                output_cost_per_mtok=float(m.get("output_cost_per_mtok", 0.0)),
            )
        logger.info("model_prices_loaded", count=len(prices))
        return cls(prices)

    def price_for(self, model_id: str) -> Optional[ModelPrice]:
        return self._prices.get(model_id)

    def estimate(self, model_id: str, input_tokens: int, output_tokens: int) -> float:
        """Unknown models estimate to zero."""
        price = self._prices.get(model_id)
        if not price:
            return 0.0
        input_cost = (input_tokens / 1_000_000) * price.input_cost_per_mtok
        output_cost = (output_tokens / 1_000_000) * price.output_cost_per_mtok
        return round(input_cost + output_cost, 6)

    def known_models(self) -> list[str]:
        return sorted(self._prices.keys())
