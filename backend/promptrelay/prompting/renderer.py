"""
Prompt templates.

Placeholders use ``{{name}}`` syntax (surrounding whitespace allowed). The name
is looked up verbatim, so keys like ``order.id`` or ``first-name`` work.
A placeholder with no matching context key renders as the empty string.
"""

import json
import re
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from promptrelay.core.logging import get_logger

logger = get_logger(__name__)

PLACEHOLDER = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=str)
    return str(value)


def render_template(template: str, context: Mapping[str, Any]) -> str:
    """Substitute every placeholder from context. Pure; never raises."""
    return PLACEHOLDER.sub(lambda m: _stringify(context.get(m.group(1))), template or "")


class PromptLibrary:
    """Named prompt templates loaded from YAML; unknown names are literal templates."""

    def __init__(self, templates: Optional[Dict[str, str]] = None):
        self._templates: Dict[str, str] = dict(templates or {})

    @classmethod
    def from_dir(cls, prompts_dir: str) -> "PromptLibrary":
        library = cls()
        path = Path(prompts_dir)
        if not path.exists():
            logger.warning("prompts_dir_missing", path=str(path))
            return library

        for yaml_file in sorted(path.glob("*.yaml")):
            try:
                with open(yaml_file) as f:
                    data = yaml.safe_load(f) or {}
                slug = data.get("slug") or yaml_file.stem
                library._templates[slug] = data["template"]
            except Exception as e:
                logger.error("prompt_load_error", file=str(yaml_file), error=str(e))

        logger.info("prompts_loaded", count=len(library._templates))
        return library

    def resolve(self, template: str) -> str:
        return self._templates.get(template, template)

    def names(self) -> List[str]:
        return sorted(self._templates.keys())
