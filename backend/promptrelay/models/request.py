from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator


class OutputFormat(str, Enum):
    TEXT = "text"
    JSON = "json"
    MARKDOWN = "markdown"
    HTML = "html"


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class FetcherInvocation(BaseModel):
    key: str
    params: Dict[str, Any] = Field(default_factory=dict)


class GenerationRequest(BaseModel):
    """One (template, model, context) unit of work, constructed per invocation."""

    template: str
    model: str
    context: Dict[str, Any] = Field(default_factory=dict)
    format: OutputFormat = OutputFormat.TEXT
    tenant_id: str
    user_id: Optional[str] = None
    agent_id: Optional[str] = None
    fetchers: List[FetcherInvocation] = Field(default_factory=list)

    # Set by the queue / replay machinery
    job_id: Optional[str] = None
    source_output_id: Optional[str] = None

    @field_validator("template", "model", "tenant_id")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be blank")
        return value
