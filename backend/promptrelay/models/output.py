from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from promptrelay.models.request import OutputFormat
from promptrelay.models.routing import RoutingDecision


class OutputStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Feedback(str, Enum):
    NONE = "none"
    THUMBS_UP = "thumbs_up"
    THUMBS_DOWN = "thumbs_down"


class Output(BaseModel):
    """Durable record of one executed request."""

    id: str
    job_id: Optional[str] = None
    tenant_id: str
    user_id: Optional[str] = None
    agent_id: Optional[str] = None
    source_output_id: Optional[str] = None

    template_name: str
    model_name: str
    format: OutputFormat = OutputFormat.TEXT
    prompt: str = ""
    context: Dict[str, Any] = Field(default_factory=dict)
    raw_response: Optional[str] = None
    parsed_output: Any = None
    status: OutputStatus = OutputStatus.PENDING
    error: Optional[str] = None

    routing_decision: Optional[RoutingDecision] = None
    estimated_cost: float = 0.0
    actual_cost: Optional[float] = None
    input_tokens: int = 0
    output_tokens: int = 0
    cost_warning: bool = False

    feedback: Feedback = Feedback.NONE
    feedback_comment: Optional[str] = None
    feedback_at: Optional[datetime] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def final_model(self) -> Optional[str]:
        return self.routing_decision.final_model if self.routing_decision else None
