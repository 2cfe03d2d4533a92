from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from enum import Enum


class ExecutionStatus(str, Enum):
    RUNNING = "running"
    WAITING_FOR_INPUT = "waiting_for_input"
    COMPLETED = "completed"
    FAILED = "failed"


class ExecutionContinuation(BaseModel):
    """
    Continuation stored on a paused execution.
    Only meaningful while the execution is waiting_for_input.
    """
    input_node_id: str = Field(..., description="Input node that paused the run")
    variable_name: str = Field(..., description="Variable the user's answer is bound to")
    next_node_id: Optional[str] = Field(None, description="Node to run after the answer arrives, None ends the run")


class FlowExecutionData(BaseModel):
    """
    One run of a flow for one subscriber.
    """
    id: Optional[str] = None  # MongoDB _id
    flow_id: str = Field(..., description="Flow being executed")
    user_id: Optional[str] = Field(None, description="Flow owner")
    page_id: Optional[str] = Field(None, description="Channel page the subscriber talks to")
    subscriber_id: str = Field(..., description="Channel-scoped recipient id (PSID)")
    status: ExecutionStatus = Field(default=ExecutionStatus.RUNNING)
    continuation: Optional[ExecutionContinuation] = None
    error_message: Optional[str] = None
    triggered_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    def is_terminal(self) -> bool:
        return self.status in (ExecutionStatus.COMPLETED, ExecutionStatus.FAILED)
