from pydantic import BaseModel, Field
from typing import Optional


class FlowRunResponse(BaseModel):
    """
    Result of a StartFlow or ResumeFlow invocation
    """
    success: bool = Field(..., description="False when the run failed")
    message: str = Field(..., description="Human-readable message")
    execution_id: Optional[str] = None
    execution_status: Optional[str] = Field(None, description="running, waiting_for_input, completed or failed")
    error: Optional[str] = None
