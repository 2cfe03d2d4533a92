from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class NodeExecutionData(BaseModel):
    """
    Append-only record of one node attempt within a flow execution.
    Never updated after insert.
    """
    id: Optional[str] = None  # MongoDB _id
    flow_execution_id: str = Field(..., description="Execution the node ran in")
    node_id: str = Field(..., description="Node ID within the flow")
    node_type: str = Field(..., description="Type tag of the node")
    status: str = Field(..., description="success or error")
    execution_time_ms: int = Field(default=0, description="Handler duration in milliseconds")
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
