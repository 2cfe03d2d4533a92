from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class FlowUserInput(BaseModel):
    """
    Model for a value collected from the user by an input node.
    One record per (flow_execution_id, variable_name), the last answer wins.
    """
    id: Optional[str] = None  # MongoDB _id
    flow_execution_id: str
    variable_name: str
    user_response: str
    input_node_id: Optional[str] = None  # Which node collected this value
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
