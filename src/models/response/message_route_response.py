from pydantic import BaseModel, Field
from typing import Optional

from models.response.flow_run_response import FlowRunResponse


class MessageRouteResponse(BaseModel):
    """
    Outcome of routing one inbound message
    """
    action: str = Field(..., description="resumed, started_from_node, started_flow, triggered, product_details or none")
    flow_id: Optional[str] = None
    run: Optional[FlowRunResponse] = None
