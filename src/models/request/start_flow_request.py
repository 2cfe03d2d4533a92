from pydantic import BaseModel, Field, ConfigDict
from typing import Optional


class StartFlowRequest(BaseModel):
    """
    Request model for starting a flow for one subscriber.
    Runs from the start node unless startFromNodeId is given.
    """
    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "flowId": "6650c0f2a1b2c3d4e5f60718",
                "recipientPsid": "2345678901234567",
                "pageAccessToken": "EAAG...",
                "conversationId": "conv_123",
                "startFromNodeId": None
            }
        }
    )

    flow_id: str = Field(..., alias="flowId")
    subscriber_id: str = Field(..., alias="recipientPsid")
    channel_access_token: str = Field(..., alias="pageAccessToken")
    conversation_id: Optional[str] = Field(None, alias="conversationId")
    start_from_node_id: Optional[str] = Field(None, alias="startFromNodeId")
