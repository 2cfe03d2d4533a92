from pydantic import BaseModel, Field, ConfigDict
from typing import Optional


class ResumeFlowRequest(BaseModel):
    """
    Request model for resuming an execution that waits for user input
    """
    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "resumeFlowExecutionId": "6650c0f2a1b2c3d4e5f60719",
                "userResponse": "Sam"
            }
        }
    )

    execution_id: str = Field(..., alias="resumeFlowExecutionId")
    user_response: str = Field(..., alias="userResponse")
    channel_access_token: Optional[str] = Field(None, alias="pageAccessToken", description="Defaults to the stored page token")
    conversation_id: Optional[str] = Field(None, alias="conversationId")
