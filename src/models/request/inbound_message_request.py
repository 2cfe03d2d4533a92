from pydantic import BaseModel, Field, ConfigDict
from typing import Optional


class InboundMessageRequest(BaseModel):
    """
    Normalized inbound event from the channel webhook.
    Exactly one of text, quick_reply_payload or postback_payload is expected.
    """
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "page_id": "104857600000000",
                "sender": "2345678901234567",
                "text": "hello",
                "quick_reply_payload": None,
                "postback_payload": None,
                "conversation_id": "conv_123"
            }
        }
    )

    page_id: str = Field(..., description="Provider page id the message was sent to")
    sender: str = Field(..., description="Subscriber PSID")
    text: Optional[str] = Field(None, description="Free text typed by the subscriber")
    quick_reply_payload: Optional[str] = None
    postback_payload: Optional[str] = None
    conversation_id: Optional[str] = None
