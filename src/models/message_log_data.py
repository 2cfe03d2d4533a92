from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class MessageLogData(BaseModel):
    """
    Bot message written to the conversation history after a successful send
    """
    id: Optional[str] = None  # MongoDB _id
    conversation_id: str
    sender_type: str = "bot"
    message_text: str = ""
    message_id: Optional[str] = Field(None, description="Provider message id returned by the gateway")
    status: str = "delivered"
    attachment_url: Optional[str] = None
    attachment_type: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
