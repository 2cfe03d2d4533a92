from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class PageData(BaseModel):
    """
    Channel page a flow is attached to
    """
    id: Optional[str] = None  # MongoDB _id
    page_id: str = Field(..., description="Provider page id")
    page_name: Optional[str] = None
    page_access_token: Optional[str] = None
    user_id: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
