from pydantic import BaseModel
from typing import Optional


class AIProviderConfig(BaseModel):
    """
    Provider settings used by AI nodes, resolved from the flow owner's profile
    """
    provider: str = "default"  # "openai", "gemini", "default"
    model: Optional[str] = None
    api_key: Optional[str] = None
