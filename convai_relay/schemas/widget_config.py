"""Widget configuration schemas.

The provider API key is write-only: accepted on create, never returned.
"""

from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class WidgetConfigCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    agent_id: str = Field(..., min_length=1, max_length=255, alias="agentId")
    api_key: str = Field(..., min_length=1, alias="apiKey")
    theme: Optional[Dict[str, str]] = None

    model_config = ConfigDict(populate_by_name=True)


class WidgetConfigResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    agent_id: str
    theme: Dict[str, str]
    active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
