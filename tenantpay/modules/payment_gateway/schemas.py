"""Pydantic schemas for payment gateway presentation.

Nothing here carries a secret; these are safe to serialize into API
responses by the surrounding application.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class SupportedGateway(BaseModel):
    """A provider the platform knows about."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str
    implemented: bool = Field(..., description="Whether an adapter is available")


class GatewayConfigSummary(BaseModel):
    """Non-secret view of one configured gateway."""
    config_id: str
    provider: str
    name: str
    nickname: Optional[str] = None
    environment: str
    is_default: bool
    source: str
    implemented: bool
    updated_at: Optional[datetime] = None
