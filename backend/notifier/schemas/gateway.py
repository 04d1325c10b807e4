"""
Pydantic схемы состояния шлюза сообщений.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class GatewayStatusResponse(BaseModel):
    connected: bool
    identity: Optional[str] = None
    checked_at: datetime
    error: Optional[str] = None


class GatewaySyncResponse(BaseModel):
    success: bool
    error_message: Optional[str] = None
