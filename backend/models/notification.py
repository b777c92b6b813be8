"""
backend/models/notification.py

In-app notifications. Held in a per-process store, not persisted.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field


class NotificationType(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class Notification(BaseModel):
    model_config = ConfigDict(frozen=True)

    notification_id: str
    user_id: str
    message: str
    type: NotificationType = NotificationType.INFO
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime
    read: bool = False
    read_at: Optional[datetime] = None
