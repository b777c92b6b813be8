"""
backend/models/audit.py

Audit log entries for user and admin actions.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict


class AuditSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AuditCategory(str, Enum):
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    DATA_ACCESS = "data_access"
    DATA_MODIFICATION = "data_modification"
    SYSTEM = "system"
    SECURITY = "security"


class AuditResource(str, Enum):
    USER = "user"
    PLAN = "plan"
    SUBSCRIPTION = "subscription"
    DISCOUNT = "discount"
    USAGE = "usage"
    SYSTEM = "system"


class AuditLog(BaseModel):
    model_config = ConfigDict(frozen=True)

    log_id: int
    user_id: Optional[str] = None
    action: str
    resource: str
    resource_id: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    old_values: Optional[Dict[str, Any]] = None
    new_values: Optional[Dict[str, Any]] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    severity: AuditSeverity = AuditSeverity.LOW
    category: AuditCategory = AuditCategory.DATA_ACCESS
    request_id: Optional[str] = None
    timestamp: datetime
