# app/domains/shared/schemas.py

"""
'shared' 도메인 (감사 로그, 알림)의 API 데이터 전송 객체(DTO)를 정의하는 모듈입니다.
"""

from typing import Any, Dict, Optional
from datetime import datetime

from pydantic import BaseModel

from . import models as shared_models


# =============================================================================
# 1. 감사 로그 (AuditLog) 스키마
# =============================================================================
class AuditLogCreate(BaseModel):
    user_id: Optional[int] = None
    action: str
    entity_type: str
    entity_id: Optional[int] = None
    details: Optional[Dict[str, Any]] = None
    ip_address: Optional[str] = None


class AuditLogResponse(AuditLogCreate):
    id: int
    created_at: datetime

    class Config:
        from_attributes = True


# =============================================================================
# 2. 알림 (Notification) 스키마
# =============================================================================
class NotificationCreate(BaseModel):
    user_id: int
    title: str
    message: str
    type: shared_models.NotificationType = shared_models.NotificationType.INFO
    link: Optional[str] = None


class NotificationResponse(NotificationCreate):
    id: int
    is_read: bool
    created_at: datetime

    class Config:
        from_attributes = True


class UnreadCount(BaseModel):
    unread: int


class MarkedCount(BaseModel):
    updated: int
