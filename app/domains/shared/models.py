# app/domains/shared/models.py

"""
'shared' 도메인 (PostgreSQL 'shared' 스키마)의 데이터베이스 ORM 모델을 정의하는 모듈입니다.
"""

from typing import Any, Dict, Optional
from enum import Enum
from datetime import datetime, UTC

from sqlalchemy import ForeignKey, JSON
from sqlalchemy.sql import func
from sqlalchemy.types import TIMESTAMP
from sqlmodel import Field, SQLModel, Column


class NotificationType(str, Enum):
    """알림 종류"""
    INFO = "INFO"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"
    APPROVAL = "APPROVAL"


# =============================================================================
# 1. shared.audit_logs 테이블 모델
# =============================================================================
class AuditLog(SQLModel, table=True):
    """
    PostgreSQL의 shared.audit_logs 테이블에 매핑되는 SQLModel ORM 클래스입니다.
    비즈니스 트랜잭션이 커밋된 뒤 한 건씩 추가만 되며, 수정/삭제 API는 없습니다.
    """
    __tablename__ = "audit_logs"
    __table_args__ = {'schema': 'shared'}

    id: Optional[int] = Field(default=None, primary_key=True, description="감사 로그 고유 ID")
    user_id: Optional[int] = Field(
        default=None,
        sa_column=Column(ForeignKey("usr.users.id", ondelete="SET NULL"), nullable=True, index=True),
        description="작업 사용자 ID (FK)"
    )
    action: str = Field(max_length=50, index=True, description="작업 종류 (CREATE, UPDATE, APPROVE, ...)")
    entity_type: str = Field(max_length=50, index=True, description="대상 엔티티 종류 (Client, Analysis, ...)")
    entity_id: Optional[int] = Field(default=None, description="대상 엔티티 ID")
    details: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON), description="변경 내용 (JSON)")
    ip_address: Optional[str] = Field(default=None, max_length=45, description="요청자 IP 주소")

    created_at: Optional[datetime] = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_column=Column(TIMESTAMP(timezone=True), server_default=func.now(), index=True),
        description="기록 일시"
    )


# =============================================================================
# 2. shared.notifications 테이블 모델
# =============================================================================
class Notification(SQLModel, table=True):
    """
    PostgreSQL의 shared.notifications 테이블에 매핑되는 SQLModel ORM 클래스입니다.
    """
    __tablename__ = "notifications"
    __table_args__ = {'schema': 'shared'}

    id: Optional[int] = Field(default=None, primary_key=True, description="알림 고유 ID")
    user_id: int = Field(
        sa_column=Column(ForeignKey("usr.users.id", ondelete="CASCADE"), nullable=False, index=True),
        description="수신 사용자 ID (FK)"
    )
    title: str = Field(max_length=255, description="알림 제목")
    message: str = Field(description="알림 내용")
    type: NotificationType = Field(default=NotificationType.INFO, description="알림 종류")
    is_read: bool = Field(default=False, description="읽음 여부")
    link: Optional[str] = Field(default=None, max_length=500, description="관련 화면 링크")

    created_at: Optional[datetime] = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_column=Column(TIMESTAMP(timezone=True), server_default=func.now()),
        description="레코드 생성 일시"
    )
