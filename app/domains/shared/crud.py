# app/domains/shared/crud.py

"""
'shared' 도메인 (감사 로그, 알림)의 CRUD 작업을 담당하는 모듈입니다.
"""

from typing import List, Optional

from sqlalchemy import func, update
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession
from fastapi import HTTPException, status

from app.core.crud_base import CRUDBase
from . import models as shared_models
from . import schemas as shared_schemas


# =============================================================================
# 1. shared.audit_logs 테이블 CRUD
# =============================================================================
class CRUDAuditLog(
    CRUDBase[
        shared_models.AuditLog,
        shared_schemas.AuditLogCreate,
        shared_schemas.AuditLogCreate,
    ]
):
    def __init__(self):
        super().__init__(model=shared_models.AuditLog)

    def add(self, db: AsyncSession, *, obj_in: shared_schemas.AuditLogCreate) -> shared_models.AuditLog:
        """세션에 감사 로그를 추가만 합니다. 커밋은 호출자가 담당합니다."""
        db_obj = shared_models.AuditLog.model_validate(obj_in.model_dump())
        db.add(db_obj)
        return db_obj


audit_log = CRUDAuditLog()


# =============================================================================
# 2. shared.notifications 테이블 CRUD
# =============================================================================
class CRUDNotification(
    CRUDBase[
        shared_models.Notification,
        shared_schemas.NotificationCreate,
        shared_schemas.NotificationCreate,
    ]
):
    def __init__(self):
        super().__init__(model=shared_models.Notification)

    def add(self, db: AsyncSession, *, obj_in: shared_schemas.NotificationCreate) -> shared_models.Notification:
        db_obj = shared_models.Notification.model_validate(obj_in.model_dump())
        db.add(db_obj)
        return db_obj

    async def get_for_user(
        self, db: AsyncSession, *, user_id: int, unread_only: bool = False, skip: int = 0, limit: int = 50
    ) -> List[shared_models.Notification]:
        """사용자 본인의 알림을 최신순으로 조회합니다."""
        statement = select(self.model).where(self.model.user_id == user_id)
        if unread_only:
            statement = statement.where(self.model.is_read == False)  # noqa: E712
        statement = statement.order_by(self.model.created_at.desc(), self.model.id.desc()).offset(skip).limit(limit)
        result = await db.execute(statement)
        return result.scalars().all()

    async def count_unread(self, db: AsyncSession, *, user_id: int) -> int:
        statement = select(func.count()).select_from(self.model).where(
            self.model.user_id == user_id,
            self.model.is_read == False,  # noqa: E712
        )
        result = await db.execute(statement)
        return result.scalar_one()

    async def mark_read(self, db: AsyncSession, *, notification_id: int, user_id: int) -> shared_models.Notification:
        """알림 한 건을 읽음 처리합니다. 다른 사용자의 알림은 찾을 수 없는 것으로 취급합니다."""
        db_obj: Optional[shared_models.Notification] = await self.get(db, notification_id)
        if not db_obj or db_obj.user_id != user_id:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
        db_obj.is_read = True
        db.add(db_obj)
        await db.commit()
        await db.refresh(db_obj)
        return db_obj

    async def mark_all_read(self, db: AsyncSession, *, user_id: int) -> int:
        """사용자의 읽지 않은 알림을 모두 읽음 처리하고 변경 건수를 반환합니다."""
        statement = (
            update(self.model)
            .where(self.model.user_id == user_id, self.model.is_read == False)  # noqa: E712
            .values(is_read=True)
            .execution_options(synchronize_session="fetch")
        )
        result = await db.execute(statement)
        await db.commit()
        return result.rowcount


notification = CRUDNotification()
