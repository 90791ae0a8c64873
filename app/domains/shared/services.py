# app/domains/shared/services.py

"""
다른 도메인의 라우터가 비즈니스 트랜잭션을 커밋한 뒤 호출하는 공용 서비스입니다.

- record_audit: 감사 로그 기록. 실패해도 예외를 전파하지 않고 로그만 남깁니다.
- notify_users: 하나 이상의 사용자에게 알림을 발송합니다.
"""

import logging
from typing import Any, Dict, Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel.ext.asyncio.session import AsyncSession

from . import crud as shared_crud
from . import models as shared_models
from . import schemas as shared_schemas

logger = logging.getLogger(__name__)


async def record_audit(
    db: AsyncSession,
    *,
    user_id: Optional[int],
    action: str,
    entity_type: str,
    entity_id: Optional[int] = None,
    details: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None,
) -> None:
    """
    감사 로그 한 건을 저장합니다.
    세이브포인트 안에서 기록하므로 실패 시 이미 커밋된 비즈니스 데이터와 세션 상태는 그대로 유지됩니다.
    """
    entry = shared_schemas.AuditLogCreate(
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details=details,
        ip_address=ip_address,
    )
    try:
        async with db.begin_nested():
            shared_crud.audit_log.add(db, obj_in=entry)
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("감사 로그 기록 실패: %s %s#%s", action, entity_type, entity_id)


async def notify_users(
    db: AsyncSession,
    *,
    user_ids: Iterable[int],
    title: str,
    message: str,
    type: shared_models.NotificationType = shared_models.NotificationType.INFO,
    link: Optional[str] = None,
) -> int:
    """주어진 사용자들에게 같은 알림을 발송하고 발송 건수를 반환합니다."""
    count = 0
    for user_id in dict.fromkeys(user_ids):
        shared_crud.notification.add(
            db,
            obj_in=shared_schemas.NotificationCreate(
                user_id=user_id, title=title, message=message, type=type, link=link
            ),
        )
        count += 1
    if count:
        await db.commit()
        logger.info("알림 %d건 발송: %s", count, title)
    return count
