# app/domains/shared/routers.py

"""
'shared' 도메인 (감사 로그, 알림)의 API 엔드포인트를 정의하는 모듈입니다.

- 감사 로그: 관리자만 조회할 수 있습니다.
- 알림: 로그인한 사용자 본인의 알림만 조회/읽음 처리할 수 있습니다.
"""
from datetime import date
from typing import List, Optional

from sqlmodel.ext.asyncio.session import AsyncSession
from fastapi import APIRouter, Depends, Query, status

from app.core import dependencies as deps
from app.domains.usr import models as usr_models

from . import crud as shared_crud
from . import schemas as shared_schemas


router = APIRouter(
    tags=["Shared (감사 로그 및 알림)"],
    responses={404: {"description": "Not found"}},
)


# =============================================================================
# 1. shared.audit_logs 엔드포인트
# =============================================================================
@router.get("/audit-logs", response_model=List[shared_schemas.AuditLogResponse], summary="감사 로그 조회")
async def read_audit_logs(
    user_id: Optional[int] = Query(None, description="작업 사용자 ID"),
    action: Optional[str] = Query(None, description="작업 종류"),
    entity_type: Optional[str] = Query(None, description="대상 엔티티 종류"),
    entity_id: Optional[int] = Query(None, description="대상 엔티티 ID"),
    date_from: Optional[date] = Query(None, description="기록일 시작"),
    date_to: Optional[date] = Query(None, description="기록일 종료 (당일 포함)"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(deps.get_db_session),
    current_admin_user: usr_models.User = Depends(deps.get_current_admin_user),
):
    filters = {"user_id": user_id, "action": action, "entity_type": entity_type, "entity_id": entity_id}
    return await shared_crud.audit_log.get_filtered(
        db,
        filters=filters,
        date_range_field="created_at",
        start_date=date_from,
        end_date=date_to,
        order_by_field="created_at",
        skip=skip,
        limit=limit,
    )


# =============================================================================
# 2. shared.notifications 엔드포인트
# =============================================================================
@router.get("/notifications", response_model=List[shared_schemas.NotificationResponse], summary="내 알림 목록")
async def read_my_notifications(
    unread_only: bool = Query(False, description="읽지 않은 알림만"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(deps.get_db_session),
    current_user: usr_models.User = Depends(deps.get_current_active_user),
):
    return await shared_crud.notification.get_for_user(
        db, user_id=current_user.id, unread_only=unread_only, skip=skip, limit=limit
    )


@router.get("/notifications/unread-count", response_model=shared_schemas.UnreadCount, summary="읽지 않은 알림 수")
async def read_unread_count(
    db: AsyncSession = Depends(deps.get_db_session),
    current_user: usr_models.User = Depends(deps.get_current_active_user),
):
    return {"unread": await shared_crud.notification.count_unread(db, user_id=current_user.id)}


@router.patch("/notifications/read-all", response_model=shared_schemas.MarkedCount, summary="모든 알림 읽음 처리")
async def mark_all_notifications_read(
    db: AsyncSession = Depends(deps.get_db_session),
    current_user: usr_models.User = Depends(deps.get_current_active_user),
):
    return {"updated": await shared_crud.notification.mark_all_read(db, user_id=current_user.id)}


@router.patch(
    "/notifications/{notification_id}/read",
    response_model=shared_schemas.NotificationResponse,
    status_code=status.HTTP_200_OK,
    summary="알림 읽음 처리",
)
async def mark_notification_read(
    notification_id: int,
    db: AsyncSession = Depends(deps.get_db_session),
    current_user: usr_models.User = Depends(deps.get_current_active_user),
):
    return await shared_crud.notification.mark_read(db, notification_id=notification_id, user_id=current_user.id)
