# app/domains/usr/routers.py

"""
'usr' 도메인 (사용자 관리 및 인증)과 관련된 API 엔드포인트를 정의하는 모듈입니다.
"""

from typing import List, Optional
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Request, status, Query
from fastapi.security import OAuth2PasswordRequestForm
from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.config import settings
from app.core import dependencies as deps
from app.domains.shared import services as shared_services

from . import crud as usr_crud
from . import models as usr_models
from . import schemas as usr_schemas


router = APIRouter(
    tags=["User Management (사용자 관리)"],
    responses={404: {"description": "Not found"}},
)


# =============================================================================
# 1. 인증 (Authentication) 엔드포인트
# =============================================================================

@router.post("/auth/token", response_model=usr_schemas.Token, summary="Access Token 획득")
async def login_for_access_token(
    request: Request,
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: AsyncSession = Depends(deps.get_db_session),
):
    user = await usr_crud.user.authenticate(
        db, username=form_data.username, password=form_data.password
    )
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Inactive user")

    access_token_expires = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    access_token = deps.create_access_token(data={"sub": user.username}, expires_delta=access_token_expires)
    await shared_services.record_audit(
        db, user_id=user.id, action="LOGIN", entity_type="User", entity_id=user.id,
        ip_address=deps.get_client_ip(request),
    )
    return {"access_token": access_token, "token_type": "bearer"}


@router.get("/auth/me", response_model=usr_schemas.UserRead, summary="현재 사용자 정보 조회")
async def read_users_me(current_user: usr_models.User = Depends(deps.get_current_active_user)):
    return current_user


@router.put("/auth/me/password", response_model=usr_schemas.UserRead, summary="내 비밀번호 변경")
async def change_my_password(
    request: Request,
    password_in: usr_schemas.PasswordChange,
    db: AsyncSession = Depends(deps.get_db_session),
    current_user: usr_models.User = Depends(deps.get_current_active_user),
):
    user = await usr_crud.user.change_password(
        db, db_obj=current_user,
        current_password=password_in.current_password,
        new_password=password_in.new_password,
    )
    await shared_services.record_audit(
        db, user_id=user.id, action="PASSWORD_CHANGE", entity_type="User", entity_id=user.id,
        ip_address=deps.get_client_ip(request),
    )
    return user


# =============================================================================
# 2. 사용자 (User) 관리 엔드포인트 (관리자 전용)
# =============================================================================
@router.post("/users", response_model=usr_schemas.UserRead, status_code=status.HTTP_201_CREATED, summary="새 사용자 생성")
async def create_user(
    request: Request,
    user_in: usr_schemas.UserCreate,
    db: AsyncSession = Depends(deps.get_db_session),
    current_admin_user: usr_models.User = Depends(deps.get_current_admin_user),
):
    user = await usr_crud.user.create(db, obj_in=user_in)
    await shared_services.record_audit(
        db, user_id=current_admin_user.id, action="CREATE", entity_type="User", entity_id=user.id,
        details={"username": user.username, "role": user.role.name},
        ip_address=deps.get_client_ip(request),
    )
    return user


@router.get("/users", response_model=List[usr_schemas.UserRead], summary="사용자 목록 조회")
async def read_users(
    db: AsyncSession = Depends(deps.get_db_session),
    role: Optional[usr_models.UserRole] = Query(None, description="역할 필터"),
    is_active: Optional[bool] = Query(None, description="활성 여부 필터"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    current_admin_user: usr_models.User = Depends(deps.get_current_admin_user),
):
    filters = {"role": role, "is_active": is_active}
    return await usr_crud.user.get_filtered(
        db, filters=filters, order_by_field="username", order_desc=False, skip=skip, limit=limit
    )


@router.get("/users/{user_id}", response_model=usr_schemas.UserRead, summary="특정 사용자 조회")
async def read_user(
    user_id: int,
    db: AsyncSession = Depends(deps.get_db_session),
    current_user: usr_models.User = Depends(deps.get_current_active_user),
):
    """
    ID로 특정 사용자 정보를 조회합니다.
    - 관리자는 모든 사용자 정보를 조회할 수 있습니다.
    - 그 외 사용자는 자신의 정보만 조회할 수 있습니다.
    """
    user = await usr_crud.user.get(db, user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    if current_user.role != usr_models.UserRole.ADMIN and user.id != current_user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not enough permissions to view other user's information."
        )
    return user


@router.put("/users/{user_id}", response_model=usr_schemas.UserRead, summary="사용자 업데이트")
async def update_user(
    request: Request,
    user_id: int,
    user_in: usr_schemas.UserUpdate,
    db: AsyncSession = Depends(deps.get_db_session),
    current_admin_user: usr_models.User = Depends(deps.get_current_admin_user),
):
    db_user = await usr_crud.user.get(db, user_id)
    if not db_user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    changes = user_in.model_dump(exclude_unset=True, exclude={"password"}, mode="json")
    user = await usr_crud.user.update(db, db_obj=db_user, obj_in=user_in)
    await shared_services.record_audit(
        db, user_id=current_admin_user.id, action="UPDATE", entity_type="User", entity_id=user.id,
        details=changes, ip_address=deps.get_client_ip(request),
    )
    return user


@router.delete("/users/{user_id}", response_model=usr_schemas.UserRead, summary="사용자 비활성화")
async def deactivate_user(
    request: Request,
    user_id: int,
    db: AsyncSession = Depends(deps.get_db_session),
    current_admin_user: usr_models.User = Depends(deps.get_current_admin_user),
):
    db_user = await usr_crud.user.get(db, user_id)
    if not db_user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    user = await usr_crud.user.deactivate(db, db_obj=db_user, current_user=current_admin_user)
    await shared_services.record_audit(
        db, user_id=current_admin_user.id, action="DEACTIVATE", entity_type="User", entity_id=user.id,
        ip_address=deps.get_client_ip(request),
    )
    return user
