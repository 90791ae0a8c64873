# app/domains/usr/crud.py

"""
'usr' 도메인의 CRUD 작업을 담당하는 모듈입니다.
"""

import logging
from datetime import datetime, UTC
from typing import List, Optional

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession
from fastapi import HTTPException, status

from app.core.crud_base import CRUDBase
from app.core.security import get_password_hash, verify_password
from . import models as usr_models
from . import schemas as usr_schemas

logger = logging.getLogger(__name__)


# =============================================================================
# usr.users 테이블 CRUD
# =============================================================================
class CRUDUser(CRUDBase[usr_models.User, usr_schemas.UserCreate, usr_schemas.UserUpdate]):
    def __init__(self):
        super().__init__(model=usr_models.User)

    async def get_by_username(self, db: AsyncSession, *, username: str) -> Optional[usr_models.User]:
        """사용자명으로 사용자를 조회합니다."""
        return await self.get_by_attribute(db, attribute="username", value=username)

    async def get_by_email(self, db: AsyncSession, *, email: str) -> Optional[usr_models.User]:
        """이메일로 사용자를 조회합니다."""
        return await self.get_by_attribute(db, attribute="email", value=email)

    async def get_active_admins(self, db: AsyncSession) -> List[usr_models.User]:
        """알림 대상이 되는 활성 관리자 목록을 반환합니다."""
        statement = select(self.model).where(
            self.model.role == usr_models.UserRole.ADMIN,
            self.model.is_active == True,  # noqa: E712
        )
        result = await db.execute(statement)
        return result.scalars().all()

    async def create(self, db: AsyncSession, *, obj_in: usr_schemas.UserCreate) -> usr_models.User:
        """새로운 사용자를 생성하며 비밀번호를 해싱하고 중복을 검사합니다."""
        if await self.get_by_username(db, username=obj_in.username):
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Username already registered")
        if await self.get_by_email(db, email=obj_in.email):
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered")

        user_data = obj_in.model_dump(exclude={"password"})
        db_user = usr_models.User(**user_data, password_hash=get_password_hash(obj_in.password))

        db.add(db_user)
        await db.commit()
        await db.refresh(db_user)
        logger.info("사용자 생성: %s (%s)", db_user.username, db_user.role.name)
        return db_user

    async def authenticate(self, db: AsyncSession, *, username: str, password: str) -> Optional[usr_models.User]:
        """사용자명과 비밀번호를 사용하여 사용자를 인증합니다. 성공 시 마지막 로그인 일시를 기록합니다."""
        user = await self.get_by_username(db, username=username)
        if not user:
            return None
        if not verify_password(password, user.password_hash):
            return None
        user.last_login_at = datetime.now(UTC)
        db.add(user)
        await db.commit()
        await db.refresh(user)
        return user

    async def update(self, db: AsyncSession, *, db_obj: usr_models.User, obj_in: usr_schemas.UserUpdate) -> usr_models.User:
        """
        사용자 정보를 업데이트합니다. 이메일 중복을 검사하고, 비밀번호가 주어지면 다시 해싱합니다.
        """
        update_data = obj_in.model_dump(exclude_unset=True)
        new_email = update_data.get("email")
        if new_email and new_email != db_obj.email:
            existing = await self.get_by_email(db, email=new_email)
            if existing and existing.id != db_obj.id:
                raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered")

        password = update_data.pop("password", None)
        if password:
            db_obj.password_hash = get_password_hash(password)
        for key, value in update_data.items():
            setattr(db_obj, key, value)

        db.add(db_obj)
        await db.commit()
        await db.refresh(db_obj)
        return db_obj

    async def change_password(
        self, db: AsyncSession, *, db_obj: usr_models.User, current_password: str, new_password: str
    ) -> usr_models.User:
        """현재 비밀번호를 확인한 뒤 본인 비밀번호를 변경합니다."""
        if not verify_password(current_password, db_obj.password_hash):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Current password is incorrect")
        db_obj.password_hash = get_password_hash(new_password)
        db.add(db_obj)
        await db.commit()
        await db.refresh(db_obj)
        return db_obj

    async def deactivate(self, db: AsyncSession, *, db_obj: usr_models.User, current_user: usr_models.User) -> usr_models.User:
        """
        사용자를 비활성화합니다. 물리 삭제 대신 is_active 를 False 로 설정합니다.
        """
        if db_obj.id == current_user.id:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot deactivate your own account.")
        db_obj.is_active = False
        db.add(db_obj)
        await db.commit()
        await db.refresh(db_obj)
        logger.info("사용자 비활성화: %s", db_obj.username)
        return db_obj


user = CRUDUser()
