# app/domains/usr/models.py

"""
'usr' 도메인 (PostgreSQL 'usr' 스키마)의 데이터베이스 ORM 모델을 정의하는 모듈입니다.
"""

from typing import Optional
from datetime import datetime, UTC
from enum import IntEnum

from sqlmodel import Field, SQLModel, Column
from sqlalchemy.sql import func
from sqlalchemy.types import TIMESTAMP


# =============================================================================
# 사용자 역할(RBAC)
# =============================================================================
class UserRole(IntEnum):
    """
    사용자 역할을 정의하는 정수형 Enum 클래스입니다.
    값이 작을수록 권한이 넓습니다.
    """
    ADMIN = 10      # 관리자: 승인, 삭제, 사용자 관리
    LABORANT = 50   # 실험실 분석원: 시료 등록, 분석 수행, 결과 입력, 가져오기
    VIEWER = 100    # 조회자: 읽기 전용


# =============================================================================
# usr.users 테이블 모델
# =============================================================================
class UserBase(SQLModel):
    """
    usr.users 테이블의 기본 속성을 정의하는 SQLModel Base 클래스입니다.
    """
    id: Optional[int] = Field(default=None, primary_key=True, description="사용자 고유 ID")
    username: str = Field(max_length=50, sa_column_kwargs={"unique": True}, description="로그인 사용자명")
    password_hash: str = Field(max_length=255, description="해싱된 비밀번호")
    email: str = Field(max_length=255, sa_column_kwargs={"unique": True}, description="사용자 이메일")
    first_name: str = Field(max_length=100, description="이름")
    last_name: str = Field(max_length=100, description="성")
    role: UserRole = Field(default=UserRole.LABORANT, description="사용자 역할 (권한)")
    is_active: bool = Field(default=True, description="계정 활성 여부")
    last_login_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(TIMESTAMP(timezone=True), nullable=True),
        description="마지막 로그인 일시"
    )

    created_at: Optional[datetime] = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_column=Column(TIMESTAMP(timezone=True), server_default=func.now()),
        description="레코드 생성 일시"
    )
    updated_at: Optional[datetime] = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_column=Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now()),
        description="레코드 마지막 업데이트 일시"
    )


class User(UserBase, table=True):
    """
    PostgreSQL의 usr.users 테이블에 매핑되는 SQLModel ORM 클래스입니다.
    분석 수행자/승인자 등 다른 도메인의 참조는 각 도메인 모델 쪽에서 단방향으로 정의합니다.
    """
    __tablename__ = "users"
    __table_args__ = {'schema': 'usr'}

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
