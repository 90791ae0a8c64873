# app/core/database.py

"""
애플리케이션의 데이터베이스 연결 및 세션 관리를 담당하는 모듈입니다.

- SQLModel의 비동기 엔진을 설정합니다.
- 비동기 세션 생성을 위한 유틸리티 함수를 제공합니다.
- 애플리케이션 시작 시 데이터베이스 스키마와 테이블을 생성하는 함수를 포함합니다 (개발용).
"""

import logging
from typing import Any, AsyncGenerator, Dict
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine
from sqlalchemy.orm import configure_mappers, sessionmaker
from sqlalchemy import text

from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.config import settings

# =============================================================================
# 모든 도메인 모델 임포트
# =============================================================================
# 모든 SQLModel 클래스가 SQLModel.metadata에 등록되고,
# 문자열로 선언된 관계('User', 'Analysis' 등)가 해석될 수 있도록 런타임에 임포트합니다.
from app.domains.usr import models as usr_models        # noqa
from app.domains.shared import models as shared_models  # noqa
from app.domains.lims import models as lims_models      # noqa

logger = logging.getLogger(__name__)

# PostgreSQL 운영 환경에서 사용하는 스키마 목록 (모델의 __table_args__ 와 일치)
DB_SCHEMAS = ['usr', 'shared', 'lims']


def engine_options(url: str) -> Dict[str, Any]:
    """
    URL 방언에 맞는 커넥션 풀 옵션을 반환합니다.
    SQLite(aiosqlite)는 QueuePool 크기 옵션을 받지 않습니다.
    """
    if url.startswith("sqlite"):
        return {}
    return {
        "pool_recycle": 3600,  # 1시간마다 연결 재활용
        "pool_size": 10,
        "max_overflow": 20,
    }


_database_url = settings.DATABASE_URL.get_secret_value()

engine: AsyncEngine = create_async_engine(
    _database_url,
    echo=settings.DEBUG_MODE,  # 디버그 모드일 때만 SQL 쿼리 출력
    future=True,
    **engine_options(_database_url),
)

# 비동기 세션을 생성하는 '세션 공장'을 정의합니다.
AsyncSessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

metadata = SQLModel.metadata


# =============================================================================
# 데이터베이스 초기화 및 테이블 생성 함수
# =============================================================================
async def create_db_and_tables(db_engine: AsyncEngine = engine) -> None:
    """
    데이터베이스 스키마 및 테이블을 생성합니다.
    개발 및 시드 용도이며, 기존 테이블을 삭제하지는 않습니다.
    """
    configure_mappers()
    async with db_engine.begin() as conn:
        if db_engine.dialect.name == "postgresql":
            for schema_name in DB_SCHEMAS:
                await conn.execute(text(f"CREATE SCHEMA IF NOT EXISTS {schema_name}"))
                logger.debug("스키마 '%s' 생성 완료 또는 이미 존재.", schema_name)
        await conn.run_sync(SQLModel.metadata.create_all)
    logger.info("데이터베이스 테이블 생성이 완료되었습니다 (또는 이미 존재).")


# =============================================================================
# 비동기 데이터베이스 세션 의존성 주입
# =============================================================================
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI 의존성 주입을 위한 비동기 데이터베이스 세션 제너레이터입니다.
    요청마다 새로운 세션을 생성하고, 요청 처리 후 세션을 자동으로 닫습니다.
    """
    async with AsyncSessionLocal() as session:
        yield session


@asynccontextmanager
async def get_async_session_context() -> AsyncGenerator[AsyncSession, None]:
    """
    스크립트(관리자 생성, 시드 등)에서 사용할 수 있는
    독립적인 트랜잭션 세션을 제공하는 컨텍스트 관리자입니다.
    블록이 정상 종료되면 커밋하고, 예외가 발생하면 롤백 후 다시 발생시킵니다.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
