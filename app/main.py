# app/main.py

"""
Galvano LIMS FastAPI 애플리케이션의 진입점입니다.

도메인 라우터(usr, shared, lims)를 API_PREFIX 아래에 등록하고,
CORS 미들웨어와 수명 주기(lifespan) 핸들러, 루트/헬스 체크 엔드포인트를 정의합니다.
"""

import logging
from typing import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlmodel.ext.asyncio.session import AsyncSession
from fastapi import FastAPI, Depends, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware

# 핵심 설정 및 데이터베이스 모듈 임포트
from app import API_PREFIX
from app.core.config import settings
from app.core.database import engine, get_session
from app.core.logging import configure_logging

# 각 도메인의 라우터들을 임포트합니다.
from app.domains.shared.routers import router as shared_router
from app.domains.usr.routers import router as usr_router
from app.domains.lims.routers import router as lims_router

logger = logging.getLogger(__name__)


# -- 애플리케이션 수명 주기 이벤트 핸들러 --
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    시작 시 로깅을 구성하고, 종료 시 데이터베이스 연결 풀을 정리합니다.
    스키마 생성은 scripts/ 의 관리 명령으로 수행합니다.
    """
    configure_logging()
    logger.info("%s %s 시작 (env=%s)", settings.APP_NAME, settings.APP_VERSION, settings.APP_ENV)

    yield  # 애플리케이션 실행

    logger.info("%s 종료 중...", settings.APP_NAME)
    await engine.dispose()
    logger.info("데이터베이스 연결 풀 종료 완료.")


# -- FastAPI 애플리케이션 인스턴스 생성 --
app = FastAPI(
    title=settings.APP_NAME,
    description=settings.APP_DESCRIPTION,
    version=settings.APP_VERSION,
    docs_url="/docs",       # Swagger UI
    redoc_url="/redoc",     # ReDoc
    lifespan=lifespan,
)

# -- CORS 미들웨어 설정 --
# CORS_ORIGINS 는 쉼표로 구분된 출처 목록입니다 ("*" 는 개발용).
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# -- 도메인 라우터 포함 --
app.include_router(shared_router, prefix=f"{API_PREFIX}/shared", tags=["Shared (감사 로그 및 알림)"])
app.include_router(usr_router, prefix=f"{API_PREFIX}/usr", tags=["User Management (사용자 관리)"])
app.include_router(lims_router, prefix=f"{API_PREFIX}/lims", tags=["Laboratory Information Management (실험실 정보 관리)"])


# -- 루트 엔드포인트 --
@app.get("/", summary="API Root", response_description="Welcome message and documentation link.")
async def read_root():
    """
    Galvano LIMS API의 루트 엔드포인트입니다.
    API의 시작점을 알리고 문서 링크를 제공합니다.
    """
    return {"message": f"Welcome to {settings.APP_NAME}. Visit /docs for interactive API documentation."}


# -- 헬스 체크 엔드포인트 --
@app.get("/health-check", summary="Health Check", response_description="Status of the application and database connection.")
async def health_check(session: AsyncSession = Depends(get_session)):
    """
    애플리케이션의 헬스 체크 엔드포인트입니다.
    데이터베이스에 `SELECT 1` 을 실행하여 연결 상태를 확인합니다.
    """
    try:
        result = await session.execute(text("SELECT 1"))
        if result.scalar() == 1:
            return {"status": "ok", "database_connection": "successful"}
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Database health check failed: No result from test query"
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("헬스 체크 실패")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Database connection error during health check: {e}"
        )
