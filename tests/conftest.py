# tests/conftest.py

"""
pytest 공용 픽스처 모듈입니다.

- 테스트마다 새 인메모리 SQLite(aiosqlite) 데이터베이스를 만들고, PostgreSQL 스키마(usr/shared/lims)는
  schema_translate_map 으로 제거합니다. TEST_DATABASE_URL 로 다른 데이터베이스를 지정할 수 있습니다.
- 역할별(ADMIN, LABORANT, VIEWER) 사용자와, 실제 토큰 엔드포인트로 로그인한 AsyncClient 를 제공합니다.
- lims 도메인 기본 데이터(고객사, 공정+파라미터, 시료)를 만드는 픽스처를 제공합니다.
"""

import os

# app 패키지를 임포트하기 전에 설정 값을 준비합니다 (Settings 는 임포트 시점에 로드됨).
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-pytest-only")

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Awaitable, Callable

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from app.main import app as main_app
from app.core import dependencies as deps
from app.core.database import get_session
from app.core.security import get_password_hash
from app.domains.usr import models as usr_models
from app.domains.lims import models as lims_models

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite+aiosqlite://")
SCHEMA_TRANSLATE_MAP = {"usr": None, "shared": None, "lims": None}


def _build_engine(url: str) -> AsyncEngine:
    if not url.startswith("sqlite"):
        return create_async_engine(url, future=True)

    engine = create_async_engine(
        url,
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
        execution_options={"schema_translate_map": SCHEMA_TRANSLATE_MAP},
    )

    # pysqlite 의 암묵적 트랜잭션 처리를 끄고 BEGIN 을 직접 내보내 SAVEPOINT 가 올바르게 동작하도록 합니다.
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


# --- 데이터베이스 픽스처 ---
@pytest_asyncio.fixture(scope="function")
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """테스트 함수마다 빈 데이터베이스와 전체 테이블을 준비합니다."""
    engine = _build_engine(TEST_DATABASE_URL)
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(test_engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """테스트와 API 요청이 함께 사용하는 비동기 세션입니다."""
    TestingSessionLocal = sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,
    )
    async with TestingSessionLocal() as session:
        yield session


def _override_session(db_session: AsyncSession):
    async def override_get_session():
        yield db_session
    return override_get_session


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """인증되지 않은 AsyncClient 를 반환합니다."""
    override = _override_session(db_session)
    original_overrides = main_app.dependency_overrides.copy()
    main_app.dependency_overrides.update({
        get_session: override,
        deps.get_db_session: override,
    })
    try:
        transport = ASGITransport(app=main_app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac
    finally:
        main_app.dependency_overrides.clear()
        main_app.dependency_overrides.update(original_overrides)


# --- 사용자 픽스처 ---
@pytest.fixture(scope="function")
def user_factory(db_session: AsyncSession) -> Callable[..., Awaitable[usr_models.User]]:
    """역할과 속성을 지정하여 테스트 사용자를 생성하는 팩토리 함수를 반환합니다."""
    async def _create_user(
        username: str,
        password: str,
        role: usr_models.UserRole,
        is_active: bool = True,
        **kwargs,
    ) -> usr_models.User:
        user_data = {
            "username": username,
            "password_hash": get_password_hash(password),
            "email": f"{username}@example.com",
            "first_name": kwargs.pop("first_name", username.capitalize()),
            "last_name": kwargs.pop("last_name", "Tester"),
            "role": role,
            "is_active": is_active,
            **kwargs,
        }
        user = usr_models.User(**user_data)
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)
        return user
    return _create_user


@pytest_asyncio.fixture(scope="function")
async def test_admin_user(user_factory: Callable) -> usr_models.User:
    """관리자(ADMIN) 사용자를 생성합니다."""
    return await user_factory("sysadm", "sysadmpass123", role=usr_models.UserRole.ADMIN, first_name="Anna", last_name="Nowak")


@pytest_asyncio.fixture(scope="function")
async def test_laborant_user(user_factory: Callable) -> usr_models.User:
    """실험실 분석원(LABORANT)을 생성합니다."""
    return await user_factory("laborant", "laborantpass123", role=usr_models.UserRole.LABORANT, first_name="Jan", last_name="Kowalski")


@pytest_asyncio.fixture(scope="function")
async def test_viewer_user(user_factory: Callable) -> usr_models.User:
    """조회자(VIEWER)를 생성합니다."""
    return await user_factory("viewer", "viewerpass123", role=usr_models.UserRole.VIEWER)


# --- 역할별 인증 클라이언트 픽스처 ---
# /api/v1/usr/auth/token 로그인 API를 실제로 호출하고, 받은 access_token 을 Authorization 헤더에 넣습니다.
@pytest.fixture(scope="function")
def authorized_client_factory(db_session: AsyncSession):
    """특정 사용자로 로그인된 AsyncClient 를 만드는 비동기 컨텍스트 매니저 팩토리를 반환합니다."""
    @asynccontextmanager
    async def _create_client_context(user: usr_models.User, password: str) -> AsyncGenerator[AsyncClient, None]:
        override = _override_session(db_session)
        original_overrides = main_app.dependency_overrides.copy()
        try:
            main_app.dependency_overrides.update({
                get_session: override,
                deps.get_db_session: override,
            })
            transport = ASGITransport(app=main_app)
            async with AsyncClient(transport=transport, base_url="http://test") as ac:
                login_data = {"username": user.username, "password": password}
                res = await ac.post("/api/v1/usr/auth/token", data=login_data)
                if res.status_code != 200:
                    pytest.fail(f"Login failed for {user.username}: {res.text}")

                token = res.json()["access_token"]
                ac.headers["Authorization"] = f"Bearer {token}"
                yield ac
        finally:
            main_app.dependency_overrides.clear()
            main_app.dependency_overrides.update(original_overrides)

    return _create_client_context


@pytest_asyncio.fixture(scope="function")
async def admin_client(authorized_client_factory, test_admin_user: usr_models.User) -> AsyncGenerator[AsyncClient, None]:
    """관리자로 인증된 클라이언트를 반환합니다."""
    async with authorized_client_factory(test_admin_user, "sysadmpass123") as ac:
        yield ac


@pytest_asyncio.fixture(scope="function")
async def laborant_client(authorized_client_factory, test_laborant_user: usr_models.User) -> AsyncGenerator[AsyncClient, None]:
    """실험실 분석원으로 인증된 클라이언트를 반환합니다."""
    async with authorized_client_factory(test_laborant_user, "laborantpass123") as ac:
        yield ac


@pytest_asyncio.fixture(scope="function")
async def viewer_client(authorized_client_factory, test_viewer_user: usr_models.User) -> AsyncGenerator[AsyncClient, None]:
    """조회자로 인증된 클라이언트를 반환합니다."""
    async with authorized_client_factory(test_viewer_user, "viewerpass123") as ac:
        yield ac


# --- lims 도메인 기본 데이터 픽스처 ---
@pytest_asyncio.fixture(scope="function")
async def test_company(db_session: AsyncSession) -> lims_models.Client:
    company = lims_models.Client(company_name="Galwanizernia Testowa Sp. z o.o.", nip="1234567890", city="Poznan")
    db_session.add(company)
    await db_session.commit()
    await db_session.refresh(company)
    return company


@pytest_asyncio.fixture(scope="function")
async def test_process(db_session: AsyncSession) -> lims_models.Process:
    """
    알칼리 아연욕 공정. 파라미터:
    Zn 6-12 g/l (최적 9), NaOH 120-160 g/l (최적 140), Temperatura 20-40 C (최적 32).
    """
    process = lims_models.Process(name="Cynkowanie alkaliczne L1", process_type="ZINC_ALKALINE")
    process.parameters = [
        lims_models.ProcessParameter(parameter_name="Zn", unit="g/l", min_value=6, max_value=12, optimal_value=9, sort_order=1),
        lims_models.ProcessParameter(parameter_name="NaOH", unit="g/l", min_value=120, max_value=160, optimal_value=140, sort_order=2),
        lims_models.ProcessParameter(parameter_name="Temperatura", unit="C", min_value=20, max_value=40, optimal_value=32, sort_order=3),
    ]
    db_session.add(process)
    await db_session.commit()
    await db_session.refresh(process)
    return process


@pytest_asyncio.fixture(scope="function")
async def test_sample(
    db_session: AsyncSession,
    test_company: lims_models.Client,
    test_process: lims_models.Process,
    test_laborant_user: usr_models.User,
) -> lims_models.Sample:
    sample = lims_models.Sample(
        sample_code="PRB-202601-0001",
        client_id=test_company.id,
        process_id=test_process.id,
        collected_by=test_laborant_user.id,
    )
    db_session.add(sample)
    await db_session.commit()
    await db_session.refresh(sample)
    return sample
