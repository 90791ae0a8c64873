# tests/domains/test_usr_n.py

"""
'usr' 도메인 (인증 및 사용자 관리) 관련 API 엔드포인트에 대한 통합 테스트 모듈입니다.
"""

import pytest
from httpx import AsyncClient
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from fastapi import status

from app.core.security import verify_password
from app.domains.shared import models as shared_models
from app.domains.usr import models as usr_models

USR = "/api/v1/usr"


# =============================================================================
# 1. 인증 (Authentication) 엔드포인트 테스트
# =============================================================================
@pytest.mark.asyncio
async def test_login_success(client: AsyncClient, test_laborant_user: usr_models.User, db_session: AsyncSession):
    """
    올바른 자격 증명으로 토큰을 발급받고, 마지막 로그인 일시와 LOGIN 감사 로그가 기록되는지 테스트합니다.
    """
    response = await client.post(f"{USR}/auth/token", data={"username": "laborant", "password": "laborantpass123"})

    assert response.status_code == status.HTTP_200_OK
    token = response.json()
    assert token["token_type"] == "bearer"
    assert token["access_token"]

    await db_session.refresh(test_laborant_user)
    assert test_laborant_user.last_login_at is not None

    audit = await db_session.execute(
        select(shared_models.AuditLog).where(shared_models.AuditLog.action == "LOGIN")
    )
    entry = audit.scalars().one()
    assert entry.user_id == test_laborant_user.id
    assert entry.ip_address is not None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "username, password",
    [("laborant", "wrongpassword"), ("nobody", "laborantpass123")],
)
async def test_login_invalid_credentials(client: AsyncClient, test_laborant_user: usr_models.User, username, password):
    response = await client.post(f"{USR}/auth/token", data={"username": username, "password": password})

    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.headers["www-authenticate"] == "Bearer"


@pytest.mark.asyncio
async def test_login_inactive_user(client: AsyncClient, user_factory):
    await user_factory("former", "formerpass123", role=usr_models.UserRole.LABORANT, is_active=False)

    response = await client.post(f"{USR}/auth/token", data={"username": "former", "password": "formerpass123"})

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["detail"] == "Inactive user"


@pytest.mark.asyncio
async def test_invalid_token_is_rejected(client: AsyncClient):
    response = await client.get(f"{USR}/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == status.HTTP_401_UNAUTHORIZED


@pytest.mark.asyncio
async def test_read_me(laborant_client: AsyncClient, test_laborant_user: usr_models.User):
    response = await laborant_client.get(f"{USR}/auth/me")

    assert response.status_code == status.HTTP_200_OK
    me = response.json()
    assert me["id"] == test_laborant_user.id
    assert me["username"] == "laborant"
    assert me["role"] == usr_models.UserRole.LABORANT
    assert "password_hash" not in me


@pytest.mark.asyncio
async def test_change_my_password(
    laborant_client: AsyncClient,
    test_laborant_user: usr_models.User,
    db_session: AsyncSession,
):
    """
    현재 비밀번호가 틀리면 400, 맞으면 새 비밀번호로 변경되는지 테스트합니다.
    """
    wrong = await laborant_client.put(
        f"{USR}/auth/me/password",
        json={"current_password": "wrongpassword", "new_password": "nowehaslo123"},
    )
    assert wrong.status_code == status.HTTP_400_BAD_REQUEST

    too_short = await laborant_client.put(
        f"{USR}/auth/me/password",
        json={"current_password": "laborantpass123", "new_password": "short"},
    )
    assert too_short.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    response = await laborant_client.put(
        f"{USR}/auth/me/password",
        json={"current_password": "laborantpass123", "new_password": "nowehaslo123"},
    )
    assert response.status_code == status.HTTP_200_OK

    await db_session.refresh(test_laborant_user)
    assert verify_password("nowehaslo123", test_laborant_user.password_hash)
    assert not verify_password("laborantpass123", test_laborant_user.password_hash)


# =============================================================================
# 2. 사용자 (User) 관리 엔드포인트 테스트
# =============================================================================
@pytest.mark.asyncio
async def test_create_user_admin(admin_client: AsyncClient, db_session: AsyncSession):
    """
    관리자가 새 분석원을 생성하면 비밀번호가 해싱되어 저장되고 CREATE 감사 로그가 남는지 테스트합니다.
    """
    user_data = {
        "username": "mwisniewska",
        "email": "m.wisniewska@example.com",
        "first_name": "Maria",
        "last_name": "Wisniewska",
        "password": "labpass12345",
        "role": usr_models.UserRole.LABORANT,
    }
    response = await admin_client.post(f"{USR}/users", json=user_data)

    assert response.status_code == status.HTTP_201_CREATED
    created = response.json()
    assert created["username"] == "mwisniewska"
    assert created["role"] == usr_models.UserRole.LABORANT
    assert created["is_active"] is True
    assert "password" not in created

    db_user = await db_session.get(usr_models.User, created["id"])
    assert verify_password("labpass12345", db_user.password_hash)

    audit = await db_session.execute(
        select(shared_models.AuditLog).where(
            shared_models.AuditLog.action == "CREATE",
            shared_models.AuditLog.entity_type == "User",
        )
    )
    assert audit.scalars().one().details == {"username": "mwisniewska", "role": "LABORANT"}


@pytest.mark.asyncio
async def test_create_user_duplicates(admin_client: AsyncClient, test_laborant_user: usr_models.User):
    base = {"first_name": "Piotr", "last_name": "Zielinski", "password": "labpass12345"}

    same_username = await admin_client.post(
        f"{USR}/users", json={**base, "username": "laborant", "email": "other@example.com"}
    )
    assert same_username.status_code == status.HTTP_409_CONFLICT

    same_email = await admin_client.post(
        f"{USR}/users", json={**base, "username": "pzielinski", "email": test_laborant_user.email}
    )
    assert same_email.status_code == status.HTTP_409_CONFLICT


@pytest.mark.asyncio
async def test_create_user_validation(admin_client: AsyncClient):
    response = await admin_client.post(
        f"{USR}/users",
        json={"username": "ab", "email": "not-an-email", "first_name": "A", "last_name": "B", "password": "short"},
    )
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


@pytest.mark.asyncio
async def test_user_management_requires_admin(
    laborant_client: AsyncClient,
    client: AsyncClient,
):
    user_data = {
        "username": "denied", "email": "denied@example.com",
        "first_name": "Den", "last_name": "Ied", "password": "labpass12345",
    }
    assert (await laborant_client.post(f"{USR}/users", json=user_data)).status_code == status.HTTP_403_FORBIDDEN
    assert (await laborant_client.get(f"{USR}/users")).status_code == status.HTTP_403_FORBIDDEN
    assert (await client.get(f"{USR}/users")).status_code == status.HTTP_401_UNAUTHORIZED


@pytest.mark.asyncio
async def test_read_users_with_filters(
    admin_client: AsyncClient,
    test_laborant_user: usr_models.User,
    test_viewer_user: usr_models.User,
    user_factory,
):
    await user_factory("former", "formerpass123", role=usr_models.UserRole.LABORANT, is_active=False)

    response = await admin_client.get(f"{USR}/users")
    assert response.status_code == status.HTTP_200_OK
    assert [u["username"] for u in response.json()] == ["former", "laborant", "sysadm", "viewer"]

    laborants = await admin_client.get(f"{USR}/users", params={"role": int(usr_models.UserRole.LABORANT)})
    assert [u["username"] for u in laborants.json()] == ["former", "laborant"]

    active_laborants = await admin_client.get(
        f"{USR}/users", params={"role": int(usr_models.UserRole.LABORANT), "is_active": True}
    )
    assert [u["username"] for u in active_laborants.json()] == ["laborant"]

    paged = await admin_client.get(f"{USR}/users", params={"skip": 1, "limit": 2})
    assert [u["username"] for u in paged.json()] == ["laborant", "sysadm"]


@pytest.mark.asyncio
async def test_read_user_permissions(
    laborant_client: AsyncClient,
    admin_client: AsyncClient,
    test_laborant_user: usr_models.User,
    test_viewer_user: usr_models.User,
):
    """
    본인 정보는 누구나 조회할 수 있지만 다른 사용자 정보는 관리자만 조회할 수 있습니다.
    """
    own = await laborant_client.get(f"{USR}/users/{test_laborant_user.id}")
    assert own.status_code == status.HTTP_200_OK

    other = await laborant_client.get(f"{USR}/users/{test_viewer_user.id}")
    assert other.status_code == status.HTTP_403_FORBIDDEN

    by_admin = await admin_client.get(f"{USR}/users/{test_viewer_user.id}")
    assert by_admin.status_code == status.HTTP_200_OK
    assert by_admin.json()["username"] == "viewer"

    missing = await admin_client.get(f"{USR}/users/999999")
    assert missing.status_code == status.HTTP_404_NOT_FOUND


@pytest.mark.asyncio
async def test_update_user(
    admin_client: AsyncClient,
    test_viewer_user: usr_models.User,
    test_laborant_user: usr_models.User,
    db_session: AsyncSession,
):
    """
    관리자가 역할과 비밀번호를 변경하고, 다른 사용자의 이메일로는 변경할 수 없는지 테스트합니다.
    """
    response = await admin_client.put(
        f"{USR}/users/{test_viewer_user.id}",
        json={"role": int(usr_models.UserRole.LABORANT), "last_name": "Lewandowski", "password": "resetpass123"},
    )
    assert response.status_code == status.HTTP_200_OK
    updated = response.json()
    assert updated["role"] == usr_models.UserRole.LABORANT
    assert updated["last_name"] == "Lewandowski"

    await db_session.refresh(test_viewer_user)
    assert verify_password("resetpass123", test_viewer_user.password_hash)

    audit = await db_session.execute(
        select(shared_models.AuditLog).where(shared_models.AuditLog.action == "UPDATE")
    )
    assert audit.scalars().one().details == {"role": int(usr_models.UserRole.LABORANT), "last_name": "Lewandowski"}

    conflict = await admin_client.put(
        f"{USR}/users/{test_viewer_user.id}", json={"email": test_laborant_user.email}
    )
    assert conflict.status_code == status.HTTP_409_CONFLICT

    missing = await admin_client.put(f"{USR}/users/999999", json={"first_name": "X"})
    assert missing.status_code == status.HTTP_404_NOT_FOUND


@pytest.mark.asyncio
async def test_deactivate_user(
    admin_client: AsyncClient,
    test_laborant_user: usr_models.User,
    db_session: AsyncSession,
    client: AsyncClient,
):
    """
    사용자는 삭제되지 않고 비활성화되며, 비활성 사용자는 더 이상 로그인할 수 없습니다.
    """
    response = await admin_client.delete(f"{USR}/users/{test_laborant_user.id}")

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["is_active"] is False

    db_user = await db_session.get(usr_models.User, test_laborant_user.id)
    assert db_user is not None
    assert db_user.is_active is False

    login = await client.post(f"{USR}/auth/token", data={"username": "laborant", "password": "laborantpass123"})
    assert login.status_code == status.HTTP_400_BAD_REQUEST


@pytest.mark.asyncio
async def test_deactivate_self_is_rejected(admin_client: AsyncClient, test_admin_user: usr_models.User):
    response = await admin_client.delete(f"{USR}/users/{test_admin_user.id}")

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert "own account" in response.json()["detail"]


@pytest.mark.asyncio
async def test_deactivated_user_token_is_rejected(
    laborant_client: AsyncClient,
    test_laborant_user: usr_models.User,
    db_session: AsyncSession,
):
    """토큰을 받은 뒤 비활성화된 사용자의 요청은 400 으로 거부됩니다."""
    test_laborant_user.is_active = False
    db_session.add(test_laborant_user)
    await db_session.commit()

    response = await laborant_client.get(f"{USR}/auth/me")
    assert response.status_code == status.HTTP_400_BAD_REQUEST
