# flake8: noqa
# scripts/create_admin.py

import asyncio
import typer

from app.core.database import create_db_and_tables, get_async_session_context
from app.core.logging import configure_logging
from app.domains.usr import crud as usr_crud
from app.domains.usr import schemas as usr_schemas
from app.domains.usr.models import UserRole

cli = typer.Typer()


async def create_admin_user(user_in: usr_schemas.UserCreate, init_db: bool = False) -> bool:
    """
    데이터베이스에 관리자 사용자를 생성하는 비동기 함수
    """
    if init_db:
        await create_db_and_tables()

    async with get_async_session_context() as db:
        if await usr_crud.user.get_by_email(db, email=user_in.email):
            typer.echo(f"오류: 이미 존재하는 이메일입니다: {user_in.email}")
            return False
        if await usr_crud.user.get_by_username(db, username=user_in.username):
            typer.echo(f"오류: 이미 존재하는 사용자명입니다: {user_in.username}")
            return False

        await usr_crud.user.create(db, obj_in=user_in)
    typer.echo(f"관리자 계정이 성공적으로 생성되었습니다: {user_in.email} ({user_in.username})")
    return True


@cli.command()
def main(
    email: str = typer.Option(
        ..., '--email', '-e',
        prompt="관리자 이메일을 입력하세요",
        help="생성할 관리자 계정의 이메일 주소입니다."
    ),
    username: str = typer.Option(
        ..., '--username', '-u',
        prompt="관리자 사용자명(ID)을 입력하세요",
        help="로그인 시 사용할 사용자명(ID)입니다."
    ),
    password: str = typer.Option(
        ..., '--password', '-p',
        prompt="관리자 비밀번호를 입력하세요",
        hide_input=True,
        confirmation_prompt=True,
        help="생성할 관리자 계정의 비밀번호입니다. (최소 8자 이상)"
    ),
    first_name: str = typer.Option("Admin", '--first-name', help="관리자의 이름입니다."),
    last_name: str = typer.Option("Galvano", '--last-name', help="관리자의 성입니다."),
    init_db: bool = typer.Option(False, '--init-db', help="계정 생성 전에 스키마/테이블을 생성합니다."),
):
    """
    Galvano LIMS 를 위한 새로운 관리자(ADMIN)를 생성합니다.
    """
    if len(password) < 8:
        typer.echo("오류: 비밀번호는 최소 8자 이상이어야 합니다.")
        raise typer.Abort()

    configure_logging()
    user_data = usr_schemas.UserCreate(
        email=email,
        username=username,
        password=password,
        first_name=first_name,
        last_name=last_name,
        role=UserRole.ADMIN,
    )
    if not asyncio.run(create_admin_user(user_data, init_db=init_db)):
        raise typer.Exit(code=1)


if __name__ == "__main__":
    cli()
