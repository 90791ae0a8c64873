# flake8: noqa
# scripts/seed.py

"""
도금 공정 카탈로그(공정 + 파라미터 기준 범위)를 데이터베이스에 시드합니다.
같은 이름의 공정이 이미 있으면 건너뜁니다.

    python -m scripts.seed --init-db
"""

import asyncio
import logging

import typer
from sqlmodel import select

from app.core.database import create_db_and_tables, get_async_session_context
from app.core.logging import configure_logging
from app.domains.lims import crud as lims_crud
from app.domains.lims import models as lims_models
from app.domains.lims import schemas as lims_schemas

logger = logging.getLogger("scripts.seed")
cli = typer.Typer()

# (파라미터명, 단위, 최소, 최대, 최적)
PROCESS_CATALOGUE = [
    {
        "name": "Cynkowanie kwaśne",
        "process_type": "ZINC",
        "description": "Kwaśna kąpiel chlorkowa do cynkowania",
        "parameters": [
            ("Cynk (Zn)", "g/l", 25, 40, 32),
            ("Chlorek potasu (KCl)", "g/l", 180, 240, 210),
            ("Kwas borowy (H₃BO₃)", "g/l", 20, 30, 25),
            ("pH", "pH", 4.8, 5.6, 5.2),
            ("Temperatura", "°C", 20, 35, 25),
        ],
    },
    {
        "name": "Cynkowanie alkaliczne",
        "process_type": "ZINC",
        "description": "Alkaliczna kąpiel bezcyjankowa",
        "parameters": [
            ("Cynk (Zn)", "g/l", 8, 14, 11),
            ("Wodorotlenek sodu (NaOH)", "g/l", 120, 160, 140),
            ("Temperatura", "°C", 20, 30, 25),
            ("Węglany (Na₂CO₃)", "g/l", 0, 50, 20),
        ],
    },
    {
        "name": "Niklowanie Wattsa",
        "process_type": "NICKEL",
        "description": "Kąpiel Wattsa do niklowania błyszczącego",
        "parameters": [
            ("Siarczan niklu (NiSO₄·6H₂O)", "g/l", 240, 300, 270),
            ("Chlorek niklu (NiCl₂·6H₂O)", "g/l", 40, 60, 50),
            ("Kwas borowy (H₃BO₃)", "g/l", 30, 45, 38),
            ("pH", "pH", 3.8, 4.5, 4.2),
            ("Temperatura", "°C", 45, 60, 55),
        ],
    },
    {
        "name": "Chromowanie dekoracyjne",
        "process_type": "CHROME",
        "description": "Chromowanie sześciowartościowe",
        "parameters": [
            ("Kwas chromowy (CrO₃)", "g/l", 200, 300, 250),
            ("Kwas siarkowy (H₂SO₄)", "g/l", 2.0, 3.0, 2.5),
            ("Temperatura", "°C", 40, 50, 45),
            ("Żelazo (Fe)", "g/l", 0, 8, 2),
        ],
    },
    {
        "name": "Miedziowanie kwaśne",
        "process_type": "COPPER",
        "description": "Kwaśna kąpiel siarczanowa",
        "parameters": [
            ("Siarczan miedzi (CuSO₄·5H₂O)", "g/l", 180, 240, 210),
            ("Kwas siarkowy (H₂SO₄)", "g/l", 50, 70, 60),
            ("Chlorki (Cl⁻)", "mg/l", 40, 80, 60),
            ("Temperatura", "°C", 20, 30, 25),
        ],
    },
    {
        "name": "Pasywacja trójwartościowa",
        "process_type": "PASSIVATION",
        "description": "Pasywacja Cr(III) powłok cynkowych",
        "parameters": [
            ("Chrom trójwartościowy (Cr³⁺)", "g/l", 3, 8, 5),
            ("pH", "pH", 1.8, 2.5, 2.0),
            ("Temperatura", "°C", 20, 40, 30),
            ("Czas zanurzenia", "s", 30, 90, 60),
        ],
    },
]


def build_process(entry: dict) -> lims_schemas.ProcessCreate:
    return lims_schemas.ProcessCreate(
        name=entry["name"],
        process_type=entry["process_type"],
        description=entry["description"],
        parameters=[
            lims_schemas.ProcessParameterIn(
                parameter_name=name, unit=unit, min_value=low, max_value=high,
                optimal_value=optimal, sort_order=index,
            )
            for index, (name, unit, low, high, optimal) in enumerate(entry["parameters"], start=1)
        ],
    )


async def seed_processes(init_db: bool = False) -> int:
    if init_db:
        await create_db_and_tables()

    created = 0
    async with get_async_session_context() as db:
        for entry in PROCESS_CATALOGUE:
            statement = select(lims_models.Process).where(lims_models.Process.name == entry["name"])
            if (await db.execute(statement)).scalars().first():
                logger.info("공정 '%s' 이미 존재, 건너뜀", entry["name"])
                continue
            await lims_crud.process.create(db, obj_in=build_process(entry))
            created += 1
            logger.info("공정 '%s' 생성", entry["name"])
    return created


@cli.command()
def main(
    init_db: bool = typer.Option(False, '--init-db', help="시드 전에 스키마/테이블을 생성합니다."),
):
    """도금 공정 카탈로그를 시드합니다."""
    configure_logging()
    created = asyncio.run(seed_processes(init_db=init_db))
    typer.echo(f"공정 {created}개가 생성되었습니다.")


if __name__ == "__main__":
    cli()
