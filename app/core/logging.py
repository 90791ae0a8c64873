# app/core/logging.py

"""
애플리케이션 전역 로깅을 구성하는 모듈입니다.

각 모듈은 `logging.getLogger(__name__)`로 자신의 로거를 얻고,
루트 레벨과 포맷은 애플리케이션 시작 시 `configure_logging()`이 한 번 설정합니다.
"""

import logging
from typing import Optional

from app.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)-8s [%(name)s] %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    """LOG_LEVEL 설정(또는 인자)에 따라 루트 로거를 구성합니다."""
    level_name = (level or settings.LOG_LEVEL).upper()
    logging.basicConfig(level=getattr(logging, level_name, logging.INFO), format=LOG_FORMAT)

    # SQL 에코는 DEBUG_MODE 에서만 엔진이 직접 출력합니다.
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("passlib").setLevel(logging.ERROR)
