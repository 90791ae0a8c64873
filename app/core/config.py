# app/core/config.py

from typing import List

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict
import os

# 프로젝트의 루트 디렉토리 경로를 계산합니다.
BASE_DIR = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


class Settings(BaseSettings):
    """
    애플리케이션의 모든 설정을 정의하는 Pydantic BaseSettings 모델입니다.
    환경 변수 및 .env 파일에서 값을 자동으로 로드합니다.
    """

    # --- Pydantic Settings 설정 ---
    model_config = SettingsConfigDict(
        env_file=os.path.join(BASE_DIR, '.env'),  # 프로젝트 루트의 .env 파일을 명시적으로 지정
        env_file_encoding='utf-8',
        extra='ignore',
        case_sensitive=True
    )

    # --- 애플리케이션 기본 설정 ---
    APP_NAME: str = "Galvano LIMS API"
    APP_VERSION: str = "0.1.0"
    APP_DESCRIPTION: str = "Laboratory information management system for electroplating quality control"
    APP_ENV: str = Field("development", description="Application environment (e.g., development, production, testing)")
    DEBUG_MODE: bool = Field(False, description="Echo SQL statements and enable verbose errors")
    LOG_LEVEL: str = Field("INFO", description="Root log level (DEBUG, INFO, WARNING, ...)")

    # --- 데이터베이스 설정 ---
    DATABASE_URL: SecretStr = Field(..., description="Async database connection URL (postgresql+asyncpg://...)")

    # --- JWT (JSON Web Token) 설정 ---
    SECRET_KEY: SecretStr = Field(..., description="Secret key for JWT token signing. Keep this highly secure!")
    ALGORITHM: str = Field("HS256", description="Algorithm used for JWT signing (e.g., HS256)")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(60 * 8, description="Access token expiration time in minutes")

    # --- CORS ---
    CORS_ORIGINS: str = Field("*", description="Comma separated list of allowed origins")

    # --- 아카이브 / 추세 / 가져오기 제한 ---
    TREND_MAX_POINTS: int = Field(500, description="Upper bound of points returned by the trend endpoint")
    TREND_DEFAULT_POINTS: int = Field(100, description="Points returned by the trend endpoint when no limit is given")
    EXPORT_MAX_ROWS: int = Field(5000, description="Maximum number of analyses written to a CSV export")
    IMPORT_MAX_ROWS: int = Field(10000, description="Maximum number of data rows accepted by a single import")

    @property
    def cors_origins(self) -> List[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]


settings = Settings()
