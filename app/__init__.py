# app/__init__.py

"""
Galvano LIMS FastAPI 애플리케이션의 메인 패키지입니다.

이 패키지는 전기도금(갈바닉) 품질관리 실험실의 LIMS 백엔드를 구성합니다.
FastAPI 애플리케이션의 진입점 (main.py)과
공통 설정, 데이터베이스 연결, 보안 관련 유틸리티를 담는 core 서브패키지,
각 비즈니스 도메인을 대표하는 domains 서브패키지,
그리고 도메인을 가로지르는 서비스(가져오기 등)를 담는 services 서브패키지로 구성됩니다.
"""

APP_NAME = "Galvano LIMS API"
APP_VERSION = "0.1.0"
API_PREFIX = "/api/v1"  # API 라우트의 공통 접두사 (main.py에서 적용)

__version__ = APP_VERSION
__title__ = APP_NAME
__description__ = "Laboratory information management system for electroplating quality control."
__all__ = []
