# tests/__init__.py

"""
Galvano LIMS FastAPI 애플리케이션의 테스트 스위트 패키지입니다.

- `conftest.py`: 인메모리 데이터베이스, 역할별 인증 클라이언트, lims 기본 데이터 픽스처.
- `domains/`: 도메인(usr, shared, lims)별 통합 테스트.
"""

__title__ = "Galvano LIMS API Tests"
__version__ = "0.1.0"
__all__ = []
