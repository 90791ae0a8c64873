# app/domains/usr/__init__.py

"""
FastAPI 애플리케이션의 'usr' 도메인 패키지입니다.

'usr' 도메인은 실험실 시스템 사용자(관리자, 실험실 분석원, 조회자)와
인증/권한 부여와 관련된 핵심 데이터를 관리합니다.

주요 서브모듈:
- `models.py`: 'usr' 스키마의 테이블에 매핑되는 SQLModel 정의.
- `schemas.py`: 요청 및 응답 유효성 검사, 인증 스키마.
- `crud.py`: 사용자 CRUD 및 사용자 인증 로직.
- `routers.py`: 로그인, 내 정보, 사용자 관리 API 엔드포인트.
"""

__title__ = "Galvano LIMS User Domain"
__version__ = "0.1.0"
__all__ = []
