# app/domains/shared/__init__.py

"""
FastAPI 애플리케이션의 'shared' 도메인 패키지입니다.

'shared' 도메인은 여러 도메인에서 공통으로 사용하는 데이터,
즉 감사 로그(누가 언제 무엇을 변경했는지)와 사용자 알림을 관리합니다.

주요 서브모듈:
- `models.py`: 'shared' 스키마의 테이블에 매핑되는 SQLModel 정의.
- `schemas.py`: 요청 및 응답 유효성 검사 모델.
- `crud.py`: 감사 로그 조회, 알림 조회/읽음 처리 로직.
- `services.py`: 다른 도메인이 커밋 후 호출하는 감사 기록/알림 발송 서비스.
- `routers.py`: 감사 로그 및 알림 API 엔드포인트.
"""

__title__ = "Galvano LIMS Shared Domain"
__version__ = "0.1.0"
__all__ = []
