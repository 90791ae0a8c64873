# app/domains/lims/__init__.py

"""
FastAPI 애플리케이션의 'lims' 도메인 패키지입니다.

이 패키지는 PostgreSQL의 'lims' 스키마에 해당하는 데이터 모델과
관련된 비즈니스 로직 및 API 엔드포인트를 포함합니다.

'lims' 도메인은 도금 공정 품질 관리 실험실의 핵심 데이터를 관리합니다.
고객사(Client), 공정(Process)과 파라미터 기준 범위(ProcessParameter), 시료(Sample),
분석(Analysis), 분석 결과(AnalysisResult)와 조치 권고(Recommendation)가 포함되며,
결과의 편차 분류와 파라미터 추세 조회가 이 도메인의 중심 기능입니다.

주요 서브모듈:
- `models.py`: 'lims' 스키마의 테이블에 매핑되는 SQLModel 정의.
- `schemas.py`: 'lims' 스키마 데이터에 대한 Pydantic 모델 (요청 및 응답 유효성 검사).
- `crud.py`: 'lims' 스키마 테이블에 대한 비동기 CRUD 로직과 아카이브/대시보드 집계 쿼리.
- `services.py`: 편차 분류, 추세 통계, 권고 초안, CSV 직렬화 등 데이터베이스와 무관한 계산.
- `routers.py`: 'lims' 스키마 데이터에 접근하기 위한 FastAPI API 엔드포인트 정의.
"""

__title__ = "Galvano LIMS Domain"
__description__ = "Clients, processes, samples, analyses and the deviation & trend engine."
__version__ = "0.1.0"
__all__ = []
