# app/services/__init__.py

"""
FastAPI 애플리케이션의 서비스 계층 패키지입니다.

CRUD 작업은 각 도메인의 `crud.py`가 담당하고, 이 패키지는 여러 도메인을 함께 다루는
상위 수준의 작업을 담당합니다.

- `import_service.py`: 기존 실험실 기록(CSV/XLSX)을 파싱하고 열 매핑을 제안한 뒤,
  고객사/공정/시료/분석/결과를 한 번에 생성합니다.
"""

__title__ = "Galvano LIMS Services"
__version__ = "0.1.0"
__all__ = []
