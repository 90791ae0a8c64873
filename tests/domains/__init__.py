# tests/domains/__init__.py

"""
도메인별 테스트 모듈 패키지입니다.

- `test_usr_n.py`: 인증 및 사용자 관리.
- `test_shared_n.py`: 감사 로그 및 알림.
- `test_deviation_n.py`: 편차 분류, 통계, 권고 초안, CSV 직렬화 (DB 불필요).
- `test_lims_n.py`: 고객사, 공정, 시료, 분석, 권고, 대시보드.
- `test_archive_n.py`: 분석 이력, 추세, 편차 통계, 내보내기.
- `test_import_n.py`: 실험실 기록 가져오기.
"""

__title__ = "Galvano LIMS Domain Tests"
__all__ = []
