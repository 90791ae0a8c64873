# app/domains/lims/models.py

"""
'lims' 도메인 (PostgreSQL 'lims' 스키마)의 데이터베이스 ORM 모델을 정의하는 모듈입니다.

도금 실험실의 고객사(Client), 공정(Process)과 공정 파라미터 기준 범위(ProcessParameter),
시료(Sample), 분석(Analysis), 분석 결과(AnalysisResult), 조치 권고(Recommendation)를 포함합니다.
"""

from typing import Optional, List, TYPE_CHECKING
from datetime import datetime, UTC
from enum import Enum

from sqlalchemy.sql import func
from sqlalchemy.types import TIMESTAMP

from sqlmodel import Field, Relationship, SQLModel, Column

if TYPE_CHECKING:
    from app.domains.usr.models import User


# =============================================================================
# 0. 열거형 (Enum)
# =============================================================================
class SampleType(str, Enum):
    BATH = "BATH"                  # 도금욕
    RINSE = "RINSE"                # 수세수
    WASTEWATER = "WASTEWATER"      # 폐수
    RAW_MATERIAL = "RAW_MATERIAL"  # 원료
    OTHER = "OTHER"


class SampleStatus(str, Enum):
    REGISTERED = "REGISTERED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class AnalysisType(str, Enum):
    CHEMICAL = "CHEMICAL"
    CORROSION_TEST = "CORROSION_TEST"
    SURFACE_ANALYSIS = "SURFACE_ANALYSIS"


class AnalysisStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class Deviation(str, Enum):
    """
    측정값이 기준 범위에서 벗어난 정도입니다.
    정의 순서가 심각도 순서이며 `severity` 로 비교할 수 있습니다:
    CRITICAL_LOW < BELOW_MIN < WITHIN_RANGE < ABOVE_MAX < CRITICAL_HIGH
    """
    CRITICAL_LOW = "CRITICAL_LOW"
    BELOW_MIN = "BELOW_MIN"
    WITHIN_RANGE = "WITHIN_RANGE"
    ABOVE_MAX = "ABOVE_MAX"
    CRITICAL_HIGH = "CRITICAL_HIGH"

    @property
    def severity(self) -> int:
        """WITHIN_RANGE 를 0으로 하는 부호 있는 심각도 (-2 .. 2)."""
        return _DEVIATION_SEVERITY[self]

    @property
    def is_critical(self) -> bool:
        return abs(self.severity) == 2

    @property
    def is_out_of_range(self) -> bool:
        return self.severity != 0


_DEVIATION_SEVERITY = {member: index - 2 for index, member in enumerate(Deviation)}

CRITICAL_DEVIATIONS = (Deviation.CRITICAL_LOW, Deviation.CRITICAL_HIGH)
OUT_OF_RANGE_DEVIATIONS = (
    Deviation.CRITICAL_LOW, Deviation.BELOW_MIN, Deviation.ABOVE_MAX, Deviation.CRITICAL_HIGH
)


class RecommendationType(str, Enum):
    INCREASE = "INCREASE"
    DECREASE = "DECREASE"
    MAINTAIN = "MAINTAIN"
    URGENT_ACTION = "URGENT_ACTION"


class Priority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


# =============================================================================
# 1. lims.clients 테이블 모델
# =============================================================================
class Client(SQLModel, table=True):
    __tablename__ = "clients"
    __table_args__ = {'schema': 'lims'}

    id: Optional[int] = Field(default=None, primary_key=True)
    company_name: str = Field(max_length=255, index=True, description="회사명")
    nip: Optional[str] = Field(default=None, max_length=10, unique=True, description="사업자 번호 (NIP, 10자리)")
    address: Optional[str] = Field(default=None, max_length=255)
    city: Optional[str] = Field(default=None, max_length=100)
    postal_code: Optional[str] = Field(default=None, max_length=10)
    country: str = Field(default="Polska", max_length=100)
    contact_person: Optional[str] = Field(default=None, max_length=255)
    email: Optional[str] = Field(default=None, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=50)
    notes: Optional[str] = Field(default=None)
    is_active: bool = Field(default=True, description="활성 여부 - 삭제시 False")
    created_at: Optional[datetime] = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_column=Column(TIMESTAMP(timezone=True), server_default=func.now()),
        description="레코드 생성 일시"
    )
    updated_at: Optional[datetime] = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_column=Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now()),
        description="레코드 마지막 업데이트 일시"
    )

    processes: List["Process"] = Relationship(back_populates="client")
    samples: List["Sample"] = Relationship(back_populates="client")


# =============================================================================
# 2. lims.processes / lims.process_parameters 테이블 모델
# =============================================================================
class Process(SQLModel, table=True):
    __tablename__ = "processes"
    __table_args__ = {'schema': 'lims'}

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(max_length=255, index=True, description="공정명 (예: 알칼리 아연욕 라인 1)")
    description: Optional[str] = Field(default=None)
    process_type: str = Field(max_length=40, index=True, description="공정 종류 코드 (ZINC, NICKEL, CHROME, ...)")
    client_id: Optional[int] = Field(default=None, foreign_key="lims.clients.id", description="전용 고객사 ID (FK)")
    is_active: bool = Field(default=True, description="활성 여부 - 삭제시 False")
    created_at: Optional[datetime] = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_column=Column(TIMESTAMP(timezone=True), server_default=func.now()),
        description="레코드 생성 일시"
    )
    updated_at: Optional[datetime] = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_column=Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now()),
        description="레코드 마지막 업데이트 일시"
    )

    client: Optional["Client"] = Relationship(back_populates="processes")
    parameters: List["ProcessParameter"] = Relationship(
        back_populates="process",
        sa_relationship_kwargs={
            'cascade': 'all, delete-orphan',
            'order_by': '[ProcessParameter.sort_order, ProcessParameter.id]',
        }
    )
    samples: List["Sample"] = Relationship(back_populates="process")


class ProcessParameter(SQLModel, table=True):
    """
    공정 파라미터의 현재 기준 범위입니다.
    기준 범위는 일부만 정의될 수 있습니다 (예: 최대값만).
    이 값을 수정해도 이미 저장된 분석 결과의 기준 범위 스냅샷은 바뀌지 않습니다.
    """
    __tablename__ = "process_parameters"
    __table_args__ = {'schema': 'lims'}

    id: Optional[int] = Field(default=None, primary_key=True)
    process_id: int = Field(foreign_key="lims.processes.id", index=True)
    parameter_name: str = Field(max_length=100, description="파라미터명 (예: Zn, NaOH, pH)")
    unit: str = Field(default="", max_length=30, description="단위 (예: g/l)")
    min_value: Optional[float] = Field(default=None, description="허용 최소값")
    max_value: Optional[float] = Field(default=None, description="허용 최대값")
    optimal_value: Optional[float] = Field(default=None, description="최적값")
    sort_order: int = Field(default=0, description="정렬 순서")
    is_active: bool = Field(default=True)
    created_at: Optional[datetime] = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_column=Column(TIMESTAMP(timezone=True), server_default=func.now()),
        description="레코드 생성 일시"
    )
    updated_at: Optional[datetime] = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_column=Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now()),
        description="레코드 마지막 업데이트 일시"
    )

    process: "Process" = Relationship(back_populates="parameters")


# =============================================================================
# 3. lims.samples 테이블 모델
# =============================================================================
class Sample(SQLModel, table=True):
    __tablename__ = "samples"
    __table_args__ = {'schema': 'lims'}

    id: Optional[int] = Field(default=None, primary_key=True)
    sample_code: str = Field(max_length=24, unique=True, description="시료 코드 (PRB-YYYYMM-NNNN)")
    client_id: int = Field(foreign_key="lims.clients.id", index=True)
    process_id: int = Field(foreign_key="lims.processes.id", index=True)
    collected_by: int = Field(foreign_key="usr.users.id", description="채취자 ID (FK)")
    collected_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_column=Column(TIMESTAMP(timezone=True), nullable=False),
        description="채취 일시"
    )
    sample_type: SampleType = Field(default=SampleType.BATH)
    description: Optional[str] = Field(default=None)
    status: SampleStatus = Field(default=SampleStatus.REGISTERED, index=True)
    created_at: Optional[datetime] = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_column=Column(TIMESTAMP(timezone=True), server_default=func.now()),
        description="레코드 생성 일시"
    )
    updated_at: Optional[datetime] = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_column=Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now()),
        description="레코드 마지막 업데이트 일시"
    )

    client: "Client" = Relationship(back_populates="samples")
    process: "Process" = Relationship(back_populates="samples")
    collector: Optional["User"] = Relationship(sa_relationship_kwargs={'foreign_keys': '[Sample.collected_by]'})
    analyses: List["Analysis"] = Relationship(back_populates="sample")


# =============================================================================
# 4. lims.analyses 테이블 모델
# =============================================================================
class Analysis(SQLModel, table=True):
    __tablename__ = "analyses"
    __table_args__ = {'schema': 'lims'}

    id: Optional[int] = Field(default=None, primary_key=True)
    analysis_code: str = Field(max_length=24, unique=True, description="분석 코드 (ANL-YYYYMM-NNNN)")
    sample_id: int = Field(foreign_key="lims.samples.id", index=True)
    performed_by: int = Field(foreign_key="usr.users.id", description="분석 수행자 ID (FK)")
    approved_by: Optional[int] = Field(default=None, foreign_key="usr.users.id", description="승인자 ID (FK)")
    approved_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(TIMESTAMP(timezone=True), nullable=True),
    )
    analysis_type: AnalysisType = Field(default=AnalysisType.CHEMICAL)
    analysis_date: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_column=Column(TIMESTAMP(timezone=True), nullable=False, index=True),
        description="분석 일시 (추세 정렬 기준)"
    )
    status: AnalysisStatus = Field(default=AnalysisStatus.PENDING, index=True)
    notes: Optional[str] = Field(default=None)
    created_at: Optional[datetime] = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_column=Column(TIMESTAMP(timezone=True), server_default=func.now()),
        description="레코드 생성 일시"
    )
    updated_at: Optional[datetime] = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_column=Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now()),
        description="레코드 마지막 업데이트 일시"
    )

    sample: "Sample" = Relationship(back_populates="analyses")
    performer: Optional["User"] = Relationship(sa_relationship_kwargs={'foreign_keys': '[Analysis.performed_by]'})
    approver: Optional["User"] = Relationship(sa_relationship_kwargs={'foreign_keys': '[Analysis.approved_by]'})
    results: List["AnalysisResult"] = Relationship(
        back_populates="analysis",
        sa_relationship_kwargs={'cascade': 'all, delete-orphan', 'order_by': 'AnalysisResult.id'}
    )
    recommendations: List["Recommendation"] = Relationship(
        back_populates="analysis",
        sa_relationship_kwargs={'cascade': 'all, delete-orphan', 'order_by': 'Recommendation.id'}
    )


# =============================================================================
# 5. lims.analysis_results 테이블 모델
# =============================================================================
class AnalysisResult(SQLModel, table=True):
    """
    측정값과 측정 시점의 기준 범위 스냅샷(min/max/optimal_reference)입니다.
    deviation / deviation_percent 는 값 또는 스냅샷이 바뀔 때마다 서버에서 다시 계산되는 파생 값입니다.
    """
    __tablename__ = "analysis_results"
    __table_args__ = {'schema': 'lims'}

    id: Optional[int] = Field(default=None, primary_key=True)
    analysis_id: int = Field(foreign_key="lims.analyses.id", index=True)
    parameter_name: str = Field(max_length=100, index=True)
    unit: str = Field(default="", max_length=30)
    value: float = Field(description="측정값")
    min_reference: Optional[float] = Field(default=None)
    max_reference: Optional[float] = Field(default=None)
    optimal_reference: Optional[float] = Field(default=None)
    deviation: Deviation = Field(default=Deviation.WITHIN_RANGE, index=True)
    deviation_percent: float = Field(default=0.0)
    created_at: Optional[datetime] = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_column=Column(TIMESTAMP(timezone=True), server_default=func.now()),
        description="레코드 생성 일시"
    )
    updated_at: Optional[datetime] = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_column=Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now()),
        description="레코드 마지막 업데이트 일시"
    )

    analysis: "Analysis" = Relationship(back_populates="results")


# =============================================================================
# 6. lims.recommendations 테이블 모델
# =============================================================================
class Recommendation(SQLModel, table=True):
    __tablename__ = "recommendations"
    __table_args__ = {'schema': 'lims'}

    id: Optional[int] = Field(default=None, primary_key=True)
    analysis_id: int = Field(foreign_key="lims.analyses.id", index=True)
    parameter_name: str = Field(max_length=100)
    description: str = Field(description="권고 내용")
    recommendation_type: RecommendationType
    priority: Priority = Field(default=Priority.MEDIUM)
    current_value: Optional[float] = Field(default=None)
    target_value: Optional[float] = Field(default=None)
    created_by: int = Field(foreign_key="usr.users.id")
    created_at: Optional[datetime] = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_column=Column(TIMESTAMP(timezone=True), server_default=func.now()),
        description="레코드 생성 일시"
    )

    analysis: "Analysis" = Relationship(back_populates="recommendations")
