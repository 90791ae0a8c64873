# app/domains/lims/schemas.py

"""
'lims' 도메인 (도금 실험실 정보 관리)의 Pydantic 스키마를 정의하는 모듈입니다.

이 스키마들은 API 요청(Request) 및 응답(Response) 데이터의 유효성을 검사하고,
데이터를 직렬화(Serialization) 및 역직렬화(Deserialization)하는 데 사용됩니다.
편차(deviation, deviation_percent)는 서버에서 계산하는 값이므로 입력 스키마에는 없습니다.
"""

from typing import List, Optional, Dict, Any
from datetime import date, datetime
from pydantic import BaseModel, FiniteFloat, Field as PydanticField, model_validator

from app.domains.usr.schemas import UserBrief
from . import models as lims_models


def _check_band(low: Optional[float], high: Optional[float]) -> None:
    if low is not None and high is not None and low > high:
        raise ValueError("min value must not be greater than max value")


# =============================================================================
# 0. 공통 (페이지네이션)
# =============================================================================
class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


# =============================================================================
# 1. 고객사 (Client) 스키마
# =============================================================================
class ClientBase(BaseModel):
    company_name: str = PydanticField(min_length=2, max_length=255, description="회사명")
    nip: Optional[str] = PydanticField(default=None, pattern=r"^\d{10}$", description="NIP (숫자 10자리)")
    address: Optional[str] = PydanticField(default=None, max_length=255)
    city: Optional[str] = PydanticField(default=None, max_length=100)
    postal_code: Optional[str] = PydanticField(default=None, max_length=10)
    country: str = PydanticField(default="Polska", max_length=100)
    contact_person: Optional[str] = PydanticField(default=None, max_length=255)
    email: Optional[str] = PydanticField(default=None, max_length=255)
    phone: Optional[str] = PydanticField(default=None, max_length=50)
    notes: Optional[str] = None


class ClientCreate(ClientBase):
    pass


class ClientUpdate(BaseModel):  # 업데이트는 모두 Optional
    company_name: Optional[str] = PydanticField(None, min_length=2, max_length=255)
    nip: Optional[str] = PydanticField(None, pattern=r"^\d{10}$")
    address: Optional[str] = PydanticField(None, max_length=255)
    city: Optional[str] = PydanticField(None, max_length=100)
    postal_code: Optional[str] = PydanticField(None, max_length=10)
    country: Optional[str] = PydanticField(None, max_length=100)
    contact_person: Optional[str] = PydanticField(None, max_length=255)
    email: Optional[str] = PydanticField(None, max_length=255)
    phone: Optional[str] = PydanticField(None, max_length=50)
    notes: Optional[str] = None
    is_active: Optional[bool] = None


class ClientResponse(ClientBase):
    id: int
    is_active: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ClientBrief(BaseModel):
    id: int
    company_name: str
    nip: Optional[str] = None

    class Config:
        from_attributes = True


class ClientPage(BaseModel):
    data: List[ClientResponse]
    pagination: Pagination


# =============================================================================
# 2. 공정 (Process) 및 공정 파라미터 (ProcessParameter) 스키마
# =============================================================================
class ProcessParameterBase(BaseModel):
    parameter_name: str = PydanticField(min_length=1, max_length=100, description="파라미터명")
    unit: str = PydanticField(default="", max_length=30, description="단위")
    min_value: Optional[FiniteFloat] = PydanticField(default=None, description="허용 최소값")
    max_value: Optional[FiniteFloat] = PydanticField(default=None, description="허용 최대값")
    optimal_value: Optional[FiniteFloat] = PydanticField(default=None, description="최적값")
    sort_order: int = PydanticField(default=0, description="정렬 순서")
    is_active: bool = True

    @model_validator(mode="after")
    def check_band(self):
        _check_band(self.min_value, self.max_value)
        return self


class ProcessParameterIn(ProcessParameterBase):
    """중첩 입력용: id 가 있으면 기존 파라미터 수정, 없으면 신규 추가"""
    id: Optional[int] = None


class ProcessParameterResponse(ProcessParameterBase):
    id: int
    process_id: int

    class Config:
        from_attributes = True


class ProcessCreate(BaseModel):
    name: str = PydanticField(min_length=2, max_length=255, description="공정명")
    description: Optional[str] = None
    process_type: str = PydanticField(min_length=1, max_length=40, description="공정 종류 코드")
    client_id: Optional[int] = None
    parameters: List[ProcessParameterIn] = PydanticField(default_factory=list)


class ProcessUpdate(BaseModel):
    """parameters 가 주어지면 전체 목록으로 간주합니다 (id 있음: 수정, id 없음: 추가, 누락: 삭제)."""
    name: Optional[str] = PydanticField(None, min_length=2, max_length=255)
    description: Optional[str] = None
    process_type: Optional[str] = PydanticField(None, min_length=1, max_length=40)
    client_id: Optional[int] = None
    is_active: Optional[bool] = None
    parameters: Optional[List[ProcessParameterIn]] = None


class ProcessCloneRequest(BaseModel):
    name: str = PydanticField(min_length=2, max_length=255, description="복제될 공정의 새 이름")


class ProcessResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    process_type: str
    client_id: Optional[int] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime
    parameters: List[ProcessParameterResponse] = []

    class Config:
        from_attributes = True


class ProcessBrief(BaseModel):
    id: int
    name: str
    process_type: str

    class Config:
        from_attributes = True


# =============================================================================
# 3. 시료 (Sample) 스키마
# =============================================================================
class SampleCreate(BaseModel):
    client_id: int
    process_id: int
    collected_at: Optional[datetime] = PydanticField(default=None, description="채취 일시 (미지정 시 현재)")
    sample_type: lims_models.SampleType = lims_models.SampleType.BATH
    description: Optional[str] = None


class SampleUpdate(BaseModel):
    collected_at: Optional[datetime] = None
    sample_type: Optional[lims_models.SampleType] = None
    description: Optional[str] = None


class SampleStatusUpdate(BaseModel):
    status: lims_models.SampleStatus


class SampleResponse(BaseModel):
    id: int
    sample_code: str
    client_id: int
    process_id: int
    collected_by: int
    collected_at: datetime
    sample_type: lims_models.SampleType
    description: Optional[str] = None
    status: lims_models.SampleStatus
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class SampleDetailResponse(SampleResponse):
    client: ClientBrief
    process: ProcessBrief


class SampleBrief(BaseModel):
    id: int
    sample_code: str
    sample_type: lims_models.SampleType
    client: ClientBrief
    process: ProcessBrief

    class Config:
        from_attributes = True


class SamplePage(BaseModel):
    data: List[SampleDetailResponse]
    pagination: Pagination


# =============================================================================
# 4. 분석 결과 (AnalysisResult) 스키마
# =============================================================================
class AnalysisResultIn(BaseModel):
    """
    결과 입력. 기준 범위(min/max/optimal_reference)를 하나도 보내지 않으면
    같은 이름의 활성 공정 파라미터 기준 범위를 스냅샷으로 사용합니다.
    """
    parameter_name: str = PydanticField(min_length=1, max_length=100)
    unit: str = PydanticField(default="", max_length=30)
    value: FiniteFloat
    min_reference: Optional[FiniteFloat] = None
    max_reference: Optional[FiniteFloat] = None
    optimal_reference: Optional[FiniteFloat] = None

    @model_validator(mode="after")
    def check_band(self):
        _check_band(self.min_reference, self.max_reference)
        return self

    @property
    def has_band(self) -> bool:
        return any(
            v is not None for v in (self.min_reference, self.max_reference, self.optimal_reference)
        )


class AnalysisResultsSave(BaseModel):
    results: List[AnalysisResultIn] = PydanticField(min_length=1)


class AnalysisResultValueUpdate(BaseModel):
    value: FiniteFloat


class AnalysisResultResponse(BaseModel):
    id: int
    analysis_id: int
    parameter_name: str
    unit: str
    value: float
    min_reference: Optional[float] = None
    max_reference: Optional[float] = None
    optimal_reference: Optional[float] = None
    deviation: lims_models.Deviation
    deviation_percent: float
    created_at: datetime

    class Config:
        from_attributes = True


class AnalysisResultsSaved(BaseModel):
    message: str
    results: List[AnalysisResultResponse]


# =============================================================================
# 5. 조치 권고 (Recommendation) 스키마
# =============================================================================
class RecommendationCreate(BaseModel):
    parameter_name: str = PydanticField(min_length=1, max_length=100)
    description: str = PydanticField(min_length=1)
    recommendation_type: lims_models.RecommendationType
    priority: lims_models.Priority = lims_models.Priority.MEDIUM
    current_value: Optional[FiniteFloat] = None
    target_value: Optional[FiniteFloat] = None


class RecommendationResponse(RecommendationCreate):
    id: int
    analysis_id: int
    created_by: int
    created_at: datetime

    class Config:
        from_attributes = True


# =============================================================================
# 6. 분석 (Analysis) 스키마
# =============================================================================
class AnalysisCreate(BaseModel):
    sample_id: int
    analysis_type: lims_models.AnalysisType = lims_models.AnalysisType.CHEMICAL
    analysis_date: Optional[datetime] = PydanticField(default=None, description="분석 일시 (미지정 시 현재)")
    notes: Optional[str] = None


class AnalysisUpdate(BaseModel):
    analysis_type: Optional[lims_models.AnalysisType] = None
    analysis_date: Optional[datetime] = None
    notes: Optional[str] = None


class AnalysisStatusUpdate(BaseModel):
    status: lims_models.AnalysisStatus
    notes: Optional[str] = PydanticField(default=None, description="반려 사유 등")


class AnalysisResponse(BaseModel):
    id: int
    analysis_code: str
    sample_id: int
    performed_by: int
    approved_by: Optional[int] = None
    approved_at: Optional[datetime] = None
    analysis_type: lims_models.AnalysisType
    analysis_date: datetime
    status: lims_models.AnalysisStatus
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class AnalysisDetailResponse(AnalysisResponse):
    sample: SampleBrief
    performer: Optional[UserBrief] = None
    approver: Optional[UserBrief] = None
    results: List[AnalysisResultResponse] = []
    recommendations: List[RecommendationResponse] = []


class AnalysisListItem(AnalysisResponse):
    sample: SampleBrief
    performer: Optional[UserBrief] = None
    result_count: int = 0
    critical_count: int = 0


class AnalysisPage(BaseModel):
    data: List[AnalysisListItem]
    pagination: Pagination


class RecommendationSuggestion(BaseModel):
    result_id: int
    parameter_name: str
    description: str
    recommendation_type: lims_models.RecommendationType
    priority: lims_models.Priority
    current_value: Optional[float] = None
    target_value: Optional[float] = None


# =============================================================================
# 7. 아카이브 / 추세 / 편차 통계 스키마
# =============================================================================
class TrendQuery(BaseModel):
    """추세 조회 조건. 날짜 범위는 양 끝을 포함합니다."""
    parameter_name: str = PydanticField(min_length=1)
    client_id: Optional[int] = None
    process_id: Optional[int] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    include_drafts: bool = False


class TrendPoint(BaseModel):
    date: datetime
    value: float
    min: Optional[float] = None
    max: Optional[float] = None
    optimal: Optional[float] = None
    unit: str = ""
    deviation: lims_models.Deviation
    deviation_percent: float
    analysis_id: int
    analysis_code: str


class TrendStatistics(BaseModel):
    count: int
    min: float
    max: float
    avg: float
    median: float


class TrendResponse(BaseModel):
    parameter_name: str
    unit: Optional[str] = None
    data_points: List[TrendPoint]
    statistics: Optional[TrendStatistics] = None


class DeviationParameterBreakdown(BaseModel):
    parameter_name: str
    count: int


class DeviationStatsResponse(BaseModel):
    total_results: int
    by_deviation: Dict[str, int]
    out_of_range: int
    critical: int
    deviation_rate: float = PydanticField(description="범위를 벗어난 결과 비율 (%)")
    top_parameters: List[DeviationParameterBreakdown]


# =============================================================================
# 8. 대시보드 스키마
# =============================================================================
class DashboardStats(BaseModel):
    samples_today: int
    samples_this_week: int
    samples_this_month: int
    analyses_by_status: Dict[str, int]
    critical_deviations: int
    active_clients: int
    active_processes: int


class CriticalAlert(BaseModel):
    result_id: int
    analysis_id: int
    analysis_code: str
    analysis_status: lims_models.AnalysisStatus
    sample_code: str
    client_name: str
    process_name: str
    parameter_name: str
    value: float
    unit: str
    deviation: lims_models.Deviation
    deviation_percent: float
    created_at: datetime


# =============================================================================
# 9. 가져오기 (Import) 스키마
# =============================================================================
class ColumnMapping(BaseModel):
    source_column: str
    target_field: str
    default_value: Optional[str] = None


class MappingSuggestion(BaseModel):
    source_column: str
    target_field: str
    confidence: float


class MappingConfig(BaseModel):
    mappings: List[ColumnMapping] = PydanticField(min_length=1)
    default_process_type: str = "OTHER"
    default_sample_type: lims_models.SampleType = lims_models.SampleType.BATH


class ImportPreview(BaseModel):
    headers: List[str]
    rows: List[Dict[str, Any]]
    total_rows: int
    suggested_mappings: List[MappingSuggestion]
    target_fields: List[str]


class ImportRowError(BaseModel):
    row: int
    message: str


class ImportReport(BaseModel):
    total: int
    imported: int
    skipped: int
    errors: List[ImportRowError]
