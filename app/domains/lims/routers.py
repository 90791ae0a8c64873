# app/domains/lims/routers.py

"""
'lims' 도메인 (도금 실험실 정보 관리) 관련 API 엔드포인트를 정의하는 모듈입니다.

- 조회: 로그인한 모든 사용자 (VIEWER 포함).
- 등록/수정: 실험실 사용자 (ADMIN, LABORANT).
- 공정 기준 범위 관리, 분석 승인, 삭제, 가져오기: 관리자 (ADMIN).
모든 쓰기 작업은 커밋 후 감사 로그를 남깁니다.
"""
from typing import Any, Dict, List, Optional
from datetime import date, datetime, UTC

from pydantic import ValidationError
from sqlmodel.ext.asyncio.session import AsyncSession
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, Response, UploadFile, status

# 중앙 의존성 관리 모듈 임포트
from app.core import dependencies as deps
from app.core.config import settings
from app.domains.shared import models as shared_models
from app.domains.shared import services as shared_services
from app.domains.usr import crud as usr_crud
from app.domains.usr import models as usr_models
from app.services import import_service

# 도메인 관련 모듈 임포트
from . import crud as lims_crud
from . import models as lims_models
from . import schemas as lims_schemas
from . import services as lims_services

router = APIRouter(
    tags=["Laboratory Information Management (실험실 정보 관리)"],  # Swagger UI에 표시될 태그
    responses={404: {"description": "Not found"}},  # 이 라우터의 공통 응답 정의
)


async def _audit(
    db: AsyncSession,
    request: Request,
    user: usr_models.User,
    action: str,
    entity_type: str,
    entity_id: Optional[int] = None,
    details: Optional[Dict[str, Any]] = None,
) -> None:
    await shared_services.record_audit(
        db,
        user_id=user.id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details=details,
        ip_address=deps.get_client_ip(request),
    )


# =============================================================================
# 1. 고객사 (Client) 라우터
# =============================================================================
@router.get("/clients", response_model=lims_schemas.ClientPage, summary="고객사 목록 조회")
async def read_clients(
    search: Optional[str] = Query(None, description="회사명/NIP/도시 검색어"),
    is_active: Optional[bool] = Query(True, description="활성 여부 (미지정 시 전체)"),
    page: int = Query(1, ge=1),
    limit: int = Query(25, ge=1, le=100),
    db: AsyncSession = Depends(deps.get_db_session),
    current_user: usr_models.User = Depends(deps.get_current_active_user),
):
    clients, total = await lims_crud.client.get_page(
        db, search=search, is_active=is_active, page=page, limit=limit
    )
    return {"data": clients, "pagination": lims_crud.paginate(total, page, limit)}


@router.get("/clients/{client_id}", response_model=lims_schemas.ClientResponse, summary="특정 고객사 조회")
async def read_client(
    client_id: int,
    db: AsyncSession = Depends(deps.get_db_session),
    current_user: usr_models.User = Depends(deps.get_current_active_user),
):
    db_client = await lims_crud.client.get(db, id=client_id)
    if db_client is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Client not found")
    return db_client


@router.post("/clients", response_model=lims_schemas.ClientResponse, status_code=status.HTTP_201_CREATED, summary="새 고객사 등록")
async def create_client(
    request: Request,
    client_in: lims_schemas.ClientCreate,
    db: AsyncSession = Depends(deps.get_db_session),
    current_user: usr_models.User = Depends(deps.get_current_lab_user),
):
    db_client = await lims_crud.client.create(db, obj_in=client_in)
    await _audit(db, request, current_user, "CREATE", "Client", db_client.id, {"company_name": db_client.company_name})
    return db_client


@router.put("/clients/{client_id}", response_model=lims_schemas.ClientResponse, summary="고객사 정보 수정")
async def update_client(
    request: Request,
    client_id: int,
    client_in: lims_schemas.ClientUpdate,
    db: AsyncSession = Depends(deps.get_db_session),
    current_user: usr_models.User = Depends(deps.get_current_lab_user),
):
    db_client = await lims_crud.client.get(db, id=client_id)
    if db_client is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Client not found")
    db_client = await lims_crud.client.update(db, db_obj=db_client, obj_in=client_in)
    await _audit(
        db, request, current_user, "UPDATE", "Client", client_id, client_in.model_dump(exclude_unset=True, mode="json")
    )
    return db_client


@router.delete("/clients/{client_id}", response_model=lims_schemas.ClientResponse, summary="고객사 비활성화")
async def delete_client(
    request: Request,
    client_id: int,
    db: AsyncSession = Depends(deps.get_db_session),
    current_admin_user: usr_models.User = Depends(deps.get_current_admin_user),
):
    """고객사를 비활성화합니다. 시료/분석 이력은 그대로 유지됩니다."""
    db_client = await lims_crud.client.get(db, id=client_id)
    if db_client is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Client not found")
    db_client = await lims_crud.client.soft_delete(db, db_obj=db_client)
    await _audit(db, request, current_admin_user, "DELETE", "Client", client_id)
    return db_client


# =============================================================================
# 2. 공정 (Process) 라우터
# =============================================================================
@router.get("/process-types", response_model=List[str], summary="사용 중인 공정 종류 코드 목록")
async def read_process_types(
    db: AsyncSession = Depends(deps.get_db_session),
    current_user: usr_models.User = Depends(deps.get_current_active_user),
):
    return await lims_crud.process.get_process_types(db)


@router.get("/processes", response_model=List[lims_schemas.ProcessResponse], summary="공정 목록 조회")
async def read_processes(
    process_type: Optional[str] = Query(None, description="공정 종류 코드"),
    client_id: Optional[int] = Query(None, description="전용 고객사 ID"),
    is_active: Optional[bool] = Query(True),
    search: Optional[str] = Query(None, description="공정명 검색어"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(deps.get_db_session),
    current_user: usr_models.User = Depends(deps.get_current_active_user),
):
    return await lims_crud.process.get_list(
        db, process_type=process_type, client_id=client_id, is_active=is_active,
        search=search, skip=skip, limit=limit,
    )


@router.get("/processes/{process_id}", response_model=lims_schemas.ProcessResponse, summary="특정 공정 조회 (파라미터 포함)")
async def read_process(
    process_id: int,
    db: AsyncSession = Depends(deps.get_db_session),
    current_user: usr_models.User = Depends(deps.get_current_active_user),
):
    db_process = await lims_crud.process.get_detail(db, process_id)
    if db_process is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Process not found")
    return db_process


@router.post("/processes", response_model=lims_schemas.ProcessResponse, status_code=status.HTTP_201_CREATED, summary="새 공정 생성")
async def create_process(
    request: Request,
    process_in: lims_schemas.ProcessCreate,
    db: AsyncSession = Depends(deps.get_db_session),
    current_admin_user: usr_models.User = Depends(deps.get_current_admin_user),
):
    db_process = await lims_crud.process.create(db, obj_in=process_in)
    await _audit(
        db, request, current_admin_user, "CREATE", "Process", db_process.id,
        {"name": db_process.name, "parameters": len(db_process.parameters)},
    )
    return db_process


@router.put("/processes/{process_id}", response_model=lims_schemas.ProcessResponse, summary="공정 및 파라미터 기준 범위 수정")
async def update_process(
    request: Request,
    process_id: int,
    process_in: lims_schemas.ProcessUpdate,
    db: AsyncSession = Depends(deps.get_db_session),
    current_admin_user: usr_models.User = Depends(deps.get_current_admin_user),
):
    """
    공정 정보를 수정합니다. `parameters` 를 보내면 파라미터 목록 전체를 동기화합니다.
    이미 저장된 분석 결과의 기준 범위 스냅샷은 바뀌지 않습니다.
    """
    db_process = await lims_crud.process.get(db, id=process_id)
    if db_process is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Process not found")
    db_process = await lims_crud.process.update(db, db_obj=db_process, obj_in=process_in)
    await _audit(
        db, request, current_admin_user, "UPDATE", "Process", process_id,
        process_in.model_dump(exclude_unset=True, mode="json"),
    )
    return db_process


@router.post("/processes/{process_id}/clone", response_model=lims_schemas.ProcessResponse, status_code=status.HTTP_201_CREATED, summary="공정 복제")
async def clone_process(
    request: Request,
    process_id: int,
    clone_in: lims_schemas.ProcessCloneRequest,
    db: AsyncSession = Depends(deps.get_db_session),
    current_admin_user: usr_models.User = Depends(deps.get_current_admin_user),
):
    db_process = await lims_crud.process.get(db, id=process_id)
    if db_process is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Process not found")
    db_clone = await lims_crud.process.clone(db, source=db_process, name=clone_in.name)
    await _audit(db, request, current_admin_user, "CLONE", "Process", db_clone.id, {"source_id": process_id})
    return db_clone


@router.delete("/processes/{process_id}", response_model=lims_schemas.ProcessResponse, summary="공정 비활성화")
async def delete_process(
    request: Request,
    process_id: int,
    db: AsyncSession = Depends(deps.get_db_session),
    current_admin_user: usr_models.User = Depends(deps.get_current_admin_user),
):
    db_process = await lims_crud.process.get(db, id=process_id)
    if db_process is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Process not found")
    db_process = await lims_crud.process.soft_delete(db, db_obj=db_process)
    await _audit(db, request, current_admin_user, "DELETE", "Process", process_id)
    return db_process


# =============================================================================
# 3. 시료 (Sample) 라우터
# =============================================================================
@router.get("/samples", response_model=lims_schemas.SamplePage, summary="시료 목록 조회")
async def read_samples(
    status_filter: Optional[lims_models.SampleStatus] = Query(None, alias="status"),
    client_id: Optional[int] = Query(None),
    process_id: Optional[int] = Query(None),
    sample_type: Optional[lims_models.SampleType] = Query(None),
    search: Optional[str] = Query(None, description="시료 코드 검색어"),
    date_from: Optional[date] = Query(None, description="채취일 시작"),
    date_to: Optional[date] = Query(None, description="채취일 종료 (당일 포함)"),
    page: int = Query(1, ge=1),
    limit: int = Query(25, ge=1, le=100),
    db: AsyncSession = Depends(deps.get_db_session),
    current_user: usr_models.User = Depends(deps.get_current_active_user),
):
    samples, total = await lims_crud.sample.get_page(
        db, status_filter=status_filter, client_id=client_id, process_id=process_id,
        sample_type=sample_type, search=search, date_from=date_from, date_to=date_to,
        page=page, limit=limit,
    )
    return {"data": samples, "pagination": lims_crud.paginate(total, page, limit)}


@router.get("/samples/{sample_id}", response_model=lims_schemas.SampleDetailResponse, summary="특정 시료 조회")
async def read_sample(
    sample_id: int,
    db: AsyncSession = Depends(deps.get_db_session),
    current_user: usr_models.User = Depends(deps.get_current_active_user),
):
    db_sample = await lims_crud.sample.get_detail(db, sample_id)
    if db_sample is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Sample not found")
    return db_sample


@router.post("/samples", response_model=lims_schemas.SampleDetailResponse, status_code=status.HTTP_201_CREATED, summary="새 시료 등록")
async def create_sample(
    request: Request,
    sample_in: lims_schemas.SampleCreate,
    db: AsyncSession = Depends(deps.get_db_session),
    current_user: usr_models.User = Depends(deps.get_current_lab_user),
):
    db_sample = await lims_crud.sample.create(db, obj_in=sample_in, collected_by=current_user.id)
    await _audit(db, request, current_user, "CREATE", "Sample", db_sample.id, {"sample_code": db_sample.sample_code})
    return db_sample


@router.put("/samples/{sample_id}", response_model=lims_schemas.SampleDetailResponse, summary="시료 정보 수정")
async def update_sample(
    request: Request,
    sample_id: int,
    sample_in: lims_schemas.SampleUpdate,
    db: AsyncSession = Depends(deps.get_db_session),
    current_user: usr_models.User = Depends(deps.get_current_lab_user),
):
    db_sample = await lims_crud.sample.get(db, id=sample_id)
    if db_sample is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Sample not found")
    db_sample = await lims_crud.sample.update(db, db_obj=db_sample, obj_in=sample_in)
    await _audit(
        db, request, current_user, "UPDATE", "Sample", sample_id, sample_in.model_dump(exclude_unset=True, mode="json")
    )
    return db_sample


@router.patch("/samples/{sample_id}/status", response_model=lims_schemas.SampleDetailResponse, summary="시료 상태 변경")
async def change_sample_status(
    request: Request,
    sample_id: int,
    status_in: lims_schemas.SampleStatusUpdate,
    db: AsyncSession = Depends(deps.get_db_session),
    current_user: usr_models.User = Depends(deps.get_current_lab_user),
):
    db_sample = await lims_crud.sample.get(db, id=sample_id)
    if db_sample is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Sample not found")
    old_status = db_sample.status
    db_sample = await lims_crud.sample.change_status(db, db_obj=db_sample, new_status=status_in.status)
    await _audit(
        db, request, current_user, "STATUS_CHANGE", "Sample", sample_id,
        {"from": old_status.value, "to": status_in.status.value},
    )
    return db_sample


# =============================================================================
# 4. 분석 (Analysis) 라우터
# =============================================================================
@router.get("/analyses", response_model=lims_schemas.AnalysisPage, summary="분석 목록 조회")
async def read_analyses(
    status_filter: Optional[lims_models.AnalysisStatus] = Query(None, alias="status"),
    sample_id: Optional[int] = Query(None),
    search: Optional[str] = Query(None, description="분석 코드 검색어"),
    date_from: Optional[date] = Query(None, description="분석일 시작"),
    date_to: Optional[date] = Query(None, description="분석일 종료 (당일 포함)"),
    page: int = Query(1, ge=1),
    limit: int = Query(25, ge=1, le=100),
    db: AsyncSession = Depends(deps.get_db_session),
    current_user: usr_models.User = Depends(deps.get_current_active_user),
):
    items, total = await lims_crud.analysis.get_page(
        db, status_filter=status_filter, sample_id=sample_id, search=search,
        date_from=date_from, date_to=date_to, page=page, limit=limit,
    )
    return {"data": items, "pagination": lims_crud.paginate(total, page, limit)}


@router.get("/analyses/{analysis_id}", response_model=lims_schemas.AnalysisDetailResponse, summary="특정 분석 조회 (결과/권고 포함)")
async def read_analysis(
    analysis_id: int,
    db: AsyncSession = Depends(deps.get_db_session),
    current_user: usr_models.User = Depends(deps.get_current_active_user),
):
    db_analysis = await lims_crud.analysis.get_detail(db, analysis_id)
    if db_analysis is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Analysis not found")
    return db_analysis


@router.post("/analyses", response_model=lims_schemas.AnalysisDetailResponse, status_code=status.HTTP_201_CREATED, summary="새 분석 생성")
async def create_analysis(
    request: Request,
    analysis_in: lims_schemas.AnalysisCreate,
    db: AsyncSession = Depends(deps.get_db_session),
    current_user: usr_models.User = Depends(deps.get_current_lab_user),
):
    db_analysis = await lims_crud.analysis.create(db, obj_in=analysis_in, performed_by=current_user.id)
    await _audit(
        db, request, current_user, "CREATE", "Analysis", db_analysis.id,
        {"analysis_code": db_analysis.analysis_code, "sample_id": db_analysis.sample_id},
    )
    return db_analysis


@router.put("/analyses/{analysis_id}", response_model=lims_schemas.AnalysisDetailResponse, summary="분석 정보 수정")
async def update_analysis(
    request: Request,
    analysis_id: int,
    analysis_in: lims_schemas.AnalysisUpdate,
    db: AsyncSession = Depends(deps.get_db_session),
    current_user: usr_models.User = Depends(deps.get_current_lab_user),
):
    db_analysis = await lims_crud.analysis.get_or_404(db, analysis_id)
    db_analysis = await lims_crud.analysis.update(db, db_obj=db_analysis, obj_in=analysis_in)
    await _audit(
        db, request, current_user, "UPDATE", "Analysis", analysis_id,
        analysis_in.model_dump(exclude_unset=True, mode="json"),
    )
    return db_analysis


@router.patch("/analyses/{analysis_id}/status", response_model=lims_schemas.AnalysisDetailResponse, summary="분석 상태 변경")
async def change_analysis_status(
    request: Request,
    analysis_id: int,
    status_in: lims_schemas.AnalysisStatusUpdate,
    db: AsyncSession = Depends(deps.get_db_session),
    current_user: usr_models.User = Depends(deps.get_current_lab_user),
):
    """허용된 상태 전이만 가능합니다. 승인은 `/approve` 엔드포인트를 사용합니다."""
    db_analysis = await lims_crud.analysis.get_or_404(db, analysis_id)
    old_status = db_analysis.status
    db_analysis = await lims_crud.analysis.change_status(
        db, db_obj=db_analysis, new_status=status_in.status, notes=status_in.notes
    )
    await _audit(
        db, request, current_user, "STATUS_CHANGE", "Analysis", analysis_id,
        {"from": old_status.value, "to": status_in.status.value},
    )
    return db_analysis


@router.post("/analyses/{analysis_id}/approve", response_model=lims_schemas.AnalysisDetailResponse, summary="분석 승인")
async def approve_analysis(
    request: Request,
    analysis_id: int,
    db: AsyncSession = Depends(deps.get_db_session),
    current_admin_user: usr_models.User = Depends(deps.get_current_admin_user),
):
    """COMPLETED 상태이고 결과가 있는 분석을 승인합니다. 수행자에게 알림을 보냅니다."""
    db_analysis = await lims_crud.analysis.get_or_404(db, analysis_id)
    db_analysis = await lims_crud.analysis.approve(db, db_obj=db_analysis, approver_id=current_admin_user.id)
    await _audit(
        db, request, current_admin_user, "APPROVE", "Analysis", analysis_id,
        {"analysis_code": db_analysis.analysis_code},
    )
    if db_analysis.performed_by != current_admin_user.id:
        await shared_services.notify_users(
            db,
            user_ids=[db_analysis.performed_by],
            title="Analysis approved",
            message=f"Analysis {db_analysis.analysis_code} was approved by {current_admin_user.full_name}.",
            type=shared_models.NotificationType.APPROVAL,
            link=f"/analyses/{analysis_id}",
        )
    return db_analysis


# =============================================================================
# 5. 분석 결과 (AnalysisResult) 라우터
# =============================================================================
@router.put("/analyses/{analysis_id}/results", response_model=lims_schemas.AnalysisResultsSaved, summary="분석 결과 저장 (전체 교체)")
async def save_analysis_results(
    request: Request,
    analysis_id: int,
    results_in: lims_schemas.AnalysisResultsSave,
    db: AsyncSession = Depends(deps.get_db_session),
    current_user: usr_models.User = Depends(deps.get_current_lab_user),
):
    """
    분석 결과 전체를 교체 저장합니다. 편차는 서버에서 계산됩니다.
    기준 범위를 보내지 않은 결과는 시료 공정의 같은 이름 파라미터 기준 범위를 스냅샷으로 사용합니다.
    """
    db_analysis = await lims_crud.analysis.get_or_404(db, analysis_id)
    await lims_crud.analysis.save_results(db, db_obj=db_analysis, results_in=results_in.results)
    results = await lims_crud.analysis.get_results(db, analysis_id=analysis_id)
    await _audit(
        db, request, current_user, "SAVE_RESULTS", "Analysis", analysis_id,
        {
            "results_count": len(results),
            "critical_count": sum(1 for r in results if r.deviation.is_critical),
        },
    )
    return {"message": f"Saved {len(results)} results", "results": results}


@router.patch("/results/{result_id}", response_model=lims_schemas.AnalysisResultResponse, summary="분석 결과값 수정")
async def update_result_value(
    request: Request,
    result_id: int,
    value_in: lims_schemas.AnalysisResultValueUpdate,
    db: AsyncSession = Depends(deps.get_db_session),
    current_user: usr_models.User = Depends(deps.get_current_lab_user),
):
    """결과값을 수정하고 해당 결과에 저장된 기준 범위로 편차를 다시 계산합니다."""
    db_result = await lims_crud.analysis.get_result_or_404(db, result_id)
    old_value = db_result.value
    db_result = await lims_crud.analysis.update_result_value(db, db_result=db_result, value=value_in.value)
    await _audit(
        db, request, current_user, "UPDATE_RESULT", "AnalysisResult", result_id,
        {"from": old_value, "to": db_result.value, "deviation": db_result.deviation.value},
    )
    return db_result


# =============================================================================
# 6. 조치 권고 (Recommendation) 라우터
# =============================================================================
@router.get("/analyses/{analysis_id}/recommendations", response_model=List[lims_schemas.RecommendationResponse], summary="분석의 조치 권고 목록")
async def read_recommendations(
    analysis_id: int,
    db: AsyncSession = Depends(deps.get_db_session),
    current_user: usr_models.User = Depends(deps.get_current_active_user),
):
    await lims_crud.analysis.get_or_404(db, analysis_id)
    return await lims_crud.analysis.get_recommendations(db, analysis_id=analysis_id)


@router.get(
    "/analyses/{analysis_id}/recommendation-suggestions",
    response_model=List[lims_schemas.RecommendationSuggestion],
    summary="편차 결과 기반 조치 권고 초안",
)
async def read_recommendation_suggestions(
    analysis_id: int,
    db: AsyncSession = Depends(deps.get_db_session),
    current_user: usr_models.User = Depends(deps.get_current_active_user),
):
    """범위를 벗어난 결과마다 권고 초안을 만듭니다. 저장은 하지 않습니다."""
    await lims_crud.analysis.get_or_404(db, analysis_id)
    suggestions = []
    for db_result in await lims_crud.analysis.get_results(db, analysis_id=analysis_id):
        draft = lims_services.suggest_recommendation(db_result)
        if draft is not None:
            suggestions.append(lims_schemas.RecommendationSuggestion(result_id=db_result.id, **draft))
    return suggestions


@router.post(
    "/analyses/{analysis_id}/recommendations",
    response_model=lims_schemas.RecommendationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="조치 권고 추가",
)
async def create_recommendation(
    request: Request,
    analysis_id: int,
    recommendation_in: lims_schemas.RecommendationCreate,
    db: AsyncSession = Depends(deps.get_db_session),
    current_user: usr_models.User = Depends(deps.get_current_lab_user),
):
    """CRITICAL 우선순위 권고는 모든 활성 관리자에게 알림을 보냅니다."""
    db_analysis = await lims_crud.analysis.get_or_404(db, analysis_id)
    db_rec = await lims_crud.analysis.add_recommendation(
        db, db_obj=db_analysis, obj_in=recommendation_in, created_by=current_user.id
    )
    await _audit(
        db, request, current_user, "CREATE", "Recommendation", db_rec.id,
        {"analysis_id": analysis_id, "priority": db_rec.priority.value},
    )
    if db_rec.priority == lims_models.Priority.CRITICAL:
        admins = await usr_crud.user.get_active_admins(db)
        await shared_services.notify_users(
            db,
            user_ids=[admin.id for admin in admins],
            title="Critical recommendation",
            message=(
                f"Analysis {db_analysis.analysis_code}: {db_rec.parameter_name} - {db_rec.description}"
            ),
            type=shared_models.NotificationType.CRITICAL,
            link=f"/analyses/{analysis_id}",
        )
    return db_rec


# =============================================================================
# 7. 아카이브 (Archive) 라우터
# =============================================================================
def _archive_filters(
    status_filter: Optional[lims_models.AnalysisStatus] = Query(None, alias="status"),
    client_id: Optional[int] = Query(None),
    process_id: Optional[int] = Query(None),
    process_type: Optional[str] = Query(None),
    sample_type: Optional[lims_models.SampleType] = Query(None),
    performed_by: Optional[int] = Query(None),
    date_from: Optional[date] = Query(None, description="분석일 시작"),
    date_to: Optional[date] = Query(None, description="분석일 종료 (당일 포함)"),
    deviation: Optional[lims_models.Deviation] = Query(None, description="해당 편차 결과를 포함한 분석만"),
    parameter_name: Optional[str] = Query(None, description="해당 파라미터 결과를 포함한 분석만"),
    search: Optional[str] = Query(None, description="분석/시료 코드, 회사명 검색어"),
) -> Dict[str, Any]:
    filters: Dict[str, Any] = {
        "client_id": client_id, "process_id": process_id, "process_type": process_type,
        "sample_type": sample_type, "performed_by": performed_by, "date_from": date_from,
        "date_to": date_to, "deviation": deviation, "parameter_name": parameter_name, "search": search,
    }
    if status_filter is not None:
        filters["statuses"] = (status_filter,)
    return filters


@router.get("/archive/analyses", response_model=lims_schemas.AnalysisPage, summary="분석 이력 조회")
async def read_archive(
    filters: Dict[str, Any] = Depends(_archive_filters),
    page: int = Query(1, ge=1),
    limit: int = Query(25, ge=1, le=100),
    db: AsyncSession = Depends(deps.get_db_session),
    current_user: usr_models.User = Depends(deps.get_current_active_user),
):
    """기본으로 COMPLETED, APPROVED 분석만 조회합니다."""
    items, total = await lims_crud.archive.get_page(db, page=page, limit=limit, **filters)
    return {"data": items, "pagination": lims_crud.paginate(total, page, limit)}


@router.get("/archive/trend", response_model=lims_schemas.TrendResponse, summary="파라미터 추세 조회")
async def read_trend(
    parameter_name: str = Query(..., min_length=1, description="파라미터명 (대소문자 무시)"),
    client_id: Optional[int] = Query(None),
    process_id: Optional[int] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    include_drafts: bool = Query(False, description="진행 중 분석 포함 (반려 제외)"),
    limit: int = Query(settings.TREND_DEFAULT_POINTS, ge=1, le=settings.TREND_MAX_POINTS),
    db: AsyncSession = Depends(deps.get_db_session),
    current_user: usr_models.User = Depends(deps.get_current_active_user),
):
    """
    한 파라미터의 측정값을 분석 일시 오름차순으로 반환합니다.
    각 포인트의 min/max/optimal 은 측정 당시 저장된 기준 범위입니다. 일치하는 결과가 없으면 빈 목록입니다.
    """
    query = lims_schemas.TrendQuery(
        parameter_name=parameter_name, client_id=client_id, process_id=process_id,
        date_from=date_from, date_to=date_to, include_drafts=include_drafts,
    )
    return await lims_crud.archive.get_trend(db, query, limit=limit)


@router.get("/archive/deviations", response_model=lims_schemas.DeviationStatsResponse, summary="편차 통계")
async def read_deviation_stats(
    client_id: Optional[int] = Query(None),
    process_id: Optional[int] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    db: AsyncSession = Depends(deps.get_db_session),
    current_user: usr_models.User = Depends(deps.get_current_active_user),
):
    return await lims_crud.archive.deviation_stats(
        db, client_id=client_id, process_id=process_id, date_from=date_from, date_to=date_to
    )


@router.get("/archive/export/csv", summary="분석 이력 CSV 내보내기")
async def export_archive_csv(
    request: Request,
    filters: Dict[str, Any] = Depends(_archive_filters),
    db: AsyncSession = Depends(deps.get_db_session),
    current_user: usr_models.User = Depends(deps.get_current_active_user),
):
    """세미콜론 구분, UTF-8 BOM CSV 를 내려받습니다. 결과 한 건당 한 행입니다."""
    analyses = await lims_crud.archive.get_for_export(db, **filters)
    content = lims_services.build_archive_csv(analyses)
    await _audit(db, request, current_user, "EXPORT", "Analysis", None, {"analyses": len(analyses)})
    filename = f"archiwum_analiz_{datetime.now(UTC):%Y-%m-%d}.csv"
    return Response(
        content=content,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# =============================================================================
# 8. 대시보드 (Dashboard) 라우터
# =============================================================================
@router.get("/dashboard/stats", response_model=lims_schemas.DashboardStats, summary="대시보드 통계")
async def read_dashboard_stats(
    db: AsyncSession = Depends(deps.get_db_session),
    current_user: usr_models.User = Depends(deps.get_current_active_user),
):
    return await lims_crud.dashboard.get_stats(db)


@router.get("/dashboard/recent-analyses", response_model=List[lims_schemas.AnalysisListItem], summary="최근 분석 10건")
async def read_recent_analyses(
    db: AsyncSession = Depends(deps.get_db_session),
    current_user: usr_models.User = Depends(deps.get_current_active_user),
):
    return await lims_crud.dashboard.get_recent_analyses(db)


@router.get("/dashboard/critical-alerts", response_model=List[lims_schemas.CriticalAlert], summary="치명적 편차 알림 20건")
async def read_critical_alerts(
    db: AsyncSession = Depends(deps.get_db_session),
    current_user: usr_models.User = Depends(deps.get_current_active_user),
):
    return await lims_crud.dashboard.get_critical_alerts(db)


# =============================================================================
# 9. 가져오기 (Import) 라우터
# =============================================================================
@router.post("/import/preview", response_model=lims_schemas.ImportPreview, summary="가져오기 파일 미리보기 및 열 매핑 제안")
async def preview_import(
    file: UploadFile = File(...),
    db: AsyncSession = Depends(deps.get_db_session),
    current_admin_user: usr_models.User = Depends(deps.get_current_admin_user),
):
    table = import_service.parse_file(file.filename, await file.read())
    return import_service.ImportService(db).preview(table)


@router.post("/import/execute", response_model=lims_schemas.ImportReport, summary="가져오기 실행")
async def execute_import(
    request: Request,
    file: UploadFile = File(...),
    mapping: str = Form(..., description="MappingConfig JSON"),
    db: AsyncSession = Depends(deps.get_db_session),
    current_admin_user: usr_models.User = Depends(deps.get_current_admin_user),
):
    """
    파일의 각 행을 시료 + COMPLETED 분석 + 결과 1건으로 가져옵니다.
    고객사는 NIP, 회사명 유사도 순으로 찾고 없으면 생성합니다. 빈 행은 건너뜁니다.
    """
    try:
        config = lims_schemas.MappingConfig.model_validate_json(mapping)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.errors(include_url=False, include_context=False))
    table = import_service.parse_file(file.filename, await file.read())
    report = await import_service.ImportService(db).execute(table, config, user_id=current_admin_user.id)
    await _audit(
        db, request, current_admin_user, "IMPORT", "Analysis", None,
        {"filename": file.filename, **report.model_dump(exclude={"errors"}), "errors": len(report.errors)},
    )
    return report
