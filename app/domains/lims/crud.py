# app/domains/lims/crud.py

"""
'lims' 도메인 (도금 실험실 정보 관리)의 CRUD 작업을 담당하는 모듈입니다.

고객사, 공정/파라미터, 시료, 분석/결과/권고의 생성·조회·상태 전이와
아카이브(추세, 편차 통계, CSV 내보내기) 및 대시보드 집계 쿼리를 포함합니다.
"""

import logging
import math
from datetime import datetime, timedelta, UTC
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple

from fastapi import HTTPException, status
from sqlalchemy import delete, func, or_
from sqlalchemy.orm import selectinload
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.config import settings
from app.core.crud_base import CRUDBase, day_start, day_end_exclusive
from . import models as lims_models
from . import schemas as lims_schemas
from . import services as lims_services

logger = logging.getLogger(__name__)

SAMPLE_STATUS_TRANSITIONS: Dict[lims_models.SampleStatus, Tuple[lims_models.SampleStatus, ...]] = {
    lims_models.SampleStatus.REGISTERED: (lims_models.SampleStatus.IN_PROGRESS, lims_models.SampleStatus.CANCELLED),
    lims_models.SampleStatus.IN_PROGRESS: (lims_models.SampleStatus.COMPLETED, lims_models.SampleStatus.CANCELLED),
    lims_models.SampleStatus.COMPLETED: (),
    lims_models.SampleStatus.CANCELLED: (),
}

ANALYSIS_STATUS_TRANSITIONS: Dict[lims_models.AnalysisStatus, Tuple[lims_models.AnalysisStatus, ...]] = {
    lims_models.AnalysisStatus.PENDING: (lims_models.AnalysisStatus.IN_PROGRESS,),
    lims_models.AnalysisStatus.IN_PROGRESS: (lims_models.AnalysisStatus.COMPLETED, lims_models.AnalysisStatus.REJECTED),
    lims_models.AnalysisStatus.COMPLETED: (lims_models.AnalysisStatus.APPROVED, lims_models.AnalysisStatus.REJECTED),
    lims_models.AnalysisStatus.APPROVED: (),
    lims_models.AnalysisStatus.REJECTED: (lims_models.AnalysisStatus.IN_PROGRESS,),
}

# 아카이브/추세에 기본으로 포함되는 분석 상태
FINAL_ANALYSIS_STATUSES = (lims_models.AnalysisStatus.COMPLETED, lims_models.AnalysisStatus.APPROVED)


def paginate(total: int, page: int, limit: int) -> lims_schemas.Pagination:
    return lims_schemas.Pagination(
        page=page, limit=limit, total=total, total_pages=math.ceil(total / limit) if limit else 0
    )


async def next_code(db: AsyncSession, column: Any, prefix: str, moment: Optional[datetime] = None) -> str:
    """
    '{prefix}-YYYYMM-NNNN' 형식의 다음 일련 코드를 생성합니다. 일련번호는 월마다 0001부터 시작합니다.
    """
    moment = moment or datetime.now(UTC)
    stem = f"{prefix}-{moment:%Y%m}-"
    statement = select(column).where(column.like(f"{stem}%")).order_by(column.desc()).limit(1)
    last = (await db.execute(statement)).scalar_one_or_none()
    sequence = int(last.rsplit("-", 1)[1]) + 1 if last else 1
    return f"{stem}{sequence:04d}"


def _check_transition(transitions: Dict[Any, Tuple[Any, ...]], current: Any, target: Any) -> None:
    allowed = transitions.get(current, ())
    if target not in allowed:
        allowed_names = ", ".join(s.value for s in allowed) or "none"
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Status change from {current.value} to {target.value} is not allowed (allowed: {allowed_names})",
        )


# =============================================================================
# 1. 고객사 (Client) CRUD
# =============================================================================
class CRUDClient(CRUDBase[lims_models.Client, lims_schemas.ClientCreate, lims_schemas.ClientUpdate]):
    def __init__(self):
        super().__init__(model=lims_models.Client)

    async def get_by_nip(self, db: AsyncSession, *, nip: str) -> Optional[lims_models.Client]:
        return await self.get_by_attribute(db, attribute="nip", value=nip)

    async def get_page(
        self,
        db: AsyncSession,
        *,
        search: Optional[str] = None,
        is_active: Optional[bool] = True,
        page: int = 1,
        limit: int = 25,
    ) -> Tuple[List[lims_models.Client], int]:
        """회사명/NIP/도시 검색과 활성 여부 필터를 적용한 고객사 목록과 전체 건수를 반환합니다."""
        conditions = []
        if is_active is not None:
            conditions.append(self.model.is_active == is_active)
        if search:
            pattern = f"%{search.strip()}%"
            conditions.append(or_(
                self.model.company_name.ilike(pattern),
                self.model.nip.ilike(pattern),
                self.model.city.ilike(pattern),
            ))

        total = (await db.execute(select(func.count()).select_from(self.model).where(*conditions))).scalar_one()
        statement = (
            select(self.model).where(*conditions)
            .order_by(self.model.company_name, self.model.id)
            .offset((page - 1) * limit).limit(limit)
        )
        result = await db.execute(statement)
        return result.scalars().all(), total

    async def create(self, db: AsyncSession, *, obj_in: lims_schemas.ClientCreate) -> lims_models.Client:
        if obj_in.nip and await self.get_by_nip(db, nip=obj_in.nip):
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Client with this NIP already exists")
        return await super().create(db, obj_in=obj_in)

    async def update(
        self, db: AsyncSession, *, db_obj: lims_models.Client, obj_in: lims_schemas.ClientUpdate
    ) -> lims_models.Client:
        if obj_in.nip and obj_in.nip != db_obj.nip:
            existing = await self.get_by_nip(db, nip=obj_in.nip)
            if existing and existing.id != db_obj.id:
                raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Client with this NIP already exists")
        return await super().update(db, db_obj=db_obj, obj_in=obj_in)

    async def soft_delete(self, db: AsyncSession, *, db_obj: lims_models.Client) -> lims_models.Client:
        db_obj.is_active = False
        db.add(db_obj)
        await db.commit()
        await db.refresh(db_obj)
        return db_obj


client = CRUDClient()


# =============================================================================
# 2. 공정 (Process) 및 공정 파라미터 CRUD
# =============================================================================
class CRUDProcess(CRUDBase[lims_models.Process, lims_schemas.ProcessCreate, lims_schemas.ProcessUpdate]):
    def __init__(self):
        super().__init__(model=lims_models.Process)

    async def get_detail(self, db: AsyncSession, id: int) -> Optional[lims_models.Process]:
        """파라미터 목록을 함께 로드한 공정을 반환합니다."""
        statement = (
            select(self.model)
            .where(self.model.id == id)
            .options(selectinload(self.model.parameters))
            .execution_options(populate_existing=True)
        )
        result = await db.execute(statement)
        return result.scalars().first()

    async def get_list(
        self,
        db: AsyncSession,
        *,
        process_type: Optional[str] = None,
        client_id: Optional[int] = None,
        is_active: Optional[bool] = True,
        search: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[lims_models.Process]:
        statement = select(self.model).options(selectinload(self.model.parameters))
        if process_type:
            statement = statement.where(self.model.process_type == process_type)
        if client_id is not None:
            statement = statement.where(self.model.client_id == client_id)
        if is_active is not None:
            statement = statement.where(self.model.is_active == is_active)
        if search:
            statement = statement.where(self.model.name.ilike(f"%{search.strip()}%"))
        statement = statement.order_by(self.model.process_type, self.model.name).offset(skip).limit(limit)
        result = await db.execute(statement)
        return result.scalars().all()

    async def get_process_types(self, db: AsyncSession) -> List[str]:
        statement = select(self.model.process_type).distinct().order_by(self.model.process_type)
        result = await db.execute(statement)
        return result.scalars().all()

    async def _ensure_client(self, db: AsyncSession, client_id: Optional[int]) -> None:
        if client_id is not None and not await db.get(lims_models.Client, client_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Client not found")

    async def create(self, db: AsyncSession, *, obj_in: lims_schemas.ProcessCreate) -> lims_models.Process:
        """공정과 중첩된 파라미터 목록을 한 번에 생성합니다."""
        await self._ensure_client(db, obj_in.client_id)
        db_obj = lims_models.Process(
            name=obj_in.name,
            description=obj_in.description,
            process_type=obj_in.process_type,
            client_id=obj_in.client_id,
        )
        db_obj.parameters = [
            lims_models.ProcessParameter(**param.model_dump(exclude={"id"}))
            for param in obj_in.parameters
        ]
        db.add(db_obj)
        await db.commit()
        return await self.get_detail(db, db_obj.id)

    async def update(
        self, db: AsyncSession, *, db_obj: lims_models.Process, obj_in: lims_schemas.ProcessUpdate
    ) -> lims_models.Process:
        """
        공정 정보를 수정합니다. parameters 가 주어지면 전체 목록으로 동기화합니다:
        id 가 있는 항목은 수정, id 가 없는 항목은 추가, 목록에서 빠진 기존 항목은 삭제합니다.
        기준 범위를 바꿔도 이미 저장된 분석 결과의 스냅샷은 그대로입니다.
        """
        update_data = obj_in.model_dump(exclude_unset=True, exclude={"parameters"})
        if "client_id" in update_data:
            await self._ensure_client(db, update_data["client_id"])
        for key, value in update_data.items():
            setattr(db_obj, key, value)
        db.add(db_obj)

        if obj_in.parameters is not None:
            existing_result = await db.execute(
                select(lims_models.ProcessParameter).where(lims_models.ProcessParameter.process_id == db_obj.id)
            )
            existing = {param.id: param for param in existing_result.scalars().all()}
            keep_ids = set()
            for param_in in obj_in.parameters:
                values = param_in.model_dump(exclude={"id"})
                if param_in.id is not None:
                    db_param = existing.get(param_in.id)
                    if db_param is None:
                        raise HTTPException(
                            status_code=status.HTTP_400_BAD_REQUEST,
                            detail=f"Parameter {param_in.id} does not belong to process {db_obj.id}",
                        )
                    for key, value in values.items():
                        setattr(db_param, key, value)
                    db.add(db_param)
                    keep_ids.add(db_param.id)
                else:
                    db.add(lims_models.ProcessParameter(process_id=db_obj.id, **values))
            for param_id, db_param in existing.items():
                if param_id not in keep_ids:
                    await db.delete(db_param)

        await db.commit()
        return await self.get_detail(db, db_obj.id)

    async def clone(self, db: AsyncSession, *, source: lims_models.Process, name: str) -> lims_models.Process:
        """공정과 파라미터 기준 범위를 새 이름으로 복제합니다."""
        source = await self.get_detail(db, source.id)
        db_obj = lims_models.Process(
            name=name,
            description=source.description,
            process_type=source.process_type,
            client_id=source.client_id,
        )
        db_obj.parameters = [
            lims_models.ProcessParameter(
                parameter_name=param.parameter_name,
                unit=param.unit,
                min_value=param.min_value,
                max_value=param.max_value,
                optimal_value=param.optimal_value,
                sort_order=param.sort_order,
                is_active=param.is_active,
            )
            for param in source.parameters
        ]
        db.add(db_obj)
        await db.commit()
        return await self.get_detail(db, db_obj.id)

    async def soft_delete(self, db: AsyncSession, *, db_obj: lims_models.Process) -> lims_models.Process:
        db_obj.is_active = False
        db.add(db_obj)
        await db.commit()
        return await self.get_detail(db, db_obj.id)

    async def get_active_parameters(
        self, db: AsyncSession, *, process_id: int
    ) -> Dict[str, lims_models.ProcessParameter]:
        """활성 파라미터를 소문자 이름으로 색인한 사전을 반환합니다."""
        statement = (
            select(lims_models.ProcessParameter)
            .where(
                lims_models.ProcessParameter.process_id == process_id,
                lims_models.ProcessParameter.is_active == True,  # noqa: E712
            )
            .order_by(lims_models.ProcessParameter.sort_order, lims_models.ProcessParameter.id)
        )
        result = await db.execute(statement)
        parameters: Dict[str, lims_models.ProcessParameter] = {}
        for param in result.scalars().all():
            parameters.setdefault(param.parameter_name.strip().lower(), param)
        return parameters


process = CRUDProcess()


# =============================================================================
# 3. 시료 (Sample) CRUD
# =============================================================================
class CRUDSample(CRUDBase[lims_models.Sample, lims_schemas.SampleCreate, lims_schemas.SampleUpdate]):
    def __init__(self):
        super().__init__(model=lims_models.Sample)

    def _detail_options(self):
        return (selectinload(self.model.client), selectinload(self.model.process))

    async def get_detail(self, db: AsyncSession, id: int) -> Optional[lims_models.Sample]:
        statement = (
            select(self.model)
            .where(self.model.id == id)
            .options(*self._detail_options())
            .execution_options(populate_existing=True)
        )
        result = await db.execute(statement)
        return result.scalars().first()

    async def get_page(
        self,
        db: AsyncSession,
        *,
        status_filter: Optional[lims_models.SampleStatus] = None,
        client_id: Optional[int] = None,
        process_id: Optional[int] = None,
        sample_type: Optional[lims_models.SampleType] = None,
        search: Optional[str] = None,
        date_from=None,
        date_to=None,
        page: int = 1,
        limit: int = 25,
    ) -> Tuple[List[lims_models.Sample], int]:
        conditions = []
        if status_filter is not None:
            conditions.append(self.model.status == status_filter)
        if client_id is not None:
            conditions.append(self.model.client_id == client_id)
        if process_id is not None:
            conditions.append(self.model.process_id == process_id)
        if sample_type is not None:
            conditions.append(self.model.sample_type == sample_type)
        if search:
            conditions.append(self.model.sample_code.ilike(f"%{search.strip()}%"))
        if date_from is not None:
            conditions.append(self.model.collected_at >= day_start(date_from))
        if date_to is not None:
            conditions.append(self.model.collected_at < day_end_exclusive(date_to))

        total = (await db.execute(select(func.count()).select_from(self.model).where(*conditions))).scalar_one()
        statement = (
            select(self.model).where(*conditions).options(*self._detail_options())
            .order_by(self.model.collected_at.desc(), self.model.id.desc())
            .offset((page - 1) * limit).limit(limit)
        )
        result = await db.execute(statement)
        return result.scalars().all(), total

    async def create(
        self, db: AsyncSession, *, obj_in: lims_schemas.SampleCreate, collected_by: int
    ) -> lims_models.Sample:
        """시료를 등록하고 PRB-YYYYMM-NNNN 코드를 부여합니다."""
        db_client = await db.get(lims_models.Client, obj_in.client_id)
        if not db_client:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Client not found")
        db_process = await db.get(lims_models.Process, obj_in.process_id)
        if not db_process:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Process not found")

        collected_at = obj_in.collected_at or datetime.now(UTC)
        db_obj = lims_models.Sample(
            sample_code=await next_code(db, self.model.sample_code, "PRB", collected_at),
            client_id=obj_in.client_id,
            process_id=obj_in.process_id,
            collected_by=collected_by,
            collected_at=collected_at,
            sample_type=obj_in.sample_type,
            description=obj_in.description,
        )
        db.add(db_obj)
        await db.commit()
        logger.info("시료 등록: %s", db_obj.sample_code)
        return await self.get_detail(db, db_obj.id)

    async def update(
        self, db: AsyncSession, *, db_obj: lims_models.Sample, obj_in: lims_schemas.SampleUpdate
    ) -> lims_models.Sample:
        if not SAMPLE_STATUS_TRANSITIONS[db_obj.status]:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Sample in status {db_obj.status.value} cannot be modified",
            )
        await super().update(db, db_obj=db_obj, obj_in=obj_in)
        return await self.get_detail(db, db_obj.id)

    async def change_status(
        self, db: AsyncSession, *, db_obj: lims_models.Sample, new_status: lims_models.SampleStatus
    ) -> lims_models.Sample:
        _check_transition(SAMPLE_STATUS_TRANSITIONS, db_obj.status, new_status)
        old_status = db_obj.status
        db_obj.status = new_status
        db.add(db_obj)
        await db.commit()
        logger.info("시료 %s 상태 변경: %s -> %s", db_obj.sample_code, old_status.value, new_status.value)
        return await self.get_detail(db, db_obj.id)


sample = CRUDSample()


# =============================================================================
# 4. 분석 (Analysis), 결과 (AnalysisResult), 권고 (Recommendation) CRUD
# =============================================================================
class CRUDAnalysis(CRUDBase[lims_models.Analysis, lims_schemas.AnalysisCreate, lims_schemas.AnalysisUpdate]):
    def __init__(self):
        super().__init__(model=lims_models.Analysis)

    @staticmethod
    def list_options():
        return (
            selectinload(lims_models.Analysis.sample).selectinload(lims_models.Sample.client),
            selectinload(lims_models.Analysis.sample).selectinload(lims_models.Sample.process),
            selectinload(lims_models.Analysis.performer),
            selectinload(lims_models.Analysis.results),
        )

    @staticmethod
    def to_list_item(db_obj: lims_models.Analysis) -> lims_schemas.AnalysisListItem:
        item = lims_schemas.AnalysisListItem.model_validate(db_obj)
        item.result_count = len(db_obj.results)
        item.critical_count = sum(1 for r in db_obj.results if r.deviation.is_critical)
        return item

    async def get_detail(self, db: AsyncSession, id: int) -> Optional[lims_models.Analysis]:
        """시료/고객사/공정, 수행자/승인자, 결과, 권고를 함께 로드한 분석을 반환합니다."""
        statement = (
            select(self.model)
            .where(self.model.id == id)
            .options(
                *self.list_options(),
                selectinload(self.model.approver),
                selectinload(self.model.recommendations),
            )
            .execution_options(populate_existing=True)
        )
        result = await db.execute(statement)
        return result.scalars().first()

    async def get_or_404(self, db: AsyncSession, id: int) -> lims_models.Analysis:
        db_obj = await self.get(db, id)
        if not db_obj:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Analysis not found")
        return db_obj

    async def get_page(
        self,
        db: AsyncSession,
        *,
        status_filter: Optional[lims_models.AnalysisStatus] = None,
        sample_id: Optional[int] = None,
        search: Optional[str] = None,
        date_from=None,
        date_to=None,
        page: int = 1,
        limit: int = 25,
    ) -> Tuple[List[lims_schemas.AnalysisListItem], int]:
        conditions = []
        if status_filter is not None:
            conditions.append(self.model.status == status_filter)
        if sample_id is not None:
            conditions.append(self.model.sample_id == sample_id)
        if search:
            conditions.append(self.model.analysis_code.ilike(f"%{search.strip()}%"))
        if date_from is not None:
            conditions.append(self.model.analysis_date >= day_start(date_from))
        if date_to is not None:
            conditions.append(self.model.analysis_date < day_end_exclusive(date_to))

        total = (await db.execute(select(func.count()).select_from(self.model).where(*conditions))).scalar_one()
        statement = (
            select(self.model).where(*conditions).options(*self.list_options())
            .order_by(self.model.created_at.desc(), self.model.id.desc())
            .offset((page - 1) * limit).limit(limit)
        )
        result = await db.execute(statement)
        return [self.to_list_item(a) for a in result.scalars().all()], total

    async def create(
        self, db: AsyncSession, *, obj_in: lims_schemas.AnalysisCreate, performed_by: int
    ) -> lims_models.Analysis:
        """
        분석을 PENDING 상태로 생성하고 ANL-YYYYMM-NNNN 코드를 부여합니다.
        시료가 REGISTERED 상태이면 IN_PROGRESS 로 전환합니다.
        """
        db_sample = await db.get(lims_models.Sample, obj_in.sample_id)
        if not db_sample:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Sample not found")
        if db_sample.status in (lims_models.SampleStatus.COMPLETED, lims_models.SampleStatus.CANCELLED):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Cannot add an analysis to a sample in status {db_sample.status.value}",
            )

        analysis_date = obj_in.analysis_date or datetime.now(UTC)
        db_obj = lims_models.Analysis(
            analysis_code=await next_code(db, self.model.analysis_code, "ANL", analysis_date),
            sample_id=db_sample.id,
            performed_by=performed_by,
            analysis_type=obj_in.analysis_type,
            analysis_date=analysis_date,
            notes=obj_in.notes,
        )
        db.add(db_obj)
        if db_sample.status == lims_models.SampleStatus.REGISTERED:
            db_sample.status = lims_models.SampleStatus.IN_PROGRESS
            db.add(db_sample)
        await db.commit()
        logger.info("분석 생성: %s (시료 %s)", db_obj.analysis_code, db_sample.sample_code)
        return await self.get_detail(db, db_obj.id)

    def _ensure_editable(self, db_obj: lims_models.Analysis) -> None:
        if db_obj.status == lims_models.AnalysisStatus.APPROVED:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST, detail="Approved analysis cannot be modified"
            )

    async def update(
        self, db: AsyncSession, *, db_obj: lims_models.Analysis, obj_in: lims_schemas.AnalysisUpdate
    ) -> lims_models.Analysis:
        self._ensure_editable(db_obj)
        await super().update(db, db_obj=db_obj, obj_in=obj_in)
        return await self.get_detail(db, db_obj.id)

    async def change_status(
        self,
        db: AsyncSession,
        *,
        db_obj: lims_models.Analysis,
        new_status: lims_models.AnalysisStatus,
        notes: Optional[str] = None,
    ) -> lims_models.Analysis:
        """
        허용된 상태 전이만 수행합니다. APPROVED 로의 전이는 approve() 로만 가능하며,
        COMPLETED 로 전환하려면 결과가 한 건 이상 있어야 합니다.
        """
        _check_transition(ANALYSIS_STATUS_TRANSITIONS, db_obj.status, new_status)
        if new_status == lims_models.AnalysisStatus.APPROVED:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST, detail="Use the approve endpoint to approve an analysis"
            )
        if new_status == lims_models.AnalysisStatus.COMPLETED and not await self.count_results(db, db_obj.id):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot complete an analysis without results"
            )

        old_status = db_obj.status
        db_obj.status = new_status
        if notes:
            db_obj.notes = notes
        db.add(db_obj)
        await db.commit()
        logger.info("분석 %s 상태 변경: %s -> %s", db_obj.analysis_code, old_status.value, new_status.value)
        return await self.get_detail(db, db_obj.id)

    async def count_results(self, db: AsyncSession, analysis_id: int) -> int:
        statement = select(func.count()).select_from(lims_models.AnalysisResult).where(
            lims_models.AnalysisResult.analysis_id == analysis_id
        )
        return (await db.execute(statement)).scalar_one()

    async def approve(self, db: AsyncSession, *, db_obj: lims_models.Analysis, approver_id: int) -> lims_models.Analysis:
        """COMPLETED 상태이고 결과가 있는 분석만 승인할 수 있습니다."""
        if db_obj.status != lims_models.AnalysisStatus.COMPLETED:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Only COMPLETED analyses can be approved (current: {db_obj.status.value})",
            )
        if not await self.count_results(db, db_obj.id):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot approve an analysis without results")

        db_obj.status = lims_models.AnalysisStatus.APPROVED
        db_obj.approved_by = approver_id
        db_obj.approved_at = datetime.now(UTC)
        db.add(db_obj)
        await db.commit()
        logger.info("분석 승인: %s (승인자 %s)", db_obj.analysis_code, approver_id)
        return await self.get_detail(db, db_obj.id)

    async def save_results(
        self, db: AsyncSession, *, db_obj: lims_models.Analysis, results_in: Sequence[lims_schemas.AnalysisResultIn]
    ) -> List[lims_models.AnalysisResult]:
        """
        분석의 결과 전체를 한 트랜잭션으로 교체합니다.
        기준 범위를 보내지 않은 결과는 시료 공정의 같은 이름 활성 파라미터에서 스냅샷을 가져오며,
        각 결과의 편차는 자신의 스냅샷으로 계산합니다. PENDING 분석은 IN_PROGRESS 로 전환됩니다.
        """
        self._ensure_editable(db_obj)
        db_sample = await db.get(lims_models.Sample, db_obj.sample_id)
        parameters = await process.get_active_parameters(db, process_id=db_sample.process_id)

        try:
            await db.execute(
                delete(lims_models.AnalysisResult).where(lims_models.AnalysisResult.analysis_id == db_obj.id)
            )
            saved: List[lims_models.AnalysisResult] = []
            for result_in in results_in:
                db_result = lims_models.AnalysisResult(
                    analysis_id=db_obj.id,
                    parameter_name=result_in.parameter_name.strip(),
                    unit=result_in.unit,
                    value=result_in.value,
                    min_reference=result_in.min_reference,
                    max_reference=result_in.max_reference,
                    optimal_reference=result_in.optimal_reference,
                )
                if not result_in.has_band:
                    param = parameters.get(db_result.parameter_name.lower())
                    if param is not None:
                        db_result.min_reference = param.min_value
                        db_result.max_reference = param.max_value
                        db_result.optimal_reference = param.optimal_value
                        db_result.unit = db_result.unit or param.unit
                lims_services.apply_deviation(db_result)
                db.add(db_result)
                saved.append(db_result)

            if db_obj.status == lims_models.AnalysisStatus.PENDING:
                db_obj.status = lims_models.AnalysisStatus.IN_PROGRESS
                db.add(db_obj)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info("분석 %s 결과 %d건 저장", db_obj.analysis_code, len(saved))
        return saved

    async def get_result_or_404(self, db: AsyncSession, result_id: int) -> lims_models.AnalysisResult:
        db_result = await db.get(lims_models.AnalysisResult, result_id)
        if not db_result:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Result not found")
        return db_result

    async def update_result_value(
        self, db: AsyncSession, *, db_result: lims_models.AnalysisResult, value: float
    ) -> lims_models.AnalysisResult:
        """결과값 하나를 수정하고 해당 결과의 기준 범위 스냅샷으로 편차를 다시 계산합니다."""
        db_obj = await self.get_or_404(db, db_result.analysis_id)
        self._ensure_editable(db_obj)
        db_result.value = value
        lims_services.apply_deviation(db_result)
        db.add(db_result)
        await db.commit()
        await db.refresh(db_result)
        return db_result

    async def add_recommendation(
        self,
        db: AsyncSession,
        *,
        db_obj: lims_models.Analysis,
        obj_in: lims_schemas.RecommendationCreate,
        created_by: int,
    ) -> lims_models.Recommendation:
        db_rec = lims_models.Recommendation(analysis_id=db_obj.id, created_by=created_by, **obj_in.model_dump())
        db.add(db_rec)
        await db.commit()
        await db.refresh(db_rec)
        return db_rec

    async def get_recommendations(self, db: AsyncSession, *, analysis_id: int) -> List[lims_models.Recommendation]:
        statement = (
            select(lims_models.Recommendation)
            .where(lims_models.Recommendation.analysis_id == analysis_id)
            .order_by(lims_models.Recommendation.created_at.desc(), lims_models.Recommendation.id.desc())
        )
        result = await db.execute(statement)
        return result.scalars().all()

    async def get_results(self, db: AsyncSession, *, analysis_id: int) -> List[lims_models.AnalysisResult]:
        statement = (
            select(lims_models.AnalysisResult)
            .where(lims_models.AnalysisResult.analysis_id == analysis_id)
            .order_by(lims_models.AnalysisResult.id)
        )
        result = await db.execute(statement)
        return result.scalars().all()


analysis = CRUDAnalysis()


# =============================================================================
# 5. 아카이브 (목록, 추세, 편차 통계, 내보내기)
# =============================================================================
class CRUDArchive:
    """완료/승인된 분석 이력에 대한 읽기 전용 조회를 담당합니다."""

    @staticmethod
    def _apply_filters(
        statement,
        *,
        statuses: Sequence[lims_models.AnalysisStatus] = FINAL_ANALYSIS_STATUSES,
        client_id: Optional[int] = None,
        process_id: Optional[int] = None,
        process_type: Optional[str] = None,
        sample_type: Optional[lims_models.SampleType] = None,
        performed_by: Optional[int] = None,
        date_from=None,
        date_to=None,
        deviation: Optional[lims_models.Deviation] = None,
        parameter_name: Optional[str] = None,
        search: Optional[str] = None,
    ):
        Analysis, Sample = lims_models.Analysis, lims_models.Sample
        Client, Process = lims_models.Client, lims_models.Process
        Result = lims_models.AnalysisResult

        statement = (
            statement
            .join(Sample, Analysis.sample_id == Sample.id)
            .join(Client, Sample.client_id == Client.id)
            .join(Process, Sample.process_id == Process.id)
            .where(Analysis.status.in_(statuses))
        )
        if client_id is not None:
            statement = statement.where(Sample.client_id == client_id)
        if process_id is not None:
            statement = statement.where(Sample.process_id == process_id)
        if process_type:
            statement = statement.where(Process.process_type == process_type)
        if sample_type is not None:
            statement = statement.where(Sample.sample_type == sample_type)
        if performed_by is not None:
            statement = statement.where(Analysis.performed_by == performed_by)
        if date_from is not None:
            statement = statement.where(Analysis.analysis_date >= day_start(date_from))
        if date_to is not None:
            statement = statement.where(Analysis.analysis_date < day_end_exclusive(date_to))
        if deviation is not None:
            statement = statement.where(
                select(Result.id).where(Result.analysis_id == Analysis.id, Result.deviation == deviation).exists()
            )
        if parameter_name:
            statement = statement.where(
                select(Result.id).where(
                    Result.analysis_id == Analysis.id,
                    func.lower(Result.parameter_name) == parameter_name.strip().lower(),
                ).exists()
            )
        if search:
            pattern = f"%{search.strip()}%"
            statement = statement.where(or_(
                Analysis.analysis_code.ilike(pattern),
                Sample.sample_code.ilike(pattern),
                Client.company_name.ilike(pattern),
            ))
        return statement

    async def get_page(
        self, db: AsyncSession, *, page: int = 1, limit: int = 25, **filters: Any
    ) -> Tuple[List[lims_schemas.AnalysisListItem], int]:
        Analysis = lims_models.Analysis
        count_statement = self._apply_filters(select(func.count(Analysis.id)).select_from(Analysis), **filters)
        total = (await db.execute(count_statement)).scalar_one()

        statement = (
            self._apply_filters(select(Analysis), **filters)
            .options(*CRUDAnalysis.list_options())
            .order_by(Analysis.analysis_date.desc(), Analysis.id.desc())
            .offset((page - 1) * limit).limit(limit)
        )
        result = await db.execute(statement)
        return [CRUDAnalysis.to_list_item(a) for a in result.scalars().all()], total

    # -------------------------------------------------------------------------
    # 추세
    # -------------------------------------------------------------------------
    @staticmethod
    def trend_statement(query: lims_schemas.TrendQuery):
        """
        한 파라미터의 측정값을 분석 일시 오름차순으로 조회하는 SELECT 문을 만듭니다.
        파라미터명은 대소문자를 구분하지 않으며, 같은 일시는 분석 ID, 결과 ID 순으로 정렬합니다.
        """
        Analysis, Sample, Result = lims_models.Analysis, lims_models.Sample, lims_models.AnalysisResult
        statement = (
            select(
                Analysis.analysis_date,
                Result.value,
                Result.min_reference,
                Result.max_reference,
                Result.optimal_reference,
                Result.unit,
                Result.deviation,
                Result.deviation_percent,
                Analysis.id,
                Analysis.analysis_code,
            )
            .join(Analysis, Result.analysis_id == Analysis.id)
            .join(Sample, Analysis.sample_id == Sample.id)
            .where(func.lower(Result.parameter_name) == query.parameter_name.strip().lower())
        )
        if query.include_drafts:
            statement = statement.where(Analysis.status != lims_models.AnalysisStatus.REJECTED)
        else:
            statement = statement.where(Analysis.status.in_(FINAL_ANALYSIS_STATUSES))
        if query.client_id is not None:
            statement = statement.where(Sample.client_id == query.client_id)
        if query.process_id is not None:
            statement = statement.where(Sample.process_id == query.process_id)
        if query.date_from is not None:
            statement = statement.where(Analysis.analysis_date >= day_start(query.date_from))
        if query.date_to is not None:
            statement = statement.where(Analysis.analysis_date < day_end_exclusive(query.date_to))
        return statement.order_by(Analysis.analysis_date.asc(), Analysis.id.asc(), Result.id.asc())

    async def iter_trend_points(
        self, db: AsyncSession, query: lims_schemas.TrendQuery, *, limit: Optional[int] = None
    ) -> AsyncIterator[lims_schemas.TrendPoint]:
        """
        추세 데이터 포인트를 시간 오름차순으로 하나씩 생성하는 비동기 제너레이터입니다.
        호출할 때마다 새 쿼리를 실행하며, 일치하는 결과가 없으면 아무것도 생성하지 않습니다.
        각 포인트의 기준 범위는 해당 결과에 저장된 스냅샷입니다.
        """
        statement = self.trend_statement(query)
        if limit is not None:
            statement = statement.limit(limit)
        stream = await db.stream(statement)
        try:
            async for row in stream:
                yield lims_schemas.TrendPoint(
                    date=row[0],
                    value=row[1],
                    min=row[2],
                    max=row[3],
                    optimal=row[4],
                    unit=row[5] or "",
                    deviation=row[6],
                    deviation_percent=row[7],
                    analysis_id=row[8],
                    analysis_code=row[9],
                )
        finally:
            await stream.close()

    async def get_trend(
        self, db: AsyncSession, query: lims_schemas.TrendQuery, *, limit: Optional[int] = None
    ) -> lims_schemas.TrendResponse:
        points = [point async for point in self.iter_trend_points(db, query, limit=limit)]
        stats = lims_services.summarize_values(point.value for point in points)
        return lims_schemas.TrendResponse(
            parameter_name=query.parameter_name,
            unit=points[-1].unit if points else None,
            data_points=points,
            statistics=stats,
        )

    # -------------------------------------------------------------------------
    # 편차 통계
    # -------------------------------------------------------------------------
    async def deviation_stats(
        self,
        db: AsyncSession,
        *,
        client_id: Optional[int] = None,
        process_id: Optional[int] = None,
        date_from=None,
        date_to=None,
    ) -> lims_schemas.DeviationStatsResponse:
        """완료/승인된 분석 결과의 편차 등급별 건수, 이탈률, 이탈이 잦은 파라미터 상위 20개를 집계합니다."""
        Analysis, Result = lims_models.Analysis, lims_models.AnalysisResult
        filters = dict(client_id=client_id, process_id=process_id, date_from=date_from, date_to=date_to)

        by_deviation_statement = self._apply_filters(
            select(Result.deviation, func.count(Result.id)).select_from(Result)
            .join(Analysis, Result.analysis_id == Analysis.id),
            **filters,
        ).group_by(Result.deviation)
        rows = (await db.execute(by_deviation_statement)).all()
        by_deviation = {d.value: 0 for d in lims_models.Deviation}
        for deviation, count in rows:
            by_deviation[lims_models.Deviation(deviation).value] = count

        total = sum(by_deviation.values())
        out_of_range = sum(by_deviation[d.value] for d in lims_models.OUT_OF_RANGE_DEVIATIONS)
        critical = sum(by_deviation[d.value] for d in lims_models.CRITICAL_DEVIATIONS)

        top_statement = (
            self._apply_filters(
                select(Result.parameter_name, func.count(Result.id).label("cnt")).select_from(Result)
                .join(Analysis, Result.analysis_id == Analysis.id),
                **filters,
            )
            .where(Result.deviation.in_(lims_models.OUT_OF_RANGE_DEVIATIONS))
            .group_by(Result.parameter_name)
            .order_by(func.count(Result.id).desc(), Result.parameter_name)
            .limit(20)
        )
        top_rows = (await db.execute(top_statement)).all()

        return lims_schemas.DeviationStatsResponse(
            total_results=total,
            by_deviation=by_deviation,
            out_of_range=out_of_range,
            critical=critical,
            deviation_rate=round(out_of_range / total * 100, 2) if total else 0.0,
            top_parameters=[
                lims_schemas.DeviationParameterBreakdown(parameter_name=name, count=count)
                for name, count in top_rows
            ],
        )

    # -------------------------------------------------------------------------
    # 내보내기
    # -------------------------------------------------------------------------
    async def get_for_export(self, db: AsyncSession, **filters: Any) -> List[lims_models.Analysis]:
        """CSV 내보내기용 분석 목록 (최대 EXPORT_MAX_ROWS 건)을 결과와 함께 로드합니다."""
        Analysis = lims_models.Analysis
        statement = (
            self._apply_filters(select(Analysis), **filters)
            .options(
                *CRUDAnalysis.list_options(),
                selectinload(Analysis.approver),
            )
            .order_by(Analysis.analysis_date.desc(), Analysis.id.desc())
            .limit(settings.EXPORT_MAX_ROWS)
        )
        result = await db.execute(statement)
        return result.scalars().all()


archive = CRUDArchive()


# =============================================================================
# 6. 대시보드 집계
# =============================================================================
class CRUDDashboard:
    OPEN_ANALYSIS_STATUSES = (lims_models.AnalysisStatus.IN_PROGRESS, lims_models.AnalysisStatus.COMPLETED)
    ALERT_ANALYSIS_STATUSES = (
        lims_models.AnalysisStatus.PENDING,
        lims_models.AnalysisStatus.IN_PROGRESS,
        lims_models.AnalysisStatus.COMPLETED,
    )

    async def _count(self, db: AsyncSession, model, *conditions) -> int:
        statement = select(func.count()).select_from(model).where(*conditions)
        return (await db.execute(statement)).scalar_one()

    async def get_stats(self, db: AsyncSession, *, now: Optional[datetime] = None) -> lims_schemas.DashboardStats:
        now = now or datetime.now(UTC)
        today = now.date()
        week_start = today - timedelta(days=today.weekday())
        month_start = today.replace(day=1)
        Sample, Analysis, Result = lims_models.Sample, lims_models.Analysis, lims_models.AnalysisResult

        status_rows = (await db.execute(
            select(Analysis.status, func.count(Analysis.id)).group_by(Analysis.status)
        )).all()
        analyses_by_status = {s.value: 0 for s in lims_models.AnalysisStatus}
        for analysis_status, count in status_rows:
            analyses_by_status[lims_models.AnalysisStatus(analysis_status).value] = count

        critical_statement = (
            select(func.count(Result.id))
            .join(Analysis, Result.analysis_id == Analysis.id)
            .where(
                Result.deviation.in_(lims_models.CRITICAL_DEVIATIONS),
                Analysis.status.in_(self.OPEN_ANALYSIS_STATUSES),
            )
        )

        return lims_schemas.DashboardStats(
            samples_today=await self._count(db, Sample, Sample.created_at >= day_start(today)),
            samples_this_week=await self._count(db, Sample, Sample.created_at >= day_start(week_start)),
            samples_this_month=await self._count(db, Sample, Sample.created_at >= day_start(month_start)),
            analyses_by_status=analyses_by_status,
            critical_deviations=(await db.execute(critical_statement)).scalar_one(),
            active_clients=await self._count(db, lims_models.Client, lims_models.Client.is_active == True),  # noqa: E712
            active_processes=await self._count(db, lims_models.Process, lims_models.Process.is_active == True),  # noqa: E712
        )

    async def get_recent_analyses(self, db: AsyncSession, *, limit: int = 10) -> List[lims_schemas.AnalysisListItem]:
        Analysis = lims_models.Analysis
        statement = (
            select(Analysis).options(*CRUDAnalysis.list_options())
            .order_by(Analysis.created_at.desc(), Analysis.id.desc())
            .limit(limit)
        )
        result = await db.execute(statement)
        return [CRUDAnalysis.to_list_item(a) for a in result.scalars().all()]

    async def get_critical_alerts(self, db: AsyncSession, *, limit: int = 20) -> List[lims_schemas.CriticalAlert]:
        """진행 중인(최종 승인/반려 전) 분석의 치명적 편차 결과를 최신순으로 반환합니다."""
        Analysis, Sample, Result = lims_models.Analysis, lims_models.Sample, lims_models.AnalysisResult
        Client, Process = lims_models.Client, lims_models.Process
        statement = (
            select(
                Result.id, Analysis.id, Analysis.analysis_code, Analysis.status, Sample.sample_code,
                Client.company_name, Process.name, Result.parameter_name, Result.value, Result.unit,
                Result.deviation, Result.deviation_percent, Result.created_at,
            )
            .join(Analysis, Result.analysis_id == Analysis.id)
            .join(Sample, Analysis.sample_id == Sample.id)
            .join(Client, Sample.client_id == Client.id)
            .join(Process, Sample.process_id == Process.id)
            .where(
                Result.deviation.in_(lims_models.CRITICAL_DEVIATIONS),
                Analysis.status.in_(self.ALERT_ANALYSIS_STATUSES),
            )
            .order_by(Result.created_at.desc(), Result.id.desc())
            .limit(limit)
        )
        rows = (await db.execute(statement)).all()
        return [
            lims_schemas.CriticalAlert(
                result_id=row[0], analysis_id=row[1], analysis_code=row[2], analysis_status=row[3],
                sample_code=row[4], client_name=row[5], process_name=row[6], parameter_name=row[7],
                value=row[8], unit=row[9], deviation=row[10], deviation_percent=row[11], created_at=row[12],
            )
            for row in rows
        ]


dashboard = CRUDDashboard()
