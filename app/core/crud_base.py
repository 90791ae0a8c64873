# app/core/crud_base.py

"""
공통 CRUD(Create, Read, Update, Delete) 작업을 위한 기본 클래스 모듈입니다.
모든 메서드는 비동기(async) 환경에서 동작합니다.
"""

import logging
from typing import Generic, List, Optional, Type, TypeVar, Any, Dict
from datetime import date, datetime, time, timedelta, UTC

from sqlalchemy import func
from sqlmodel import SQLModel, select
from sqlmodel.ext.asyncio.session import AsyncSession
from pydantic import BaseModel

ModelType = TypeVar("ModelType", bound=SQLModel)
CreateSchemaType = TypeVar("CreateSchemaType", bound=BaseModel)
UpdateSchemaType = TypeVar("UpdateSchemaType", bound=BaseModel)

logger = logging.getLogger(__name__)


def day_start(value: date) -> datetime:
    """날짜의 00:00(UTC) 시각을 반환합니다."""
    return datetime.combine(value, time.min, tzinfo=UTC)


def day_end_exclusive(value: date) -> datetime:
    """종료일 당일까지 포함하기 위한 다음 날 00:00(UTC) 시각을 반환합니다."""
    return day_start(value + timedelta(days=1))


class CRUDBase(Generic[ModelType, CreateSchemaType, UpdateSchemaType]):
    """
    모든 CRUD 작업에 대한 기본 클래스를 정의합니다.
    """
    def __init__(self, model: Type[ModelType]):
        self.model = model

    async def get(self, db: AsyncSession, id: Any) -> Optional[ModelType]:
        """
        ID를 기준으로 단일 레코드를 조회합니다.
        """
        return await db.get(self.model, id)

    async def get_multi(
        self, db: AsyncSession, *, skip: int = 0, limit: int = 100, **kwargs: Any
    ) -> List[ModelType]:
        """
        여러 레코드를 조회합니다. 필터링을 위한 키워드 인자를 지원합니다.
        """
        query = select(self.model).offset(skip).limit(limit)

        for field, value in kwargs.items():
            if hasattr(self.model, field):
                query = query.where(getattr(self.model, field) == value)

        if hasattr(self.model, 'id'):
            query = query.order_by(self.model.id)

        result = await db.execute(query)
        return result.scalars().all()

    async def get_by_attribute(
        self, db: AsyncSession, *, attribute: str, value: Any
    ) -> Optional[ModelType]:
        statement = select(self.model).where(getattr(self.model, attribute) == value)
        response = await db.execute(statement)
        return response.scalars().first()

    def _filter_conditions(
        self,
        filters: Optional[Dict[str, Any]],
        date_range_field: Optional[str],
        start_date: Optional[date],
        end_date: Optional[date],
    ) -> List[Any]:
        conditions = []

        # 1. 다중 속성 필터링 (값이 None 인 항목은 무시)
        if filters:
            for attribute, value in filters.items():
                if value is None:
                    continue
                if hasattr(self.model, attribute):
                    conditions.append(getattr(self.model, attribute) == value)
                else:
                    logger.warning("Model %s has no attribute '%s'", self.model.__name__, attribute)

        # 2. 기간 검색 필터링 (종료일 당일 포함)
        if date_range_field and hasattr(self.model, date_range_field):
            date_field = getattr(self.model, date_range_field)
            if start_date is not None:
                conditions.append(date_field >= day_start(start_date))
            if end_date is not None:
                conditions.append(date_field < day_end_exclusive(end_date))
        elif date_range_field:
            logger.warning(
                "Model %s has no attribute '%s' for date range filtering.", self.model.__name__, date_range_field
            )
        return conditions

    async def get_filtered(
        self,
        db: AsyncSession,
        *,
        filters: Optional[Dict[str, Any]] = None,  # 다중 속성 필터: {"attribute_name": "value"}
        date_range_field: Optional[str] = None,    # 기간 검색을 적용할 날짜 필드 이름 (예: "created_at")
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        order_by_field: Optional[str] = None,
        order_desc: bool = True,
        skip: int = 0,
        limit: int = 100
    ) -> List[ModelType]:
        """
        다중 속성 및 기간 검색 기능을 포함한 다중 조회.
        """
        query = select(self.model)
        conditions = self._filter_conditions(filters, date_range_field, start_date, end_date)
        if conditions:
            query = query.where(*conditions)

        if order_by_field and hasattr(self.model, order_by_field):
            column = getattr(self.model, order_by_field)
            query = query.order_by(column.desc() if order_desc else column)
        elif hasattr(self.model, 'id'):
            query = query.order_by(self.model.id.desc())

        query = query.offset(skip).limit(limit)

        result = await db.execute(query)
        return result.scalars().all()

    async def count_filtered(
        self,
        db: AsyncSession,
        *,
        filters: Optional[Dict[str, Any]] = None,
        date_range_field: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> int:
        """get_filtered 와 같은 조건의 전체 레코드 수를 반환합니다 (페이지네이션용)."""
        query = select(func.count()).select_from(self.model)
        conditions = self._filter_conditions(filters, date_range_field, start_date, end_date)
        if conditions:
            query = query.where(*conditions)
        result = await db.execute(query)
        return result.scalar_one()

    async def create(self, db: AsyncSession, *, obj_in: CreateSchemaType, **extra: Any) -> ModelType:
        """
        새로운 레코드를 생성합니다. extra 로 스키마에 없는 서버 측 값(작성자 등)을 덧붙일 수 있습니다.
        """
        data = obj_in.model_dump() if isinstance(obj_in, BaseModel) else dict(obj_in)
        data.update(extra)
        db_obj = self.model.model_validate(data)
        db.add(db_obj)
        await db.commit()
        await db.refresh(db_obj)
        return db_obj

    async def update(
        self, db: AsyncSession, *, db_obj: ModelType, obj_in: UpdateSchemaType
    ) -> ModelType:
        """
        기존 레코드를 업데이트합니다. 요청에 포함된 필드만 반영합니다.
        """
        update_data = obj_in.model_dump(exclude_unset=True)
        for key, value in update_data.items():
            setattr(db_obj, key, value)

        db.add(db_obj)
        await db.commit()
        await db.refresh(db_obj)
        return db_obj

    async def delete(self, db: AsyncSession, *, id: Any) -> Optional[ModelType]:
        """
        ID를 기준으로 레코드를 삭제합니다.
        """
        db_obj = await db.get(self.model, id)
        if db_obj:
            await db.delete(db_obj)
            await db.commit()
        return db_obj
