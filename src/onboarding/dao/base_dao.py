from typing import Type, TypeVar, Generic, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from sqlalchemy.sql.selectable import Select
from onboarding.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)

class BaseDao(Generic[ModelType]):
    def __init__(self, model_class: Type[ModelType], db_session: AsyncSession):
        self.model: Type[ModelType] = model_class
        self.db_session: AsyncSession = db_session

    # ==============================================================================
    # 1. Object methods
    #    - inputs and outputs are ORM instances
    # ==============================================================================

    async def get_one(self, where: dict | list) -> Optional[ModelType]:
        stmt = self._where(select(self.model), where)
        executed = await self.db_session.execute(stmt)
        return executed.scalars().first()

    # ==============================================================================
    # 2. Data / bulk methods
    # ==============================================================================

    async def update_where(self, where: dict | list, values: dict) -> int:
        if not where or not values:
            return 0
        stmt = update(self.model).where(*self._where_format(where)).values(values)
        executed = await self.db_session.execute(stmt)
        return executed.rowcount

    # ==============================================================================
    # 3. Query building helpers
    # ==============================================================================

    def _where(self, stmt: Select, where: dict | list) -> Select:
        if isinstance(where, dict):
            stmt = stmt.filter_by(**where)
        elif isinstance(where, (list, tuple)):
            stmt = stmt.filter(*where)
        return stmt

    def _where_format(self, conditions: dict | list) -> list:
        if isinstance(conditions, dict):
            return [getattr(self.model, field) == value for field, value in conditions.items()]
        return list(conditions)
