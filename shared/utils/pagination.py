"""
shared/utils/pagination.py
Offset pagination for list endpoints.
"""

from typing import Type

from pydantic import BaseModel
from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.schemas.schemas import PaginatedResponse


async def paginate(
    db: AsyncSession,
    query: Select,
    page: int,
    page_size: int,
    schema: Type[BaseModel],
) -> PaginatedResponse:
    total = await db.scalar(select(func.count()).select_from(query.order_by(None).subquery())) or 0
    result = await db.execute(query.offset((page - 1) * page_size).limit(page_size))
    return PaginatedResponse(
        items=[schema.model_validate(row) for row in result.scalars()],
        total=total,
        page=page,
        page_size=page_size,
        pages=-(-total // page_size),  # ceiling division
    )
