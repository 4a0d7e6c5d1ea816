"""
services/assistant/router.py
Natural-language commands for the in-app assistant. Works for guests too.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.assistant.service import AssistantService, get_assistant
from shared.middleware.auth import get_optional_user
from shared.models.models import User
from shared.schemas.schemas import AssistantAction, AssistantCommandRequest

router = APIRouter(prefix="/assistant", tags=["Assistant"])


@router.post("/command", response_model=AssistantAction)
async def assistant_command(
    data: AssistantCommandRequest,
    current_user: Optional[User] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
    assistant: AssistantService = Depends(get_assistant),
):
    """Always 200: failures come back as a neutral "speak" action."""
    return await assistant.command(db, data.message, data.history, current_user)
