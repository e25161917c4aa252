"""
Organization-related dependency injection functions.
"""
from typing import Annotated
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.organizations.service import MemberService


async def get_member_service(db: Annotated[AsyncSession, Depends(get_db)]) -> MemberService:
    return MemberService(db)
