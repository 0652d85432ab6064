from fastapi import APIRouter, Depends
from sqlmodel.ext.asyncio.session import AsyncSession

from sre_demo.database import get_db
from sre_demo.models import UserRole
from sre_demo.services.user_service import UserService

router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("")
async def get_users(
    role: UserRole | None = None,
    search: str | None = None,
    db: AsyncSession = Depends(get_db),
):
    return await UserService.list_users(db, role, search)


@router.get("/{user_id}")
async def get_user(user_id: int, db: AsyncSession = Depends(get_db)):
    """User with recent todos and project memberships"""
    return await UserService.get_user(user_id, db)


@router.get("/{user_id}/stats")
async def get_user_stats(user_id: int, db: AsyncSession = Depends(get_db)):
    return await UserService.get_stats(user_id, db)
