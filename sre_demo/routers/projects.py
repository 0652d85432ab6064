from fastapi import APIRouter, Depends, status
from sqlmodel.ext.asyncio.session import AsyncSession

from sre_demo.database import get_db
from sre_demo.models import ProjectStatus
from sre_demo.schemas import ProjectCreate, ProjectUpdate
from sre_demo.services.project_service import ProjectService

router = APIRouter(prefix="/api/projects", tags=["projects"])


@router.get("")
async def get_projects(
    status: ProjectStatus | None = None,
    search: str | None = None,
    db: AsyncSession = Depends(get_db),
):
    return await ProjectService.list_projects(db, status, search)


@router.get("/{project_id}")
async def get_project(project_id: int, db: AsyncSession = Depends(get_db)):
    """Project with its todos and members"""
    return await ProjectService.get_project(project_id, db)


@router.get("/{project_id}/stats")
async def get_project_stats(project_id: int, db: AsyncSession = Depends(get_db)):
    return await ProjectService.get_stats(project_id, db)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_project(project_data: ProjectCreate, db: AsyncSession = Depends(get_db)):
    return await ProjectService.create_project(project_data, db)


@router.put("/{project_id}")
async def update_project(
    project_id: int, project_data: ProjectUpdate, db: AsyncSession = Depends(get_db)
):
    return await ProjectService.update_project(project_id, project_data, db)
