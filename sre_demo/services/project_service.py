import logging

from sqlmodel.ext.asyncio.session import AsyncSession

from sre_demo.core.errors import NotFoundError
from sre_demo.models import Project, ProjectStatus
from sre_demo.repositories.project_repository import ProjectRepository
from sre_demo.schemas import (
    ProjectCreate,
    ProjectMemberRead,
    ProjectRead,
    ProjectUpdate,
    TodoRead,
    UserSummary,
)
from sre_demo.services.user_service import completion_rate

logger = logging.getLogger(__name__)

LIST_MEMBER_PREVIEW = 5


def _serialize_project(project: Project, todo_count: int, member_count: int, members=None) -> dict:
    members = project.members if members is None else members
    return {
        **ProjectRead.model_validate(project).model_dump(mode="json"),
        "todo_count": todo_count,
        "member_count": member_count,
        "members": [
            ProjectMemberRead.model_validate(member).model_dump(mode="json")
            for member in members
        ],
    }


class ProjectService:
    @staticmethod
    async def list_projects(
        db: AsyncSession, status: ProjectStatus | None = None, search: str | None = None
    ) -> dict:
        rows = await ProjectRepository(db).list_with_counts(status, search)
        projects = [
            _serialize_project(
                project, todo_count, member_count, project.members[:LIST_MEMBER_PREVIEW]
            )
            for project, todo_count, member_count in rows
        ]
        return {"projects": projects, "count": len(projects)}

    @staticmethod
    async def get_project(project_id: int, db: AsyncSession) -> dict:
        repo = ProjectRepository(db)
        row = await repo.get_with_counts(project_id)
        if row is None:
            raise NotFoundError("Project not found")

        todos = [
            {
                **TodoRead.model_validate(todo).model_dump(mode="json"),
                "assignee": (
                    UserSummary.model_validate(todo.assignee).model_dump(mode="json")
                    if todo.assignee
                    else None
                ),
                "comment_count": len(todo.comments),
            }
            for todo in await repo.todos(project_id)
        ]
        return {**_serialize_project(*row), "todos": todos}

    @staticmethod
    async def get_stats(project_id: int, db: AsyncSession) -> dict:
        stats = await ProjectRepository(db).todo_stats(project_id)
        return {
            "total_todos": stats["total"],
            "completed_todos": stats["completed"],
            "active_todos": stats["total"] - stats["completed"],
            "completion_rate": completion_rate(stats["completed"], stats["total"]),
            "priority_breakdown": stats["by_priority"],
        }

    @staticmethod
    async def create_project(project_data: ProjectCreate, db: AsyncSession) -> dict:
        repo = ProjectRepository(db)
        project = await repo.save(Project.model_validate(project_data))
        logger.info(f"Created project: {project.id} - {project.name}")
        return _serialize_project(*await repo.get_with_counts(project.id))

    @staticmethod
    async def update_project(
        project_id: int, project_data: ProjectUpdate, db: AsyncSession
    ) -> dict:
        repo = ProjectRepository(db)
        project = await repo.get(project_id)
        if project is None:
            raise NotFoundError("Project not found")

        project.sqlmodel_update(project_data.model_dump(exclude_unset=True))
        await repo.save(project)
        logger.info(f"Updated project: {project.id} - {project.name}")
        return _serialize_project(*await repo.get_with_counts(project_id))
