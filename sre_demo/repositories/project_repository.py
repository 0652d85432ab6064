from sqlalchemy import func, or_
from sqlalchemy.orm import selectinload
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from sre_demo.models import Priority, Project, ProjectMember, ProjectStatus, Todo


class ProjectRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    def _todo_count(self):
        return (
            select(func.count(Todo.id))
            .where(Todo.project_id == Project.id)
            .scalar_subquery()
        )

    def _member_count(self):
        return (
            select(func.count(ProjectMember.id))
            .where(ProjectMember.project_id == Project.id)
            .scalar_subquery()
        )

    def _with_members(self, query):
        return query.options(selectinload(Project.members).selectinload(ProjectMember.user))

    async def list_with_counts(
        self, status: ProjectStatus | None = None, search: str | None = None
    ) -> list[tuple[Project, int, int]]:
        query = self._with_members(
            select(Project, self._todo_count(), self._member_count())
        )
        if status is not None:
            query = query.where(Project.status == status)
        if search:
            query = query.where(
                or_(
                    Project.name.icontains(search, autoescape=True),
                    Project.description.icontains(search, autoescape=True),
                )
            )
        result = await self.db.exec(query.order_by(Project.created_at.desc(), Project.id.desc()))
        return list(result.all())

    async def get(self, project_id: int) -> Project | None:
        return await self.db.get(Project, project_id)

    async def get_with_counts(self, project_id: int) -> tuple[Project, int, int] | None:
        query = self._with_members(
            select(Project, self._todo_count(), self._member_count())
            .where(Project.id == project_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.exec(query)
        return result.first()

    async def todos(self, project_id: int) -> list[Todo]:
        query = (
            select(Todo)
            .where(Todo.project_id == project_id)
            .options(
                selectinload(Todo.tags),
                selectinload(Todo.meta),
                selectinload(Todo.assignee),
                selectinload(Todo.comments),
            )
            .order_by(Todo.created_at.desc(), Todo.id.desc())
        )
        result = await self.db.exec(query)
        return list(result.all())

    async def save(self, project: Project) -> Project:
        self.db.add(project)
        await self.db.commit()
        return project

    async def todo_stats(self, project_id: int) -> dict:
        total = (
            await self.db.exec(
                select(func.count(Todo.id)).where(Todo.project_id == project_id)
            )
        ).one()
        completed = (
            await self.db.exec(
                select(func.count(Todo.id)).where(
                    Todo.project_id == project_id, Todo.completed == True  # noqa: E712
                )
            )
        ).one()
        by_priority = await self.db.exec(
            select(Todo.priority, func.count(Todo.id))
            .where(Todo.project_id == project_id, Todo.completed == False)  # noqa: E712
            .group_by(Todo.priority)
        )

        breakdown = {priority.value: 0 for priority in Priority}
        for priority, count in by_priority.all():
            breakdown[Priority(priority).value] = count

        return {"total": total, "completed": completed, "by_priority": breakdown}
