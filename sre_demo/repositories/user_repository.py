from datetime import datetime, timedelta, timezone

from sqlalchemy import func, or_
from sqlalchemy.orm import selectinload
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from sre_demo.models import Comment, Priority, ProjectMember, Todo, User, UserRole


class UserRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    def _todo_count(self):
        return (
            select(func.count(Todo.id))
            .where(Todo.assignee_id == User.id)
            .scalar_subquery()
        )

    def _comment_count(self):
        return (
            select(func.count(Comment.id))
            .where(Comment.author_id == User.id)
            .scalar_subquery()
        )

    async def list_with_counts(
        self, role: UserRole | None = None, search: str | None = None
    ) -> list[tuple[User, int, int]]:
        query = select(User, self._todo_count(), self._comment_count())
        if role is not None:
            query = query.where(User.role == role)
        if search:
            query = query.where(
                or_(
                    User.name.icontains(search, autoescape=True),
                    User.email.icontains(search, autoescape=True),
                )
            )
        result = await self.db.exec(query.order_by(User.name.asc()))
        return list(result.all())

    async def get_with_counts(self, user_id: int) -> tuple[User, int, int] | None:
        query = (
            select(User, self._todo_count(), self._comment_count())
            .where(User.id == user_id)
            .options(selectinload(User.memberships).selectinload(ProjectMember.project))
        )
        result = await self.db.exec(query)
        return result.first()

    async def recent_todos(self, user_id: int, limit: int = 10) -> list[Todo]:
        query = (
            select(Todo)
            .where(Todo.assignee_id == user_id)
            .options(
                selectinload(Todo.tags),
                selectinload(Todo.meta),
                selectinload(Todo.project),
            )
            .order_by(Todo.created_at.desc(), Todo.id.desc())
            .limit(limit)
        )
        result = await self.db.exec(query)
        return list(result.all())

    async def count_todos(self, user_id: int, *conditions) -> int:
        query = select(func.count(Todo.id)).where(Todo.assignee_id == user_id, *conditions)
        result = await self.db.exec(query)
        return result.one()

    async def todo_stats(self, user_id: int) -> dict:
        week_ago = datetime.now(timezone.utc) - timedelta(days=7)
        total = await self.count_todos(user_id)
        completed = await self.count_todos(user_id, Todo.completed == True)  # noqa: E712
        urgent = await self.count_todos(
            user_id, Todo.priority == Priority.URGENT, Todo.completed == False  # noqa: E712
        )
        this_week = await self.count_todos(user_id, Todo.created_at >= week_ago)
        return {
            "total": total,
            "completed": completed,
            "urgent": urgent,
            "this_week": this_week,
        }
