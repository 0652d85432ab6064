from sqlmodel.ext.asyncio.session import AsyncSession

from sre_demo.core.errors import NotFoundError
from sre_demo.models import UserRole
from sre_demo.repositories.user_repository import UserRepository
from sre_demo.schemas import ProjectRead, ProjectSummary, TagRead, TodoRead, UserRead


def completion_rate(completed: int, total: int) -> float:
    """Percentage rounded to one decimal; 0 for an empty set"""
    return round(completed / total * 100, 1) if total else 0.0


class UserService:
    @staticmethod
    async def list_users(
        db: AsyncSession, role: UserRole | None = None, search: str | None = None
    ) -> dict:
        rows = await UserRepository(db).list_with_counts(role, search)
        users = [
            {
                **UserRead.model_validate(user).model_dump(mode="json"),
                "todo_count": todo_count,
                "comment_count": comment_count,
            }
            for user, todo_count, comment_count in rows
        ]
        return {"users": users, "count": len(users), "page": 1, "page_size": len(users)}

    @staticmethod
    async def get_user(user_id: int, db: AsyncSession) -> dict:
        repo = UserRepository(db)
        row = await repo.get_with_counts(user_id)
        if row is None:
            raise NotFoundError("User not found")
        user, todo_count, comment_count = row

        recent = [
            {
                **TodoRead.model_validate(todo).model_dump(mode="json", exclude={"meta"}),
                "tags": [TagRead.model_validate(tag).model_dump(mode="json") for tag in todo.tags],
                "project": (
                    ProjectSummary.model_validate(todo.project).model_dump(mode="json")
                    if todo.project
                    else None
                ),
            }
            for todo in await repo.recent_todos(user_id)
        ]
        projects = [
            {
                "role": membership.role.value,
                "project": ProjectRead.model_validate(membership.project).model_dump(mode="json"),
            }
            for membership in user.memberships
        ]

        return {
            **UserRead.model_validate(user).model_dump(mode="json"),
            "todos": recent,
            "projects": projects,
            "todo_count": todo_count,
            "comment_count": comment_count,
        }

    @staticmethod
    async def get_stats(user_id: int, db: AsyncSession) -> dict:
        stats = await UserRepository(db).todo_stats(user_id)
        return {
            "total_todos": stats["total"],
            "completed_todos": stats["completed"],
            "active_todos": stats["total"] - stats["completed"],
            "urgent_todos": stats["urgent"],
            "todos_this_week": stats["this_week"],
            "completion_rate": completion_rate(stats["completed"], stats["total"]),
        }
