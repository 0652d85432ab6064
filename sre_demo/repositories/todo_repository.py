from datetime import datetime, timezone

from sqlalchemy import delete, or_, update
from sqlalchemy.orm import selectinload
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from sre_demo.models import Attachment, Comment, Tag, Todo, TodoMetadata, TodoTagLink
from sre_demo.schemas import TodoFilter


class TodoRepository:
    """Store access for todos; every "with relations" read loads tags and metadata."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def _with_relations(self, query):
        return query.options(selectinload(Todo.tags), selectinload(Todo.meta))

    def _filtered(self, query, todo_filter: TodoFilter):
        if todo_filter.completed is not None:
            query = query.where(Todo.completed == todo_filter.completed)
        if todo_filter.priority is not None:
            query = query.where(Todo.priority == todo_filter.priority)
        return query.order_by(Todo.created_at.desc(), Todo.id.desc())

    async def find_all(self, todo_filter: TodoFilter) -> list[Todo]:
        query = self._with_relations(self._filtered(select(Todo), todo_filter))
        result = await self.db.exec(query)
        return list(result.all())

    async def list_bare(self, todo_filter: TodoFilter) -> list[Todo]:
        result = await self.db.exec(self._filtered(select(Todo), todo_filter))
        return list(result.all())

    async def get_metadata(self, todo_id: int) -> TodoMetadata | None:
        result = await self.db.exec(
            select(TodoMetadata).where(TodoMetadata.todo_id == todo_id)
        )
        return result.first()

    async def get_tags(self, todo_id: int) -> list[Tag]:
        result = await self.db.exec(
            select(Tag).join(TodoTagLink).where(TodoTagLink.todo_id == todo_id)
        )
        return list(result.all())

    async def search(self, q: str) -> list[Todo]:
        query = self._with_relations(
            select(Todo).where(
                or_(
                    Todo.title.icontains(q, autoescape=True),
                    Todo.description.icontains(q, autoescape=True),
                )
            )
        )
        result = await self.db.exec(query)
        return list(result.all())

    async def get(self, todo_id: int) -> Todo | None:
        return await self.db.get(Todo, todo_id)

    async def get_with_relations(self, todo_id: int) -> Todo | None:
        query = self._with_relations(select(Todo).where(Todo.id == todo_id))
        result = await self.db.exec(query.execution_options(populate_existing=True))
        return result.first()

    async def resolve_tags(self, names: list[str]) -> list[Tag]:
        """Fetch tags by name, creating the missing ones."""
        names = list(dict.fromkeys(n.strip() for n in names if n.strip()))
        if not names:
            return []
        result = await self.db.exec(select(Tag).where(Tag.name.in_(names)))
        existing = {tag.name: tag for tag in result.all()}
        for name in names:
            if name not in existing:
                existing[name] = Tag(name=name)
                self.db.add(existing[name])
        return [existing[name] for name in names]

    async def create(self, data: dict, tags: list[Tag]) -> Todo:
        todo = Todo(**data)
        todo.tags = tags
        todo.meta = TodoMetadata(view_count=0)
        self.db.add(todo)
        await self.db.commit()
        return await self.get_with_relations(todo.id)

    async def bulk_create(self, rows: list[dict]) -> int:
        todos = []
        for row in rows:
            todo = Todo(**row)
            todo.meta = TodoMetadata(view_count=0)
            todos.append(todo)
        self.db.add_all(todos)
        await self.db.commit()
        return len(todos)

    async def save(self, todo: Todo) -> Todo:
        todo.updated_at = datetime.now(timezone.utc)
        self.db.add(todo)
        await self.db.commit()
        return await self.get_with_relations(todo.id)

    async def increment_view_count(self, meta: TodoMetadata):
        # SQL-side increment; callers re-read with get_with_relations
        await self.db.exec(
            update(TodoMetadata)
            .where(TodoMetadata.id == meta.id)
            .values(
                view_count=TodoMetadata.view_count + 1,
                last_viewed_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

    async def _delete_children(self, todo_ids):
        for model in (TodoTagLink, TodoMetadata, Comment, Attachment):
            await self.db.exec(
                delete(model)
                .where(model.todo_id.in_(todo_ids))
                .execution_options(synchronize_session=False)
            )

    async def delete(self, todo_id: int) -> bool:
        """Delete a todo and everything it owns; False when it did not exist."""
        await self._delete_children([todo_id])
        result = await self.db.exec(
            delete(Todo)
            .where(Todo.id == todo_id)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount > 0

    async def delete_by_title_prefix(self, prefix: str) -> int:
        ids = select(Todo.id).where(Todo.title.startswith(prefix, autoescape=True))
        await self._delete_children(ids)
        result = await self.db.exec(
            delete(Todo)
            .where(Todo.title.startswith(prefix, autoescape=True))
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount
