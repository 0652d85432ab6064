import logging
import time

from sqlmodel.ext.asyncio.session import AsyncSession

from sre_demo.cache.layer import CacheLayer
from sre_demo.core.errors import BadRequestError, NotFoundError
from sre_demo.models import Project, Todo, User
from sre_demo.repositories.todo_repository import TodoRepository
from sre_demo.schemas import TagRead, TodoCreate, TodoFilter, TodoMetadataRead, TodoRead, TodoUpdate

logger = logging.getLogger(__name__)

LIST_TTL_SECONDS = 300
ITEM_TTL_SECONDS = 3600
LIST_KEY_PATTERN = "todos:list:*"
ITEM_KEY_PATTERN = "todo:*"
SLOW_QUERY_MS = 1000


def todo_key(todo_id: int) -> str:
    return f"todo:{todo_id}"


def serialize_todo(todo: Todo) -> dict:
    return TodoRead.model_validate(todo).model_dump(mode="json")


def _elapsed_ms(started: float) -> int:
    return round((time.perf_counter() - started) * 1000)


class TodoService:
    @staticmethod
    async def list_todos(
        todo_filter: TodoFilter,
        db: AsyncSession,
        cache: CacheLayer,
        inefficient: bool = False,
    ) -> tuple[dict, bool]:
        """Returns (payload, served_from_cache)."""
        started = time.perf_counter()
        key = todo_filter.cache_key()

        cached = await cache.get(key)
        if cached.hit:
            logger.debug("Returning cached todos")
            return cached.value, True

        repo = TodoRepository(db)

        if inefficient:
            return await TodoService._list_n_plus_one(todo_filter, repo, started), False

        todos = [serialize_todo(todo) for todo in await repo.find_all(todo_filter)]
        page = {"todos": todos, "count": len(todos)}
        await cache.set(key, page, LIST_TTL_SECONDS)

        return {
            **page,
            "performance": {"duration": f"{_elapsed_ms(started)}ms", "cached": False},
        }, False

    @staticmethod
    async def _list_n_plus_one(
        todo_filter: TodoFilter, repo: TodoRepository, started: float
    ) -> dict:
        logger.warning("🔥 CHAOS: Using inefficient N+1 query pattern")

        todos = await repo.list_bare(todo_filter)
        results = []
        # One metadata query and one tag query per row
        for todo in todos:
            meta = await repo.get_metadata(todo.id)
            tags = await repo.get_tags(todo.id)
            results.append(
                TodoRead.model_validate(
                    {
                        **todo.model_dump(),
                        "tags": [TagRead.model_validate(tag) for tag in tags],
                        "meta": TodoMetadataRead.model_validate(meta) if meta else None,
                    }
                ).model_dump(mode="json")
            )

        duration = _elapsed_ms(started)
        logger.warning(f"N+1 query took {duration}ms for {len(todos)} todos")
        return {
            "todos": results,
            "count": len(results),
            "performance": {
                "duration": f"{duration}ms",
                "queries_executed": len(todos) + 1 + len(todos) * 2,
                "warning": "N+1 query pattern detected",
            },
        }

    @staticmethod
    async def search_todos(q: str, db: AsyncSession) -> dict:
        started = time.perf_counter()
        logger.info(f"Searching todos with query: {q}")

        todos = await TodoRepository(db).search(q)

        duration = _elapsed_ms(started)
        slow = duration > SLOW_QUERY_MS
        if slow:
            logger.warning(
                f"🔥 Slow search query: {duration}ms for {q!r} "
                f"({len(todos)} results), consider adding database indexes"
            )

        performance = {"duration": f"{duration}ms", "slow": slow}
        if slow:
            performance["warning"] = "Slow query detected - missing index?"
        return {
            "todos": [serialize_todo(todo) for todo in todos],
            "count": len(todos),
            "query": q,
            "performance": performance,
        }

    @staticmethod
    async def get_todo(
        todo_id: int, db: AsyncSession, cache: CacheLayer, skip_cache: bool = False
    ) -> tuple[dict, bool]:
        """Returns (todo, served_from_cache); a store read counts as a view."""
        key = todo_key(todo_id)

        if not skip_cache:
            cached = await cache.get(key)
            if cached.hit:
                logger.debug(f"Cache hit for todo {todo_id}")
                return cached.value, True

        repo = TodoRepository(db)
        todo = await repo.get_with_relations(todo_id)
        if todo is None:
            raise NotFoundError("Todo not found")

        if todo.meta is not None:
            await repo.increment_view_count(todo.meta)
            todo = await repo.get_with_relations(todo_id)

        data = serialize_todo(todo)
        await cache.set(key, data, ITEM_TTL_SECONDS)
        return data, False

    @staticmethod
    async def _check_references(db: AsyncSession, data: dict):
        if data.get("project_id") is not None and not await db.get(Project, data["project_id"]):
            raise BadRequestError(f"project_id: project {data['project_id']} does not exist")
        if data.get("assignee_id") is not None and not await db.get(User, data["assignee_id"]):
            raise BadRequestError(f"assignee_id: user {data['assignee_id']} does not exist")

    @staticmethod
    async def create_todo(todo_data: TodoCreate, db: AsyncSession, cache: CacheLayer) -> dict:
        data = todo_data.model_dump(exclude={"tags"})
        await TodoService._check_references(db, data)

        repo = TodoRepository(db)
        tags = await repo.resolve_tags(todo_data.tags)
        todo = await repo.create(data, tags)

        # A new todo can appear on any list page; it has no item entry yet.
        await cache.delete_pattern(LIST_KEY_PATTERN)

        logger.info(f"Todo created: {todo.id}")
        return serialize_todo(todo)

    @staticmethod
    async def _invalidate(todo_id: int, cache: CacheLayer):
        await cache.delete(todo_key(todo_id))
        await cache.delete_pattern(LIST_KEY_PATTERN)
        logger.debug(f"Cache invalidated for todo {todo_id}")

    @staticmethod
    async def update_todo(
        todo_id: int,
        todo_data: TodoUpdate,
        db: AsyncSession,
        cache: CacheLayer,
        skip_invalidate: bool = False,
    ) -> dict:
        repo = TodoRepository(db)
        todo = await repo.get(todo_id)
        if todo is None:
            raise NotFoundError("Todo not found")

        update_data = todo_data.model_dump(exclude_unset=True)
        await TodoService._check_references(db, update_data)
        todo.sqlmodel_update(update_data)
        todo = await repo.save(todo)

        if skip_invalidate:
            # Cached copies keep serving the old values until they expire.
            logger.warning(
                f"🔥 CHAOS: Cache not invalidated for todo {todo_id} - stale data will be served"
            )
        else:
            await TodoService._invalidate(todo_id, cache)

        logger.info(f"Todo updated: {todo_id}")
        return serialize_todo(todo)

    @staticmethod
    async def delete_todo(todo_id: int, db: AsyncSession, cache: CacheLayer):
        if not await TodoRepository(db).delete(todo_id):
            raise NotFoundError("Todo not found")

        await TodoService._invalidate(todo_id, cache)
        logger.info(f"Todo deleted: {todo_id}")

    @staticmethod
    async def toggle_todo(todo_id: int, db: AsyncSession, cache: CacheLayer) -> dict:
        repo = TodoRepository(db)
        todo = await repo.get(todo_id)
        if todo is None:
            raise NotFoundError("Todo not found")

        todo.completed = not todo.completed
        todo = await repo.save(todo)

        await TodoService._invalidate(todo_id, cache)
        return serialize_todo(todo)
