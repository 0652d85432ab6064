from fastapi import APIRouter, Depends, Query, Response, status
from sqlmodel.ext.asyncio.session import AsyncSession

from sre_demo.cache.layer import CacheLayer, get_cache
from sre_demo.core.errors import BadRequestError
from sre_demo.database import get_db
from sre_demo.models import Priority
from sre_demo.schemas import TodoCreate, TodoFilter, TodoRead, TodoUpdate
from sre_demo.services.todo_service import TodoService

router = APIRouter(prefix="/api/todos", tags=["todos"])


def _mark_cache(response: Response, hit: bool):
    response.headers["X-Cache"] = "HIT" if hit else "MISS"


@router.get("")
async def get_todos(
    response: Response,
    completed: bool | None = None,
    priority: Priority | None = None,
    inefficient: bool = Query(default=False, description="Use the N+1 query path"),
    db: AsyncSession = Depends(get_db),
    cache: CacheLayer = Depends(get_cache),
):
    """List todos, served from cache when possible"""
    payload, hit = await TodoService.list_todos(
        TodoFilter(completed=completed, priority=priority), db, cache, inefficient
    )
    _mark_cache(response, hit)
    return payload


@router.get("/search")
async def search_todos(
    q: str | None = Query(default=None, description="Substring of title or description"),
    db: AsyncSession = Depends(get_db),
):
    """Unindexed substring search"""
    if not q:
        raise BadRequestError("Search query is required")
    return await TodoService.search_todos(q, db)


@router.get("/{todo_id}", response_model=TodoRead)
async def get_todo(
    todo_id: int,
    response: Response,
    nocache: bool = False,
    db: AsyncSession = Depends(get_db),
    cache: CacheLayer = Depends(get_cache),
):
    """Get a specific todo by ID; a store read counts as a view"""
    todo, hit = await TodoService.get_todo(todo_id, db, cache, skip_cache=nocache)
    _mark_cache(response, hit)
    return todo


@router.post("", response_model=TodoRead, status_code=status.HTTP_201_CREATED)
async def create_todo(
    todo_data: TodoCreate,
    db: AsyncSession = Depends(get_db),
    cache: CacheLayer = Depends(get_cache),
):
    """Create a new todo"""
    return await TodoService.create_todo(todo_data, db, cache)


@router.put("/{todo_id}", response_model=TodoRead)
async def update_todo(
    todo_id: int,
    todo_data: TodoUpdate,
    skip_cache: bool = Query(
        default=False,
        alias="skipCache",
        description="Leave cached copies stale (cache invalidation bug)",
    ),
    db: AsyncSession = Depends(get_db),
    cache: CacheLayer = Depends(get_cache),
):
    return await TodoService.update_todo(
        todo_id, todo_data, db, cache, skip_invalidate=skip_cache
    )


@router.delete("/{todo_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_todo(
    todo_id: int,
    db: AsyncSession = Depends(get_db),
    cache: CacheLayer = Depends(get_cache),
):
    """Delete a todo"""
    await TodoService.delete_todo(todo_id, db, cache)


@router.post("/{todo_id}/toggle", response_model=TodoRead)
async def toggle_todo(
    todo_id: int,
    db: AsyncSession = Depends(get_db),
    cache: CacheLayer = Depends(get_cache),
):
    """Flip a todo's completion state"""
    return await TodoService.toggle_todo(todo_id, db, cache)
