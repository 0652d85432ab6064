"""
Demo data for the SRE Demo API.

Wipes every table and loads a small, realistic data set: users, projects
with memberships, tags, todos with metadata, comments and attachments.

    python -m sre_demo.seed
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete
from sqlmodel.ext.asyncio.session import AsyncSession

from sre_demo.database import async_session, close_db, create_db_and_tables
from sre_demo.models import (
    Attachment,
    Comment,
    MemberRole,
    Priority,
    Project,
    ProjectMember,
    ProjectStatus,
    Tag,
    Todo,
    TodoMetadata,
    TodoTagLink,
    User,
    UserRole,
)

logger = logging.getLogger(__name__)

UTC = timezone.utc
AVATAR_URL = "https://api.dicebear.com/7.x/avataaars/svg?seed={}"

USERS = [
    ("alice.johnson@company.com", "Alice Johnson", UserRole.ADMIN),
    ("bob.smith@company.com", "Bob Smith", UserRole.MANAGER),
    ("carol.white@company.com", "Carol White", UserRole.MEMBER),
    ("david.brown@company.com", "David Brown", UserRole.MEMBER),
    ("emma.davis@company.com", "Emma Davis", UserRole.MEMBER),
]

PROJECTS = [
    ("SRE Platform Migration", "Migrate legacy monitoring to cloud native solutions",
     "#3b82f6", "🚀", ProjectStatus.ACTIVE,
     datetime(2025, 1, 1, tzinfo=UTC), datetime(2025, 6, 30, tzinfo=UTC)),
    ("API Gateway Improvement", "Enhance API Gateway performance and security",
     "#10b981", "🔐", ProjectStatus.ACTIVE, datetime(2025, 2, 1, tzinfo=UTC), None),
    ("Infrastructure Automation", "Automate infrastructure provisioning with Terraform",
     "#f59e0b", "⚙️", ProjectStatus.PLANNING, None, None),
    ("Q4 2024 Platform Updates", "Quarterly platform improvements and bug fixes",
     "#8b5cf6", "📊", ProjectStatus.COMPLETED,
     datetime(2024, 10, 1, tzinfo=UTC), datetime(2024, 12, 31, tzinfo=UTC)),
]

# (project index, user index, role)
MEMBERSHIPS = [
    (0, 0, MemberRole.OWNER),
    (0, 1, MemberRole.ADMIN),
    (0, 2, MemberRole.MEMBER),
    (1, 1, MemberRole.OWNER),
    (1, 3, MemberRole.MEMBER),
    (2, 0, MemberRole.OWNER),
    (2, 4, MemberRole.MEMBER),
]

TAGS = [
    ("urgent", "#ef4444"),
    ("bug", "#dc2626"),
    ("feature", "#3b82f6"),
    ("documentation", "#8b5cf6"),
    ("performance", "#f59e0b"),
    ("security", "#ef4444"),
    ("devops", "#10b981"),
    ("frontend", "#06b6d4"),
    ("backend", "#8b5cf6"),
    ("testing", "#84cc16"),
]

# title, description, priority, completed, assignee, project, due in days, tag names,
# estimated minutes, notes
TODOS = [
    ("Configure application monitoring",
     "Set up custom metrics and alerts for production monitoring",
     Priority.HIGH, False, 0, 0, 2, ["urgent", "devops"], 120,
     "Include custom dimensions for request tracking"),
    ("Fix memory leak in API Gateway",
     "Investigate and resolve memory leak causing high memory usage after 24h runtime",
     Priority.URGENT, False, 1, 1, 1, ["urgent", "bug", "backend"], 240,
     "Check for unclosed connections and event listeners"),
    ("Implement rate limiting",
     "Add Redis-based rate limiting to prevent API abuse",
     Priority.HIGH, False, 3, 1, 5, ["security", "backend"], 180, None),
    ("Write runbook for cache outages",
     "Document the degraded-mode behaviour when Redis is unavailable",
     Priority.MEDIUM, False, 2, 0, 7, ["documentation", "devops"], 90, None),
    ("Add search indexes",
     "Full-table scans on todo search are slowing down the dashboard",
     Priority.MEDIUM, False, 4, 2, 10, ["performance", "backend"], 60,
     "Measure before and after with the slow query log"),
    ("Terraform state migration",
     "Move remote state to the shared backend",
     Priority.LOW, True, 0, 2, None, ["devops"], 45, None),
    ("Dashboard load tests",
     "Run load tests against the todo list page",
     Priority.LOW, True, 2, 3, None, ["testing", "frontend"], 30, None),
]

COMMENTS = [
    (1, 0, "Heap snapshots point at the connection cache."),
    (1, 1, "Reproduced locally after 2h of synthetic traffic."),
    (0, 1, "Alert thresholds need sign-off from the on-call team."),
]

ATTACHMENTS = [
    (1, "heap-snapshot.heapsnapshot", "https://files.example.com/heap-snapshot.heapsnapshot",
     52_428_800, "application/octet-stream"),
    (3, "runbook-draft.md", "https://files.example.com/runbook-draft.md",
     4_096, "text/markdown"),
]


async def clear_all(db: AsyncSession):
    for model in (
        Attachment,
        Comment,
        TodoMetadata,
        TodoTagLink,
        Todo,
        Tag,
        ProjectMember,
        Project,
        User,
    ):
        await db.exec(delete(model))
    await db.commit()


async def seed_demo_data(db: AsyncSession) -> dict:
    await clear_all(db)
    now = datetime.now(timezone.utc)

    users = [
        User(email=email, name=name, avatar=AVATAR_URL.format(name.split()[0]), role=role)
        for email, name, role in USERS
    ]
    projects = [
        Project(
            name=name,
            description=description,
            color=color,
            icon=icon,
            status=status,
            start_date=start,
            end_date=end,
        )
        for name, description, color, icon, status, start, end in PROJECTS
    ]
    tags = {name: Tag(name=name, color=color) for name, color in TAGS}
    db.add_all([*users, *projects, *tags.values()])
    await db.flush()

    db.add_all(
        ProjectMember(project_id=projects[p].id, user_id=users[u].id, role=role)
        for p, u, role in MEMBERSHIPS
    )

    todos = []
    for (title, description, priority, completed, assignee, project, due_in,
         tag_names, estimate, notes) in TODOS:
        todo = Todo(
            title=title,
            description=description,
            priority=priority,
            completed=completed,
            assignee_id=users[assignee].id,
            project_id=projects[project].id,
            due_date=now + timedelta(days=due_in) if due_in is not None else None,
        )
        todo.tags = [tags[name] for name in tag_names]
        todo.meta = TodoMetadata(estimated_time=estimate, notes=notes)
        todos.append(todo)
    db.add_all(todos)
    await db.flush()

    db.add_all(
        Comment(todo_id=todos[t].id, author_id=users[u].id, content=content)
        for t, u, content in COMMENTS
    )
    db.add_all(
        Attachment(todo_id=todos[t].id, filename=filename, file_url=url,
                   file_size=size, mime_type=mime)
        for t, filename, url, size, mime in ATTACHMENTS
    )
    await db.commit()

    counts = {
        "users": len(users),
        "projects": len(projects),
        "memberships": len(MEMBERSHIPS),
        "tags": len(tags),
        "todos": len(todos),
        "comments": len(COMMENTS),
        "attachments": len(ATTACHMENTS),
    }
    logger.info(f"🌱 Seeded demo data: {counts}")
    return counts


async def _run():
    await create_db_and_tables()
    async with async_session() as session:
        await seed_demo_data(session)
    await close_db()


def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(name)s] %(levelname)s %(message)s")
    asyncio.run(_run())


if __name__ == "__main__":
    main()
