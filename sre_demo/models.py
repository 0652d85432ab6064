from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import Column, Field, Relationship, SQLModel


def get_utc_now():
    """Helper function to get current UTC time with timezone"""
    return datetime.now(timezone.utc)


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    MEMBER = "MEMBER"


class ProjectStatus(str, Enum):
    PLANNING = "PLANNING"
    ACTIVE = "ACTIVE"
    ON_HOLD = "ON_HOLD"
    COMPLETED = "COMPLETED"
    ARCHIVED = "ARCHIVED"


class MemberRole(str, Enum):
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"


class Priority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: int | None = Field(default=None, primary_key=True)
    email: str = Field(unique=True, index=True)
    name: str
    avatar: str | None = None
    role: UserRole = Field(default=UserRole.MEMBER)
    created_at: datetime = Field(
        default_factory=get_utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )

    todos: List["Todo"] = Relationship(back_populates="assignee")
    comments: List["Comment"] = Relationship(back_populates="author")
    memberships: List["ProjectMember"] = Relationship(back_populates="user")


class Project(SQLModel, table=True):
    __tablename__ = "projects"

    id: int | None = Field(default=None, primary_key=True)
    name: str
    description: str | None = None
    color: str = Field(default="#3B82F6", max_length=7)
    icon: str = Field(default="📁")
    status: ProjectStatus = Field(default=ProjectStatus.PLANNING)
    start_date: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    end_date: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    created_at: datetime = Field(
        default_factory=get_utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )

    todos: List["Todo"] = Relationship(back_populates="project")
    members: List["ProjectMember"] = Relationship(
        back_populates="project",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )


class ProjectMember(SQLModel, table=True):
    __tablename__ = "project_members"
    __table_args__ = (UniqueConstraint("project_id", "user_id"),)

    id: int | None = Field(default=None, primary_key=True)
    project_id: int = Field(foreign_key="projects.id", ondelete="CASCADE", index=True)
    user_id: int = Field(foreign_key="users.id", ondelete="CASCADE", index=True)
    role: MemberRole = Field(default=MemberRole.MEMBER)
    joined_at: datetime = Field(
        default_factory=get_utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )

    project: Optional["Project"] = Relationship(back_populates="members")
    user: Optional["User"] = Relationship(back_populates="memberships")


class TodoTagLink(SQLModel, table=True):
    __tablename__ = "todo_tags"

    todo_id: int = Field(foreign_key="todos.id", ondelete="CASCADE", primary_key=True)
    tag_id: int = Field(foreign_key="tags.id", ondelete="CASCADE", primary_key=True)


class Tag(SQLModel, table=True):
    __tablename__ = "tags"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(unique=True, index=True)
    color: str = Field(default="#6B7280")

    todos: List["Todo"] = Relationship(back_populates="tags", link_model=TodoTagLink)


class Todo(SQLModel, table=True):
    __tablename__ = "todos"

    id: int | None = Field(default=None, primary_key=True)
    # No index on title/description: the search endpoint scans on purpose.
    title: str = Field(max_length=200)
    description: str | None = Field(default=None)
    completed: bool = Field(default=False)
    priority: Priority = Field(default=Priority.MEDIUM)
    due_date: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    assignee_id: int | None = Field(default=None, foreign_key="users.id", ondelete="SET NULL")
    project_id: int | None = Field(default=None, foreign_key="projects.id", ondelete="SET NULL")
    created_at: datetime = Field(
        default_factory=get_utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )

    assignee: Optional["User"] = Relationship(back_populates="todos")
    project: Optional["Project"] = Relationship(back_populates="todos")
    tags: List["Tag"] = Relationship(back_populates="todos", link_model=TodoTagLink)
    meta: Optional["TodoMetadata"] = Relationship(
        back_populates="todo",
        sa_relationship_kwargs={"uselist": False, "cascade": "all, delete-orphan"},
    )
    comments: List["Comment"] = Relationship(
        back_populates="todo",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )
    attachments: List["Attachment"] = Relationship(
        back_populates="todo",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )


class TodoMetadata(SQLModel, table=True):
    __tablename__ = "todo_metadata"

    id: int | None = Field(default=None, primary_key=True)
    todo_id: int = Field(foreign_key="todos.id", ondelete="CASCADE", unique=True)
    view_count: int = Field(default=0)
    last_viewed_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    estimated_time: int | None = None  # minutes
    actual_time: int | None = None  # minutes
    notes: str | None = None

    todo: Optional["Todo"] = Relationship(back_populates="meta")


class Comment(SQLModel, table=True):
    __tablename__ = "comments"

    id: int | None = Field(default=None, primary_key=True)
    content: str
    todo_id: int = Field(foreign_key="todos.id", ondelete="CASCADE", index=True)
    author_id: int = Field(foreign_key="users.id", ondelete="CASCADE")
    created_at: datetime = Field(
        default_factory=get_utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )

    todo: Optional["Todo"] = Relationship(back_populates="comments")
    author: Optional["User"] = Relationship(back_populates="comments")


class Attachment(SQLModel, table=True):
    __tablename__ = "attachments"

    id: int | None = Field(default=None, primary_key=True)
    filename: str
    file_url: str
    file_size: int
    mime_type: str
    todo_id: int = Field(foreign_key="todos.id", ondelete="CASCADE", index=True)
    created_at: datetime = Field(
        default_factory=get_utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )

    todo: Optional["Todo"] = Relationship(back_populates="attachments")
