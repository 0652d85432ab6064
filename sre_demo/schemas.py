import json
import re
from datetime import datetime

from pydantic import field_validator
from sqlmodel import Field, SQLModel

from sre_demo.models import MemberRole, Priority, ProjectStatus, UserRole

HEX_COLOR = re.compile(r"^#[0-9A-F]{6}$", re.IGNORECASE)


class TodoFilter(SQLModel):
    """Conjunction of the optional list predicates."""

    completed: bool | None = None
    priority: Priority | None = None

    def cache_key(self) -> str:
        # sort_keys: the same filter always maps to the same key
        active = self.model_dump(mode="json", exclude_none=True)
        return "todos:list:" + json.dumps(active, sort_keys=True, separators=(",", ":"))


class TodoCreate(SQLModel):
    title: str = Field(min_length=1, max_length=200)
    description: str | None = None
    completed: bool = False
    priority: Priority = Priority.MEDIUM
    due_date: datetime | None = None
    assignee_id: int | None = None
    project_id: int | None = None
    tags: list[str] = Field(default_factory=list)


class TodoUpdate(SQLModel):
    """Schema for updating a todo - all fields optional"""

    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    completed: bool | None = None
    priority: Priority | None = None
    due_date: datetime | None = None
    assignee_id: int | None = None
    project_id: int | None = None

    @field_validator("title", "completed", "priority")
    @classmethod
    def not_null(cls, value):
        # Only runs for values the client actually sent
        if value is None:
            raise ValueError("may not be null")
        return value


class TagRead(SQLModel):
    id: int
    name: str
    color: str

    model_config = {"from_attributes": True}


class TodoMetadataRead(SQLModel):
    id: int
    view_count: int
    last_viewed_at: datetime | None = None
    estimated_time: int | None = None
    actual_time: int | None = None
    notes: str | None = None

    model_config = {"from_attributes": True}


class TodoRead(SQLModel):
    id: int
    title: str
    description: str | None = None
    completed: bool
    priority: Priority
    due_date: datetime | None = None
    assignee_id: int | None = None
    project_id: int | None = None
    created_at: datetime
    updated_at: datetime | None = None
    tags: list[TagRead] = []
    meta: TodoMetadataRead | None = None

    model_config = {"from_attributes": True}


class UserSummary(SQLModel):
    id: int
    name: str
    avatar: str | None = None

    model_config = {"from_attributes": True}


class UserRead(UserSummary):
    email: str
    role: UserRole
    created_at: datetime


class ProjectSummary(SQLModel):
    id: int
    name: str
    color: str

    model_config = {"from_attributes": True}


class ProjectRead(ProjectSummary):
    description: str | None = None
    icon: str
    status: ProjectStatus
    start_date: datetime | None = None
    end_date: datetime | None = None
    created_at: datetime


class ProjectMemberRead(SQLModel):
    id: int
    role: MemberRole
    joined_at: datetime
    user: UserSummary

    model_config = {"from_attributes": True}


class ProjectBase(SQLModel):
    @field_validator("name", check_fields=False)
    @classmethod
    def strip_name(cls, value):
        value = (value or "").strip()
        if not value:
            raise ValueError("Project name is required")
        return value

    @field_validator("color", check_fields=False)
    @classmethod
    def hex_color(cls, value):
        if value is not None and not HEX_COLOR.match(value):
            raise ValueError("Invalid color format. Use hex format like #3B82F6")
        return value

    @field_validator("description", check_fields=False)
    @classmethod
    def blank_description(cls, value):
        if value is None:
            return value
        return value.strip() or None


class ProjectCreate(ProjectBase):
    name: str
    description: str | None = None
    icon: str = "📁"
    color: str = "#3B82F6"
    status: ProjectStatus = ProjectStatus.PLANNING
    start_date: datetime | None = None
    end_date: datetime | None = None


class ProjectUpdate(ProjectBase):
    name: str | None = None
    description: str | None = None
    icon: str | None = None
    color: str | None = None
    status: ProjectStatus | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None

    @field_validator("icon", "color", "status")
    @classmethod
    def not_null(cls, value):
        if value is None:
            raise ValueError("may not be null")
        return value


class SeedRequest(SQLModel):
    count: int = Field(default=100, ge=1, le=10_000)
