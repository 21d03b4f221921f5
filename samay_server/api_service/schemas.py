from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import Generic, List, Optional, TypeVar
from datetime import date, datetime
import re
import uuid

from samay_server.shared.utils import sanitize_string

T = TypeVar("T")

PASSWORD_PATTERN = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)[A-Za-z\d@$!%*?&]")
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
# Largest value the integer duration column holds
MAX_DURATION = 2**31 - 1


# Base schemas
class BaseSchema(BaseModel):
    """Base schema for all Pydantic models to inherit from. JSON uses camelCase keys."""
    model_config = ConfigDict(from_attributes=True, alias_generator=to_camel, populate_by_name=True)


class DataResponse(BaseSchema, Generic[T]):
    """Envelope used by every successful JSON response that carries a payload."""
    data: T
    message: Optional[str] = None


class MessageResponse(BaseSchema):
    message: str


# Auth schemas
class RegisterRequest(BaseSchema):
    email: str = Field(pattern=EMAIL_PATTERN)
    password: str = Field(min_length=8)
    name: str = Field(min_length=1)

    @field_validator("password")
    @classmethod
    def check_password_strength(cls, v: str) -> str:
        if not PASSWORD_PATTERN.match(v):
            raise ValueError("Password must contain at least one uppercase letter, one lowercase letter, one number")
        return v


class LoginRequest(BaseSchema):
    email: str = Field(pattern=EMAIL_PATTERN)
    password: str = Field(min_length=1)


class Token(BaseModel):
    """OAuth2 token response; keys stay snake_case as the password flow expects."""
    access_token: str
    token_type: str = "bearer"


class User(BaseSchema):
    id: uuid.UUID
    email: str
    name: Optional[str] = None
    role: str
    created_at: datetime


class AuthResponse(BaseSchema):
    user: User
    token: str


# Activity schemas
class EventData(BaseSchema):
    """Window data captured by the tracker. Strings are sanitized on the way in."""
    app: str = ""
    url: str = ""
    title: str = ""

    @field_validator("app", "url", "title", mode="before")
    @classmethod
    def sanitize(cls, v):
        if v is None:
            return ""
        return sanitize_string(v) if isinstance(v, str) else v


class ActivityCreate(BaseSchema):
    data: EventData
    timestamp: str = Field(min_length=1)
    duration: float = Field(default=0, allow_inf_nan=False, le=MAX_DURATION)


class ActivityUpdate(BaseSchema):
    data: Optional[EventData] = None
    timestamp: Optional[str] = Field(default=None, min_length=1)
    duration: Optional[float] = Field(default=None, ge=1, allow_inf_nan=False, le=MAX_DURATION)
    description: Optional[str] = None

    @field_validator("description", mode="before")
    @classmethod
    def sanitize_description(cls, v):
        return sanitize_string(v) if isinstance(v, str) else v


class Activity(BaseSchema):
    id: uuid.UUID
    user_id: uuid.UUID
    app: str
    title: str
    url: str
    description: Optional[str] = None
    timestamp: str
    duration: int
    selected: bool
    project_id: Optional[int] = None
    merged: bool
    merged_timestamp: Optional[str] = None
    auto_tags: Optional[str] = None
    is_auto_tagged: bool
    created_at: datetime
    updated_at: datetime


class IngestResult(BaseSchema):
    received: int
    stored: int


class SelectActivitiesRequest(BaseSchema):
    activity_ids: List[uuid.UUID]
    selected: bool = False


class AddProjectRequest(BaseSchema):
    activity_ids: List[uuid.UUID]
    project_id: int = Field(ge=1)


class UpdatedCount(BaseSchema):
    updated: int


class AppCount(BaseSchema):
    app: str
    count: int


class ActivityStats(BaseSchema):
    total_activities: int
    total_duration: int
    top_apps: List[AppCount]
    recent_activity: Optional[Activity] = None


class TopApp(BaseSchema):
    app: str
    duration: int


class TopActivity(BaseSchema):
    app: str
    title: str
    duration: int
    tag: str = ""


class SelectionGroup(BaseSchema):
    """Activities sharing app and title, offered to the user as one selectable unit."""
    app: str
    title: str
    tag: str = ""
    duration: int
    activity_ids: List[uuid.UUID]
    selected: bool
    project_id: Optional[int] = None


class UserSelectDay(BaseSchema):
    day: str
    tag: str
    duration: int


# Project schemas
class ProjectCreate(BaseSchema):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    icon: str = Field(min_length=1, max_length=50)


class ProjectUpdate(BaseSchema):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    icon: Optional[str] = Field(default=None, min_length=1, max_length=50)


class ProjectMember(BaseSchema):
    user_id: uuid.UUID
    name: Optional[str] = None
    email: str


class Project(BaseSchema):
    id: int
    name: str
    description: Optional[str] = None
    icon: str
    created_at: datetime
    updated_at: datetime
    users: List[ProjectMember] = []


class AddUsersRequest(BaseSchema):
    user_ids: List[uuid.UUID] = Field(min_length=1)


# Insight schemas
class DailyInsight(BaseSchema):
    daily_insights: List[str]
    improvement_plan: List[str]
    day: date = Field(alias="date")


# Job schemas
class JobRunResult(BaseSchema):
    job: str
    result: dict
