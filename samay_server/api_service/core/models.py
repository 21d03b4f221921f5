from sqlalchemy import (
    Boolean, Date, DateTime, Enum, ForeignKey, Index, Integer, JSON, String, Text,
    UniqueConstraint, Uuid
)
from sqlalchemy.orm import relationship, Mapped, mapped_column
from sqlalchemy.sql import func
from datetime import datetime, date
from typing import List, Optional
import uuid as uuid_pkg
import enum

from .database import Base

# Tag rule title that matches every title of its app
WILDCARD_TITLE = "any"


class UserRole(str, enum.Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class TagCategory(str, enum.Enum):
    """Closed set of categories the classifier may assign."""
    CODE = "Code"
    DISCUSSION = "Discussion"
    MEETING = "Meeting"
    DESIGN = "Design"
    RESEARCH = "Research"
    ENTERTAINMENT = "Entertainment"
    SOCIAL_MEDIA = "Social Media"
    DOCUMENTATION = "Documentation"
    LEARNING = "Learning"
    MAIL = "Mail"
    NOT_RELATED_TO_WORK = "Not Related to Work"


class User(Base):
    """Represents a user of the Samay application."""
    __tablename__ = "users"

    id: Mapped[uuid_pkg.UUID] = mapped_column(Uuid, primary_key=True, default=uuid_pkg.uuid4)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    hashed_password: Mapped[str] = mapped_column(Text, nullable=False)
    role: Mapped[UserRole] = mapped_column(Enum(UserRole, name="user_role"), nullable=False, default=UserRole.USER)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    sessions = relationship("UserSession", back_populates="user", cascade="all, delete-orphan")


class UserSession(Base):
    """A bearer-token session. A token is only valid while its session row exists and has not expired."""
    __tablename__ = "sessions"

    id: Mapped[uuid_pkg.UUID] = mapped_column(Uuid, primary_key=True, default=uuid_pkg.uuid4)
    user_id: Mapped[uuid_pkg.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    token: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    user = relationship("User", back_populates="sessions")


class Project(Base):
    """Represents a project that activities can be assigned to."""
    __tablename__ = "projects"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    icon: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    users: Mapped[List["ProjectUser"]] = relationship(back_populates="project", cascade="all, delete-orphan")


class ProjectUser(Base):
    """Membership of a user in a project. Removing a member only clears `active`."""
    __tablename__ = "project_users"

    project_id: Mapped[int] = mapped_column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), primary_key=True)
    user_id: Mapped[uuid_pkg.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Relationships
    project: Mapped["Project"] = relationship(back_populates="users")
    user: Mapped["User"] = relationship()


class Activity(Base):
    """A single tracked event, or a merged group of events sharing user, app, title, selection and day."""
    __tablename__ = "activities"
    __table_args__ = (
        Index("ix_activities_user_timestamp", "user_id", "timestamp"),
        Index("ix_activities_merged", "merged"),
        Index("ix_activities_auto_tagged", "is_auto_tagged"),
    )

    id: Mapped[uuid_pkg.UUID] = mapped_column(Uuid, primary_key=True, default=uuid_pkg.uuid4)
    user_id: Mapped[uuid_pkg.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    app: Mapped[str] = mapped_column(Text, nullable=False, default="")
    title: Mapped[str] = mapped_column(Text, nullable=False, default="")
    url: Mapped[str] = mapped_column(Text, nullable=False, default="")
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # Source-local ISO 8601 string as sent by the tracker
    timestamp: Mapped[str] = mapped_column(Text, nullable=False)
    duration: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    selected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    project_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("projects.id", ondelete="SET NULL"), nullable=True)
    merged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    merged_timestamp: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    auto_tags: Mapped[Optional[str]] = mapped_column(Text, nullable=True, default="")
    is_auto_tagged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class Tag(Base):
    """A classification rule: (app, title) -> category. Title "any" matches every title of the app."""
    __tablename__ = "tags"
    __table_args__ = (UniqueConstraint("app", "title", name="uq_tags_app_title"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    app: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    tag: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class DailyInsight(Base):
    """The AI-written summary of one user's day."""
    __tablename__ = "daily_insights"
    __table_args__ = (UniqueConstraint("user_id", "date", name="uq_daily_insights_user_date"),)

    id: Mapped[uuid_pkg.UUID] = mapped_column(Uuid, primary_key=True, default=uuid_pkg.uuid4)
    user_id: Mapped[uuid_pkg.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    day: Mapped[date] = mapped_column("date", Date, nullable=False)
    daily_insights: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    improvement_plan: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
