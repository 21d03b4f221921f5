import logging
import uuid
from typing import List

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from samay_server.api_service import schemas
from samay_server.api_service.core.errors import NotFoundError
from samay_server.api_service.core.models import Project, ProjectUser, User, UserRole

log = logging.getLogger(__name__)


def project_to_schema(project: Project) -> schemas.Project:
    """Only active memberships are exposed."""
    return schemas.Project(
        id=project.id,
        name=project.name,
        description=project.description,
        icon=project.icon,
        created_at=project.created_at,
        updated_at=project.updated_at,
        users=[
            schemas.ProjectMember(user_id=member.user_id, name=member.user.name, email=member.user.email)
            for member in project.users
            if member.active
        ],
    )


def _with_members(query):
    return query.options(selectinload(Project.users).selectinload(ProjectUser.user))


def _visible_to(query, user: User):
    if user.role == UserRole.ADMIN:
        return query
    return query.where(
        Project.users.any((ProjectUser.user_id == user.id) & ProjectUser.active.is_(True))
    )


async def get_project_by_id(db: AsyncSession, project_id: int) -> Project:
    result = await db.execute(
        _with_members(select(Project))
        .where(Project.id == project_id)
        .execution_options(populate_existing=True)
    )
    project = result.scalar_one_or_none()
    if not project:
        raise NotFoundError("Project not found", "PROJECT_NOT_FOUND")
    return project


async def create_project(db: AsyncSession, project_in: schemas.ProjectCreate) -> Project:
    project = Project(name=project_in.name, description=project_in.description, icon=project_in.icon or "")
    db.add(project)
    await db.flush()
    return await get_project_by_id(db, project.id)


async def get_projects(db: AsyncSession, user: User) -> List[Project]:
    result = await db.execute(
        _visible_to(_with_members(select(Project)), user).order_by(Project.created_at.desc(), Project.id.desc())
    )
    return list(result.scalars().all())


async def get_project(db: AsyncSession, user: User, project_id: int) -> Project:
    result = await db.execute(
        _visible_to(_with_members(select(Project)), user).where(Project.id == project_id)
    )
    project = result.scalar_one_or_none()
    if not project:
        raise NotFoundError("Project not found", "PROJECT_NOT_FOUND")
    return project


async def update_project(db: AsyncSession, project_id: int, project_in: schemas.ProjectUpdate) -> Project:
    project = await get_project_by_id(db, project_id)
    for field, value in project_in.model_dump(exclude_unset=True).items():
        setattr(project, field, value)
    await db.flush()
    db.expire(project)
    return await get_project_by_id(db, project_id)


async def delete_project(db: AsyncSession, project_id: int) -> None:
    project = await get_project_by_id(db, project_id)
    await db.delete(project)
    await db.flush()


async def add_users_to_project(db: AsyncSession, project_id: int, user_ids: List[uuid.UUID]) -> None:
    """Reactivates existing memberships and creates the missing ones."""
    await get_project_by_id(db, project_id)

    found = await db.execute(select(User.id).where(User.id.in_(user_ids)))
    known_ids = set(found.scalars().all())
    missing = [str(user_id) for user_id in user_ids if user_id not in known_ids]
    if missing:
        raise NotFoundError(f"Users not found: {', '.join(missing)}", "USER_NOT_FOUND")

    existing = await db.execute(
        select(ProjectUser.user_id).where(ProjectUser.project_id == project_id, ProjectUser.user_id.in_(user_ids))
    )
    existing_ids = set(existing.scalars().all())

    if existing_ids:
        await db.execute(
            update(ProjectUser)
            .where(ProjectUser.project_id == project_id, ProjectUser.user_id.in_(list(existing_ids)))
            .values(active=True)
        )
    for user_id in dict.fromkeys(user_ids):
        if user_id not in existing_ids:
            db.add(ProjectUser(project_id=project_id, user_id=user_id, active=True))
    await db.flush()
    log.info(f"Project {project_id}: reactivated {len(existing_ids)} and added {len(set(user_ids) - existing_ids)} users")


async def remove_user_from_project(db: AsyncSession, project_id: int, user_id: uuid.UUID) -> None:
    await get_project_by_id(db, project_id)
    await db.execute(
        update(ProjectUser)
        .where(ProjectUser.project_id == project_id, ProjectUser.user_id == user_id)
        .values(active=False)
    )
