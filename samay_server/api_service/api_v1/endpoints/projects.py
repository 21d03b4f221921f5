from typing import List
import uuid

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from samay_server.api_service.auth import get_current_active_user, require_admin
from samay_server.api_service.core.database import get_db
from samay_server.api_service.core.models import User
from samay_server.api_service.services import projects as project_service
from samay_server.api_service.services.projects import project_to_schema
from samay_server.api_service import schemas

router = APIRouter()


@router.post("", response_model=schemas.DataResponse[schemas.Project], status_code=status.HTTP_201_CREATED)
async def create_project(
    project_in: schemas.ProjectCreate,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
):
    project = await project_service.create_project(db, project_in)
    return schemas.DataResponse(data=project_to_schema(project), message="Project created successfully")


@router.get("", response_model=schemas.DataResponse[List[schemas.Project]])
async def get_projects(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    """Admins see every project; other users only those they are an active member of."""
    projects = await project_service.get_projects(db, current_user)
    return schemas.DataResponse(data=[project_to_schema(p) for p in projects])


@router.get("/{project_id}", response_model=schemas.DataResponse[schemas.Project])
async def get_project(
    project_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    project = await project_service.get_project(db, current_user, project_id)
    return schemas.DataResponse(data=project_to_schema(project))


@router.put("/{project_id}", response_model=schemas.DataResponse[schemas.Project])
async def update_project(
    project_id: int,
    project_update: schemas.ProjectUpdate,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
):
    project = await project_service.update_project(db, project_id, project_update)
    return schemas.DataResponse(data=project_to_schema(project), message="Project updated successfully")


@router.delete("/{project_id}", response_model=schemas.MessageResponse)
async def delete_project(
    project_id: int,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
):
    await project_service.delete_project(db, project_id)
    return schemas.MessageResponse(message="Project deleted successfully")


@router.post("/{project_id}/users", response_model=schemas.DataResponse[schemas.Project])
async def add_users_to_project(
    project_id: int,
    request: schemas.AddUsersRequest,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
):
    await project_service.add_users_to_project(db, project_id, request.user_ids)
    project = await project_service.get_project_by_id(db, project_id)
    return schemas.DataResponse(data=project_to_schema(project), message="Users added to project successfully")


@router.delete("/{project_id}/users/{user_id}", response_model=schemas.MessageResponse)
async def remove_user_from_project(
    project_id: int,
    user_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
):
    await project_service.remove_user_from_project(db, project_id, user_id)
    return schemas.MessageResponse(message="User removed from project successfully")
