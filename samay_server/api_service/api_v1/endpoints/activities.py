from typing import List, Optional
import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from samay_server.api_service.api_v1.deps import get_tag_resolver
from samay_server.api_service.auth import get_current_active_user
from samay_server.api_service.core.database import get_db
from samay_server.api_service.core.errors import AuthorizationError
from samay_server.api_service.core.models import User, UserRole
from samay_server.api_service.services import activities as activity_service
from samay_server.api_service.services.tag_resolver import TagResolver
from samay_server.api_service import schemas

router = APIRouter()

START_DATE = Query(None, alias="startDate", description="ISO timestamp or YYYY-MM-DD")
END_DATE = Query(None, alias="endDate", description="ISO timestamp or YYYY-MM-DD")


@router.post(
    "",
    response_model=schemas.DataResponse[schemas.IngestResult],
    status_code=status.HTTP_201_CREATED,
)
async def create_activities(
    events: List[schemas.ActivityCreate],
    db: AsyncSession = Depends(get_db),
    resolver: TagResolver = Depends(get_tag_resolver),
    current_user: User = Depends(get_current_active_user),
):
    """Batch ingest from the desktop tracker."""
    stored = await activity_service.ingest_activities(db, resolver, current_user.id, events)
    return schemas.DataResponse(
        data=schemas.IngestResult(received=len(events), stored=stored),
        message="Activities created successfully",
    )


@router.get("", response_model=schemas.DataResponse[List[schemas.Activity]])
async def get_activities(
    start_date: Optional[str] = START_DATE,
    end_date: Optional[str] = END_DATE,
    selected: Optional[bool] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    activities = await activity_service.get_activities(db, current_user.id, start_date, end_date, selected)
    return schemas.DataResponse(data=[schemas.Activity.model_validate(a) for a in activities])


@router.get("/stats", response_model=schemas.DataResponse[schemas.ActivityStats])
async def get_activity_stats(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    return schemas.DataResponse(data=await activity_service.get_activity_stats(db, current_user.id))


@router.get("/top-apps", response_model=schemas.DataResponse[List[schemas.TopApp]])
async def get_top_apps(
    start_date: Optional[str] = START_DATE,
    end_date: Optional[str] = END_DATE,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    return schemas.DataResponse(
        data=await activity_service.get_top_apps(db, current_user.id, start_date, end_date)
    )


@router.get("/top", response_model=schemas.DataResponse[List[schemas.TopActivity]])
async def get_top_activities(
    start_date: Optional[str] = START_DATE,
    end_date: Optional[str] = END_DATE,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    return schemas.DataResponse(
        data=await activity_service.get_top_activities(db, current_user.id, start_date, end_date)
    )


@router.get("/for-user-select", response_model=schemas.DataResponse[List[schemas.SelectionGroup]])
async def get_activities_for_selection(
    start_date: Optional[str] = START_DATE,
    end_date: Optional[str] = END_DATE,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    return schemas.DataResponse(
        data=await activity_service.activities_for_selection(db, current_user.id, start_date, end_date)
    )


@router.get("/user-select/{user_id}", response_model=schemas.DataResponse[List[schemas.UserSelectDay]])
async def get_user_select_data(
    user_id: uuid.UUID,
    start_date: str = Query(..., alias="startDate"),
    end_date: str = Query(..., alias="endDate"),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    """Daily per-tag durations of a user's selected activities. Admins may read anyone's."""
    if current_user.role != UserRole.ADMIN and current_user.id != user_id:
        raise AuthorizationError()
    return schemas.DataResponse(
        data=await activity_service.get_user_select_data(db, user_id, start_date, end_date)
    )


@router.post("/select", response_model=schemas.DataResponse[schemas.UpdatedCount])
async def select_activities(
    request: schemas.SelectActivitiesRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    updated = await activity_service.select_activities(db, request.activity_ids, current_user.id, request.selected)
    return schemas.DataResponse(data=schemas.UpdatedCount(updated=updated), message="Activities updated successfully")


@router.post("/add-project", response_model=schemas.DataResponse[schemas.UpdatedCount])
async def add_activities_to_project(
    request: schemas.AddProjectRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    updated = await activity_service.add_activities_to_project(
        db, request.activity_ids, request.project_id, current_user
    )
    return schemas.DataResponse(
        data=schemas.UpdatedCount(updated=updated),
        message="Activities added to project successfully",
    )


@router.put("/{activity_id}", response_model=schemas.DataResponse[schemas.Activity])
async def update_activity(
    activity_id: uuid.UUID,
    activity_in: schemas.ActivityUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    activity = await activity_service.update_activity(db, activity_id, activity_in, current_user.id)
    return schemas.DataResponse(data=schemas.Activity.model_validate(activity))


@router.delete("/{activity_id}", response_model=schemas.MessageResponse)
async def delete_activity(
    activity_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    await activity_service.delete_activity(db, activity_id, current_user.id)
    return schemas.MessageResponse(message="Activity deleted successfully")
