from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from samay_server.api_service.api_v1.deps import get_job_runner
from samay_server.api_service.auth import require_admin
from samay_server.api_service.core.database import get_db
from samay_server.api_service.core.errors import NotFoundError
from samay_server.api_service.core.models import User
from samay_server.api_service.core.settings import settings
from samay_server.processing_service.runner import JobRunner, UnknownJobError
from samay_server.api_service import schemas

router = APIRouter()


@router.get("/status")
async def get_system_status(_: User = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    """Service version and database reachability."""
    database_connected = True
    try:
        await db.execute(text("SELECT 1"))
    except Exception:
        database_connected = False
    return {
        "status": "ok",
        "version": settings.VERSION,
        "databaseConnected": database_connected,
        "schedulerEnabled": settings.ENABLE_SCHEDULER,
    }


@router.post("/jobs/{name}/run", response_model=schemas.DataResponse[schemas.JobRunResult])
async def run_job(
    name: str,
    runner: JobRunner = Depends(get_job_runner),
    _: User = Depends(require_admin),
):
    """Runs a background job once, now, and returns its counters."""
    try:
        result = await runner.run(name)
    except UnknownJobError:
        raise NotFoundError(f"Unknown job: {name}", "JOB_NOT_FOUND")
    return schemas.DataResponse(data=schemas.JobRunResult(job=name, result=result))
