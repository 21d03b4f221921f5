import logging
from fastapi import FastAPI, APIRouter
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from samay_server.api_service.core.database import engine, init_db
from samay_server.api_service.core.errors import register_exception_handlers
from samay_server.api_service.core.settings import settings
from samay_server.api_service.api_v1.endpoints import activities, auth, insights, projects, system
from samay_server.api_service.services.tag_resolver import TagCache, TagResolver
from samay_server.processing_service.runner import JobRunner
from samay_server.processing_service.scheduler import build_scheduler

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - [%(name)s] - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting up Samay API Service...")
    try:
        await init_db()
        logger.info("Database initialized successfully.")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise

    scheduler = None
    if settings.ENABLE_SCHEDULER:
        scheduler = build_scheduler(app.state.job_runner)
        scheduler.start()
        logger.info("Background job scheduler started.")

    yield

    # Shutdown
    logger.info("Shutting down Samay API Service...")
    if scheduler:
        scheduler.shutdown(wait=False)
    await engine.dispose()


app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Time-tracking API: activity ingest, projects, reporting and AI daily insights.",
    version=settings.VERSION,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    docs_url=f"{settings.API_V1_STR}/docs",
    redoc_url=f"{settings.API_V1_STR}/redoc",
    lifespan=lifespan
)

# Shared by every request and job in this process
app.state.tag_resolver = TagResolver(TagCache(ttl_seconds=settings.TAG_CACHE_TTL_SECONDS))
app.state.job_runner = JobRunner()

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Create API v1 router
api_v1_router = APIRouter(prefix=settings.API_V1_STR)

# Include all endpoint routers
api_v1_router.include_router(auth.router, prefix="/auth", tags=["Authentication"])
api_v1_router.include_router(activities.router, prefix="/activities", tags=["Activities"])
api_v1_router.include_router(projects.router, prefix="/projects", tags=["Projects"])
api_v1_router.include_router(insights.router, prefix="/insights", tags=["Insights"])
api_v1_router.include_router(system.router, prefix="/system", tags=["System"])

# Include the v1 router in the main app
app.include_router(api_v1_router)


# Root endpoint
@app.get("/", tags=["Root"])
async def root():
    return {
        "message": "Welcome to the Samay API Service",
        "version": settings.VERSION,
        "docs": f"{settings.API_V1_STR}/docs"
    }


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check():
    return {"status": "healthy", "service": "samay-api"}

if __name__ == "__main__":
    import uvicorn
    logger.info("Starting Uvicorn server for development...")
    uvicorn.run(app, host="0.0.0.0", port=8000, log_level="info")
