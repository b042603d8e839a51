import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from library_service import models, schemas
from library_service.auth import require_admin
from library_service.config import settings
from library_service.database import engine, get_db
from library_service.errors import LibraryError
from library_service.routes import auth, books, categories, dashboard, export, loans, members, users
from library_service.scheduler import OverdueScheduler


logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.uses_default_secret:
        logger.warning(
            "JWT_SECRET_KEY is not set or uses the default value. "
            "Set a secure JWT_SECRET_KEY in production."
        )

    models.Base.metadata.create_all(bind=engine)
    logger.info("%s %s starting (%s)", settings.app_name, settings.app_version, settings.environment)

    scheduler = None
    if settings.overdue_checks_enabled:
        scheduler = OverdueScheduler(
            settings.overdue_check_interval, batch_size=settings.sweep_batch_size
        )
        scheduler.start()
    app.state.scheduler = scheduler

    try:
        yield
    finally:
        if scheduler is not None:
            await scheduler.stop()
        logger.info("%s shutting down", settings.app_name)


app = FastAPI(
    title=settings.app_name,
    description="Personal library management: books, members, loans and categories",
    version=settings.app_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.client_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LibraryError)
async def library_error_handler(request: Request, exc: LibraryError):
    """
    Render domain errors as {"detail": message} with the error's status.

    NotFound -> 404, ValidationError -> 400, BookUnavailable,
    AlreadyReturned and Conflict -> 409, PermissionDenied -> 403.
    """
    logger.warning("%s %s -> %d %s", request.method, request.url.path, exc.status_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": "Invalid request", "errors": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError):
    logger.warning("%s %s -> integrity error: %s", request.method, request.url.path, exc.orig)
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"detail": "Duplicate entry: This record already exists"},
    )


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("%s %s -> database error", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Database error"},
    )


@app.get("/health")
async def health_check():
    """
    Health check endpoint for monitoring and load balancers.

    Returns:
        Simple status message indicating the service is running
    """
    return {"status": "healthy", "service": "library-api"}


@app.get(
    "/system/info",
    response_model=schemas.SystemInfo,
    dependencies=[Depends(require_admin)],
)
def system_info(db: Session = Depends(get_db)):
    """Version, environment and database connectivity (admin only)."""
    try:
        db.execute(text("SELECT 1"))
        database_connected = True
    except SQLAlchemyError:
        logger.exception("Database connection check failed")
        database_connected = False

    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
        "database_connected": database_connected,
        "overdue_checks_enabled": settings.overdue_checks_enabled,
        "overdue_check_interval": settings.overdue_check_interval,
    }


for module in (auth, users, books, members, categories, loans, dashboard, export):
    app.include_router(module.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("library_service.endpoints:app", host="0.0.0.0", port=8000)
