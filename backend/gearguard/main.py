import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from gearguard.api.router import api_router
from gearguard.core.config import get_settings
from gearguard.core.logging import setup_logging
from gearguard.db.session import Base, engine

settings = get_settings()
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.APP_NAME)
app.include_router(api_router)


@app.exception_handler(Exception)
async def unhandled_exception(request: Request, exc: Exception):
    """Log unexpected failures and answer with a generic 500."""
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.on_event("startup")
def create_tables():
    """Create database tables on startup."""
    Base.metadata.create_all(bind=engine)
