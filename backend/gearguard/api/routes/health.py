from datetime import datetime, timezone

from fastapi import APIRouter, HTTPException

from gearguard.core.config import get_settings
from gearguard.db.health import check_db

router = APIRouter()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("/healthz")
def healthz():
    settings = get_settings()
    return {
        "status": "ok",
        "app": settings.APP_NAME,
        "env": settings.ENV,
        "timestamp": _now(),
    }


@router.get("/readyz")
def readyz():
    if not check_db():
        raise HTTPException(
            status_code=503,
            detail={
                "status": "unavailable",
                "checks": {"database": "fail"},
                "timestamp": _now(),
            },
        )
    return {
        "status": "ready",
        "checks": {"database": "ok"},
        "timestamp": _now(),
    }


@router.get("/ping")
def ping():
    settings = get_settings()
    return {"status": "ok", "app": settings.APP_NAME, "env": settings.ENV}
