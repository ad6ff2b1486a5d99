from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from omnigate.database import get_db
from omnigate.dependencies import Container, get_container, require_internal_key
from omnigate.services.health_service import check_database, get_system_health

router = APIRouter(prefix="/healthz")


async def _readiness(db: Session, container: Container) -> JSONResponse:
    checks = {
        "database": "ok" if check_database(db) else "error",
        "redis": "ok" if await container.cache.ping() else "error",
    }
    healthy = all(value == "ok" for value in checks.values())
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={"status": "ok" if healthy else "degraded", "checks": checks},
    )


@router.get("")
async def health(db: Session = Depends(get_db), container: Container = Depends(get_container)):
    return await _readiness(db, container)


@router.get("/ready")
async def ready(db: Session = Depends(get_db), container: Container = Depends(get_container)):
    return await _readiness(db, container)


@router.get("/live")
async def live():
    return {"status": "ok"}


@router.get("/system", dependencies=[Depends(require_internal_key)])
def system(db: Session = Depends(get_db)):
    return get_system_health(db)
