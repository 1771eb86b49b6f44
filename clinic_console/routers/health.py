# clinic_console/routers/health.py
from fastapi import APIRouter
import logging

from .. import schemas
from ..database import ping
from ..schemas import utcnow

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/health",
    tags=["Health Checks"],
)


@router.get("", response_model=schemas.ApiResponse[schemas.HealthStatus])
def health_check():
    """
    Liveness plus database reachability.
    """
    database_ok = ping()
    if not database_ok:
        logger.warning("Health check: database unreachable")
    status = schemas.HealthStatus(
        status="ok" if database_ok else "degraded",
        database="ok" if database_ok else "unreachable",
        checked_at=utcnow(),
    )
    return schemas.ApiResponse(success=database_ok, message=status.status, data=status)
