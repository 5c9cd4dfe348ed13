import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.orm import Session

from loyaltyapi.database.session import get_db
from loyaltyapi.schemas.health import HealthCheckResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health", response_model=HealthCheckResponse)
def health_check(request: Request, db: Session = Depends(get_db)) -> HealthCheckResponse:
    """Health check endpoint."""
    scheduler = getattr(request.app.state, "settlement_scheduler", None)
    scheduler_running = bool(scheduler and scheduler.running)

    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Health check database query failed: {e}")
        return HealthCheckResponse(
            status="degraded",
            database="unavailable",
            scheduler_running=scheduler_running,
            error=str(e),
        )

    return HealthCheckResponse(scheduler_running=scheduler_running)
