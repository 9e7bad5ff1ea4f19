"""
Health Check Endpoints

- /health          Liveness (is process running)
- /health/ready    Readiness: database reachable, collaborators configured
"""

import time

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.orm import Session

from ..config import settings
from ..database import get_db

router = APIRouter(prefix="/health", tags=["Health"])


def get_db_health(db: Session) -> dict:
    """Check database connectivity and latency"""
    try:
        start = time.time()
        db.execute(text("SELECT 1"))
        latency_ms = (time.time() - start) * 1000
        return {
            "status": "up",
            "latency_ms": round(latency_ms, 2),
            "type": "postgresql" if "postgresql" in str(db.bind.url) else "sqlite"
        }
    except Exception as e:
        return {
            "status": "down",
            "error": str(e)[:100]
        }


@router.get("")
@router.get("/")
async def health_check():
    return {"status": "healthy"}


@router.get("/ready")
def readiness(request: Request, db: Session = Depends(get_db)):
    database = get_db_health(db)
    scheduler = getattr(request.app.state, "sync_scheduler", None)

    return {
        "status": "ready" if database["status"] == "up" else "degraded",
        "database": database,
        "storage_backend": settings.effective_storage_backend,
        "checkfront": "configured" if settings.has_checkfront_config else "not_configured",
        "twilio": "configured" if settings.has_twilio_config else "not_configured",
        "scheduler": "running" if scheduler and scheduler.status()["scheduled"] else "stopped",
    }
