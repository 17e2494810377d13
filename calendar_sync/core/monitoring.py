"""Health checks and monitoring endpoints"""
from fastapi import APIRouter, Depends
from sqlalchemy import func, select, text
from sqlalchemy.orm import Session
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from calendar_sync.config.database import get_db
from calendar_sync.config.redis import get_redis
from calendar_sync.models import CalendarConnection

health_router = APIRouter()


@health_router.get("/")
async def health_check():
    """Basic health check"""
    return {"status": "healthy", "service": "calendar-sync"}


@health_router.get("/detailed")
def detailed_health_check(db: Session = Depends(get_db)):
    """Detailed health check with dependencies and connection counts"""
    checks = {
        "api": "healthy",
        "database": "unknown",
        "redis": "unknown",
        "overall": "unknown"
    }
    connections = {}

    # Check database
    try:
        db.execute(text("SELECT 1"))
        checks["database"] = "healthy"
        connections["total"] = db.scalar(select(func.count(CalendarConnection.id)))
        connections["needs_reauth"] = db.scalar(
            select(func.count(CalendarConnection.id)).where(CalendarConnection.needs_reauth.is_(True))
        )
    except SQLAlchemyError as e:
        checks["database"] = f"unhealthy: {str(e)}"

    # Check Redis
    try:
        get_redis().ping()
        checks["redis"] = "healthy"
    except RedisError as e:
        checks["redis"] = f"unhealthy: {str(e)}"

    # Overall status
    if all(status == "healthy" for status in checks.values() if status != "unknown"):
        checks["overall"] = "healthy"
    else:
        checks["overall"] = "degraded"

    return {**checks, "connections": connections}
