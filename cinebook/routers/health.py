# cinebook/routers/health.py
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from redis.asyncio import Redis
from sqlalchemy import text
from sqlalchemy.orm import Session

from cinebook.core.redis import health_check_redis
from cinebook.deps.services import get_db, get_redis_optional

router = APIRouter(prefix="/health", tags=["health"])


@router.get("/redis")
async def redis_health(r: Optional[Redis] = Depends(get_redis_optional)):
    """
    Lightweight health check for Redis (sweeper leader lock).
    """
    if r is None:
        return {"status": "disabled", "detail": "Redis not configured; every instance sweeps"}
    result = await health_check_redis(r)
    if result["status"] != "healthy":
        raise HTTPException(status_code=503, detail=f"Redis error: {result.get('error')}")
    return result


@router.get("/db")
def db_health(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        raise HTTPException(status_code=503, detail=f"Database error: {e}") from e
    return {"status": "healthy"}
