# health_routes.py
import redis
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from db import get_db
from cache import get_redis

router = APIRouter(prefix="/api")

@router.get("/health")
def health():
    # super fast: proves the app is mounted
    return {"ok": True}

@router.get("/ready")
def ready(db: Session = Depends(get_db), r: redis.Redis = Depends(get_redis)):
    # don't expose internal traces
    try:
        db.execute(text("SELECT 1"))
        db_state = "up"
    except SQLAlchemyError:
        db_state = "down"
    try:
        r.ping()
        redis_state = "up"
    except redis.RedisError:
        redis_state = "down"
    return {"ok": db_state == "up" and redis_state == "up", "db": db_state, "redis": redis_state}
