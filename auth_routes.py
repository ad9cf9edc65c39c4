# auth_routes.py
import logging
import traceback
from typing import Optional

import redis
from fastapi import APIRouter, Depends, HTTPException, Request, Response
from pydantic import BaseModel, EmailStr, field_validator
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from db import get_db, User
from cache import get_redis, delete_session
from auth import (
    get_password_hash, verify_password, create_session,
    set_session_cookie, clear_session_cookie, session_id_from_request,
)
from entitlements import init_entitlements

log = logging.getLogger("auth")
router = APIRouter(prefix="/api/auth", tags=["auth"])


def _clean_email(v):
    # before EmailStr: blank means missing
    if isinstance(v, str):
        return v.strip().lower() or None
    return v


class SignupIn(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    password: Optional[str] = None

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: Optional[str]) -> Optional[str]:
        return (v or "").strip() or None

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v):
        return _clean_email(v)


class SigninIn(BaseModel):
    email: Optional[EmailStr] = None
    password: Optional[str] = None

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v):
        return _clean_email(v)


@router.post("/signup")
def signup(
    payload: SignupIn,
    response: Response,
    db: Session = Depends(get_db),
    r: redis.Redis = Depends(get_redis),
):
    """
    Create the account, its six module allowances and a free subscription in
    one transaction, then start a session.
    """
    if not payload.name or not payload.email or not payload.password:
        raise HTTPException(status_code=400, detail="Name, email, and password are required")

    if db.query(User).filter(User.email == payload.email).first():
        raise HTTPException(status_code=409, detail="User with this email already exists")

    try:
        user = User(
            name=payload.name,
            email=payload.email,
            hashed_password=get_password_hash(payload.password),
        )
        db.add(user)
        db.flush()   # need user.id for the entitlement rows
        init_entitlements(db, user.id)
        db.commit()
        db.refresh(user)
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="User with this email already exists")
    except Exception:
        db.rollback()
        log.error("signup failed:\n%s", traceback.format_exc())
        raise HTTPException(status_code=500, detail="Failed to create user")

    set_session_cookie(response, create_session(r, user.id))
    log.info("New user id=%s", user.id)
    return {"success": True}


@router.post("/signin")
def signin(
    payload: SigninIn,
    response: Response,
    db: Session = Depends(get_db),
    r: redis.Redis = Depends(get_redis),
):
    if not payload.email or not payload.password:
        raise HTTPException(status_code=400, detail="Email and password are required")

    user = db.query(User).filter(User.email == payload.email).first()
    if not user or not verify_password(payload.password, user.hashed_password):
        raise HTTPException(status_code=401, detail="Invalid email or password")

    set_session_cookie(response, create_session(r, user.id))
    return {"success": True}


@router.post("/signout")
def signout(request: Request, response: Response, r: redis.Redis = Depends(get_redis)):
    sid = session_id_from_request(request)
    if sid:
        try:
            delete_session(r, sid)
        except redis.RedisError as e:
            log.warning("Session delete failed: %s", e)
    clear_session_cookie(response)
    return {"success": True}
