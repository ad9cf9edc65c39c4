# user_routes.py
import logging
import traceback
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from db import get_db, User, Chat
from auth import get_current_user
from entitlements import module_status

log = logging.getLogger("jyotish")
router = APIRouter(prefix="/api/user", tags=["user"])


def _iso(dt) -> Optional[str]:
    return dt.isoformat() if dt else None


def _user_out(u: User) -> dict:
    # keep key names stable for the frontend
    return {
        "id": u.id,
        "name": u.name,
        "email": u.email,
        "birthDate": u.birth_date,
        "birthTime": u.birth_time,
        "birthPlace": u.birth_place,
        "gender": u.gender,
        "createdAt": _iso(u.created_at),
        "updatedAt": _iso(u.updated_at),
    }


@router.get("/chats")
def chat_history(current: User = Depends(get_current_user), db: Session = Depends(get_db)):
    rows = (
        db.query(Chat)
        .filter(Chat.user_id == current.id)
        .order_by(Chat.created_at.desc(), Chat.id.desc())
        .all()
    )
    return {
        "chats": [
            {
                "id": c.id,
                "module": c.module,
                "question": c.question,
                "answer": c.answer,
                "createdAt": _iso(c.created_at),
            }
            for c in rows
        ]
    }


@router.get("/profile")
def get_profile(current: User = Depends(get_current_user)):
    return {"user": _user_out(current)}


class ProfileIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    birth_date: Optional[str] = Field(default=None, alias="birthDate")
    birth_time: Optional[str] = Field(default=None, alias="birthTime")
    birth_place: Optional[str] = Field(default=None, alias="birthPlace")
    gender: Optional[str] = None


@router.put("/profile")
def update_profile(
    payload: ProfileIn,
    current: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Blank or missing fields keep their stored value."""
    try:
        for field in ("name", "birth_date", "birth_time", "birth_place", "gender"):
            val = getattr(payload, field)
            if val:
                setattr(current, field, val)
        db.commit()
        db.refresh(current)
    except Exception:
        db.rollback()
        log.error("Error updating user profile:\n%s", traceback.format_exc())
        raise HTTPException(status_code=500, detail="Failed to update user profile")
    return {"user": _user_out(current)}


@router.get("/questions")
def questions_status(current: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return module_status(db, current.id)
