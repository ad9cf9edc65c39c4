# astrology_routes.py
import logging
import traceback
from typing import Optional

import redis
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from db import get_db, User, Chat
from auth import get_current_user
from cache import get_redis
from astrology import generate_astrology_response, get_openai_client
import entitlements as ent

log = logging.getLogger("astrology")
router = APIRouter(prefix="/api/astrology", tags=["astrology"])


class BirthDetailsIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    date_of_birth: Optional[str] = Field(default=None, alias="dateOfBirth")
    time_of_birth: Optional[str] = Field(default=None, alias="timeOfBirth")
    place_of_birth: Optional[str] = Field(default=None, alias="placeOfBirth")
    gender: Optional[str] = None


class QuestionIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    question: Optional[str] = None
    birth_details: Optional[BirthDetailsIn] = Field(default=None, alias="birthDetails")


def _birth_profile(user: User, override: Optional[BirthDetailsIn]) -> dict:
    o = override or BirthDetailsIn()
    return {
        "name": user.name,
        "birthDate": o.date_of_birth or user.birth_date,
        "birthTime": o.time_of_birth or user.birth_time,
        "birthPlace": o.place_of_birth or user.birth_place,
        "gender": o.gender or user.gender,
    }


def _payment_required():
    return JSONResponse(
        {"error": "No questions remaining", "paymentRequired": True},
        status_code=402,
    )


@router.post("/{module}")
def ask_question(
    module: str,
    body: QuestionIn,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    r: redis.Redis = Depends(get_redis),
    ai_client=Depends(get_openai_client),
):
    """
    Answer one question in `module`.

    Subscribers ask without limit. Everyone else spends one question from the
    module's allowance; an empty allowance returns 402 before any AI call.
    """
    if not ent.is_valid_module(module):
        raise HTTPException(status_code=400, detail="Invalid module")

    question = (body.question or "").strip()
    if not question:
        raise HTTPException(status_code=400, detail="Question is required")

    try:
        premium = ent.has_premium_subscription(ent.get_subscription(db, current_user.id))

        if not premium:
            if not ent.consume_question(db, current_user.id, module):
                db.rollback()
                return _payment_required()
            db.commit()

        answer = generate_astrology_response(
            module,
            body.question,
            _birth_profile(current_user, body.birth_details),
            r=r,
            client=ai_client,
        )

        db.add(Chat(user_id=current_user.id, module=module, question=body.question, answer=answer))
        db.commit()

        remaining = "unlimited" if premium else ent.questions_remaining(db, current_user.id, module)
        return {"success": True, "response": answer, "questionsRemaining": remaining}
    except HTTPException:
        raise
    except Exception:
        db.rollback()
        log.error("Error processing astrology question:\n%s", traceback.format_exc())
        raise HTTPException(status_code=500, detail="Failed to process question")
