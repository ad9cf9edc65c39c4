# entitlements.py
"""
Per-user, per-module question allowance and account-wide subscriptions.

A user gets FREE_QUESTIONS_PER_MODULE questions in each module. Buying a
module sets its counter to UNLIMITED_SENTINEL and flags it premium; buying
"all" upserts a premium (monthly) or annual subscription; a premium or annual
plan bypasses the counters entirely.
"""
import os
import calendar
from datetime import datetime
from typing import Optional, Dict, Any

from sqlalchemy import update
from sqlalchemy.orm import Session

from db import ModuleQuestion, Subscription

MODULES = ("kundli", "relationship", "career", "compatibility", "business", "gemstone")
ALL_MODULES = "all"

PLAN_FREE = "free"
PLAN_PREMIUM = "premium"
PLAN_ANNUAL = "annual"
PREMIUM_PLANS = (PLAN_PREMIUM, PLAN_ANNUAL)

FREE_QUESTIONS_PER_MODULE = int(os.getenv("FREE_QUESTIONS_PER_MODULE", "3"))
UNLIMITED_SENTINEL = int(os.getenv("UNLIMITED_SENTINEL", "999"))

# Prices in major units (INR)
MODULE_PRICE = int(os.getenv("MODULE_PRICE_INR", "499"))
PREMIUM_PRICE = int(os.getenv("PREMIUM_PRICE_INR", "499"))
ANNUAL_PRICE = int(os.getenv("ANNUAL_PRICE_INR", "4999"))


def is_valid_module(module: str) -> bool:
    return module in MODULES


# --- Pricing --------------------------------------------------------------------
def price_for(module: str, plan: Optional[str]) -> Optional[int]:
    """
    Amount for a (module, plan) order, or None when the pair is not sold.

      "all"  + premium       -> PREMIUM_PRICE
      "all"  + annual        -> ANNUAL_PRICE
      <module> + None/module -> MODULE_PRICE
    """
    plan = (plan or "").strip().lower() or None
    if module == ALL_MODULES:
        if plan == PLAN_PREMIUM:
            return PREMIUM_PRICE
        if plan == PLAN_ANNUAL:
            return ANNUAL_PRICE
        return None
    if is_valid_module(module) and plan in (None, "module"):
        return MODULE_PRICE
    return None


def plan_for_amount(amount: int) -> str:
    return PLAN_ANNUAL if amount == ANNUAL_PRICE else PLAN_PREMIUM


# --- Dates ----------------------------------------------------------------------
def add_months(dt: datetime, months: int) -> datetime:
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def subscription_end(plan: str, start: datetime) -> datetime:
    return add_months(start, 12 if plan == PLAN_ANNUAL else 1)


# --- Reads ----------------------------------------------------------------------
def get_subscription(db: Session, user_id: int) -> Optional[Subscription]:
    return db.query(Subscription).filter(Subscription.user_id == user_id).first()


def has_premium_subscription(sub: Optional[Subscription]) -> bool:
    # the plan alone decides; end_date is informational
    return bool(sub) and sub.plan in PREMIUM_PLANS


def get_module_question(db: Session, user_id: int, module: str) -> Optional[ModuleQuestion]:
    return (
        db.query(ModuleQuestion)
        .filter(ModuleQuestion.user_id == user_id, ModuleQuestion.module == module)
        .first()
    )


def questions_remaining(db: Session, user_id: int, module: str) -> Optional[int]:
    row = get_module_question(db, user_id, module)
    return row.questions_remaining if row else None


def module_status(db: Session, user_id: int) -> Dict[str, Any]:
    sub = get_subscription(db, user_id)
    premium = has_premium_subscription(sub)
    rows = db.query(ModuleQuestion).filter(ModuleQuestion.user_id == user_id).all()
    modules = {
        row.module: {
            "questionsRemaining": "unlimited" if premium else row.questions_remaining,
            "isPremium": bool(premium or row.is_premium),
        }
        for row in rows
    }
    return {
        "subscription": {
            "plan": sub.plan if sub else PLAN_FREE,
            "isActive": bool(sub.is_active) if sub else False,
            "endDate": sub.end_date.isoformat() if sub and sub.end_date else None,
        },
        "modules": modules,
    }


# --- Writes (callers own the commit) ---------------------------------------------
def init_entitlements(db: Session, user_id: int) -> None:
    for module in MODULES:
        db.add(ModuleQuestion(
            user_id=user_id,
            module=module,
            questions_remaining=FREE_QUESTIONS_PER_MODULE,
            is_premium=False,
        ))
    db.add(Subscription(user_id=user_id, plan=PLAN_FREE, is_active=True))


def consume_question(db: Session, user_id: int, module: str) -> bool:
    """
    Take one question from (user, module). The check and the decrement are a
    single statement, so concurrent requests cannot push the counter below zero.
    """
    result = db.execute(
        update(ModuleQuestion)
        .where(
            ModuleQuestion.user_id == user_id,
            ModuleQuestion.module == module,
            ModuleQuestion.questions_remaining > 0,
        )
        .values(
            questions_remaining=ModuleQuestion.questions_remaining - 1,
            updated_at=datetime.utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def grant_module_unlimited(db: Session, user_id: int, module: str) -> None:
    row = get_module_question(db, user_id, module)
    if row is None:
        row = ModuleQuestion(user_id=user_id, module=module)
        db.add(row)
    row.questions_remaining = UNLIMITED_SENTINEL
    row.is_premium = True


def activate_subscription(db: Session, user_id: int, plan: str, now: Optional[datetime] = None) -> Subscription:
    now = now or datetime.utcnow()
    sub = get_subscription(db, user_id)
    if sub is None:
        sub = Subscription(user_id=user_id)
        db.add(sub)
    sub.plan = plan
    sub.start_date = now
    sub.end_date = subscription_end(plan, now)
    sub.is_active = True
    return sub
