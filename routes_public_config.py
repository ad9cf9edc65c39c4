# routes_public_config.py
# -*- coding: utf-8 -*-
from fastapi import APIRouter
import os

import entitlements as ent

router = APIRouter(prefix="/api", tags=["public"])

CURRENCY = os.getenv("PAY_DEFAULT_CURRENCY", "INR").upper()
CURRENCY_SYMBOL = "₹" if CURRENCY == "INR" else "$"

MODULE_TITLES = {
    "kundli": "Kundli Analysis",
    "relationship": "Relationship Guidance",
    "career": "Career Guidance",
    "compatibility": "Compatibility Matching",
    "business": "Business Astrology",
    "gemstone": "Gemstone Recommendation",
}

@router.get("/public-config")
def public_config():
    return {
        "currency": CURRENCY,
        "symbol": CURRENCY_SYMBOL,
        "modules": [{"id": m, "title": MODULE_TITLES.get(m, m.title())} for m in ent.MODULES],
        "plans": {
            "free": {
                "name": "Free",
                "price": 0,
                "limits": {"questions_per_module": ent.FREE_QUESTIONS_PER_MODULE},
            },
            "module": {
                "name": "Single Module",
                "price": ent.MODULE_PRICE,
                "period": "lifetime",
                "limits": {"questions_per_module": "unlimited", "modules": 1},
            },
            "premium": {
                "name": "Premium",
                "price": ent.PREMIUM_PRICE,
                "period": "month",
                "limits": {"questions_per_module": "unlimited", "modules": len(ent.MODULES)},
            },
            "annual": {
                "name": "Annual",
                "price": ent.ANNUAL_PRICE,
                "period": "year",
                "limits": {"questions_per_module": "unlimited", "modules": len(ent.MODULES)},
            },
        },
    }
