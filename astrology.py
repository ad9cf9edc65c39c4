# astrology.py

import os
import json
import logging
from typing import Optional, Dict, Any

from openai import OpenAI

from cache import get_cached_data, cache_data, DEFAULT_CACHE_TTL

log = logging.getLogger("astrology")

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "").strip()
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o")

APOLOGY = (
    "I apologize, but I am unable to provide an astrological reading at this moment. "
    "Please try again later."
)
EMPTY_COMPLETION = "Unable to generate a response."

BASE_PROMPT = "You are an expert astrologer specializing in Vedic astrology (Jyotish)."
CLOSING_PROMPT = "Provide culturally relevant guidance based on traditional Indian astrology principles."

MODULE_PROMPTS = {
    "kundli": "You analyze birth charts (kundli) to provide insights about a person's life path, personality, and potential.",
    "relationship": "You specialize in relationship astrology, providing insights about interpersonal dynamics, compatibility, and relationship patterns.",
    "career": "You focus on career astrology, offering guidance on professional paths, timing for career moves, and vocational aptitudes.",
    "compatibility": "You are an expert in matchmaking and compatibility analysis, assessing how two individuals' charts interact.",
    "business": "You specialize in business astrology, providing insights on timing for business decisions, partnerships, and financial matters.",
    "gemstone": "You are knowledgeable about astrological gemstones (ratnas) and their effects based on planetary positions in a birth chart.",
}

# Order matters: it is part of the cache key
BIRTH_FIELDS = ("name", "birthDate", "birthTime", "birthPlace", "gender")

_client: Optional[OpenAI] = None


def get_openai_client() -> Optional[OpenAI]:
    global _client
    if _client is None and OPENAI_API_KEY:
        _client = OpenAI(api_key=OPENAI_API_KEY)
    return _client


def system_prompt(module: str) -> str:
    parts = [BASE_PROMPT]
    if module in MODULE_PROMPTS:
        parts.append(MODULE_PROMPTS[module])
    parts.append(CLOSING_PROMPT)
    return " ".join(parts)


def format_birth_details(details: Optional[Dict[str, Any]]) -> str:
    if not details:
        return "Birth details not provided"

    def _v(k: str) -> str:
        return details.get(k) or "Not provided"

    return (
        f"Name: {_v('name')}, Date of Birth: {_v('birthDate')}, "
        f"Time of Birth: {_v('birthTime')}, Place of Birth: {_v('birthPlace')}, "
        f"Gender: {_v('gender')}"
    )


def cache_key(module: str, question: str, details: Optional[Dict[str, Any]]) -> str:
    ordered = None if details is None else {k: details.get(k) for k in BIRTH_FIELDS}
    return f"astrology:{module}:{question}:{json.dumps(ordered, separators=(',', ':'))}"


def generate_astrology_response(
    module: str,
    question: str,
    birth_details: Optional[Dict[str, Any]],
    r=None,
    client: Optional[OpenAI] = None,
) -> str:
    """
    Answer `question` for `module` using the birth profile.

    Cached answers (keyed on the exact module/question/details) are returned
    without calling the provider. Provider failures come back as APOLOGY and
    are never cached.
    """
    key = cache_key(module, question, birth_details)
    if r is not None:
        cached = get_cached_data(r, key)
        if cached:
            return cached

    if client is None:
        log.warning("OpenAI client not configured; returning apology for module=%s", module)
        return APOLOGY

    try:
        response = client.chat.completions.create(
            model=OPENAI_MODEL,
            messages=[
                {"role": "system", "content": system_prompt(module)},
                {
                    "role": "user",
                    "content": f"Birth Details: {format_birth_details(birth_details)}\n\nQuestion: {question}",
                },
            ],
            temperature=0.7,
            max_tokens=1000,
        )
        text = (response.choices[0].message.content or "").strip() or EMPTY_COMPLETION
    except Exception as e:
        log.warning("AI completion failed for module=%s: %s", module, e)
        return APOLOGY

    if r is not None:
        cache_data(r, key, text, DEFAULT_CACHE_TTL)
    return text
