"""
Intent & Entity Extraction — keyword and pattern based, no LLM.

Pure functions. The intent tag is advisory: it is recorded in history
and logs, never used for routing (routing is driven by the session step
or the button value). Missing entities are simply absent from the result.
"""
from __future__ import annotations

import re
from typing import Any, Optional

INTENT_KEYWORDS: dict[str, list[str]] = {
    "greeting": ["hi", "hello", "hey", "start", "namaste", "namaskar"],
    "generate_business": ["business", "idea", "start", "entrepreneur", "plan", "startup"],
    "ask_question": ["question", "ask", "help", "tell", "how"],
    "location": ["location", "place", "city", "area", "village", "near"],
    "funding": ["fund", "money", "loan", "scheme", "grant", "investment"],
}

# Intents whose keywords must match a whole token; the rest match substrings.
_TOKEN_INTENTS = {"greeting", "ask_question", "location", "funding"}

INTEREST_KEYWORDS: dict[str, list[str]] = {
    "cooking": ["cook", "food"],
    "sewing": ["sew", "tailor"],
    "dairy": ["dairy", "milk"],
    "farming": ["farm", "agriculture"],
    "beauty": ["beauty", "salon"],
    "handicrafts": ["craft", "art"],
    "teaching": ["teach", "tutor"],
    "retail": ["shop", "retail"],
}

INTEREST_CATEGORIES: dict[str, str] = {
    "cooking": "food",
    "sewing": "textile",
    "dairy": "agriculture",
    "farming": "agriculture",
    "beauty": "service",
    "handicrafts": "craft",
    "teaching": "education",
    "retail": "commerce",
}

_TOKEN_RE = re.compile(r"[a-z0-9']+")
# Lead-in phrases are case-insensitive; the captured name/place must be capitalized.
_NAME_RE = re.compile(
    r"\b(?i:my name is|i am|i'm|call me|this is)\s+([A-Z][a-zA-Z]+(?:\s+[A-Z][a-zA-Z]+)?)"
)
_LOCATION_RE = re.compile(
    r"\b(?i:in|from|at|near)\s+([A-Z][a-zA-Z]+(?:[\s,]+[A-Z][a-zA-Z]+)*)"
)
_BARE_NUMBER_RE = re.compile(r"^\s*\d+\s*$")
_AMOUNT_RE = re.compile(
    r"(?:₹|rs\.?|inr)?\s*(\d[\d,]*(?:\.\d+)?)\s*(k|thousand|lakh|lakhs|lac)?\b",
    re.IGNORECASE,
)
_MULTIPLIERS = {"k": 1_000, "thousand": 1_000, "lakh": 100_000, "lakhs": 100_000, "lac": 100_000}


def tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.lower())


def detect_intent(message: str) -> str:
    """Coarse intent tag for history/logging. First matching intent wins."""
    lower = message.lower()
    tokens = set(tokenize(message))
    for intent, keywords in INTENT_KEYWORDS.items():
        if intent in _TOKEN_INTENTS:
            if any(kw in tokens for kw in keywords):
                return intent
        elif any(kw in lower for kw in keywords):
            return intent
    return "general"


def extract_budget(message: str) -> Optional[int]:
    # A message that is only a number is a menu pick, not an amount
    if _BARE_NUMBER_RE.match(message):
        return None
    match = _AMOUNT_RE.search(message)
    if not match:
        return None
    try:
        amount = float(match.group(1).replace(",", ""))
    except ValueError:
        return None
    suffix = (match.group(2) or "").lower()
    return int(amount * _MULTIPLIERS.get(suffix, 1))


def extract_interests(message: str) -> list[str]:
    lower = message.lower()
    return [
        interest for interest, keywords in INTEREST_KEYWORDS.items()
        if any(kw in lower for kw in keywords)
    ]


def extract_entities(message: str) -> dict[str, Any]:
    """
    Pull candidate facts out of free text.

    Returns a subset of: name, location, budget (int), interests
    (comma-joined interest keywords).
    """
    entities: dict[str, Any] = {}

    name = _NAME_RE.search(message)
    if name:
        entities["name"] = name.group(1).strip()

    location = _LOCATION_RE.search(message)
    if location:
        entities["location"] = location.group(1).strip(" ,")

    budget = extract_budget(message)
    if budget is not None:
        entities["budget"] = budget

    interests = extract_interests(message)
    if interests:
        entities["interests"] = ", ".join(interests)

    return entities


def categorize_interest(interest: str) -> str:
    return INTEREST_CATEGORIES.get((interest or "").lower(), "general")
