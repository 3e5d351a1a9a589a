"""
AI Plan Generator
=================

Turns a normalized PreferenceSet into a structured weekly schedule (7 fixed
day labels, three nullable meal slots each) or into today's three slots, via
an OpenAI-compatible chat completions endpoint (OpenRouter).

Failures are never papered over with placeholder meals. Every failure raises
PlanGenerationError with one of four kinds so logs can tell them apart:

    unavailable        no API key configured
    upstream_error     network failure, timeout or non-2xx response
    empty_content      the model answered with nothing
    malformed_content  the answer could not be decoded into the schema

Model output is decoded leniently: markdown fences are stripped and, if the
text still is not JSON, the first balanced {...} block is extracted.
"""

import hashlib
import json
import re
import time
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Tuple

import requests

from config import (
    CHAT_API_URL,
    CHAT_MODEL,
    DAY_KEYS,
    MEAL_SLOTS,
    get_config_value,
    get_llm_timeouts,
    load_chat_api_key,
)
from preferences import PreferenceSet, normalize_preferences
from prompts import build_meal_plan_messages
from tools.logging_utils import get_logger

logger = get_logger(__name__)

UNAVAILABLE = 'unavailable'
UPSTREAM_ERROR = 'upstream_error'
EMPTY_CONTENT = 'empty_content'
MALFORMED_CONTENT = 'malformed_content'

ERROR_KINDS = (UNAVAILABLE, UPSTREAM_ERROR, EMPTY_CONTENT, MALFORMED_CONTENT)


class PlanGenerationError(RuntimeError):
    """Plan generation failed; `kind` is one of ERROR_KINDS."""

    def __init__(self, kind: str, message: str):
        super().__init__(message)
        self.kind = kind


# =============================================================================
# Decoding helpers
# =============================================================================

def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence (```json ... ```)."""
    trimmed = text.strip()
    if trimmed.startswith("```"):
        trimmed = re.sub(r"^```[a-zA-Z0-9]*\s*", "", trimmed)
        trimmed = re.sub(r"```\s*$", "", trimmed)
    return trimmed.strip()


def extract_first_json_block(text: str) -> Optional[str]:
    """Extract the first JSON object/array by balancing braces/brackets."""
    start = None
    stack = []
    in_string = False
    escape = False

    for i, ch in enumerate(text):
        if start is not None and in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"' and start is not None:
            in_string = True
        elif ch in "{[":
            if start is None:
                start = i
            stack.append(ch)
        elif ch in "}]" and stack:
            opening = stack.pop()
            if (opening == "{" and ch != "}") or (opening == "[" and ch != "]"):
                return None
            if not stack:
                return text[start:i + 1]
    return None


def _safe_decode(text: str) -> Optional[Any]:
    try:
        return json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None


def decode_model_content(content: str) -> Optional[Dict[str, Any]]:
    """
    Best-effort decode of model output into a JSON object.

    Tries, in order: the fence-stripped text, the first balanced block, and
    the slice between the first '{' and the last '}'. Returns None if none of
    them decodes to an object.
    """
    clean = strip_code_fences(content)
    decoded = _safe_decode(clean)

    if not isinstance(decoded, dict):
        block = extract_first_json_block(clean)
        if block:
            decoded = _safe_decode(block)

    if not isinstance(decoded, dict):
        first = clean.find("{")
        last = clean.rfind("}")
        if first != -1 and last > first:
            decoded = _safe_decode(clean[first:last + 1])

    return decoded if isinstance(decoded, dict) else None


# =============================================================================
# Schedule mapping
# =============================================================================

def week_start_for(day: date) -> date:
    """Monday of the week containing day."""
    return day - timedelta(days=day.weekday())


def day_key_for(day: date) -> str:
    return DAY_KEYS[day.weekday()]


def meal_id(name: str, slot: str, date_str: str, day_key: str) -> str:
    """Stable id so identical generations produce identical ids."""
    return hashlib.sha1(f"{name}{slot}{date_str}{day_key}".encode("utf-8")).hexdigest()[:16]


def map_meals_for_day(meals: Any, date_str: str, day_key: str) -> Dict[str, Optional[Dict[str, Any]]]:
    """Map raw model meals onto exactly the three slots; unusable entries become None."""
    meals = meals if isinstance(meals, dict) else {}
    out = {}
    for slot in MEAL_SLOTS:
        meal = meals.get(slot)
        if not isinstance(meal, dict) or not str(meal.get('name') or '').strip():
            out[slot] = None
            continue
        name = str(meal['name']).strip()
        out[slot] = {
            'id': meal_id(name, slot, date_str, day_key),
            'name': name,
            'category': meal.get('category'),
            'area': meal.get('area'),
            'thumbnail': meal.get('thumb') or meal.get('thumbnail'),
        }
    return out


def map_days(raw_days: List[Any], week_start: date) -> Dict[str, Dict[str, Any]]:
    """Map the model's day list onto the seven fixed labels by position."""
    mapped = {}
    for idx, day_key in enumerate(DAY_KEYS):
        raw_day = raw_days[idx] if idx < len(raw_days) and isinstance(raw_days[idx], dict) else {}
        date_str = (week_start + timedelta(days=idx)).isoformat()
        mapped[day_key] = {
            'date': date_str,
            'meals': map_meals_for_day(raw_day.get('meals'), date_str, day_key),
        }
    return mapped


def empty_meals() -> Dict[str, None]:
    return {slot: None for slot in MEAL_SLOTS}


# =============================================================================
# Generator
# =============================================================================

class PlanGenerator:
    """OpenRouter-backed weekly/daily meal schedule generator."""

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None,
                 api_url: Optional[str] = None,
                 timeouts: Optional[Tuple[float, float]] = None):
        self._api_key = api_key
        self.model = model or CHAT_MODEL
        self.api_url = (api_url or CHAT_API_URL).rstrip("/")
        self.timeouts = timeouts

    def generate_weekly(self, preferences, today: Optional[date] = None) -> Dict[str, Any]:
        """Full week for the Monday-anchored week containing today."""
        prefs = normalize_preferences(preferences)
        today = today or date.today()
        week_start = week_start_for(today)
        week_end = week_start + timedelta(days=6)

        payload = self._call_llm(prefs, len(DAY_KEYS))
        days = map_days(payload['days'], week_start)
        today_key = day_key_for(today)
        daily = days.get(today_key) or {'date': today.isoformat(), 'meals': empty_meals()}

        return {
            'week_start': week_start.isoformat(),
            'week_end': week_end.isoformat(),
            'days': days,
            'daily': {'date': daily['date'], 'meals': daily['meals']},
        }

    def generate_daily(self, preferences, today: Optional[date] = None) -> Dict[str, Optional[Dict[str, Any]]]:
        """Exactly three slots (breakfast/lunch/dinner) for today."""
        prefs = normalize_preferences(preferences)
        today = today or date.today()

        payload = self._call_llm(prefs, 1)
        first = payload['days'][0] if payload['days'] and isinstance(payload['days'][0], dict) else {}
        return map_meals_for_day(first.get('meals'), today.isoformat(), day_key_for(today))

    def _resolve_api_key(self) -> Optional[str]:
        if self._api_key:
            return self._api_key
        return load_chat_api_key()

    def _call_llm(self, prefs: PreferenceSet, day_count: int) -> Dict[str, Any]:
        """POST the chat completion and decode it into {'days': [...]}."""
        api_key = self._resolve_api_key()
        if not api_key:
            logger.error("❌ AI meal plan missing OPENROUTER_API_KEY")
            raise PlanGenerationError(UNAVAILABLE, "AI meal planner unavailable (missing API key).")

        diagnostics = {
            'days_requested': day_count,
            'diet': prefs.diet,
            'goal': prefs.goal,
            'country': prefs.country or 'Any',
            'portion': prefs.portion,
            'allergen_count': len(prefs.allergens),
        }
        logger.info(f"🚀 AI meal plan request start {diagnostics}")

        start = time.monotonic()
        try:
            response = requests.post(
                f"{self.api_url}/chat/completions",
                headers={
                    "Authorization": f"Bearer {api_key}",
                    "Content-Type": "application/json",
                },
                json={
                    "model": self.model,
                    "messages": build_meal_plan_messages(prefs, day_count),
                    "temperature": get_config_value("llm", "temperature", 0.6),
                    "max_tokens": get_config_value("llm", "max_tokens", 1200),
                    "response_format": {"type": "json_object"},
                },
                timeout=self.timeouts or get_llm_timeouts(),
            )
        except requests.exceptions.RequestException as e:
            ms = int((time.monotonic() - start) * 1000)
            logger.error(f"❌ AI meal plan request failed after {ms}ms {diagnostics}: {e}")
            raise PlanGenerationError(UPSTREAM_ERROR, f"AI meal planner failed: {e}") from e

        ms = int((time.monotonic() - start) * 1000)

        if not response.ok:
            logger.error(
                f"❌ AI meal plan non-200: status={response.status_code} ms={ms} "
                f"{diagnostics} body={response.text[:500]}"
            )
            raise PlanGenerationError(UPSTREAM_ERROR, f"AI meal planner error: {response.status_code}")

        try:
            body = response.json()
        except ValueError:
            body = None
        content = None
        if isinstance(body, dict):
            choices = body.get("choices") or []
            if choices and isinstance(choices[0], dict):
                content = (choices[0].get("message") or {}).get("content")

        if isinstance(content, dict):
            decoded = content
        else:
            if not isinstance(content, str) or not content.strip():
                logger.error(f"❌ AI meal plan empty content (ms={ms})")
                raise PlanGenerationError(EMPTY_CONTENT, "AI meal planner returned empty content.")
            decoded = decode_model_content(content)
            if decoded is None:
                logger.error(
                    f"❌ AI meal plan invalid JSON (ms={ms}) preview={strip_code_fences(content)[:400]!r}"
                )
                raise PlanGenerationError(MALFORMED_CONTENT, "AI meal planner returned invalid JSON.")

        if not isinstance(decoded.get('days'), list):
            logger.error(f"❌ AI meal plan missing 'days' list (ms={ms}) keys={list(decoded)[:10]}")
            raise PlanGenerationError(MALFORMED_CONTENT, "AI meal planner returned invalid JSON.")

        logger.info(f"✅ AI meal plan success ms={ms} days_received={len(decoded['days'])}")
        return decoded
