"""
Meal Plan Prompts Configuration
===============================

LLM prompts used by the plan generator. Keeping them out of the client code
makes it easier to tune wording without touching request/parsing logic.

The user message is a JSON document (preferences, requested day count, an
example schema and the rules) so the model sees exactly the shape it must
return.
"""

import json
from typing import Any, Dict

from preferences import PreferenceSet

MEAL_PLAN_SYSTEM_PROMPT = (
    "You are a nutritionist that plans realistic meals. "
    "Return ONLY JSON with no fences, no commentary."
)

# Example of one day entry shown to the model
MEAL_PLAN_SCHEMA_EXAMPLE = {
    "days": [
        {
            "day": "Mon",
            "meals": {
                "breakfast": {
                    "name": "Chicken Salad",
                    "category": "Salad",
                    "area": "American",
                    "thumb": "https://example.com/img.jpg",
                },
                "lunch": {"name": "..."},
                "dinner": {"name": "..."},
            },
        }
    ]
}


def build_meal_plan_request(prefs: PreferenceSet, day_count: int) -> Dict[str, Any]:
    """Structured request body for the user message."""
    country = prefs.country or "Any"
    allergens = list(prefs.allergens)
    return {
        "preferences": {
            "diet": prefs.diet,
            "goal": prefs.goal,
            "country": country,
            "allergens": allergens,
            "portion": prefs.portion,
        },
        "days": day_count,
        "schema": MEAL_PLAN_SCHEMA_EXAMPLE,
        "rules": {
            "avoid_allergens": allergens,
            "respect_diet": prefs.diet,
            "respect_goal": prefs.goal,
            "adapt_country": country,
            "keep_portion_note": prefs.portion,
            "keep names short": True,
        },
        "output": "Return only JSON. Do not include markdown fences or explanations.",
    }


def build_meal_plan_messages(prefs: PreferenceSet, day_count: int) -> list:
    """Chat messages for a weekly (day_count=7) or daily (day_count=1) plan."""
    return [
        {"role": "system", "content": MEAL_PLAN_SYSTEM_PROMPT},
        {"role": "user", "content": json.dumps(build_meal_plan_request(prefs, day_count))},
    ]
