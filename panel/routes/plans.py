"""Meal plan routes - preferences in, current plan out."""
import re
from datetime import timedelta
from typing import Any, Dict, Optional, Tuple

from flask import Blueprint, current_app, jsonify, request

from plan_store import PlanRecord

bp = Blueprint('plans', __name__)

MAX_FIELD_LENGTH = 255
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
TEXT_FIELDS = ('diet', 'goal', 'country', 'portion')


def get_service():
    """MealPlanService for this app, built on first use."""
    service = current_app.extensions.get('meal_plan_service')
    if service is None:
        from meal_plan_service import MealPlanService
        service = MealPlanService()
        current_app.extensions['meal_plan_service'] = service
    return service


def validate_sync_payload(data: Any) -> Tuple[Dict[str, Any], Dict[str, str]]:
    """Check types and lengths of the sync body. Returns (clean, errors)."""
    errors = {}
    clean = {}
    if not isinstance(data, dict):
        return clean, {'body': 'Expected a JSON object'}

    email = data.get('user_email')
    if email is not None:
        if not isinstance(email, str) or len(email) > MAX_FIELD_LENGTH or not EMAIL_RE.match(email.strip()):
            errors['user_email'] = 'Must be a valid email address'
        else:
            clean['user_email'] = email.strip().lower()

    for name in TEXT_FIELDS:
        value = data.get(name)
        if value is None:
            continue
        if not isinstance(value, str) or len(value) > MAX_FIELD_LENGTH:
            errors[name] = f'Must be a string of at most {MAX_FIELD_LENGTH} characters'
        else:
            clean[name] = value

    allergens = data.get('allergens')
    if allergens is not None:
        if not isinstance(allergens, list):
            errors['allergens'] = 'Must be a list of strings'
        elif any(not isinstance(a, str) or len(a) > MAX_FIELD_LENGTH for a in allergens):
            errors['allergens'] = f'Each allergen must be a string of at most {MAX_FIELD_LENGTH} characters'
        else:
            clean['allergens'] = allergens

    force = data.get('force_refresh', False)
    if not isinstance(force, bool):
        errors['force_refresh'] = 'Must be a boolean'
    else:
        clean['force_refresh'] = force

    return clean, errors


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def plan_payload(plan: PlanRecord, weekly: bool, daily: bool) -> Dict[str, Any]:
    """Shape a record for the client; week bounds fall back to the stored week_start."""
    content = dict(plan.content or {})
    if not content.get('week_start') and plan.week_start:
        content['week_start'] = plan.week_start.isoformat()
    if not content.get('week_end') and plan.week_start:
        content['week_end'] = (plan.week_start + timedelta(days=6)).isoformat()
    content.setdefault('week_start', None)
    content.setdefault('week_end', None)

    return {
        'plan': content,
        'meta': plan.requested_preferences or plan.applied_preferences or {},
        'generated_at': _iso(plan.generated_at),
        'daily_refreshed_at': _iso(plan.daily_refreshed_at),
        'expires_at': _iso(plan.expires_at),
        'status': plan.status,
        'pending': plan.is_in_flight,
        'error': plan.last_error,
        'refreshed': {
            'weekly': weekly,
            'daily': daily,
        },
    }


@bp.route('/sync', methods=['POST'])
def sync():
    """Ensure the caller's plan is fresh; never waits for generation."""
    data, errors = validate_sync_payload(request.get_json(silent=True))
    if errors:
        return jsonify({'errors': errors}), 422

    user_key = data.get('user_email')
    preferences = {name: data.get(name) for name in TEXT_FIELDS}
    preferences['allergens'] = data.get('allergens') or []

    service = get_service()
    existing = service.store.find_by_user(user_key)
    result = service.ensure_plan(existing, preferences, data['force_refresh'], user_key=user_key)

    return jsonify(plan_payload(result.record, result.weekly_regenerated, result.daily_refreshed))
