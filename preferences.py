"""
Preference normalization and fingerprinting.

A PreferenceSet is the fixed shape every layer works with; raw request
dicts are normalized once at the edge. The fingerprint is an md5 over the
sorted-key JSON encoding of the normalized set, used only to detect that the
preferences behind a stored plan have changed.
"""

import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple, Union

from config import DEFAULT_DIET, DEFAULT_GOAL, DEFAULT_PORTION


@dataclass(frozen=True)
class PreferenceSet:
    """Normalized dietary inputs driving plan generation."""
    diet: str = DEFAULT_DIET
    goal: str = DEFAULT_GOAL
    country: Optional[str] = None
    portion: str = DEFAULT_PORTION
    allergens: Tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'diet': self.diet,
            'goal': self.goal,
            'country': self.country,
            'portion': self.portion,
            'allergens': list(self.allergens),
        }


def _clean_text(value: Any, default: Optional[str]) -> Optional[str]:
    if value is None:
        return default
    text = str(value).strip()
    return text if text else default


def _clean_allergens(raw: Union[None, str, Iterable[Any]]) -> Tuple[str, ...]:
    if raw is None:
        return ()
    if isinstance(raw, str):
        raw = [raw]
    cleaned = set()
    for item in raw:
        if item is None:
            continue
        text = str(item).strip()
        if text:
            cleaned.add(text)
    return tuple(sorted(cleaned))


def normalize_preferences(raw: Union[None, PreferenceSet, Mapping[str, Any]]) -> PreferenceSet:
    """
    Apply defaults and cleanup to a raw preference mapping.

    Missing or blank diet/goal/portion fall back to their defaults, a blank
    country becomes None, allergens are trimmed, de-duplicated and sorted.
    Unknown keys (e.g. user_email) are ignored.
    """
    if isinstance(raw, PreferenceSet):
        return raw
    raw = raw or {}
    return PreferenceSet(
        diet=_clean_text(raw.get('diet'), DEFAULT_DIET),
        goal=_clean_text(raw.get('goal'), DEFAULT_GOAL),
        country=_clean_text(raw.get('country'), None),
        portion=_clean_text(raw.get('portion'), DEFAULT_PORTION),
        allergens=_clean_allergens(raw.get('allergens')),
    )


def canonical_json(prefs: PreferenceSet) -> str:
    """Sorted-key, whitespace-free JSON encoding of a normalized set."""
    return json.dumps(prefs.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def fingerprint(prefs: Union[None, PreferenceSet, Mapping[str, Any]]) -> str:
    """128-bit hex fingerprint of the normalized preference set."""
    normalized = normalize_preferences(prefs)
    return hashlib.md5(canonical_json(normalized).encode("utf-8")).hexdigest()
