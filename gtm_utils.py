"""
Shared helpers for the GTM container tools: content hashing, cloning,
grouping, scoring and a few entity predicates.
"""

import copy
import json
import math
import re
from collections import OrderedDict
from typing import Any, Callable, Dict, List

VARIABLE_REFERENCE_PATTERN = re.compile(r'\{\{([^}]+)\}\}')

SEVERITY_WEIGHTS = {
    'critical': 10,
    'high': 5,
    'medium': 2,
    'low': 1
}

_BASE36_DIGITS = '0123456789abcdefghijklmnopqrstuvwxyz'


def compact_json(value: Any) -> str:
    """Serialize without whitespace, keeping key insertion order."""
    return json.dumps(value, separators=(',', ':'), ensure_ascii=False)


def rolling_hash(text: str) -> int:
    """
    Simple 31-multiplier string hash folded to a signed 32-bit integer.

    Equal strings always produce equal hashes. Different strings can
    collide, so callers must treat the result as a grouping heuristic
    and never as an identity.
    """
    h = 0
    for ch in text:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h)


def to_base36(number: int) -> str:
    if number == 0:
        return '0'
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36_DIGITS[remainder])
    return ''.join(reversed(digits))


def generate_unique_id(entity: Dict) -> str:
    """Stable id for an entity derived from its content."""
    if not isinstance(entity, dict):
        entity = {}
    content = OrderedDict()
    for key in ('type', 'name', 'parameter', 'filter', 'triggerId', 'fingerprint'):
        if entity.get(key) is not None:
            content[key] = entity[key]
    return 'uid_' + to_base36(rolling_hash(compact_json(content)))


def deep_clone(obj: Any) -> Any:
    return copy.deepcopy(obj)


def group_by(items: List, key: Callable) -> Dict[Any, List]:
    """Group items by key function, keeping first-seen order of the groups."""
    groups = OrderedDict()
    for item in items:
        groups.setdefault(key(item), []).append(item)
    return groups


def calculate_score(issues: List[Dict], total: float = 100) -> int:
    """
    Convert issues into a 0-100 score.

    Each issue costs its severity weight; the summed penalty is scaled
    by ``total`` so categories with fewer possible findings can use a
    smaller denominator.
    """
    if not total or total <= 0:
        total = 100
    penalty = sum(SEVERITY_WEIGHTS.get(issue.get('severity'), 1) for issue in issues)
    score = max(0.0, 100 - (penalty / total) * 100)
    return int(min(100, math.floor(score + 0.5)))


def get_score_grade(score: float) -> str:
    if score >= 90:
        return 'A'
    if score >= 80:
        return 'B'
    if score >= 70:
        return 'C'
    if score >= 60:
        return 'D'
    return 'F'


def is_built_in(entity: Dict) -> bool:
    """True for GTM system entities that users cannot delete."""
    if not isinstance(entity, dict):
        return False
    url = entity.get('tagManagerUrl')
    if isinstance(url, str) and '/builtins/' in url:
        return True
    entity_type = entity.get('type')
    return isinstance(entity_type, str) and entity_type.startswith('k')


def entity_name(entity: Dict) -> str:
    name = entity.get('name') if isinstance(entity, dict) else None
    return name if isinstance(name, str) else ''


def slugify(text: str, default: str = 'unknown_event') -> str:
    """Lowercase event-name style slug: letters, digits and single underscores."""
    if not isinstance(text, str):
        return default
    slug = re.sub(r'[^a-z0-9\s_]', '', text.lower())
    slug = re.sub(r'\s+', '_', slug)
    slug = re.sub(r'_+', '_', slug)
    slug = slug.strip('_')
    return slug or default


def extract_variable_references(value: Any) -> List[str]:
    """Names referenced as {{Name}} inside a string, in order of appearance."""
    if not isinstance(value, str):
        return []
    return [match.strip() for match in VARIABLE_REFERENCE_PATTERN.findall(value) if match.strip()]


def as_list(value: Any) -> List:
    """Treat a missing or wrongly typed collection field as empty."""
    return value if isinstance(value, list) else []


def get_parameter(entity: Dict, key: str) -> Dict:
    """Top-level parameter dict with the given key, or None."""
    if not isinstance(entity, dict):
        return None
    for param in as_list(entity.get('parameter')):
        if isinstance(param, dict) and param.get('key') == key:
            return param
    return None


def get_parameter_value(entity: Dict, key: str, default: Any = None) -> Any:
    param = get_parameter(entity, key)
    if param is None:
        return default
    return param.get('value', default)
