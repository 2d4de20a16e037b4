"""
Condition Evaluator - single comparison between a stored answer and a rule value

Responsibilities:
- Normalise both sides to lower-cased strings
- Apply one of the six rule conditions

Design principles:
- Pure and total: never raises, unknown input evaluates to False
- Case-insensitive string comparison
- Numeric comparison only when both sides parse as numbers

Normalisation:
- None -> ''
- list (checkbox answers) -> comma-joined items: ['A', 'B'] -> 'a,b'
- integral floats drop the fraction: 3.0 -> '3'
- booleans -> 'true' / 'false'
"""

import logging
import math
import re
from typing import Any, Optional

logger = logging.getLogger(__name__)

# Leading numeric prefix, the same prefix a lenient float parser accepts
_NUMBER_PREFIX = re.compile(r'^\s*[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?')


def normalize(value: Any) -> str:
    """
    Render an answer or rule value as a lower-cased comparison string.

    Args:
        value: Answer value of any shape

    Returns:
        str: Normalised string ('' for None)
    """
    if value is None:
        return ''
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ','.join(normalize(item) for item in value)
    return str(value).lower()


def parse_number(text: str) -> Optional[float]:
    """
    Parse the leading number of a string.

    Returns:
        float, or None when the string has no numeric prefix
    """
    match = _NUMBER_PREFIX.match(text)
    if not match:
        return None
    number = float(match.group(0))
    if math.isnan(number):
        return None
    return number


def evaluate(condition: str, actual_value: Any, target_value: Any) -> bool:
    """
    Evaluate one rule condition.

    Args:
        condition: equals, not_equals, contains, not_contains,
            greater_than, less_than
        actual_value: Stored answer of the rule's source question
            (None when unanswered or the source question does not exist)
        target_value: The rule's comparison value

    Returns:
        bool: True if the condition holds

    Note:
        greater_than/less_than are False whenever either side is not
        numeric, regardless of operator.
    """
    value = normalize(actual_value)
    target = normalize(target_value)

    if condition == 'equals':
        return value == target

    if condition == 'not_equals':
        return value != target

    if condition == 'contains':
        return target in value

    if condition == 'not_contains':
        return target not in value

    if condition in ('greater_than', 'less_than'):
        left = parse_number(value)
        right = parse_number(target)
        if left is None or right is None:
            return False
        if condition == 'greater_than':
            return left > right
        return left < right

    logger.warning(f"Unknown condition: {condition}")
    return False
