"""
Answer shape handling.

Answer values arrive untyped from the rendering layer. coerce_answer() is the
boundary check that turns them into the shape each question type stores:

    text, textarea, select, radio  -> str
    checkbox                       -> list[str]
    rating, score                  -> int or float

is_answered() is the single definition of "unanswered" used by validation
and section completeness.
"""

import logging
from typing import Any, Optional

from formflow.contracts import Question
from formflow.utils.policy import DEFAULT_POLICY, RuntimePolicy

logger = logging.getLogger(__name__)

NUMERIC_TYPES = ('rating', 'score')


def coerce_answer(question: Question, value: Any) -> Any:
    """
    Coerce a raw answer to the stored shape for the question's type.

    None and empty strings pass through unchanged (clearing an answer is
    allowed for every type).

    Raises:
        ValueError: If the value cannot take the question's shape, or an
            option answer is not one of the question's options
    """
    if value is None or value == '':
        return value

    if question.type == 'checkbox':
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, (list, tuple)):
            raise ValueError(f"Question '{question.id}' expects a list of options")
        values = [str(v) for v in value]
        _check_options(question, values)
        return values

    if question.type in NUMERIC_TYPES:
        if isinstance(value, bool):
            raise ValueError(f"Question '{question.id}' expects a number")
        try:
            number = float(value)
        except (TypeError, ValueError):
            raise ValueError(f"Question '{question.id}' expects a number, got {value!r}")
        _check_range(question, number)
        return int(number) if number.is_integer() else number

    if isinstance(value, (list, tuple, dict)):
        raise ValueError(f"Question '{question.id}' expects a single value")

    text = str(value)
    if question.type in ('select', 'radio'):
        _check_options(question, [text])
    return text


def _check_options(question: Question, values):
    if not question.options:
        return
    unknown = [v for v in values if v not in question.options]
    if unknown:
        raise ValueError(f"Question '{question.id}' has no option(s) {unknown}")


def _check_range(question: Question, number: float):
    if question.type == 'rating' and question.rating_scale:
        low, high = 0, question.rating_scale
    elif question.type == 'score' and question.score_config:
        low, high = question.score_config.min_score, question.score_config.max_score
    else:
        return
    if not low <= number <= high:
        raise ValueError(f"Question '{question.id}' expects a value between {low} and {high}")


def is_answered(
    value: Any,
    question: Optional[Question] = None,
    policy: RuntimePolicy = DEFAULT_POLICY
) -> bool:
    """
    Whether a stored answer counts as given.

    By default this is plain truthiness: None, '', [], and 0 are all
    unanswered. That includes a legitimate rating or score of 0. With
    policy.numeric_zero_is_answer, numbers on rating/score questions are
    answered whatever their value.
    """
    if (
        policy.numeric_zero_is_answer
        and question is not None
        and question.type in NUMERIC_TYPES
        and isinstance(value, (int, float))
        and not isinstance(value, bool)
    ):
        return True
    return bool(value)
