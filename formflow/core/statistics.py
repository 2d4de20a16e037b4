"""
Response statistics - per-question answer counts across submissions

Free-text questions carry no chart data. Option questions start with a
zero count for every option so unpicked options still show up; checkbox
answers count each picked option. Rating and score answers are counted by
value.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Sequence, Tuple

from formflow.contracts import Form, Response
from formflow.core.hierarchy import flatten

logger = logging.getLogger(__name__)

TEXT_TYPES = ('text', 'textarea')


@dataclass(frozen=True)
class AnswerCount:
    name: str
    value: int
    percentage: int


@dataclass(frozen=True)
class QuestionStatistics:
    question_id: str
    question_title: str
    question_type: str
    data: Tuple[AnswerCount, ...]


@dataclass(frozen=True)
class FormStatistics:
    total_responses: int
    questions: Tuple[QuestionStatistics, ...]

    def to_dict(self) -> dict:
        return {
            'totalResponses': self.total_responses,
            'questionStats': [
                {
                    'questionId': q.question_id,
                    'questionTitle': q.question_title,
                    'questionType': q.question_type,
                    'data': [
                        {'name': c.name, 'value': c.value, 'percentage': c.percentage}
                        for c in q.data
                    ],
                }
                for q in self.questions
            ],
        }


def build_statistics(form: Form, responses: Sequence[Response]) -> FormStatistics:
    """
    Aggregate answers per question.

    Args:
        form: Form whose questions define the rows
        responses: Stored submissions for the form

    Returns:
        FormStatistics: percentage = round(count / total responses * 100),
        0 when there are no responses
    """
    total = len(responses)
    stats = []

    for item in flatten(form.sections):
        question = item.question
        if question.type in TEXT_TYPES:
            stats.append(QuestionStatistics(question.id, question.title, question.type, ()))
            continue

        counts: Dict[str, int] = {option: 0 for option in question.options or ()}

        for response in responses:
            answer = response.answer_for(question.id)
            if answer is None or answer == '':
                continue
            if isinstance(answer, list):
                for option in answer:
                    counts[str(option)] = counts.get(str(option), 0) + 1
            else:
                key = _label(answer)
                counts[key] = counts.get(key, 0) + 1

        data = tuple(
            AnswerCount(name=name, value=value, percentage=_percentage(value, total))
            for name, value in counts.items()
        )
        stats.append(QuestionStatistics(question.id, question.title, question.type, data))

    logger.info(f"Built statistics for form {form.id} over {total} response(s)")
    return FormStatistics(total_responses=total, questions=tuple(stats))


def _label(answer) -> str:
    if isinstance(answer, float) and answer.is_integer():
        return str(int(answer))
    return str(answer)


def _percentage(value: int, total: int) -> int:
    if total == 0:
        return 0
    return round(value / total * 100)
