"""
Data contracts for the form runtime.

This module defines the immutable structures passed between the builder,
the logic engine, the navigation engine and the persistence layer.

Design principles:
- Frozen dataclasses (immutable after creation)
- No evaluation logic (resolver/navigation live in formflow.core)
- Shape checks only at the JSON boundary (from_dict)
- Persisted JSON keys are camelCase and must round-trip unchanged

Contents:
- Rule: one conditional-logic edge (if source answer matches, apply action)
- Question, ScoreConfig: one respondent-facing prompt
- FormSection, FormCover, Form: the design artifact
- Response: one stored submission
- Capabilities: permission flags for the current actor
- QuestionView: rendering contract for the current section

Usage:
    from formflow.contracts import Form, Question, Rule
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, Union


QUESTION_TYPES = ('text', 'textarea', 'select', 'radio', 'checkbox', 'rating', 'score')
OPTION_TYPES = ('select', 'radio', 'checkbox')
CONDITIONS = ('equals', 'not_equals', 'contains', 'not_contains', 'greater_than', 'less_than')
ACTIONS = ('show', 'hide', 'jump_to', 'required')
RATING_ICONS = ('star', 'heart', 'thumbsUp', 'circle', 'square')
ALIGNMENTS = ('left', 'center')

AnswerValue = Union[str, int, float, List[str]]


def _check_choice(value: str, allowed: Tuple[str, ...], what: str) -> str:
    if value not in allowed:
        raise ValueError(f"Invalid {what} '{value}', expected one of {allowed}")
    return value


def parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace('Z', '+00:00'))


def _format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class Rule:
    """
    One conditional-logic edge.

    The answer to `source_question_id` is compared against `value` using
    `condition`; when it holds, `action` applies to the question or section
    that owns the rule.

    Attributes:
        id: Rule identifier
        source_question_id: Question whose answer is tested (never the owner)
        condition: equals, not_equals, contains, not_contains,
            greater_than, less_than
        value: Comparison target (string or number)
        action: show, hide, jump_to, required
        target_question_id: Destination for jump_to
        target_section_id: Destination section for jump_to (carried as data)
    """
    id: str
    source_question_id: str
    condition: str
    value: Union[str, int, float]
    action: str
    target_question_id: Optional[str] = None
    target_section_id: Optional[str] = None

    @staticmethod
    def from_dict(data: dict) -> "Rule":
        return Rule(
            id=str(data['id']),
            source_question_id=str(data.get('sourceQuestionId', '')),
            condition=_check_choice(data.get('condition', 'equals'), CONDITIONS, 'condition'),
            value=data.get('value', ''),
            action=_check_choice(data.get('action', 'show'), ACTIONS, 'action'),
            target_question_id=data.get('targetQuestionId'),
            target_section_id=data.get('targetSectionId'),
        )

    def to_dict(self) -> dict:
        data = {
            'id': self.id,
            'sourceQuestionId': self.source_question_id,
            'condition': self.condition,
            'value': self.value,
            'action': self.action,
        }
        if self.target_question_id is not None:
            data['targetQuestionId'] = self.target_question_id
        if self.target_section_id is not None:
            data['targetSectionId'] = self.target_section_id
        return data


def _rules_from(data: Any) -> Tuple[Rule, ...]:
    # Stored rows may carry null or a non-list for conditional logic
    if not isinstance(data, list):
        return ()
    return tuple(Rule.from_dict(item) for item in data)


@dataclass(frozen=True)
class ScoreConfig:
    """Presentation config for score questions (numeric scale with end labels)."""
    min_score: int = 0
    max_score: int = 10
    left_label: str = ''
    right_label: str = ''
    style: str = 'numbered'
    color_scheme: str = 'blue'

    @staticmethod
    def from_dict(data: dict) -> "ScoreConfig":
        return ScoreConfig(
            min_score=int(data.get('minScore', 0)),
            max_score=int(data.get('maxScore', 10)),
            left_label=data.get('leftLabel', ''),
            right_label=data.get('rightLabel', ''),
            style=data.get('style', 'numbered'),
            color_scheme=data.get('colorScheme', 'blue'),
        )

    def to_dict(self) -> dict:
        return {
            'minScore': self.min_score,
            'maxScore': self.max_score,
            'leftLabel': self.left_label,
            'rightLabel': self.right_label,
            'style': self.style,
            'colorScheme': self.color_scheme,
        }


@dataclass(frozen=True)
class Question:
    """
    One respondent-facing prompt.

    Type-specific attributes are only meaningful for their type:
    options for select/radio/checkbox, rating_scale/rating_icon for
    rating, score_config for score. from_dict() drops them for other
    types so stored rows never carry stale configuration.
    """
    id: str
    type: str = 'text'
    title: str = ''
    required: bool = False
    options: Optional[Tuple[str, ...]] = None
    allow_attachments: bool = False
    rating_scale: Optional[int] = None
    rating_icon: Optional[str] = None
    score_config: Optional[ScoreConfig] = None
    conditional_logic: Tuple[Rule, ...] = ()

    @property
    def has_options(self) -> bool:
        return self.type in OPTION_TYPES

    @staticmethod
    def from_dict(data: dict) -> "Question":
        q_type = _check_choice(data.get('type', 'text'), QUESTION_TYPES, 'question type')

        options = None
        if q_type in OPTION_TYPES:
            options = tuple(str(o) for o in (data.get('options') or []))

        rating_scale = rating_icon = None
        if q_type == 'rating':
            rating_scale = int(data.get('ratingScale') or 5)
            rating_icon = _check_choice(data.get('ratingIcon') or 'star', RATING_ICONS, 'rating icon')

        score_config = None
        if q_type == 'score':
            score_config = ScoreConfig.from_dict(data.get('scoreConfig') or {})

        return Question(
            id=str(data['id']),
            type=q_type,
            title=data.get('title', ''),
            required=bool(data.get('required', False)),
            options=options,
            allow_attachments=bool(data.get('allowAttachments', False)),
            rating_scale=rating_scale,
            rating_icon=rating_icon,
            score_config=score_config,
            conditional_logic=_rules_from(data.get('conditionalLogic')),
        )

    def to_dict(self) -> dict:
        data = {
            'id': self.id,
            'type': self.type,
            'title': self.title,
            'required': self.required,
            'allowAttachments': self.allow_attachments,
            'conditionalLogic': [rule.to_dict() for rule in self.conditional_logic],
        }
        if self.options is not None:
            data['options'] = list(self.options)
        if self.rating_scale is not None:
            data['ratingScale'] = self.rating_scale
            data['ratingIcon'] = self.rating_icon
        if self.score_config is not None:
            data['scoreConfig'] = self.score_config.to_dict()
        return data


@dataclass(frozen=True)
class FormSection:
    """
    Ordered group of questions.

    Section rules only carry show/hide semantics; required and jump_to
    rules attached to a section are ignored by the resolver.
    """
    id: str
    title: str = ''
    description: str = ''
    questions: Tuple[Question, ...] = ()
    is_open: bool = True
    conditional_logic: Tuple[Rule, ...] = ()

    @staticmethod
    def from_dict(data: dict) -> "FormSection":
        return FormSection(
            id=str(data['id']),
            title=data.get('title', ''),
            description=data.get('description') or '',
            questions=tuple(Question.from_dict(q) for q in data.get('questions') or []),
            is_open=bool(data.get('isOpen', True)),
            conditional_logic=_rules_from(data.get('conditionalLogic')),
        )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'questions': [q.to_dict() for q in self.questions],
            'isOpen': self.is_open,
            'conditionalLogic': [rule.to_dict() for rule in self.conditional_logic],
        }


@dataclass(frozen=True)
class FormCover:
    """Splash screen shown before the first question."""
    title: str = ''
    description: str = ''
    button_text: str = 'Start'
    alignment: str = 'center'
    cover_image: Optional[str] = None

    @staticmethod
    def from_dict(data: dict) -> "FormCover":
        return FormCover(
            title=data.get('title', ''),
            description=data.get('description') or '',
            button_text=data.get('buttonText') or 'Start',
            alignment=_check_choice(data.get('alignment') or 'center', ALIGNMENTS, 'alignment'),
            cover_image=data.get('coverImage'),
        )

    def to_dict(self) -> dict:
        data = {
            'title': self.title,
            'description': self.description,
            'buttonText': self.button_text,
            'alignment': self.alignment,
        }
        if self.cover_image:
            data['coverImage'] = self.cover_image
        return data


@dataclass(frozen=True)
class Form:
    """
    Top-level design artifact.

    Sections are replaced wholesale on save; there is no partial diff.
    """
    id: str
    title: str
    sections: Tuple[FormSection, ...]
    description: str = ''
    cover: Optional[FormCover] = None
    published: bool = False
    owner_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @staticmethod
    def from_dict(data: dict) -> "Form":
        cover = data.get('cover')
        return Form(
            id=str(data['id']),
            title=data.get('title', ''),
            description=data.get('description') or '',
            cover=FormCover.from_dict(cover) if isinstance(cover, dict) else None,
            sections=tuple(FormSection.from_dict(s) for s in data.get('sections') or []),
            published=bool(data.get('published', False)),
            owner_id=data.get('ownerId'),
            created_at=parse_datetime(data.get('createdAt')),
            updated_at=parse_datetime(data.get('updatedAt')),
        )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'cover': self.cover.to_dict() if self.cover else None,
            'sections': [s.to_dict() for s in self.sections],
            'published': self.published,
            'ownerId': self.owner_id,
            'createdAt': _format_datetime(self.created_at),
            'updatedAt': _format_datetime(self.updated_at),
        }


@dataclass(frozen=True)
class Response:
    """
    One stored submission.

    Attributes:
        id: Response identifier
        form_id: Form the response belongs to
        answers: Ordered (question_id, answer) pairs
        attachments: question_id -> opaque file reference
        submitted_at: Submission time (UTC)
    """
    id: str
    form_id: str
    answers: Tuple[Tuple[str, Any], ...] = ()
    attachments: Dict[str, str] = field(default_factory=dict)
    submitted_at: Optional[datetime] = None

    def answer_map(self) -> Dict[str, Any]:
        return dict(self.answers)

    def answer_for(self, question_id: str) -> Any:
        for q_id, answer in self.answers:
            if q_id == question_id:
                return answer
        return None

    @staticmethod
    def from_dict(data: dict) -> "Response":
        return Response(
            id=str(data['id']),
            form_id=str(data['formId']),
            answers=tuple((a['questionId'], a['answer']) for a in data.get('answers') or []),
            attachments=dict(data.get('attachments') or {}),
            submitted_at=parse_datetime(data.get('submittedAt')),
        )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'formId': self.form_id,
            'answers': [{'questionId': q_id, 'answer': answer} for q_id, answer in self.answers],
            'attachments': dict(self.attachments),
            'submittedAt': _format_datetime(self.submitted_at),
        }


@dataclass(frozen=True)
class Capabilities:
    """
    What the current actor may do.

    The navigation and validation engine never consults these; only the
    repositories and the HTTP layer gate on them.
    """
    is_master_admin: bool = False
    can_create_forms: bool = False
    can_edit_forms: bool = False
    can_delete_forms: bool = False
    can_view_responses: bool = True

    @staticmethod
    def for_profile(profile: Optional[dict]) -> "Capabilities":
        """
        Derive capabilities from a stored user profile.

        Master admins get every capability. Other users get the per-profile
        flags; viewing responses defaults to allowed when the flag is absent.
        """
        profile = profile or {}
        master = profile.get('user_type') == 'master_admin'
        return Capabilities(
            is_master_admin=master,
            can_create_forms=master or bool(profile.get('can_create_forms', False)),
            can_edit_forms=master or bool(profile.get('can_edit_forms', False)),
            can_delete_forms=master or bool(profile.get('can_delete_forms', False)),
            can_view_responses=master or bool(profile.get('can_view_responses', True)),
        )

    @staticmethod
    def full() -> "Capabilities":
        return Capabilities(True, True, True, True, True)


@dataclass(frozen=True)
class QuestionView:
    """
    Rendering contract for one question of the active section.

    A rendering layer maps this to a concrete input widget.
    """
    question_id: str
    type: str
    title: str
    visible: bool
    required: bool
    value: Any
    has_error: bool
    options: Optional[Tuple[str, ...]] = None
    allow_attachments: bool = False
    attachment: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'questionId': self.question_id,
            'type': self.type,
            'title': self.title,
            'visible': self.visible,
            'required': self.required,
            'value': self.value,
            'hasError': self.has_error,
            'options': list(self.options) if self.options is not None else None,
            'allowAttachments': self.allow_attachments,
            'attachment': self.attachment,
        }
