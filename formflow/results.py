"""
Result types returned by NavigationEngine.handle()

These are the ONLY return types from the command handler.
"""

from dataclasses import dataclass
from typing import Any, Dict, Tuple

from formflow.commands import SessionState


@dataclass(frozen=True)
class Notice:
    """
    User-facing notification.

    Attributes:
        level: 'info', 'warning' (navigation rejected) or 'error'
            (validation blocked, store failure)
        title: Short heading
        message: Body text
    """
    level: str
    title: str
    message: str

    def to_dict(self) -> dict:
        return {'level': self.level, 'title': self.title, 'message': self.message}


@dataclass(frozen=True)
class SubmitResponse:
    """
    Effect: persist this submission.

    Emitted by SubmitForm once validation passes. The caller performs the
    write and answers with ConfirmSubmission.
    """
    form_id: str
    answers: Dict[str, Any]
    attachments: Dict[str, str]


@dataclass(frozen=True)
class TransitionResult:
    """
    Result of an accepted command.

    Attributes:
        state: New session state (may equal the input state)
        notices: Notifications for the rendering layer
        effects: Work the caller must perform (e.g. SubmitResponse)
        changed: Whether state differs from the input state
    """
    state: SessionState
    notices: Tuple[Notice, ...] = ()
    effects: Tuple[SubmitResponse, ...] = ()
    changed: bool = True

    @property
    def rejected(self) -> bool:
        return any(n.level in ('warning', 'error') for n in self.notices)


@dataclass(frozen=True)
class IllegalCommand:
    """
    Command rejected by the engine (invalid lifecycle transition).

    Examples:
    - NextQuestion while the cover is showing
    - SubmitForm after the response was stored
    - SetAnswer for a question the form does not have

    Attributes:
        reason: Human-readable explanation
        command_type: Name of rejected command type
    """
    reason: str
    command_type: str
