"""
Runtime policy flags.

Every flag defaults to the behaviour existing forms were authored against. The
alternatives exist because each default has a known trap for form authors;
callers opt in explicitly rather than the engine guessing.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class RuntimePolicy:
    """
    Attributes:
        conditional_required_in_sections: Section completeness also counts
            questions escalated to required by conditional logic. Default
            checks the base required flag only.
        numeric_zero_is_answer: A numeric 0 (rating/score) counts as an
            answer. Default treats it as unanswered like any falsy value.
        skip_hidden_questions: Whole-form validation ignores questions hidden
            by conditional logic. Default validates them anyway.
        follow_jump_rules: NextQuestion follows a matching jump_to rule on the
            question being left. Default steps sequentially.
    """
    conditional_required_in_sections: bool = False
    numeric_zero_is_answer: bool = False
    skip_hidden_questions: bool = False
    follow_jump_rules: bool = False


DEFAULT_POLICY = RuntimePolicy()
