"""
Test Condition Evaluator - normalisation and the six conditions

Run with: pytest tests/test_condition_evaluator.py
"""

import pytest

from formflow.core.condition_evaluator import evaluate, normalize, parse_number


def test_normalize_values():
    """Answers of every shape normalise to lower-cased strings"""
    assert normalize(None) == ''
    assert normalize('YES') == 'yes'
    assert normalize(['Chess', 'Golf']) == 'chess,golf'
    assert normalize(3.0) == '3'
    assert normalize(2.5) == '2.5'
    assert normalize(7) == '7'
    assert normalize(True) == 'true'
    assert normalize([]) == ''


def test_equals_is_case_insensitive():
    assert evaluate('equals', 'Yes', 'yes') is True
    assert evaluate('equals', 'yes', 'YES') is True
    assert evaluate('equals', 'no', 'yes') is False


def test_not_equals():
    assert evaluate('not_equals', 'no', 'yes') is True
    assert evaluate('not_equals', 'Yes', 'yes') is False


def test_equals_number_against_string_value():
    """Rule values are strings in stored JSON; numbers compare by text"""
    assert evaluate('equals', 4, '4') is True
    assert evaluate('equals', 4.0, '4') is True


def test_contains_on_checkbox_answer():
    answer = ['Chess', 'Golf']
    assert evaluate('contains', answer, 'golf') is True
    assert evaluate('contains', answer, 'music') is False
    assert evaluate('not_contains', answer, 'music') is True
    assert evaluate('not_contains', answer, 'chess') is False


def test_contains_matches_substrings():
    """contains is a substring test, not an element test"""
    assert evaluate('contains', ['Golfing'], 'golf') is True


def test_unanswered_source_sees_empty_string():
    assert evaluate('equals', None, 'yes') is False
    assert evaluate('not_equals', None, 'yes') is True
    assert evaluate('contains', None, '') is True


@pytest.mark.parametrize("actual,target,expected", [
    (5, '3', True),
    ('10', '9', True),
    ('3', '3', False),
    ('2.5', '2', True),
    ('7 days', '5', True),
])
def test_greater_than(actual, target, expected):
    assert evaluate('greater_than', actual, target) is expected


def test_less_than():
    assert evaluate('less_than', 2, '3') is True
    assert evaluate('less_than', 3, '3') is False


def test_numeric_conditions_false_when_not_numeric():
    """Non-numeric on either side is False for both operators"""
    assert evaluate('greater_than', 'abc', '3') is False
    assert evaluate('less_than', 'abc', '3') is False
    assert evaluate('greater_than', 5, 'many') is False
    assert evaluate('less_than', None, '3') is False


def test_unknown_condition_is_false(caplog):
    assert evaluate('matches', 'x', 'x') is False
    assert "Unknown condition" in caplog.text


def test_parse_number_prefix():
    assert parse_number('42') == 42.0
    assert parse_number('  -1.5kg') == -1.5
    assert parse_number('.5') == 0.5
    assert parse_number('1e3') == 1000.0
    assert parse_number('abc') is None
    assert parse_number('') is None
