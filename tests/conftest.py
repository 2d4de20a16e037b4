"""
Shared fixtures: small form designs built from the JSON contract.
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from formflow.contracts import Form


def _form(sections, form_id='form-1', title='Test form', published=True):
    return Form.from_dict({
        'id': form_id,
        'title': title,
        'published': published,
        'sections': sections,
    })


@pytest.fixture
def make_form():
    """Factory: make_form([section_dict, ...]) -> Form"""
    return _form


@pytest.fixture
def single_section_form():
    """One section: Q1 required text, Q2 optional checkbox"""
    return _form([{
        'id': 's1',
        'title': 'About you',
        'questions': [
            {'id': 'q1', 'type': 'text', 'title': 'Name', 'required': True},
            {'id': 'q2', 'type': 'checkbox', 'title': 'Hobbies', 'options': ['Chess', 'Golf', 'Music']},
        ],
    }])


@pytest.fixture
def two_section_form():
    """Section 1 has one required question; section 2 has two optional ones"""
    return _form([
        {
            'id': 's1',
            'title': 'Basics',
            'questions': [
                {'id': 'q1', 'type': 'text', 'title': 'Name', 'required': True},
            ],
        },
        {
            'id': 's2',
            'title': 'Details',
            'questions': [
                {'id': 'q2', 'type': 'radio', 'title': 'Colour', 'options': ['Red', 'Blue']},
                {'id': 'q3', 'type': 'textarea', 'title': 'Comments'},
            ],
        },
    ])


@pytest.fixture
def survey_dict():
    """Three-section design with every rule action, as stored JSON"""
    return {
        'id': 'survey-1',
        'title': 'Customer survey',
        'description': 'Tell us about your visit',
        'published': True,
        'cover': {'title': 'Welcome', 'description': 'Takes 2 minutes', 'buttonText': 'Begin'},
        'sections': [
            {
                'id': 'visit',
                'title': 'Your visit',
                'questions': [
                    {'id': 'returning', 'type': 'radio', 'title': 'Been here before?',
                     'options': ['Yes', 'No'], 'required': True},
                    {'id': 'visits', 'type': 'text', 'title': 'How many times?',
                     'conditionalLogic': [
                         {'id': 'r-hide', 'sourceQuestionId': 'returning', 'condition': 'equals',
                          'value': 'No', 'action': 'hide'},
                         {'id': 'r-req', 'sourceQuestionId': 'returning', 'condition': 'equals',
                          'value': 'Yes', 'action': 'required'},
                         {'id': 'r-jump', 'sourceQuestionId': 'returning', 'condition': 'equals',
                          'value': 'No', 'action': 'jump_to', 'targetQuestionId': 'nps'},
                     ]},
                ],
            },
            {
                'id': 'opinion',
                'title': 'Your opinion',
                'questions': [
                    {'id': 'rating', 'type': 'rating', 'title': 'Overall', 'ratingScale': 5,
                     'required': True},
                    {'id': 'nps', 'type': 'score', 'title': 'Recommend us?',
                     'scoreConfig': {'minScore': 0, 'maxScore': 10,
                                     'leftLabel': 'Unlikely', 'rightLabel': 'Very likely'}},
                ],
            },
            {
                'id': 'extra',
                'title': 'Anything else',
                'conditionalLogic': [
                    {'id': 'r-sec', 'sourceQuestionId': 'rating', 'condition': 'less_than',
                     'value': '3', 'action': 'show'},
                ],
                'questions': [
                    {'id': 'why', 'type': 'textarea', 'title': 'What went wrong?',
                     'allowAttachments': True},
                ],
            },
        ],
    }


@pytest.fixture
def survey_form(survey_dict):
    return Form.from_dict(survey_dict)
