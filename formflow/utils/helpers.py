"""
Utility helpers for the form runtime

Simple utility functions for ID, timestamp and filename generation.
"""

import uuid
from datetime import datetime, timezone


def generate_id(short=False):
    """
    Generate unique entity identifier

    Args:
        short (bool): If True, return 8-char hex. If False, return full UUID.

    Returns:
        str: Identifier

    Examples:
        >>> generate_id(short=True)
        'a3f7e2b9'

        >>> generate_id()
        '1b4e28ba-2fa1-11d2-883f-0016d3cca427'
    """
    if short:
        return uuid.uuid4().hex[:8]
    return str(uuid.uuid4())


def utc_now():
    """Current time as a timezone-aware UTC datetime"""
    return datetime.now(timezone.utc)


def generate_attachment_path(form_id, response_id, question_id, filename):
    """
    Build the storage path for an attachment

    Format: {form_id}/{response_id}/{question_id}.{extension}

    Args:
        form_id (str): Owning form
        response_id (str): Owning response
        question_id (str): Question the file answers
        filename (str): Original filename (only its extension is kept)

    Returns:
        str: Relative storage path

    Examples:
        >>> generate_attachment_path('f1', 'r1', 'q1', 'photo.PNG')
        'f1/r1/q1.png'
    """
    extension = filename.rsplit('.', 1)[-1].lower() if '.' in filename else 'bin'
    return f"{form_id}/{response_id}/{question_id}.{extension}"
