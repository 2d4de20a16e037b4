"""
Attachment storage.

Respondents attach files to questions that allow it. The runtime only ever
handles opaque reference strings; this module turns bytes into references
and references into something a browser can display.

Reference forms:
    https://...                 already public, passed through
    data:<mime>;base64,<data>   inline blob, passed through for display
    <form>/<response>/<q>.<ext> path issued by LocalAttachmentStore
    <bare base64>               legacy inline blob without a data: prefix
"""

import base64
import binascii
import logging
import re
from pathlib import Path
from typing import Optional, Tuple

logger = logging.getLogger(__name__)

_DATA_URI = re.compile(r'^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?:;[\w-]+=[\w.-]+)*;base64,(?P<data>.*)$', re.DOTALL)

MIME_EXTENSIONS = {
    'image/jpeg': 'jpg',
    'image/png': 'png',
    'image/gif': 'gif',
    'image/webp': 'webp',
    'application/pdf': 'pdf',
    'text/plain': 'txt',
}


class AttachmentError(Exception):
    """Upload or lookup failed."""


def encode_data_uri(data: bytes, mime: str = 'application/octet-stream') -> str:
    """Inline bytes as a base64 data URI."""
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


def decode_data_uri(reference: str) -> Optional[Tuple[bytes, str]]:
    """
    Decode a base64 data URI.

    Returns:
        (bytes, mime) or None if the reference is not a valid data URI
    """
    match = _DATA_URI.match(reference or '')
    if not match:
        return None
    try:
        data = base64.b64decode(match.group('data'), validate=True)
    except (binascii.Error, ValueError):
        return None
    return data, match.group('mime') or 'application/octet-stream'


class AttachmentStore:
    """
    Interface for attachment storage.

    Subclasses implement upload() and may extend to_display_url() for the
    references they issue.
    """

    def upload(self, data: bytes, path_hint: str) -> str:
        """
        Store bytes.

        Args:
            data: File content
            path_hint: Suggested relative path ({form}/{response}/{question}.{ext})

        Returns:
            str: Reference to persist in the response
        """
        raise NotImplementedError

    def delete(self, reference: str) -> bool:
        raise NotImplementedError

    def to_display_url(self, reference: str) -> str:
        """
        URL a browser can display for a reference.

        http(s) URLs and data URIs pass through; anything else is taken as
        bare base64 image data.
        """
        if reference.startswith('http') or reference.startswith('data:'):
            return reference
        return f"data:image/jpeg;base64,{reference}"


class LocalAttachmentStore(AttachmentStore):
    """
    Stores attachments as files under a base directory.

    Layout:
        <base_dir>/<form_id>/<response_id>/<question_id>.<ext>

    Uploads overwrite an existing file at the same path (re-submitting an
    edited response replaces its attachment).
    """

    def __init__(self, base_dir: str = "outputs/attachments", public_base_url: str = "/attachments"):
        """
        Args:
            base_dir: Directory files are written under
            public_base_url: URL prefix the HTTP layer serves base_dir from
        """
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip('/')
        logger.info(f"LocalAttachmentStore initialized: {self.base_dir}")

    def _resolve(self, relative: str) -> Path:
        path = (self.base_dir / relative).resolve()
        if self.base_dir.resolve() not in path.parents:
            raise AttachmentError(f"Attachment path escapes storage directory: {relative}")
        return path

    def upload(self, data: bytes, path_hint: str) -> str:
        path = self._resolve(path_hint)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            raise AttachmentError(f"Failed to store attachment {path_hint}: {e}") from e

        logger.info(f"Stored attachment {path_hint} ({len(data)} bytes)")
        return path_hint

    def delete(self, reference: str) -> bool:
        if not self.exists(reference):
            return False
        try:
            self._resolve(reference).unlink()
        except OSError as e:
            logger.error(f"Error deleting attachment {reference}: {e}")
            return False
        return True

    def exists(self, reference: str) -> bool:
        if not reference or reference.startswith(('http', 'data:')):
            return False
        try:
            return self._resolve(reference).is_file()
        except (AttachmentError, OSError):
            return False

    def read(self, reference: str) -> bytes:
        """
        Raises:
            AttachmentError: If the reference is not a stored file
        """
        if not self.exists(reference):
            raise AttachmentError(f"Attachment not found: {reference}")
        return self._resolve(reference).read_bytes()

    def to_display_url(self, reference: str) -> str:
        if self.exists(reference):
            return f"{self.public_base_url}/{reference}"
        return super().to_display_url(reference)
