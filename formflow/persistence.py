"""
Entity persistence for forms and responses.

The runtime never embeds storage logic in the core; repositories here map
Form/Response values to rows of a generic entity store.

Tables:
    forms             id, title, description, cover, published, user_id,
                      created_at, updated_at
    form_sections     id, form_id, title, description, conditional_logic, order_index
    questions         id, section_id, type, title, options, required,
                      allow_attachments, rating_scale, rating_icon, score_config,
                      conditional_logic, order_index
    form_responses    id, form_id, submitted_at
    question_answers  id, response_id, question_id, answer, order_index
    attachments       id, response_id, question_id, file_name, file_type,
                      file_size, file_data

Design:
- Writes are not transactional. A response is written as response row ->
  answer rows -> attachment rows; a failure part way leaves a partial
  response behind and is reported, never rolled back
- No internal retries; ResponseRepository may be given a fallback store
- Form saves replace sections and questions wholesale
"""

import copy
import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from formflow.attachments import AttachmentError, AttachmentStore, decode_data_uri, MIME_EXTENSIONS
from formflow.contracts import (
    Capabilities, Form, FormCover, FormSection, Question, Response, parse_datetime,
)
from formflow.utils.helpers import generate_attachment_path, generate_id, utc_now

logger = logging.getLogger(__name__)


class PersistenceFailure(Exception):
    """A store read or write failed."""


class AccessDenied(Exception):
    """The actor's capabilities do not allow the operation."""


# =============================================================================
# Entity stores
# =============================================================================

class EntityStore:
    """
    Interface for a generic table store.

    Rows are JSON-compatible dicts keyed by 'id'.
    """

    def get(self, table: str, filters: Optional[Dict[str, Any]] = None,
            order_by: Optional[str] = None) -> List[dict]:
        """
        Rows whose columns equal every filter value.

        Args:
            table: Table name
            filters: column -> required value
            order_by: Sort column; prefix with '-' for descending

        Returns:
            list[dict]: Copies of matching rows
        """
        raise NotImplementedError

    def insert(self, table: str, row: dict) -> dict:
        raise NotImplementedError

    def update(self, table: str, row_id: str, patch: dict) -> dict:
        raise NotImplementedError

    def delete(self, table: str, row_id: str) -> None:
        raise NotImplementedError


class MemoryStore(EntityStore):
    """In-process store. Used for tests and as a session-local fallback."""

    def __init__(self):
        self._tables: Dict[str, Dict[str, dict]] = {}
        self._lock = threading.Lock()

    def _table(self, table: str) -> Dict[str, dict]:
        return self._tables.setdefault(table, {})

    def _flush(self, table: str) -> None:
        """Hook for stores that persist tables after each write."""

    def get(self, table, filters=None, order_by=None):
        with self._lock:
            rows = [
                copy.deepcopy(row) for row in self._table(table).values()
                if all(row.get(k) == v for k, v in (filters or {}).items())
            ]

        if order_by:
            descending = order_by.startswith('-')
            key = order_by.lstrip('-')
            # None sorts first ascending
            rows.sort(key=lambda r: (r.get(key) is not None, r.get(key)), reverse=descending)

        return rows

    def insert(self, table, row):
        row = copy.deepcopy(row)
        row.setdefault('id', generate_id())
        row.setdefault('created_at', utc_now().isoformat())

        with self._lock:
            rows = self._table(table)
            if row['id'] in rows:
                raise PersistenceFailure(f"Duplicate id {row['id']} in {table}")
            rows[row['id']] = row
            self._flush(table)

        return copy.deepcopy(row)

    def update(self, table, row_id, patch):
        with self._lock:
            rows = self._table(table)
            if row_id not in rows:
                raise PersistenceFailure(f"No row {row_id} in {table}")
            rows[row_id].update(copy.deepcopy(patch))
            self._flush(table)
            return copy.deepcopy(rows[row_id])

    def delete(self, table, row_id):
        with self._lock:
            if self._table(table).pop(row_id, None) is not None:
                self._flush(table)


class JsonFileStore(MemoryStore):
    """
    Store with one JSON file per table.

    Layout:
        <base_dir>/forms.json
        <base_dir>/form_sections.json
        ...

    Each file holds a list of rows and is rewritten after every write.
    """

    def __init__(self, base_dir: str = "outputs/store"):
        """
        Args:
            base_dir: Directory holding the table files
        """
        super().__init__()
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self._loaded = set()
        logger.info(f"JsonFileStore initialized: {self.base_dir}")

    def _path(self, table: str) -> Path:
        return self.base_dir / f"{table}.json"

    def _table(self, table):
        if table not in self._loaded:
            path = self._path(table)
            rows = {}
            if path.exists():
                try:
                    with open(path, 'r', encoding='utf-8') as f:
                        rows = {row['id']: row for row in json.load(f)}
                except (OSError, ValueError, KeyError) as e:
                    raise PersistenceFailure(f"Cannot read table file {path}: {e}") from e
            self._tables[table] = rows
            self._loaded.add(table)
        return self._tables[table]

    def _flush(self, table):
        path = self._path(table)
        tmp = path.with_suffix('.json.tmp')
        try:
            with open(tmp, 'w', encoding='utf-8') as f:
                json.dump(list(self._tables[table].values()), f, indent=2, ensure_ascii=False)
            tmp.replace(path)
        except (OSError, TypeError, ValueError) as e:
            # The cached table already holds the change; reload it from disk next time
            self._tables.pop(table, None)
            self._loaded.discard(table)
            raise PersistenceFailure(f"Cannot write table file {path}: {e}") from e


def _require(capabilities: Optional[Capabilities], flag: str, action: str) -> None:
    # No capabilities object means a trusted internal caller
    if capabilities is None:
        return
    if not getattr(capabilities, flag):
        raise AccessDenied(f"Not allowed to {action}")


# =============================================================================
# Forms
# =============================================================================

class FormRepository:
    """Maps Form values to forms / form_sections / questions rows."""

    def __init__(self, store: EntityStore):
        self.store = store

    def save_form(self, form: Form, capabilities: Optional[Capabilities] = None) -> Form:
        """
        Create or replace a form.

        Sections and questions are replaced wholesale: existing rows for the
        form are deleted and the current ones inserted with order_index.

        Returns:
            Form: The saved form with timestamps filled in

        Raises:
            AccessDenied: If the actor cannot create/edit forms
            PersistenceFailure: If the store rejects a write
        """
        existing = self.store.get('forms', {'id': form.id})
        now = utc_now()

        if existing:
            _require(capabilities, 'can_edit_forms', 'edit forms')
            created_at = form.created_at or parse_datetime(existing[0].get('created_at')) or now
            self.store.update('forms', form.id, {
                'title': form.title,
                'description': form.description,
                'cover': form.cover.to_dict() if form.cover else None,
                'published': form.published,
                'updated_at': now.isoformat(),
            })
            self._delete_sections(form.id)
        else:
            _require(capabilities, 'can_create_forms', 'create forms')
            created_at = form.created_at or now
            self.store.insert('forms', {
                'id': form.id,
                'title': form.title,
                'description': form.description,
                'cover': form.cover.to_dict() if form.cover else None,
                'published': form.published,
                'user_id': form.owner_id,
                'created_at': created_at.isoformat(),
                'updated_at': now.isoformat(),
            })

        for s_index, section in enumerate(form.sections):
            self.store.insert('form_sections', {
                'id': section.id,
                'form_id': form.id,
                'title': section.title,
                'description': section.description,
                'conditional_logic': [r.to_dict() for r in section.conditional_logic],
                'order_index': s_index,
            })
            for q_index, question in enumerate(section.questions):
                self.store.insert('questions', _question_row(question, section.id, q_index))

        logger.info(f"Saved form {form.id} ({len(form.sections)} sections)")
        return Form(
            id=form.id, title=form.title, sections=form.sections,
            description=form.description, cover=form.cover, published=form.published,
            owner_id=form.owner_id, created_at=created_at, updated_at=now,
        )

    def load_form(self, form_id: str) -> Optional[Form]:
        """
        Reassemble a form with sections and questions in order_index order.

        Returns:
            Form, or None if no such form
        """
        rows = self.store.get('forms', {'id': form_id})
        if not rows:
            logger.warning(f"Form not found: {form_id}")
            return None
        return self._assemble(rows[0])

    def list_forms(self, owner_id: Optional[str] = None, published_only: bool = False) -> List[Form]:
        filters = {}
        if owner_id is not None:
            filters['user_id'] = owner_id
        if published_only:
            filters['published'] = True
        return [self._assemble(row) for row in self.store.get('forms', filters, order_by='-created_at')]

    def set_published(self, form_id: str, published: bool,
                      capabilities: Optional[Capabilities] = None) -> bool:
        """
        Publish or unpublish a form.

        Returns:
            bool: False if the form does not exist
        """
        _require(capabilities, 'can_edit_forms', 'publish forms')
        if not self.store.get('forms', {'id': form_id}):
            return False
        self.store.update('forms', form_id, {'published': published, 'updated_at': utc_now().isoformat()})
        logger.info(f"Form {form_id} {'published' if published else 'unpublished'}")
        return True

    def delete_form(self, form_id: str, capabilities: Optional[Capabilities] = None) -> bool:
        """
        Delete a form with its sections and questions.

        Returns:
            bool: False if the form does not exist
        """
        _require(capabilities, 'can_delete_forms', 'delete forms')
        if not self.store.get('forms', {'id': form_id}):
            return False
        self._delete_sections(form_id)
        self.store.delete('forms', form_id)
        logger.info(f"Deleted form {form_id}")
        return True

    def _delete_sections(self, form_id: str) -> None:
        for section in self.store.get('form_sections', {'form_id': form_id}):
            for question in self.store.get('questions', {'section_id': section['id']}):
                self.store.delete('questions', question['id'])
            self.store.delete('form_sections', section['id'])

    def _assemble(self, row: dict) -> Form:
        sections = []
        for s_row in self.store.get('form_sections', {'form_id': row['id']}, order_by='order_index'):
            q_rows = self.store.get('questions', {'section_id': s_row['id']}, order_by='order_index')
            sections.append(FormSection.from_dict({
                'id': s_row['id'],
                'title': s_row.get('title', ''),
                'description': s_row.get('description'),
                'conditionalLogic': s_row.get('conditional_logic'),
                'questions': [_question_dict(q) for q in q_rows],
            }))

        cover = row.get('cover')
        return Form(
            id=row['id'],
            title=row.get('title', ''),
            description=row.get('description') or '',
            cover=FormCover.from_dict(cover) if isinstance(cover, dict) else None,
            sections=tuple(sections),
            published=bool(row.get('published')),
            owner_id=row.get('user_id'),
            created_at=parse_datetime(row.get('created_at')),
            updated_at=parse_datetime(row.get('updated_at')),
        )


def _question_row(question: Question, section_id: str, order_index: int) -> dict:
    data = question.to_dict()
    return {
        'id': question.id,
        'section_id': section_id,
        'type': question.type,
        'title': question.title,
        'options': data.get('options'),
        'required': question.required,
        'allow_attachments': question.allow_attachments,
        'rating_scale': data.get('ratingScale'),
        'rating_icon': data.get('ratingIcon'),
        'score_config': data.get('scoreConfig'),
        'conditional_logic': data['conditionalLogic'],
        'order_index': order_index,
    }


def _question_dict(row: dict) -> dict:
    return {
        'id': row['id'],
        'type': row.get('type', 'text'),
        'title': row.get('title', ''),
        'options': row.get('options'),
        'required': row.get('required') or False,
        'allowAttachments': row.get('allow_attachments') or False,
        'ratingScale': row.get('rating_scale'),
        'ratingIcon': row.get('rating_icon'),
        'scoreConfig': row.get('score_config'),
        'conditionalLogic': row.get('conditional_logic'),
    }


# =============================================================================
# Responses
# =============================================================================

class ResponseRepository:
    """
    Maps Response values to form_responses / question_answers / attachments rows.

    Attachment references that are inline data URIs are uploaded to the
    attachment store at save time and replaced by the issued reference.
    """

    def __init__(self, store: EntityStore, attachment_store: Optional[AttachmentStore] = None,
                 fallback: Optional[EntityStore] = None):
        """
        Args:
            store: Primary entity store
            attachment_store: Where inline attachments are uploaded
                (None keeps them inline)
            fallback: Secondary store used when the primary fails a save
        """
        self.store = store
        self.attachment_store = attachment_store
        self.fallback = fallback

    def save_response(self, form_id: str, answers: Dict[str, Any],
                      attachments: Optional[Dict[str, str]] = None) -> str:
        """
        Store one submission.

        Returns:
            str: Response id

        Raises:
            PersistenceFailure: If the primary store fails and there is no
                fallback, or the fallback fails too
        """
        response_id = generate_id()
        try:
            self._write_response(self.store, response_id, form_id, answers, attachments or {})
        except (PersistenceFailure, AttachmentError) as e:
            logger.error(f"Saving response {response_id} for form {form_id} failed: {e}")
            if self.fallback is None:
                raise PersistenceFailure(f"Failed to save form response: {e}") from e
            logger.info(f"Retrying response {response_id} against fallback store")
            try:
                self._write_response(self.fallback, response_id, form_id, answers, attachments or {})
            except (PersistenceFailure, AttachmentError) as fallback_error:
                raise PersistenceFailure(
                    f"Failed to save form response: {fallback_error}"
                ) from fallback_error

        logger.info(f"Saved response {response_id} for form {form_id}")
        return response_id

    def update_response(self, response_id: str, answers: Dict[str, Any],
                        attachments: Optional[Dict[str, str]] = None) -> bool:
        """
        Replace a response's answers (and attachments, if given) wholesale.

        Returns:
            bool: False if the response does not exist
        """
        rows = self.store.get('form_responses', {'id': response_id})
        if not rows:
            logger.warning(f"Response not found: {response_id}")
            return False

        for row in self.store.get('question_answers', {'response_id': response_id}):
            self.store.delete('question_answers', row['id'])
        self._write_answers(self.store, response_id, answers)

        if attachments is not None:
            old_references = []
            for row in self.store.get('attachments', {'response_id': response_id}):
                old_references.append(row['file_data'])
                self.store.delete('attachments', row['id'])
            self._write_attachments(self.store, response_id, rows[0]['form_id'], attachments)

            # A re-upload can land on the same path, so only drop files no row still uses
            kept = {row['file_data'] for row in self.store.get('attachments', {'response_id': response_id})}
            if self.attachment_store is not None:
                for reference in old_references:
                    if reference not in kept:
                        self.attachment_store.delete(reference)

        logger.info(f"Updated response {response_id}")
        return True

    def delete_response(self, response_id: str) -> bool:
        """
        Delete a response with its answers and attachment rows.

        Returns:
            bool: False if the response does not exist
        """
        if not self.store.get('form_responses', {'id': response_id}):
            return False

        for row in self.store.get('question_answers', {'response_id': response_id}):
            self.store.delete('question_answers', row['id'])
        for row in self.store.get('attachments', {'response_id': response_id}):
            if self.attachment_store is not None:
                self.attachment_store.delete(row['file_data'])
            self.store.delete('attachments', row['id'])
        self.store.delete('form_responses', response_id)

        logger.info(f"Deleted response {response_id}")
        return True

    def get_response(self, response_id: str) -> Optional[Response]:
        rows = self.store.get('form_responses', {'id': response_id})
        if not rows:
            return None
        return self._assemble(rows[0])

    def list_responses(self, form_id: str, capabilities: Optional[Capabilities] = None) -> List[Response]:
        """
        Responses for a form, oldest first.

        Raises:
            AccessDenied: If the actor cannot view responses
        """
        _require(capabilities, 'can_view_responses', 'view responses')
        rows = self.store.get('form_responses', {'form_id': form_id}, order_by='submitted_at')
        return [self._assemble(row) for row in rows]

    # -------------------------------------------------------------------------
    # Write sequence
    # -------------------------------------------------------------------------

    def _write_response(self, store, response_id, form_id, answers, attachments):
        store.insert('form_responses', {
            'id': response_id,
            'form_id': form_id,
            'submitted_at': utc_now().isoformat(),
        })
        self._write_answers(store, response_id, answers)
        self._write_attachments(store, response_id, form_id, attachments)

    def _write_answers(self, store, response_id, answers):
        for index, (question_id, answer) in enumerate(answers.items()):
            store.insert('question_answers', {
                'response_id': response_id,
                'question_id': question_id,
                'answer': answer,
                'order_index': index,
            })

    def _write_attachments(self, store, response_id, form_id, attachments):
        for question_id, reference in attachments.items():
            if not reference:
                continue
            file_name = reference.rsplit('/', 1)[-1]
            file_type, file_size = 'application/octet-stream', None

            decoded = decode_data_uri(reference)
            if decoded is not None:
                data, file_type = decoded
                file_size = len(data)
                file_name = f"{question_id}.{MIME_EXTENSIONS.get(file_type, 'bin')}"
                if self.attachment_store is not None:
                    path = generate_attachment_path(form_id, response_id, question_id, file_name)
                    reference = self.attachment_store.upload(data, path)

            store.insert('attachments', {
                'response_id': response_id,
                'question_id': question_id,
                'file_name': file_name,
                'file_type': file_type,
                'file_size': file_size,
                'file_data': reference,
            })

    def _assemble(self, row: dict) -> Response:
        answer_rows = self.store.get('question_answers', {'response_id': row['id']}, order_by='order_index')
        attachment_rows = self.store.get('attachments', {'response_id': row['id']})
        return Response(
            id=row['id'],
            form_id=row['form_id'],
            answers=tuple((a['question_id'], a['answer']) for a in answer_rows),
            attachments={a['question_id']: a['file_data'] for a in attachment_rows},
            submitted_at=parse_datetime(row.get('submitted_at')),
        )
