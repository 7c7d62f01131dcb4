"""
Entity store used by the queue scheduler.

The scheduler only relies on the operations of ``TokenStore``; the key
primitive is ``conditional_update``, which applies a change only if the
token's status still equals the expected pre-transition value and reports
whether it did.
"""

import copy
import logging
import threading
import uuid
from typing import List, Optional

from django.db import IntegrityError, transaction
from django.utils import timezone

from ..exceptions import NotFound, TokenNumberTaken
from ..models import Token, TokenStatus

logger = logging.getLogger(__name__)


class TokenStore:
    """Storage contract required by the scheduler."""

    def get(self, token_id) -> Token:
        raise NotImplementedError

    def get_by_number(self, token_number) -> Token:
        raise NotImplementedError

    def insert(self, token: Token) -> Token:
        raise NotImplementedError

    def conditional_update(self, token_id, expected_status, **changes) -> bool:
        raise NotImplementedError

    def query_waiting(self, queue_key) -> List[Token]:
        raise NotImplementedError

    def find_serving(self, queue_key) -> Optional[Token]:
        raise NotImplementedError

    def list_tokens(self, queue_key) -> List[Token]:
        raise NotImplementedError

    def list_for_citizen(self, citizen_id) -> List[Token]:
        raise NotImplementedError

    def number_exists(self, token_number) -> bool:
        raise NotImplementedError

    def recent_completed(self, office_id, department_id, limit) -> List[Token]:
        """Completed tokens of a department with both timestamps, latest served first."""
        raise NotImplementedError

    def recent_service_durations(self, office_id, department_id, limit):
        tokens = self.recent_completed(office_id, department_id, limit)
        return [token.served_at - token.called_at for token in tokens]

    def get_by_reference(self, token_ref) -> Token:
        """
        Look a token up by id, falling back to its token number.

        Raises:
            NotFound: If neither matches.
        """
        if isinstance(token_ref, Token):
            token_ref = token_ref.id

        try:
            token_id = token_ref if isinstance(token_ref, uuid.UUID) else uuid.UUID(str(token_ref))
        except (TypeError, ValueError):
            return self.get_by_number(str(token_ref).strip().upper())
        return self.get(token_id)


class DjangoTokenStore(TokenStore):
    """Relational store backed by the ``Token`` model."""

    def get(self, token_id):
        try:
            return Token.objects.get(id=token_id)
        except Token.DoesNotExist:
            raise NotFound(token_id)

    def get_by_number(self, token_number):
        try:
            return Token.objects.get(token_number=token_number)
        except Token.DoesNotExist:
            raise NotFound(token_number)

    def insert(self, token):
        try:
            with transaction.atomic():
                token.save(force_insert=True)
        except IntegrityError:
            if Token.objects.filter(token_number=token.token_number).exists():
                raise TokenNumberTaken(token.token_number)
            raise
        return token

    def conditional_update(self, token_id, expected_status, **changes):
        changes.setdefault("updated_at", timezone.now())
        try:
            with transaction.atomic():
                rows = Token.objects.filter(id=token_id, status=expected_status).update(**changes)
        except IntegrityError as e:
            # The partial unique index refused a second serving token
            logger.warning(f"Conditional update of token {token_id} rejected: {e}")
            return False
        return rows == 1

    def query_waiting(self, queue_key):
        return list(
            Token.objects.filter(queue_key=str(queue_key), status=TokenStatus.WAITING).order_by(
                "created_at", "id"
            )
        )

    def find_serving(self, queue_key):
        return Token.objects.filter(queue_key=str(queue_key), status=TokenStatus.SERVING).first()

    def list_tokens(self, queue_key):
        return list(Token.objects.filter(queue_key=str(queue_key)).order_by("created_at", "id"))

    def list_for_citizen(self, citizen_id):
        return list(
            Token.objects.filter(citizen_id=str(citizen_id)).order_by(
                "-appointment_date", "-appointment_time"
            )
        )

    def number_exists(self, token_number):
        return Token.objects.filter(token_number=token_number).exists()

    def recent_completed(self, office_id, department_id, limit):
        tokens = (
            Token.objects.filter(
                office_id=office_id,
                department_id=department_id,
                status=TokenStatus.COMPLETED,
                called_at__isnull=False,
                served_at__isnull=False,
            )
            .order_by("-served_at")[:limit]
        )
        return list(tokens)


class InMemoryTokenStore(TokenStore):
    """
    Thread-safe process-local store.

    Mirrors the relational store, including the one-serving-token-per-key
    constraint. Callers always receive copies, never the stored instances.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._tokens = {}
        self._numbers = {}

    def get(self, token_id):
        with self._lock:
            token = self._tokens.get(self._as_uuid(token_id))
            if token is None:
                raise NotFound(token_id)
            return copy.copy(token)

    def get_by_number(self, token_number):
        with self._lock:
            token_id = self._numbers.get(token_number)
            if token_id is None:
                raise NotFound(token_number)
            return copy.copy(self._tokens[token_id])

    def insert(self, token):
        with self._lock:
            if token.token_number in self._numbers:
                raise TokenNumberTaken(token.token_number)
            if not token.queue_key:
                token.queue_key = str(token.get_queue_key())
            token.updated_at = timezone.now()
            self._tokens[token.id] = copy.copy(token)
            self._numbers[token.token_number] = token.id
            return token

    def conditional_update(self, token_id, expected_status, **changes):
        with self._lock:
            token = self._tokens.get(self._as_uuid(token_id))
            if token is None or token.status != expected_status:
                return False

            if changes.get("status") == TokenStatus.SERVING and any(
                other.status == TokenStatus.SERVING
                and other.queue_key == token.queue_key
                and other.id != token.id
                for other in self._tokens.values()
            ):
                logger.warning(f"Conditional update of token {token_id} rejected: key already serving")
                return False

            changes.setdefault("updated_at", timezone.now())
            for field, value in changes.items():
                setattr(token, field, value)
            return True

    def query_waiting(self, queue_key):
        return [
            token for token in self.list_tokens(queue_key) if token.status == TokenStatus.WAITING
        ]

    def find_serving(self, queue_key):
        for token in self.list_tokens(queue_key):
            if token.status == TokenStatus.SERVING:
                return token
        return None

    def list_tokens(self, queue_key):
        key = str(queue_key)
        with self._lock:
            tokens = [copy.copy(t) for t in self._tokens.values() if t.queue_key == key]
        return sorted(tokens, key=lambda t: (t.created_at, t.id))

    def list_for_citizen(self, citizen_id):
        with self._lock:
            tokens = [
                copy.copy(t) for t in self._tokens.values() if t.citizen_id == str(citizen_id)
            ]
        return sorted(
            tokens,
            key=lambda t: (t.appointment_date, t.appointment_time is not None, t.appointment_time),
            reverse=True,
        )

    def number_exists(self, token_number):
        with self._lock:
            return token_number in self._numbers

    def recent_completed(self, office_id, department_id, limit):
        with self._lock:
            completed = [
                copy.copy(t)
                for t in self._tokens.values()
                if t.office_id == office_id
                and t.department_id == department_id
                and t.status == TokenStatus.COMPLETED
                and t.called_at is not None
                and t.served_at is not None
            ]
        completed.sort(key=lambda t: t.served_at, reverse=True)
        return completed[:limit]

    @staticmethod
    def _as_uuid(token_id):
        if isinstance(token_id, uuid.UUID):
            return token_id
        try:
            return uuid.UUID(str(token_id))
        except ValueError:
            return None
