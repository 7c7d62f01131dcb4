"""
Queue key resolution.

A queue key is the (office, department, service date) tuple that scopes
every ordering and mutual-exclusion guarantee of the scheduler. Tokens with
different keys never interact.
"""

import hashlib
from datetime import date, datetime

from ..exceptions import InvalidArgument, PermissionScope

SEPARATOR = ":"


def _clean_id(value, field):
    if value is None:
        raise InvalidArgument(f"{field} is required", detail={"field": field})

    text = str(value).strip()
    if not text:
        raise InvalidArgument(f"{field} is required", detail={"field": field})
    if SEPARATOR in text:
        raise InvalidArgument(
            f"{field} must not contain '{SEPARATOR}'", detail={"field": field, "value": text}
        )
    return text


def _clean_date(value):
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip())
        except ValueError:
            pass
    raise InvalidArgument(
        "service_date must be a date or an ISO date string",
        detail={"field": "service_date", "value": str(value)},
    )


class QueueKey:
    """Immutable identifier of one ordering/locking domain."""

    __slots__ = ("office_id", "department_id", "service_date")

    def __init__(self, office_id, department_id, service_date):
        object.__setattr__(self, "office_id", office_id)
        object.__setattr__(self, "department_id", department_id)
        object.__setattr__(self, "service_date", service_date)

    def __setattr__(self, name, value):
        raise AttributeError("QueueKey is immutable")

    def __eq__(self, other):
        if not isinstance(other, QueueKey):
            return NotImplemented
        return self._parts() == other._parts()

    def __hash__(self):
        return hash(self._parts())

    def __str__(self):
        return SEPARATOR.join(
            [self.office_id, self.department_id, self.service_date.isoformat()]
        )

    def __repr__(self):
        return f"QueueKey({str(self)!r})"

    def __reduce__(self):
        return (QueueKey, self._parts())

    def _parts(self):
        return (self.office_id, self.department_id, self.service_date)

    @classmethod
    def parse(cls, value):
        """Inverse of ``str(queue_key)``."""
        parts = str(value).split(SEPARATOR)
        if len(parts) != 3:
            raise InvalidArgument(f"Malformed queue key '{value}'")
        return resolve(*parts)

    @property
    def digest(self):
        return hashlib.sha1(str(self).encode("utf-8")).hexdigest()

    @property
    def group_name(self):
        """Channel layer group for dashboards watching this queue."""
        return f"queue_{self.digest[:32]}"

    @property
    def lock_name(self):
        return f"token-queue:{self.digest}"


def resolve(office_id, department_id, service_date):
    """
    Derive the queue key for an office, department and service date.

    Raises:
        InvalidArgument: If a component is missing or malformed.
    """
    return QueueKey(
        _clean_id(office_id, "office_id"),
        _clean_id(department_id, "department_id"),
        _clean_date(service_date),
    )


class OfficialScope:
    """Office/department assignment of the official invoking an operation."""

    def __init__(self, office_id, department_id):
        self.office_id = _clean_id(office_id, "office_id")
        self.department_id = _clean_id(department_id, "department_id")

    def __repr__(self):
        return f"OfficialScope(office_id={self.office_id!r}, department_id={self.department_id!r})"

    def covers(self, queue_key):
        return (
            queue_key.office_id == self.office_id
            and queue_key.department_id == self.department_id
        )

    def queue_key_for(self, service_date):
        return resolve(self.office_id, self.department_id, service_date)


def ensure_scope(scope, queue_key):
    """
    Check that ``scope`` covers ``queue_key``. A ``None`` scope is a trusted
    internal caller and is not checked.

    Raises:
        PermissionScope: If the scope is for another office or department.
    """
    if scope is not None and not scope.covers(queue_key):
        raise PermissionScope(
            f"Official assigned to {scope.office_id}/{scope.department_id} "
            f"cannot act on queue {queue_key}"
        )
