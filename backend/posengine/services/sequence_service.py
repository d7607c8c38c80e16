# Overview: Atomic per-location document counters (sale, parked sale, transfer numbers).

from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from ..errors import ValidationError
from ..models import DocumentSequence


def next_sequence_value(session, *, location_id: int, sequence_key: str) -> int:
    """
    Atomically allocate the next number of a (location, key) counter.

    The UPDATE takes the row lock, so two writers on the same counter
    serialize in the database. The first caller for a new key inserts the
    row inside a savepoint; losing that insert race falls back to the UPDATE.
    Must run inside the caller's transaction.
    """
    if not location_id:
        raise ValidationError("location_id is required")
    if not sequence_key:
        raise ValidationError("sequence_key is required")

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.location_id == location_id,
            DocumentSequence.sequence_key == sequence_key,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    def _bumped() -> int | None:
        result = session.execute(stmt)
        if not result.rowcount:
            return None
        current = session.execute(
            select(DocumentSequence.next_number).where(
                DocumentSequence.location_id == location_id,
                DocumentSequence.sequence_key == sequence_key,
            )
        ).scalar_one()
        return current - 1

    value = _bumped()
    if value is not None:
        return value

    try:
        with session.begin_nested():
            session.add(DocumentSequence(location_id=location_id, sequence_key=sequence_key, next_number=2))
        return 1
    except IntegrityError:
        value = _bumped()
        if value is None:
            raise
        return value
