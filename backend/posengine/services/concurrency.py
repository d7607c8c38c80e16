# Overview: Transaction boundary helpers shared by every engine component.

from __future__ import annotations

import logging

from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConflictError

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_atomic(session, func):
    """
    Run func() as one atomic unit: commit on success, roll back on any error.

    The exception is re-raised unchanged; there are no internal retries.
    An optimistic-lock failure (another writer bumped version_id first)
    surfaces as ConflictError.
    """
    try:
        result = func()
        session.commit()
        return result
    except StaleDataError as exc:
        session.rollback()
        logger.info("Concurrent modification detected: %s", exc)
        raise ConflictError("Record was modified concurrently; reload and retry") from exc
    except Exception:
        session.rollback()
        raise
