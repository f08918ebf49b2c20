"""
Database Helper Utilities for Concurrency Control

Provides:
- Database dialect detection (PostgreSQL vs SQLite)
- Row locking that also serializes writers on SQLite
- Atomic counter upserts
- Lock-contention error classification
"""

import logging
from typing import Iterable, List, Optional, TypeVar, Type
from sqlalchemy.orm import Session
from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError

logger = logging.getLogger(__name__)

T = TypeVar('T')

# SQLSTATE codes for lock_not_available, deadlock_detected, serialization_failure
PG_CONTENTION_CODES = {"55P03", "40P01", "40001"}

CONTENTION_MESSAGES = (
    "could not obtain lock",
    "deadlock detected",
    "could not serialize access",
    "database is locked",
    "database table is locked",
)


def is_postgres(db: Session) -> bool:
    """Check if the database is PostgreSQL"""
    try:
        dialect = db.bind.dialect.name
        return dialect == 'postgresql'
    except Exception:
        return False


def is_lock_contention(exc: BaseException) -> bool:
    """
    True when a database error means "someone else holds the lock".

    These failures are transient: the whole transaction can be retried.
    """
    if not isinstance(exc, DBAPIError):
        return False

    pgcode = getattr(exc.orig, "pgcode", None) or getattr(exc.orig, "sqlstate", None)
    message = str(exc.orig if exc.orig is not None else exc).lower()
    if pgcode in PG_CONTENTION_CODES or any(text in message for text in CONTENTION_MESSAGES):
        logger.debug(f"Lock contention ({pgcode or 'no sqlstate'}): {message}")
        return True
    return False


def acquire_row_lock(
    db: Session,
    model: Type[T],
    filter_condition
) -> Optional[T]:
    """
    Acquire a row-level lock on a database record.

    Args:
        db: Database session
        model: SQLAlchemy model class
        filter_condition: Filter to find the row

    Returns:
        The locked model instance, or None if not found

    Example:
        booking = acquire_row_lock(db, Booking, Booking.id == booking_id)
    """
    query = db.query(model).filter(filter_condition)

    if is_postgres(db):
        query = query.with_for_update()
    else:
        # SQLite has no FOR UPDATE: take the database write lock instead
        db.execute(
            update(model)
            .where(filter_condition)
            .values(lock_version=model.lock_version + 1)
            .execution_options(synchronize_session=False)
        )
        query = query.populate_existing()

    return query.first()


def lock_rows_for_write(db: Session, model: Type[T], ids: Iterable[str]) -> List[T]:
    """
    Lock several rows by primary key for the rest of the transaction.

    Rows are locked in ascending id order so two transactions locking
    overlapping sets cannot deadlock. On PostgreSQL this is SELECT ... FOR
    UPDATE; on SQLite an UPDATE of ``lock_version`` acquires the database
    write lock, which serializes every writer until commit.

    Returns the locked rows (missing ids are simply absent).
    """
    ordered_ids = sorted(set(ids))
    if not ordered_ids:
        return []

    if is_postgres(db):
        return (
            db.query(model)
            .filter(model.id.in_(ordered_ids))
            .order_by(model.id)
            .with_for_update()
            .all()
        )

    db.execute(
        update(model)
        .where(model.id.in_(ordered_ids))
        .values(lock_version=model.lock_version + 1)
        .execution_options(synchronize_session=False)
    )
    return (
        db.query(model)
        .filter(model.id.in_(ordered_ids))
        .order_by(model.id)
        .populate_existing()
        .all()
    )


class AtomicCounter:
    """
    Helper for atomic counter increments.

    Prevents lost updates on concurrent increments.

    Example:
        AtomicCounter.upsert_increment(db, OrderSequence, 'scope_key', '202608', 'last_value')
    """

    @staticmethod
    def upsert_increment(
        db: Session,
        model: Type[T],
        key_column: str,
        key_value,
        counter_column: str,
        increment_by: int = 1
    ) -> int:
        """
        Create the counter row at ``increment_by`` or add ``increment_by`` to it.

        A single INSERT ... ON CONFLICT DO UPDATE statement, so two
        transactions can never read the same value. The row stays locked
        until the caller commits or rolls back.

        Returns the new value after increment.
        """
        if is_postgres(db):
            from sqlalchemy.dialects.postgresql import insert
        else:
            from sqlalchemy.dialects.sqlite import insert

        column = getattr(model, counter_column)
        table = model.__table__

        stmt = insert(table).values({key_column: key_value, counter_column: increment_by})
        stmt = stmt.on_conflict_do_update(
            index_elements=[key_column],
            set_={counter_column: table.c[counter_column] + increment_by},
        )

        if is_postgres(db):
            # PostgreSQL supports RETURNING
            row = db.execute(stmt.returning(table.c[counter_column])).fetchone()
            return row[0]

        # SQLite fallback - upsert then select, still inside the write lock
        db.execute(stmt)
        return db.execute(
            select(column).where(getattr(model, key_column) == key_value)
        ).scalar_one()
