# Overview: Item locking and commit-aware retry for stock writes.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import InventoryItem

RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def locked_item(item_id: int) -> InventoryItem | None:
    """
    Load one inventory item with SELECT ... FOR UPDATE.

    SQLite ignores the lock; writers there are serialized by the database file.
    """
    return (
        db.session.query(InventoryItem)
        .filter_by(id=item_id)
        .with_for_update()
        .first()
    )


def run_stock_write(func, *, owns_commit: bool, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run a stock write, retrying lock and stale-row failures when safe.

    A write that commits itself is retried after a rollback so the next
    attempt re-reads the item. A write batched into the caller's transaction
    (sale consumption, webhook intake) runs once: rolling back here would
    discard the caller's earlier lines, so the error goes to the caller.
    """
    if not owns_commit:
        return func()

    for attempt in range(attempts):
        try:
            return func()
        except RETRYABLE_ERRORS:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
