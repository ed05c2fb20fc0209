# Overview: Retry wrapper for optimistic-concurrency conflicts on document writes.

from __future__ import annotations

import time

from flask import current_app, has_app_context
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import StaleDocumentError
from ..extensions import db


def _default_attempts() -> int:
    if has_app_context():
        return int(current_app.config.get("WRITE_RETRY_ATTEMPTS", 3))
    return 3


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.05):
    """
    Execute a read-modify-write operation with retry on concurrency failures.

    Retries on StaleDocumentError (replace against an outdated _etag),
    StaleDataError (version_id_col mismatch at flush) and OperationalError
    (database locks). `func` must re-read what it modifies on every attempt.
    """
    attempts = attempts or _default_attempts()
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (StaleDocumentError, StaleDataError, OperationalError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc
