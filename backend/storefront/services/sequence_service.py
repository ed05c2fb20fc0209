# Overview: Service-layer operations for order numbering; date-scoped atomic counter.

from __future__ import annotations

from datetime import date

from sqlalchemy.exc import OperationalError

from ..errors import ConflictError, PersistenceError, StaleDocumentError, SEQUENCE_FAILED
from storefront.time_utils import compact_date, utcnow
from . import document_store as store
from .concurrency import run_with_retry


COUNTER_ID = "Orders"


def next_sequence_value(today: date | None = None) -> tuple[str, int]:
    """
    Atomically allocate the next value of the daily order counter.

    The counter document {id: "Orders", date: YYYYMMDD, value: N} is created
    with value 1, incremented while its date is today, and reset to 1 on the
    first allocation of a new day. The replace is conditional on the version
    that was read, so concurrent allocators retry instead of sharing a value.
    """
    def _op() -> tuple[str, int]:
        today_str = compact_date(today or utcnow().date())
        counter = store.read_by_id(store.COUNTERS, COUNTER_ID)

        if counter is None:
            try:
                store.create(store.COUNTERS, {
                    "id": COUNTER_ID,
                    "type": "counter",
                    "date": today_str,
                    "value": 1,
                })
            except ConflictError as exc:
                # another allocator created it first; re-read and increment
                raise StaleDocumentError("order counter created concurrently") from exc
            return today_str, 1

        if counter.get("date") == today_str:
            value = int(counter.get("value") or 0) + 1
        else:
            value = 1
            counter["date"] = today_str
        counter["value"] = value
        store.replace(store.COUNTERS, counter)
        return today_str, value

    try:
        return run_with_retry(_op)
    except (StaleDocumentError, OperationalError) as exc:
        raise PersistenceError("Unable to allocate order id", reason=SEQUENCE_FAILED) from exc


def next_order_id(prefix: str, today: date | None = None) -> str:
    """Order identifier formatted {prefix}{YYYYMMDD}ORD{N}."""
    date_part, value = next_sequence_value(today)
    return f"{prefix}{date_part}ORD{value}"
