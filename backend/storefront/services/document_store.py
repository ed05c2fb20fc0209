# Overview: Document store gateway; generic CRUD/query over logical containers.

"""
Document Store Gateway

Containers are logical collections (one per entity type) inside the single
`documents` table. Every document returned to callers is a deep copy carrying
`id` and `_etag`; passing the document back to `replace` with its `_etag`
makes the write conditional on nobody having replaced it in between.

INVARIANTS:
- A single create/replace/patch/delete is atomic and commits on its own.
- Nothing spans documents: multi-document operations are best effort.
- A replace whose `_etag` is stale raises StaleDocumentError and writes nothing.
"""

from __future__ import annotations

import copy
import uuid
from typing import Any, Callable, Iterable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConflictError, NotFoundError, StaleDocumentError
from ..extensions import db
from ..models import Document


# Container names
CART_ITEMS = "CartItems"
PRODUCTS = "Products"
STORE_PRODUCT = "StoreProduct"
STORE_DETAILS = "StoreDetails"
CUSTOMERS = "Customers"
COUPON_CODES = "CouponCodes"
ORDERS = "Order"
SUBSCRIPTIONS = "Subscriptions"
COUNTERS = "Counters"
PAYMENT_EVENTS = "PaymentEvents"
SESSIONS = "Sessions"

ETAG = "_etag"

_MISSING = object()


def dig(doc: dict, path: str, default: Any = None) -> Any:
    """Resolve a dotted path ("storeDetails.id") inside a document."""
    current: Any = doc
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return default
        current = current[part]
    return current


def _body_of(doc: dict) -> dict:
    body = copy.deepcopy(doc)
    body.pop(ETAG, None)
    return body


def _load(container: str, doc_id: str) -> Document | None:
    return (
        db.session.query(Document)
        .filter_by(container=container, doc_id=str(doc_id))
        .populate_existing()
        .first()
    )


def _snapshot(row: Document) -> dict:
    return row.to_dict()


def _check_etag(row: Document, expected) -> None:
    if expected is not None and int(expected) != row.version_id:
        raise StaleDocumentError(
            f"{row.container}/{row.doc_id} was modified concurrently",
            details={"expected": expected, "current": row.version_id},
        )


def _commit_write(row: Document) -> dict:
    try:
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        raise StaleDocumentError(f"{row.container}/{row.doc_id} was modified concurrently") from exc
    return _snapshot(row)


def read_by_id(container: str, doc_id: str) -> dict | None:
    if doc_id is None or doc_id == "":
        return None
    row = _load(container, doc_id)
    return _snapshot(row) if row else None


def create(container: str, doc: dict) -> dict:
    """Insert a new document; raises ConflictError if the id already exists."""
    body = _body_of(doc)
    doc_id = str(body.get("id") or uuid.uuid4())
    body["id"] = doc_id

    row = Document(container=container, doc_id=doc_id, body=body)
    db.session.add(row)
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError(f"{container}/{doc_id} already exists") from exc
    return _snapshot(row)


def replace(container: str, doc: dict) -> dict:
    """
    Replace a whole document by id.

    Raises NotFoundError when absent and StaleDocumentError when the caller's
    `_etag` no longer matches the stored version.
    """
    doc_id = doc.get("id")
    if not doc_id:
        raise NotFoundError(f"{container} document without id cannot be replaced")

    row = _load(container, doc_id)
    if row is None:
        raise NotFoundError(f"{container}/{doc_id} not found")
    _check_etag(row, doc.get(ETAG))

    body = _body_of(doc)
    body["id"] = row.doc_id
    row.body = body
    # bump even when the body is unchanged so concurrent writers observe it
    row.version_id = row.version_id + 1
    return _commit_write(row)


def patch(container: str, doc_id: str, fields: dict, *, if_match=None) -> dict:
    """Merge top-level fields into a document, optionally conditional on `if_match`."""
    row = _load(container, doc_id)
    if row is None:
        raise NotFoundError(f"{container}/{doc_id} not found")
    _check_etag(row, if_match)

    body = copy.deepcopy(row.body or {})
    for key, value in fields.items():
        if key in ("id", ETAG):
            continue
        body[key] = copy.deepcopy(value)
    row.body = body
    row.version_id = row.version_id + 1
    return _commit_write(row)


def delete(container: str, doc_id: str) -> bool:
    row = _load(container, doc_id)
    if row is None:
        return False
    db.session.delete(row)
    db.session.commit()
    return True


def _matches(doc: dict, filters: dict) -> bool:
    for path, expected in filters.items():
        actual = dig(doc, path, _MISSING)
        if actual is _MISSING or actual != expected:
            return False
    return True


def _json_path(path: str):
    return Document.body[tuple(path.split("."))]


def _sql_condition(path: str, expected):
    """SQL equality on a JSON path, or None when the value has no scalar JSON form."""
    element = _json_path(path)
    # bool before int: True is an int
    if isinstance(expected, bool):
        return element.as_boolean() == expected
    if isinstance(expected, int):
        return element.as_integer() == expected
    if isinstance(expected, float):
        return element.as_float() == expected
    if isinstance(expected, str):
        return element.as_string() == expected
    return None


def _base_query(container: str, filters: dict | None, starts_with: dict | None):
    """Container query with equality/prefix conditions pushed into SQL.

    Returns (query, residual_filters) where the residual filters (None values,
    lists, dicts) still have to be checked against the loaded documents.
    """
    q = db.session.query(Document).filter(Document.container == container)
    residual = {}
    for path, expected in (filters or {}).items():
        condition = _sql_condition(path, expected)
        if condition is None:
            residual[path] = expected
        else:
            q = q.filter(condition)
    for path, prefix in (starts_with or {}).items():
        q = q.filter(_json_path(path).as_string().startswith(prefix, autoescape=True))
    return q, residual


def query(
    container: str,
    filters: dict | None = None,
    *,
    starts_with: dict | None = None,
    where: Callable[[dict], bool] | None = None,
    order_by: str | None = None,
    descending: bool = False,
    offset: int = 0,
    limit: int | None = None,
) -> list[dict]:
    """
    Filtered query over one container.

    `filters` maps dotted paths to required values (equality) and
    `starts_with` maps dotted paths to required string prefixes; both run in
    SQL. `where` is an extra predicate for range or membership conditions and
    is evaluated on the loaded documents. Ordering always runs in SQL (missing
    values last ascending, first descending); offset and limit run in SQL
    whenever no condition is left to check in Python.
    """
    q, residual = _base_query(container, filters, starts_with)
    if order_by:
        key = _json_path(order_by).as_string()
        q = q.order_by(key.desc().nulls_first() if descending else key.asc().nulls_last())
    q = q.order_by(Document.id)

    pushed_down = not residual and where is None
    if pushed_down:
        if offset:
            q = q.offset(offset)
        if limit is not None:
            q = q.limit(limit)

    rows: Iterable[Document] = q.populate_existing().all()
    docs = [_snapshot(row) for row in rows]
    if pushed_down:
        return docs

    if residual:
        docs = [d for d in docs if _matches(d, residual)]
    if where is not None:
        docs = [d for d in docs if where(d)]
    if offset:
        docs = docs[offset:]
    if limit is not None:
        docs = docs[:limit]
    return docs


def query_one(container: str, filters: dict) -> dict | None:
    found = query(container, filters, limit=1)
    return found[0] if found else None


def count(container: str, filters: dict | None = None, *, where=None) -> int:
    q, residual = _base_query(container, filters, None)
    if not residual and where is None:
        return q.count()
    return len(query(container, filters, where=where))
