from __future__ import annotations

import copy

from ..extensions import db


class Document(db.Model):
    """
    One JSON document inside a logical container.

    WHY: The domain is document-shaped (carts, inventory records, orders with
    embedded snapshots). Each row is replaced as a whole; version_id gives
    ETag-style optimistic concurrency on that replace.
    """
    __tablename__ = "documents"
    __table_args__ = (
        db.UniqueConstraint("container", "doc_id", name="uq_documents_container_doc"),
        db.Index("ix_documents_container_created", "container", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    container = db.Column(db.String(64), nullable=False, index=True)
    doc_id = db.Column(db.String(191), nullable=False)

    body = db.Column(db.JSON, nullable=False, default=dict)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        doc = copy.deepcopy(self.body or {})
        doc["id"] = self.doc_id
        doc["_etag"] = self.version_id
        return doc
