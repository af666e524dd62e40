from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Document(db.Model):
    """
    One schemaless record in a named collection.

    The document body lives in `data` (JSON). `version` increases by one on
    every committed write and is what transactions compare against to detect
    a concurrent writer: writes are issued as
    UPDATE ... WHERE collection=? AND doc_id=? AND version=<version read>.
    """
    __tablename__ = "documents"
    __table_args__ = (
        db.UniqueConstraint("collection", "doc_id", name="uq_documents_collection_doc"),
        db.Index("ix_documents_collection", "collection"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    collection = db.Column(db.String(128), nullable=False)
    doc_id = db.Column(db.String(128), nullable=False)
    data = db.Column(db.JSON, nullable=False, default=dict)
    version = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Document {self.collection}/{self.doc_id} v{self.version}>"

    def to_dict(self) -> dict:
        return {
            "collection": self.collection,
            "id": self.doc_id,
            "version": self.version,
            "data": dict(self.data or {}),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class CompositeIndex(db.Model):
    """
    Declared (filter fields..., order field) index for one collection.

    Ordered queries that also filter are refused unless a matching row
    exists here; `fields` holds the normalized field list joined by commas.
    """
    __tablename__ = "composite_indexes"
    __table_args__ = (
        db.UniqueConstraint("collection", "fields", name="uq_composite_indexes_collection_fields"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    collection = db.Column(db.String(128), nullable=False, index=True)
    fields = db.Column(db.String(512), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def field_tuple(self) -> tuple[str, ...]:
        return tuple(self.fields.split(","))
