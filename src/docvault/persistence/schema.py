"""Metadata store schema.

One row per document version. The unique constraint on
(uploaded_by, base_file_name, version) is what makes concurrent uploads to
the same chain safe: a second writer that resolved the same version number
fails on insert and re-resolves.
"""

from __future__ import annotations

import sqlalchemy as sa

metadata = sa.MetaData()

CHAIN_VERSION_CONSTRAINT = "uq_documents_chain_version"

documents = sa.Table(
    "documents",
    metadata,
    sa.Column("document_id", sa.String(32), primary_key=True),
    sa.Column("base_file_name", sa.String(255), nullable=False),
    sa.Column("uploaded_by", sa.String(128), nullable=False),
    sa.Column("original_name", sa.String(255), nullable=False),
    sa.Column("stored_name", sa.String(255), nullable=False),
    sa.Column("mime_type", sa.String(255), nullable=False),
    sa.Column("size", sa.BigInteger, nullable=False),
    sa.Column("file_hash", sa.String(64), nullable=False),
    sa.Column("blob_path", sa.String(1024), nullable=False),
    sa.Column("blob_id", sa.String(255), nullable=False),
    sa.Column("version", sa.Integer, nullable=False, default=1),
    sa.Column("is_latest_version", sa.Boolean, nullable=False, default=True),
    sa.Column("parent_document", sa.String(32), nullable=True),
    sa.Column("version_history", sa.JSON, nullable=False, default=list),
    sa.Column("access_level", sa.String(16), nullable=False, default="private"),
    sa.Column("access_pin", sa.String(128), nullable=True),
    sa.Column("download_count", sa.Integer, nullable=False, default=0),
    sa.Column("category", sa.String(16), nullable=False, default="other"),
    sa.Column("description", sa.String(500), nullable=False, default=""),
    sa.Column("tags", sa.JSON, nullable=False, default=list),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    sa.UniqueConstraint(
        "uploaded_by", "base_file_name", "version", name=CHAIN_VERSION_CONSTRAINT
    ),
    sa.Index("ix_documents_base_file_name_version", "base_file_name", "version"),
    sa.Index("ix_documents_uploaded_by", "uploaded_by"),
    sa.Index("ix_documents_access_level", "access_level"),
    sa.Index("ix_documents_is_latest_version", "is_latest_version"),
    sa.Index("ix_documents_parent_document", "parent_document"),
)
