"""
SQLAlchemy models for listing migration state.

This module defines the database schema for the checkpoint store,
source-to-destination ID mappings, the durable batch job queue, the
import log stream, and the single-flight adapter locks.
"""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class CheckpointEntry(Base):
    """
    One key/value pair of durable per-adapter state.

    Task state, import settings, counters and flags are all stored here,
    namespaced by adapter so concurrent migrations never collide.
    """

    __tablename__ = "checkpoint_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    adapter_id: Mapped[str] = mapped_column(
        String(100), nullable=False, index=True, comment="Adapter owning this entry"
    )
    key: Mapped[str] = mapped_column(String(100), nullable=False, comment="Entry key")
    value: Mapped[Any] = mapped_column(JSON, nullable=True, comment="JSON-encoded value")

    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
        comment="When entry was last written",
    )

    __table_args__ = (UniqueConstraint("adapter_id", "key", name="uq_checkpoint_adapter_key"),)

    def __repr__(self) -> str:
        return f"<CheckpointEntry(adapter_id='{self.adapter_id}', key='{self.key}')>"


class IDMapping(Base):
    """
    Maps source IDs to destination IDs within a namespace.

    The namespace combines adapter and entity type, so a term ID from one
    source can never be confused with a field ID or with another source.
    """

    __tablename__ = "id_mappings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    namespace: Mapped[str] = mapped_column(
        String(200), nullable=False, index=True, comment="Adapter and entity type"
    )
    source_id: Mapped[str] = mapped_column(
        String(255), nullable=False, comment="ID in the source plugin (stored as text)"
    )
    destination_id: Mapped[int] = mapped_column(
        BigInteger, nullable=False, comment="ID in the destination directory"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now(), comment="When mapping was created"
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
        comment="When mapping was last rebound",
    )

    __table_args__ = (
        UniqueConstraint("namespace", "source_id", name="uq_namespace_source_id"),
        Index("idx_namespace_destination_id", "namespace", "destination_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<IDMapping(namespace='{self.namespace}', source_id='{self.source_id}', "
            f"destination_id={self.destination_id})>"
        )


class BatchJobRecord(Base):
    """
    A queued batch of deferred per-item work.

    Rows are consumed in primary key order, which is submission order.
    """

    __tablename__ = "batch_jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    adapter_id: Mapped[str] = mapped_column(
        String(100), nullable=False, index=True, comment="Adapter owning this job"
    )
    action: Mapped[str] = mapped_column(
        String(100), nullable=False, comment="Job handler name (e.g. import_listings)"
    )
    payload: Mapped[list] = mapped_column(
        JSON, nullable=False, comment="Ordered, bounded list of items for the handler"
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending", comment="pending or running"
    )
    attempts: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, comment="Number of times the job was dispatched"
    )

    enqueued_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=_utcnow, comment="When job was submitted"
    )
    started_at: Mapped[datetime | None] = mapped_column(
        DateTime, nullable=True, comment="When the current dispatch started"
    )

    __table_args__ = (
        CheckConstraint("status IN ('pending', 'running')", name="ck_batch_jobs_status"),
        Index("idx_batch_jobs_adapter_status", "adapter_id", "status", "id"),
    )

    def __repr__(self) -> str:
        return (
            f"<BatchJobRecord(id={self.id}, adapter_id='{self.adapter_id}', "
            f"action='{self.action}', status='{self.status}')>"
        )


class LogRecord(Base):
    """
    One entry of the append-only import log.

    The autoincrement primary key is the sequence number used as the
    polling cursor. On SQLite the table is declared AUTOINCREMENT so
    numbers are never reused after the log is cleared for a new run.
    """

    __tablename__ = "import_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    adapter_id: Mapped[str] = mapped_column(
        String(100), nullable=False, comment="Adapter that produced the entry"
    )
    message: Mapped[str] = mapped_column(Text, nullable=False, comment="Log message")
    severity: Mapped[str] = mapped_column(
        String(20), nullable=False, default="info", comment="info, success, warning, error"
    )
    elapsed_seconds: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, comment="Seconds since the import started"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=_utcnow, comment="When entry was written"
    )

    __table_args__ = (
        CheckConstraint(
            "severity IN ('info', 'success', 'warning', 'error')", name="ck_import_log_severity"
        ),
        Index("idx_import_log_adapter_id", "adapter_id", "id"),
        {"sqlite_autoincrement": True},
    )

    def __repr__(self) -> str:
        return f"<LogRecord(id={self.id}, adapter_id='{self.adapter_id}', severity='{self.severity}')>"


class AdapterLock(Base):
    """
    Single-flight lease held while an adapter's sequencer or queue runs.
    """

    __tablename__ = "adapter_locks"

    lock_key: Mapped[str] = mapped_column(String(150), primary_key=True, comment="Lock name")
    owner: Mapped[str] = mapped_column(String(64), nullable=False, comment="Holder token")
    acquired_at: Mapped[float] = mapped_column(
        Float, nullable=False, comment="Unix timestamp of acquisition"
    )
    expires_at: Mapped[float] = mapped_column(
        Float, nullable=False, comment="Unix timestamp after which the lease is stale"
    )

    def __repr__(self) -> str:
        return f"<AdapterLock(lock_key='{self.lock_key}', owner='{self.owner}')>"
