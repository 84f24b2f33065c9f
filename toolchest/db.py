# -*- coding: utf-8 -*-
"""Location: ./toolchest/db.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: ToolChest Contributors

ToolChest Database Models.
This module defines the SQLAlchemy engine, session factory and ORM models for
the ToolChest catalog:
- Tools shown in the public catalog
- Tags used to categorise tools
- Tool/tag assignments (with the time each assignment was made)
- Per-tool usage aggregates and the raw usage event log

Examples:
    >>> from toolchest.db import connect_args
    >>> isinstance(connect_args, dict)
    True
    >>> 'check_same_thread' in connect_args or len(connect_args) == 0
    True
"""

# Standard
from contextlib import contextmanager
from datetime import datetime, timezone
import logging
import os
from typing import Any, Generator, List, Optional
import uuid

# Third-Party
from sqlalchemy import Boolean, create_engine, DateTime, event, ForeignKey, Integer, make_url, MetaData, String, Text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

# First-Party
from toolchest.config import settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# 1. Parse the URL so we can inspect the backend ("postgresql", "sqlite", ...)
# ---------------------------------------------------------------------------
url = make_url(settings.database_url)
backend = url.get_backend_name()

connect_args: dict[str, object] = {}

# ---------------------------------------------------------------------------
# 2. SQLite - allow pooled connections to hop across threads.
# ---------------------------------------------------------------------------
if backend == "sqlite":
    connect_args["check_same_thread"] = False

# Check for SQLALCHEMY_ECHO environment variable for query debugging
_sqlalchemy_echo = os.getenv("SQLALCHEMY_ECHO", "").lower() in ("true", "1", "yes")


def build_engine() -> Engine:
    """Build the SQLAlchemy engine with appropriate settings.

    In-memory SQLite databases share a single connection (``StaticPool``) so
    every session sees the same tables; file-based SQLite and server databases
    use a ``QueuePool`` sized from settings.

    Environment variables:
        SQLALCHEMY_ECHO: Set to 'true' to log all SQL queries

    Returns:
        SQLAlchemy Engine instance configured for the specified database.
    """
    if _sqlalchemy_echo:
        logger.info("SQLALCHEMY_ECHO enabled - all SQL queries will be logged")

    if backend == "sqlite" and (url.database in (None, "", ":memory:")):
        logger.info("Configuring in-memory SQLite with a static pool")
        return create_engine(settings.database_url, poolclass=StaticPool, connect_args=connect_args, echo=_sqlalchemy_echo)

    if backend == "sqlite":
        sqlite_pool_size = min(settings.db_pool_size, 50)
        sqlite_max_overflow = min(settings.db_max_overflow, 20)
        logger.info("Configuring SQLite with pool_size=%s, max_overflow=%s", sqlite_pool_size, sqlite_max_overflow)
        return create_engine(
            settings.database_url,
            pool_pre_ping=True,
            pool_size=sqlite_pool_size,
            max_overflow=sqlite_max_overflow,
            pool_timeout=settings.db_pool_timeout,
            pool_recycle=settings.db_pool_recycle,
            poolclass=QueuePool,
            connect_args=connect_args,
            echo=_sqlalchemy_echo,
        )

    logger.info("Using QueuePool with pool_size=%s, max_overflow=%s", settings.db_pool_size, settings.db_max_overflow)
    return create_engine(
        settings.database_url,
        pool_pre_ping=True,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout,
        pool_recycle=settings.db_pool_recycle,
        connect_args=connect_args,
        echo=_sqlalchemy_echo,
    )


engine = build_engine()


def utc_now() -> datetime:
    """Return the current Coordinated Universal Time (UTC).

    Returns:
        datetime: A timezone-aware `datetime` whose `tzinfo` is
        `datetime.timezone.utc`.

    Examples:
        >>> from toolchest.db import utc_now
        >>> now = utc_now()
        >>> now.tzinfo is not None
        True
        >>> str(now.tzinfo)
        'UTC'
    """
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalise a datetime read back from the store to an aware UTC value.

    SQLite drops tzinfo on the way out; every timestamp the application
    writes is UTC, so naive values are tagged as UTC.

    Args:
        value: A datetime, possibly naive, or None.

    Returns:
        Optional[datetime]: Aware UTC datetime, or None.

    Examples:
        >>> as_utc(datetime(2025, 1, 1)).tzinfo is timezone.utc
        True
        >>> as_utc(None) is None
        True
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


if backend == "sqlite":

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, _connection_record):
        """Set SQLite pragmas for concurrency and cascading deletes.

        Args:
            dbapi_conn: The raw DBAPI connection.
            _connection_record: A SQLAlchemy-specific object that maintains
                information about the connection's context.
        """
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute(f"PRAGMA busy_timeout={settings.db_sqlite_busy_timeout}")
        # Enable foreign key constraints for ON DELETE CASCADE support
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


class Base(DeclarativeBase):
    """Base class for all models."""

    metadata = MetaData(
        naming_convention={
            "fk": "fk_%(table_name)s_%(column_0_name)s",
            "pk": "pk_%(table_name)s",
            "ix": "ix_%(table_name)s_%(column_0_name)s",
            "uq": "uq_%(table_name)s_%(column_0_name)s",
            "ck": "ck_%(table_name)s_%(constraint_name)s",
        }
    )


class ToolTag(Base):
    """
    ORM model for a tool/tag assignment.

    The composite primary key forbids duplicate (tool, tag) pairs. ``assigned_at``
    records when the assignment was made and drives the "recently tagged"
    statistics.
    """

    __tablename__ = "tool_tags"

    tool_id: Mapped[str] = mapped_column(String(36), ForeignKey("tools.id", ondelete="CASCADE"), primary_key=True)
    tag_id: Mapped[str] = mapped_column(String(36), ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True, index=True)
    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)

    tool: Mapped["Tool"] = relationship("Tool", back_populates="tag_links")
    tag: Mapped["Tag"] = relationship("Tag", back_populates="tool_links")


class Tool(Base):
    """
    ORM model for a catalog tool.

    Attributes:
        id (str): Hex UUID primary key.
        slug (str): Unique URL slug.
        name (str): Display name used by the admin back office.
        display_order (int): Position in catalog listings.
        is_active (bool): Inactive tools are hidden from the public catalog.
    """

    __tablename__ = "tools"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: uuid.uuid4().hex)
    slug: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    icon: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    display_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    tag_links: Mapped[List["ToolTag"]] = relationship("ToolTag", back_populates="tool", cascade="all, delete-orphan", passive_deletes=True)
    usage_stats: Mapped[Optional["ToolUsageStats"]] = relationship("ToolUsageStats", back_populates="tool", uselist=False, cascade="all, delete-orphan")
    usage_events: Mapped[List["ToolUsageEvent"]] = relationship("ToolUsageEvent", back_populates="tool", cascade="all, delete-orphan", passive_deletes=True)

    @property
    def tag_ids(self) -> List[str]:
        """Ids of the tags currently assigned to this tool.

        Returns:
            List[str]: Assigned tag ids in assignment order.
        """
        return [link.tag_id for link in self.tag_links]


class Tag(Base):
    """
    ORM model for a catalog tag.

    ``is_system`` marks protected tags that automatic orphan cleanup must never
    delete.
    """

    __tablename__ = "tags"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: uuid.uuid4().hex)
    slug: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    color: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    display_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_system: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    tool_links: Mapped[List["ToolTag"]] = relationship("ToolTag", back_populates="tag", cascade="all, delete-orphan", passive_deletes=True)


class ToolUsageStats(Base):
    """Aggregate usage counters for one tool."""

    __tablename__ = "tool_usage_stats"

    id: Mapped[int] = mapped_column(primary_key=True)
    tool_id: Mapped[str] = mapped_column(String(36), ForeignKey("tools.id", ondelete="CASCADE"), unique=True, nullable=False)
    usage_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_used: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    tool: Mapped["Tool"] = relationship("Tool", back_populates="usage_stats")


class ToolUsageEvent(Base):
    """
    ORM model for one recorded use of a tool.

    Each row is a single run of a tool in the public catalog. Time-series
    aggregates are computed on the fly over these rows.
    """

    __tablename__ = "tool_usage_events"

    id: Mapped[int] = mapped_column(primary_key=True)
    tool_id: Mapped[str] = mapped_column(String(36), ForeignKey("tools.id", ondelete="CASCADE"), nullable=False, index=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False, index=True)

    tool: Mapped["Tool"] = relationship("Tool", back_populates="usage_events")


def get_db() -> Generator[Session, Any, None]:
    """
    Dependency to get database session.

    Commits the transaction on successful completion and rolls back
    explicitly on exception.

    Yields:
        SessionLocal: A SQLAlchemy database session.

    Raises:
        Exception: Re-raises any exception after rolling back the transaction.

    Examples:
        >>> from toolchest.db import get_db
        >>> gen = get_db()
        >>> db = next(gen)
        >>> hasattr(db, 'commit')
        True
        >>> gen.close()
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@contextmanager
def fresh_db_session() -> Generator[Session, Any, None]:
    """Get a fresh database session for work outside a request.

    Used by the background monitoring loop. The session is committed on
    successful exit or rolled back on exception, then closed.

    Yields:
        Session: A fresh SQLAlchemy database session.

    Raises:
        Exception: Any exception raised during database operations is re-raised
            after rolling back the transaction.

    Examples:
        >>> from toolchest.db import fresh_db_session
        >>> with fresh_db_session() as db:
        ...     hasattr(db, 'query')
        True
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db():
    """
    Initialize database tables.

    Raises:
        Exception: If database initialization fails.
    """
    try:
        Base.metadata.create_all(bind=engine)
    except SQLAlchemyError as e:
        raise Exception(f"Failed to initialize database: {str(e)}")
