# -*- coding: utf-8 -*-
"""Location: ./tests/conftest.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: ToolChest Contributors
"""

# Standard
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

# Third-Party
import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# First-Party
import toolchest.db as db_mod
from toolchest.db import Tag, Tool, ToolTag, ToolUsageEvent, ToolUsageStats

FIXED_NOW = datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def test_engine():
    """Create an in-memory SQLite engine with the schema and foreign keys enabled."""
    engine = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False}, poolclass=StaticPool)

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_conn, _connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    db_mod.Base.metadata.create_all(bind=engine)
    yield engine
    db_mod.Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=test_engine)


@pytest.fixture
def test_db(session_factory):
    """Create a fresh database session for a test."""
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


class CatalogFactory:
    """Small helpers to seed tools, tags, assignments and usage."""

    def __init__(self, db: Session):
        self.db = db

    def tool(self, name: str, is_active: bool = True, display_order: int = 0, slug: Optional[str] = None) -> Tool:
        tool = Tool(name=name, slug=slug or name.lower().replace(" ", "-"), is_active=is_active, display_order=display_order)
        self.db.add(tool)
        self.db.commit()
        return tool

    def tag(self, name: str, is_system: bool = False, color: Optional[str] = None, display_order: int = 0) -> Tag:
        tag = Tag(name=name, slug=name.lower().replace(" ", "-"), is_system=is_system, color=color, display_order=display_order)
        self.db.add(tag)
        self.db.commit()
        return tag

    def assign(self, tool: Tool, tag: Tag, assigned_at: Optional[datetime] = None) -> ToolTag:
        link = ToolTag(tool_id=tool.id, tag_id=tag.id, assigned_at=assigned_at or datetime.now(timezone.utc))
        self.db.add(link)
        self.db.commit()
        return link

    def usage(self, tool: Tool, timestamps: Iterable[datetime]) -> None:
        timestamps = list(timestamps)
        self.db.add_all([ToolUsageEvent(tool_id=tool.id, timestamp=ts) for ts in timestamps])
        if timestamps:
            stats = self.db.query(ToolUsageStats).filter_by(tool_id=tool.id).one_or_none()
            if stats is None:
                stats = ToolUsageStats(tool_id=tool.id, usage_count=0)
                self.db.add(stats)
            stats.usage_count += len(timestamps)
            stats.last_used = max(timestamps + ([stats.last_used] if stats.last_used else []), key=db_mod.as_utc)
        self.db.commit()


@pytest.fixture
def factory(test_db):
    return CatalogFactory(test_db)


@pytest.fixture
def fixed_now():
    return FIXED_NOW


@pytest.fixture
def days_ago():
    """Return a helper producing timestamps relative to ``FIXED_NOW``."""

    def _days_ago(days: float, hours: float = 0) -> datetime:
        return FIXED_NOW - timedelta(days=days, hours=hours)

    return _days_ago


@pytest.fixture
def app(session_factory):
    """FastAPI application wired to the in-memory test database.

    The lifespan is not run; services are attached directly and the
    database dependency is overridden.
    """
    # First-Party
    from toolchest.main import app as fastapi_app
    from toolchest.main import build_services

    def override_get_db():
        db = session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    fastapi_app.dependency_overrides[db_mod.get_db] = override_get_db
    build_services(fastapi_app)
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()
