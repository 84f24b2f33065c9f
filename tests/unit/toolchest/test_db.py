# -*- coding: utf-8 -*-
"""Location: ./tests/unit/toolchest/test_db.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: ToolChest Contributors

Unit tests for the ORM models and session helpers.
"""

# Standard
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

# Third-Party
import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

# First-Party
import toolchest.db as db_mod
from toolchest.db import as_utc, Tag, Tool, ToolTag, ToolUsageEvent


def test_as_utc_converts_offsets():
    plus_two = timezone(timedelta(hours=2))
    assert as_utc(datetime(2025, 1, 1, 12, tzinfo=plus_two)) == datetime(2025, 1, 1, 10, tzinfo=timezone.utc)
    assert as_utc(datetime(2025, 1, 1, 12)).tzinfo is timezone.utc


def test_duplicate_assignment_is_rejected(factory, test_db):
    tool = factory.tool("Chisel")
    tag = factory.tag("Wood")
    factory.assign(tool, tag)

    test_db.add(ToolTag(tool_id=tool.id, tag_id=tag.id))
    with pytest.raises(IntegrityError):
        test_db.commit()
    test_db.rollback()


def test_deleting_a_tool_cascades(factory, test_db):
    tool = factory.tool("Chisel")
    tag = factory.tag("Wood")
    factory.assign(tool, tag)
    factory.usage(tool, [datetime(2025, 1, 1, tzinfo=timezone.utc)])

    test_db.delete(tool)
    test_db.commit()

    assert test_db.execute(select(ToolTag)).all() == []
    assert test_db.execute(select(ToolUsageEvent)).all() == []
    assert test_db.get(Tag, tag.id) is not None


def test_tool_tag_ids_follow_links(factory, test_db):
    tool = factory.tool("Chisel")
    first = factory.tag("Wood")
    second = factory.tag("Fine")
    factory.assign(tool, first)
    factory.assign(tool, second)

    test_db.refresh(tool)

    assert sorted(tool.tag_ids) == sorted([first.id, second.id])


def test_defaults_are_applied(test_db):
    tool = Tool(name="Plane", slug="plane")
    test_db.add(tool)
    test_db.commit()

    assert len(tool.id) == 32
    assert tool.is_active is True
    assert tool.display_order == 0
    assert tool.created_at is not None


def test_get_db_commits_on_success(monkeypatch):
    session = MagicMock()
    monkeypatch.setattr(db_mod, "SessionLocal", lambda: session)

    gen = db_mod.get_db()
    assert next(gen) is session
    with pytest.raises(StopIteration):
        next(gen)

    session.commit.assert_called_once()
    session.close.assert_called_once()


def test_get_db_rolls_back_on_error(monkeypatch):
    session = MagicMock()
    monkeypatch.setattr(db_mod, "SessionLocal", lambda: session)

    gen = db_mod.get_db()
    next(gen)
    with pytest.raises(RuntimeError):
        gen.throw(RuntimeError("handler failed"))

    session.rollback.assert_called_once()
    session.commit.assert_not_called()
    session.close.assert_called_once()


def test_fresh_db_session_rolls_back_on_error(monkeypatch):
    session = MagicMock()
    monkeypatch.setattr(db_mod, "SessionLocal", lambda: session)

    with pytest.raises(ValueError):
        with db_mod.fresh_db_session():
            raise ValueError("boom")

    session.rollback.assert_called_once()
    session.close.assert_called_once()
