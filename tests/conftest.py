"""Fixtures partagées — DB SQLite temporaire, client FastAPI, fabriques de patterns/documents."""
import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import json
from datetime import datetime
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from pattern_hub.models import Base, DocumentDB, PatternDB


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'test.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    s = session_factory()
    yield s
    s.close()


@pytest.fixture
def revalidator():
    return MagicMock()


@pytest.fixture
def client(tmp_path, monkeypatch, revalidator):
    """Client de test : DB temporaire, revalidation mockée, scheduler coupé."""
    from pattern_hub import database, scheduler
    from pattern_hub.entities import load_registry
    from pattern_hub.patterns import invalidation

    engine = create_engine(f"sqlite:///{tmp_path / 'api.db'}", connect_args={"check_same_thread": False})
    monkeypatch.setattr(database, "ENGINE", engine)
    monkeypatch.setattr(database, "SessionLocal", sessionmaker(autocommit=False, autoflush=False, bind=engine))
    monkeypatch.setattr(scheduler, "start_scheduler", lambda: None)
    monkeypatch.setattr(invalidation, "build_invalidator", lambda: invalidation.PatternCacheInvalidator(
        registry=load_registry(), revalidator=revalidator, sleep=lambda s: None,
    ))

    from pattern_hub.api.main import app
    with TestClient(app) as c:
        yield c
    engine.dispose()


# ── Fabriques ─────────────────────────────────────────────────────────────

def block(bid: str, slug: str = "text", **props) -> dict:
    return {"id": bid, "blockSlug": slug, "props": props}


def ref(pattern_id: str, instance_id: str = None) -> dict:
    return {"type": "pattern", "ref": pattern_id, "id": instance_id or f"inst-{pattern_id}"}


def add_pattern(db, pid: str, blocks=None, status: str = "published", user_id: str = "usr-1",
                team_id: str = "team-1", raw_blocks: str = None) -> PatternDB:
    obj = PatternDB(
        id=pid, user_id=user_id, team_id=team_id, title=f"Pattern {pid}", slug=pid,
        blocks=raw_blocks if raw_blocks is not None else json.dumps(blocks or []),
        status=status,
    )
    db.add(obj); db.commit(); db.refresh(obj)
    return obj


def add_document(db, doc_id: str, entity_type: str, slug: str = None, blocks=None,
                 updated_at: datetime = None, **fields) -> DocumentDB:
    obj = DocumentDB(
        id=doc_id, entity_type=entity_type, slug=slug, blocks=json.dumps(blocks or []),
        status=fields.pop("status", "published"),
        updated_at=updated_at or datetime(2026, 1, 1), **fields,
    )
    db.add(obj); db.commit(); db.refresh(obj)
    return obj
