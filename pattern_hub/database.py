"""SQLite — init + session + CRUD helpers (documents, patterns imbriqués, invalidation tasks)"""
import json, os
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from .models import Base, DocumentDB, InvalidationTaskDB, PatternDB, TaskStatus

DATA_DIR = Path(__file__).parent.parent / "data"
DATA_DIR.mkdir(exist_ok=True)

DB_PATH      = os.getenv("DB_PATH", str(DATA_DIR / "pattern_hub.db"))
ENGINE       = create_engine(f"sqlite:///{DB_PATH}", connect_args={"check_same_thread": False})
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=ENGINE)


def init_db():
    Base.metadata.create_all(bind=ENGINE)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def new_session() -> Session:
    """Session indépendante pour les tâches en arrière-plan."""
    return SessionLocal()


# ── JSON helpers ──
def jl(s: Optional[str]):
    try:
        return json.loads(s or "[]")
    except (TypeError, ValueError):
        return []

def jd(o) -> str:
    return json.dumps(o, ensure_ascii=False)


# ── Documents ──
def db_create_document(db: Session, obj: DocumentDB) -> DocumentDB:
    db.add(obj); db.commit(); db.refresh(obj); return obj

def db_get_document(db: Session, doc_id: str) -> Optional[DocumentDB]:
    return db.query(DocumentDB).filter_by(id=doc_id).first()

def db_update_document_blocks(db: Session, doc: DocumentDB, blocks: list) -> DocumentDB:
    doc.blocks = jd(blocks)
    doc.updated_at = datetime.utcnow()
    db.commit(); db.refresh(doc); return doc

def db_list_documents_mentioning(db: Session, needle: str) -> List[DocumentDB]:
    """Préfiltre SQL : documents dont le JSON des blocs contient la chaîne (à confirmer côté Python)."""
    return db.query(DocumentDB).filter(DocumentDB.blocks.contains(needle, autoescape=True)).all()

def db_list_patterns_mentioning(db: Session, needle: str) -> List[PatternDB]:
    """Même préfiltre sur les patterns (imbrication pattern → pattern)."""
    return db.query(PatternDB).filter(PatternDB.blocks.contains(needle, autoescape=True)).all()


# ── Invalidation tasks ──
def db_create_task(db: Session, obj: InvalidationTaskDB) -> InvalidationTaskDB:
    db.add(obj); db.commit(); db.refresh(obj); return obj

def db_update_task(db: Session, task: InvalidationTaskDB, **kwargs) -> InvalidationTaskDB:
    for k, v in kwargs.items():
        setattr(task, k, v)
    db.commit(); db.refresh(task); return task

def db_list_tasks(db: Session, pattern_id: str) -> List[InvalidationTaskDB]:
    return (db.query(InvalidationTaskDB)
              .filter_by(pattern_id=pattern_id)
              .order_by(InvalidationTaskDB.created_at.desc())
              .all())

def db_list_failed_tasks(db: Session, max_attempts: int) -> List[InvalidationTaskDB]:
    return (db.query(InvalidationTaskDB)
              .filter(InvalidationTaskDB.status == TaskStatus.FAILED.value,
                      InvalidationTaskDB.attempts < max_attempts)
              .order_by(InvalidationTaskDB.created_at)
              .all())
