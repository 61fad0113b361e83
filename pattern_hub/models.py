"""
Data models — Pattern, Document, InvalidationTask
SQLAlchemy (SQLite) + Pydantic v2 + Enums
"""
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

import sqlalchemy as sa
from pydantic import BaseModel, Field
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# ── ENUMS ──────────────────────────────────────────────────────────────

class PatternStatus(str, Enum):
    DRAFT     = "draft"
    PUBLISHED = "published"
    ARCHIVED  = "archived"


class TaskStatus(str, Enum):
    QUEUED  = "QUEUED"
    RUNNING = "RUNNING"
    DONE    = "DONE"
    FAILED  = "FAILED"
    SKIPPED = "SKIPPED"


# ── ORM ────────────────────────────────────────────────────────────────

class Base(DeclarativeBase):
    pass


class PatternDB(Base):
    __tablename__ = "patterns"
    __table_args__ = (sa.UniqueConstraint("team_id", "slug", name="uq_patterns_team_slug"),)

    id:          Mapped[str]           = mapped_column(sa.String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id:     Mapped[str]           = mapped_column(sa.String, nullable=False)
    team_id:     Mapped[str]           = mapped_column(sa.String, nullable=False, index=True)
    title:       Mapped[str]           = mapped_column(sa.String, nullable=False)
    slug:        Mapped[str]           = mapped_column(sa.String, nullable=False)
    blocks:      Mapped[str]           = mapped_column(sa.Text, default="[]")
    status:      Mapped[str]           = mapped_column(sa.String, default=PatternStatus.DRAFT.value, index=True)
    description: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    created_at:  Mapped[datetime]      = mapped_column(sa.DateTime, default=datetime.utcnow)
    updated_at:  Mapped[datetime]      = mapped_column(sa.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class DocumentDB(Base):
    """Instance d'entité générique (page, post, …) — seuls blocks + métadonnées d'affichage sont lus ici."""
    __tablename__ = "documents"

    id:          Mapped[str]           = mapped_column(sa.String, primary_key=True, default=lambda: str(uuid.uuid4()))
    entity_type: Mapped[str]           = mapped_column(sa.String, nullable=False, index=True)
    team_id:     Mapped[Optional[str]] = mapped_column(sa.String, nullable=True)
    slug:        Mapped[Optional[str]] = mapped_column(sa.String, nullable=True)
    title:       Mapped[Optional[str]] = mapped_column(sa.String, nullable=True)
    name:        Mapped[Optional[str]] = mapped_column(sa.String, nullable=True)
    first_name:  Mapped[Optional[str]] = mapped_column(sa.String, nullable=True)
    last_name:   Mapped[Optional[str]] = mapped_column(sa.String, nullable=True)
    email:       Mapped[Optional[str]] = mapped_column(sa.String, nullable=True)
    blocks:      Mapped[str]           = mapped_column(sa.Text, default="[]")
    status:      Mapped[Optional[str]] = mapped_column(sa.String, default="draft")
    created_at:  Mapped[datetime]      = mapped_column(sa.DateTime, default=datetime.utcnow)
    updated_at:  Mapped[datetime]      = mapped_column(sa.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class InvalidationTaskDB(Base):
    """Une invalidation de cache enfilée par usage (URL publique d'un document)."""
    __tablename__ = "invalidation_tasks"

    task_id:     Mapped[str]           = mapped_column(sa.String, primary_key=True, default=lambda: str(uuid.uuid4()))
    pattern_id:  Mapped[str]           = mapped_column(sa.String, nullable=False, index=True)
    entity_type: Mapped[str]           = mapped_column(sa.String, nullable=False)
    entity_id:   Mapped[str]           = mapped_column(sa.String, nullable=False)
    url:         Mapped[Optional[str]] = mapped_column(sa.String, nullable=True)
    status:      Mapped[str]           = mapped_column(sa.String, default=TaskStatus.QUEUED.value, index=True)
    attempts:    Mapped[int]           = mapped_column(sa.Integer, default=0)
    last_error:  Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    created_at:  Mapped[datetime]      = mapped_column(sa.DateTime, default=datetime.utcnow)
    updated_at:  Mapped[datetime]      = mapped_column(sa.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


# ── PYDANTIC SCHEMAS ────────────────────────────────────────────────────

class Pattern(BaseModel):
    id:          str
    owner_id:    str
    team_id:     str
    title:       str
    slug:        str
    blocks:      List[Any]          = Field(default_factory=list)
    status:      PatternStatus
    description: Optional[str]      = None
    created_at:  Optional[datetime] = None
    updated_at:  Optional[datetime] = None


class PatternCreate(BaseModel):
    title:       str
    slug:        str
    blocks:      List[Any]     = Field(default_factory=list)
    status:      PatternStatus = PatternStatus.DRAFT
    description: Optional[str] = None


class PatternUpdate(BaseModel):
    title:       Optional[str]           = None
    slug:        Optional[str]           = None
    blocks:      Optional[List[Any]]     = None
    status:      Optional[PatternStatus] = None
    description: Optional[str]           = None


class PatternIdsInput(BaseModel):
    ids: Optional[List[str]] = None


class DocumentCreate(BaseModel):
    entity_type: str
    slug:        Optional[str] = None
    title:       Optional[str] = None
    name:        Optional[str] = None
    first_name:  Optional[str] = None
    last_name:   Optional[str] = None
    email:       Optional[str] = None
    blocks:      List[Any]     = Field(default_factory=list)
    status:      str           = "draft"


class DocumentBlocksInput(BaseModel):
    blocks: List[Any] = Field(default_factory=list)


class PatternUsage(BaseModel):
    entity_type:       str
    entity_id:         str
    entity_slug:       Optional[str]      = None
    entity_title:      Optional[str]      = None
    entity_status:     Optional[str]      = None
    entity_updated_at: Optional[datetime] = None
    created_at:        Optional[datetime] = None


class PatternUsageCount(BaseModel):
    entity_type: str
    count:       int


class UsageReport(BaseModel):
    usages: List[PatternUsage]      = Field(default_factory=list)
    counts: List[PatternUsageCount] = Field(default_factory=list)
    total:  int                     = 0

    def as_api(self) -> Dict[str, Any]:
        """Forme JSON camelCase exposée par GET /usages."""
        return {
            "usages": [
                {
                    "entityType":      u.entity_type,
                    "entityId":        u.entity_id,
                    "entitySlug":      u.entity_slug,
                    "entityTitle":     u.entity_title,
                    "entityStatus":    u.entity_status,
                    "entityUpdatedAt": u.entity_updated_at.isoformat() if u.entity_updated_at else None,
                    "createdAt":       u.created_at.isoformat() if u.created_at else None,
                }
                for u in self.usages
            ],
            "counts": [{"entityType": c.entity_type, "count": c.count} for c in self.counts],
            "total":  self.total,
        }
