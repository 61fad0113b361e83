"""
Pattern Store — persistance et identité des patterns.

Fonctions exposées :
  get_by_ids(db, ids, include_drafts_for)  -> list[Pattern]   (résolution : fail-open)
  get_by_id(db, pattern_id)                -> Pattern | None
  get_by_slug(db, team_id, slug)           -> Pattern | None
  list_patterns(db, team_id, ...)          -> (list[Pattern], total)
  list_published(db, team_id)              -> list[Pattern]
  create(db, user_id, team_id, data)       -> Pattern
  update(db, pattern_id, data)             -> Pattern | None
  delete(db, pattern_id)                   -> bool
  get_existing_ids(db, ids)                -> set[str]
"""
import logging
import os
from datetime import datetime
from typing import Iterable, List, Optional, Set, Tuple

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..database import jd, jl
from ..models import Pattern, PatternCreate, PatternDB, PatternStatus, PatternUpdate
from .references import contains_pattern_reference, extract_pattern_ids

log = logging.getLogger(__name__)

_COLUMNS = 'id, user_id, team_id, title, slug, blocks, status, description, created_at, updated_at'

_ORDER_COLUMNS = {
    "title":      PatternDB.title,
    "slug":       PatternDB.slug,
    "status":     PatternDB.status,
    "created_at": PatternDB.created_at,
    "updated_at": PatternDB.updated_at,
}


class PatternValidationError(ValueError):
    pass


def _nesting_allowed() -> bool:
    return os.getenv("ALLOW_NESTED_PATTERNS", "1").lower() not in ("0", "false", "no")


def _as_datetime(value):
    # text() sur SQLite renvoie les dates en str
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return None
    return value


def to_pattern(row) -> Pattern:
    """Ligne SQL (Row ou PatternDB) → Pattern ; ``blocks`` toujours une liste."""
    blocks = row.blocks if isinstance(row.blocks, list) else jl(row.blocks)
    return Pattern(
        id=row.id,
        owner_id=row.user_id,
        team_id=row.team_id,
        title=row.title,
        slug=row.slug,
        blocks=blocks if isinstance(blocks, list) else [],
        status=row.status,
        description=row.description,
        created_at=_as_datetime(row.created_at),
        updated_at=_as_datetime(row.updated_at),
    )


# ── Lecture ────────────────────────────────────────────────────────────────

def get_by_ids(db: Session, ids: Optional[Iterable[str]],
               include_drafts_for: Optional[str] = None) -> List[Pattern]:
    """
    Batch fetch des patterns publiés pour la résolution des références.

    Les ids vides sont ignorés ; aucune requête si rien ne reste. Un placeholder
    lié par id, jamais de concaténation. Les ids absents ou non publiés sont
    simplement omis. Toute erreur DB est loggée et donne [] (la page se rend
    quand même).

    Args:
        db:                 Session SQLAlchemy
        ids:                Ids de patterns (None toléré)
        include_drafts_for: Id utilisateur dont les brouillons sont aussi visibles (preview éditeur)
    """
    valid_ids = [i for i in (ids or []) if isinstance(i, str) and i.strip()]
    if not valid_ids:
        return []

    params = {f"id_{n}": pid for n, pid in enumerate(valid_ids)}
    placeholders = ", ".join(f":{k}" for k in params)
    status_clause = "status = :status"
    params["status"] = PatternStatus.PUBLISHED.value
    if include_drafts_for:
        status_clause = "(status = :status OR (status = :draft AND user_id = :owner))"
        params["draft"] = PatternStatus.DRAFT.value
        params["owner"] = include_drafts_for

    sql = text(f"SELECT {_COLUMNS} FROM patterns WHERE id IN ({placeholders}) AND {status_clause}")
    try:
        rows = db.execute(sql, params).fetchall()
        return [to_pattern(r) for r in rows]
    except Exception as e:
        log.error("get_by_ids : %s", e)
        return []


def get_by_id(db: Session, pattern_id: str) -> Optional[Pattern]:
    if not (pattern_id or "").strip():
        raise PatternValidationError("Pattern ID requis")
    obj = db.query(PatternDB).filter_by(id=pattern_id).first()
    return to_pattern(obj) if obj else None


def get_by_slug(db: Session, team_id: str, slug: str) -> Optional[Pattern]:
    if not (slug or "").strip():
        raise PatternValidationError("Slug requis")
    obj = db.query(PatternDB).filter_by(team_id=team_id, slug=slug).first()
    return to_pattern(obj) if obj else None


def list_patterns(db: Session, team_id: str, status: Optional[str] = None,
                  limit: int = 20, offset: int = 0,
                  order_by: str = "created_at", order_dir: str = "desc") -> Tuple[List[Pattern], int]:
    q = db.query(PatternDB).filter_by(team_id=team_id)
    if status:
        q = q.filter_by(status=status)
    total = q.count()

    column = _ORDER_COLUMNS.get(order_by, PatternDB.created_at)
    column = column.asc() if order_dir == "asc" else column.desc()
    rows = q.order_by(column, PatternDB.id).offset(offset).limit(limit).all()
    return [to_pattern(r) for r in rows], total


def list_published(db: Session, team_id: str) -> List[Pattern]:
    """Patterns publiés d'une équipe (sélecteur de blocs de l'éditeur)."""
    patterns, _ = list_patterns(db, team_id, status=PatternStatus.PUBLISHED.value,
                                limit=1000, order_by="title", order_dir="asc")
    return patterns


def get_existing_ids(db: Session, ids: Iterable[str]) -> Set[str]:
    """Ids qui existent encore, quel que soit le statut (lazy cleanup)."""
    ids = [i for i in ids if isinstance(i, str) and i]
    if not ids:
        return set()
    rows = db.query(PatternDB.id).filter(PatternDB.id.in_(ids)).all()
    return {r.id for r in rows}


# ── Écriture ───────────────────────────────────────────────────────────────

def _check_blocks(blocks, pattern_id: Optional[str] = None):
    if not isinstance(blocks, list):
        raise PatternValidationError("blocks doit être une liste")
    if not contains_pattern_reference(blocks):
        return
    if not _nesting_allowed():
        raise PatternValidationError("Un pattern ne peut pas contenir d'autres patterns")
    if pattern_id and pattern_id in extract_pattern_ids(blocks):
        raise PatternValidationError("Un pattern ne peut pas se référencer lui-même")


def _check_slug_free(db: Session, team_id: str, slug: str, exclude_id: Optional[str] = None):
    q = db.query(PatternDB).filter_by(team_id=team_id, slug=slug)
    if exclude_id:
        q = q.filter(PatternDB.id != exclude_id)
    if q.first():
        raise PatternValidationError(f"Slug déjà utilisé : {slug}")


def create(db: Session, user_id: str, team_id: str, data: PatternCreate) -> Pattern:
    if not data.title.strip():
        raise PatternValidationError("Titre requis")
    if not data.slug.strip():
        raise PatternValidationError("Slug requis")
    _check_blocks(data.blocks)
    _check_slug_free(db, team_id, data.slug)

    obj = PatternDB(
        user_id=user_id,
        team_id=team_id,
        title=data.title.strip(),
        slug=data.slug.strip(),
        blocks=jd(data.blocks),
        status=data.status.value,
        description=data.description or None,
    )
    db.add(obj)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise PatternValidationError(f"Pattern invalide : {e.orig}") from e
    db.refresh(obj)
    log.info("Pattern créé %s (%s)", obj.id, obj.slug)
    return to_pattern(obj)


def update(db: Session, pattern_id: str, data: PatternUpdate) -> Optional[Pattern]:
    """Mise à jour partielle ; None si le pattern n'existe pas."""
    obj = db.query(PatternDB).filter_by(id=pattern_id).first()
    if not obj:
        return None

    fields = data.model_dump(exclude_unset=True)
    if not fields:
        raise PatternValidationError("Aucun champ à mettre à jour")

    if "title" in fields:
        if not (fields["title"] or "").strip():
            raise PatternValidationError("Titre requis")
        obj.title = fields["title"].strip()
    if "slug" in fields:
        slug = (fields["slug"] or "").strip()
        if not slug:
            raise PatternValidationError("Slug requis")
        _check_slug_free(db, obj.team_id, slug, exclude_id=obj.id)
        obj.slug = slug
    if "blocks" in fields:
        _check_blocks(fields["blocks"], pattern_id=obj.id)
        obj.blocks = jd(fields["blocks"])
    if "status" in fields and data.status is not None:
        obj.status = data.status.value
    if "description" in fields:
        obj.description = fields["description"] or None

    obj.updated_at = datetime.utcnow()
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise PatternValidationError(f"Pattern invalide : {e.orig}") from e
    db.refresh(obj)
    log.info("Pattern mis à jour %s", obj.id)
    return to_pattern(obj)


def delete(db: Session, pattern_id: str) -> bool:
    """Supprime le pattern. Les documents qui le référencent ne sont pas touchés."""
    obj = db.query(PatternDB).filter_by(id=pattern_id).first()
    if not obj:
        return False
    db.delete(obj)
    db.commit()
    log.info("Pattern supprimé %s", pattern_id)
    return True
