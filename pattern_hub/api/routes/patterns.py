"""
Patterns — CRUD, fetch par ids, usages, suivi des invalidations.

GET    /api/patterns                     → liste paginée de l'équipe
GET    /api/patterns/published           → patterns publiés (sélecteur de blocs)
POST   /api/patterns/by-ids {ids}        → patterns publiés demandés
POST   /api/patterns                     → création
GET    /api/patterns/{id}                → détail
PATCH  /api/patterns/{id}                → mise à jour + invalidation en arrière-plan
DELETE /api/patterns/{id}                → suppression (sans cascade) + invalidation
GET    /api/patterns/{id}/usages         → {usages, counts, total}
GET    /api/patterns/{id}/invalidations  → tâches d'invalidation
"""
import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ...database import db_list_tasks, get_db
from ...models import Pattern, PatternCreate, PatternIdsInput, PatternStatus, PatternUpdate
from ...patterns import store
from ...patterns.invalidation import run_pattern_invalidation
from ...patterns.store import PatternValidationError
from ...patterns.usage import get_usages
from .deps import current_team, current_user

log = logging.getLogger(__name__)
router = APIRouter(prefix="/api/patterns", tags=["Patterns"])


def pattern_out(p: Pattern) -> dict:
    return {
        "id":          p.id,
        "ownerId":     p.owner_id,
        "teamId":      p.team_id,
        "title":       p.title,
        "slug":        p.slug,
        "blocks":      p.blocks,
        "status":      p.status.value,
        "description": p.description,
        "createdAt":   p.created_at.isoformat() if p.created_at else None,
        "updatedAt":   p.updated_at.isoformat() if p.updated_at else None,
    }


def _get_team_pattern(db: Session, pattern_id: str, team_id: str) -> Pattern:
    p = store.get_by_id(db, pattern_id)
    if not p or p.team_id != team_id:
        raise HTTPException(404, "Pattern introuvable")
    return p


def _check_team_access(db: Session, pattern_id: str, team_id: str):
    """Pattern d'une autre équipe → 404. Un pattern supprimé reste consultable (références orphelines)."""
    p = store.get_by_id(db, pattern_id)
    if p and p.team_id != team_id:
        raise HTTPException(404, "Pattern introuvable")


# ── Lecture ───────────────────────────────────────────────────────────────

@router.get("")
def api_list_patterns(
    status: Optional[PatternStatus] = Query(None),
    limit: int = Query(20, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    order_by: str = Query("created_at"),
    order_dir: str = Query("desc"),
    team_id: str = Depends(current_team),
    db: Session = Depends(get_db),
):
    patterns, total = store.list_patterns(
        db, team_id, status=status.value if status else None,
        limit=limit, offset=offset, order_by=order_by, order_dir=order_dir,
    )
    return {"data": [pattern_out(p) for p in patterns], "total": total}


@router.get("/published")
def api_list_published(team_id: str = Depends(current_team), db: Session = Depends(get_db)):
    return {"data": [pattern_out(p) for p in store.list_published(db, team_id)]}


@router.post("/by-ids")
def api_get_by_ids(data: PatternIdsInput, db: Session = Depends(get_db)):
    """Batch fetch pour la résolution : seuls les patterns publiés sont renvoyés."""
    return {"data": [pattern_out(p) for p in store.get_by_ids(db, data.ids)]}


@router.get("/{pattern_id}")
def api_get_pattern(pattern_id: str, team_id: str = Depends(current_team), db: Session = Depends(get_db)):
    return pattern_out(_get_team_pattern(db, pattern_id, team_id))


@router.get("/{pattern_id}/usages")
def api_pattern_usages(
    pattern_id: str,
    entity_type: Optional[str] = Query(None, alias="entityType"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=1000),
    team_id: str = Depends(current_team),
    db: Session = Depends(get_db),
):
    """Documents qui référencent le pattern (même supprimé : les références orphelines restent visibles)."""
    _check_team_access(db, pattern_id, team_id)
    return get_usages(db, pattern_id, entity_type=entity_type, page=page, limit=limit).as_api()


@router.get("/{pattern_id}/invalidations")
def api_pattern_invalidations(pattern_id: str, team_id: str = Depends(current_team), db: Session = Depends(get_db)):
    _check_team_access(db, pattern_id, team_id)
    tasks = db_list_tasks(db, pattern_id)
    return {"pattern_id": pattern_id, "total": len(tasks), "tasks": [
        {"task_id": t.task_id, "entity_type": t.entity_type, "entity_id": t.entity_id,
         "url": t.url, "status": t.status, "attempts": t.attempts, "last_error": t.last_error,
         "updated_at": t.updated_at.isoformat() if t.updated_at else None} for t in tasks]}


# ── Écriture ──────────────────────────────────────────────────────────────

@router.post("", status_code=201)
def api_create_pattern(
    data: PatternCreate,
    user_id: str = Depends(current_user),
    team_id: str = Depends(current_team),
    db: Session = Depends(get_db),
):
    try:
        p = store.create(db, user_id, team_id, data)
    except PatternValidationError as e:
        raise HTTPException(422, str(e))
    return JSONResponse(status_code=201, content=pattern_out(p))


@router.patch("/{pattern_id}")
def api_update_pattern(
    pattern_id: str,
    data: PatternUpdate,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(current_user),
    team_id: str = Depends(current_team),
    db: Session = Depends(get_db),
):
    """Mise à jour ; l'invalidation des pages qui l'utilisent part après la réponse."""
    _get_team_pattern(db, pattern_id, team_id)
    try:
        p = store.update(db, pattern_id, data)
    except PatternValidationError as e:
        raise HTTPException(422, str(e))
    if not p:
        raise HTTPException(404, "Pattern introuvable")

    background_tasks.add_task(run_pattern_invalidation, pattern_id)
    log.info("Pattern %s modifié par %s — invalidation enfilée", pattern_id, user_id)
    return pattern_out(p)


@router.delete("/{pattern_id}")
def api_delete_pattern(
    pattern_id: str,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(current_user),
    team_id: str = Depends(current_team),
    db: Session = Depends(get_db),
):
    """Suppression sans cascade : les documents gardent leur référence (lazy cleanup)."""
    _get_team_pattern(db, pattern_id, team_id)
    if not store.delete(db, pattern_id):
        raise HTTPException(404, "Pattern introuvable")

    background_tasks.add_task(run_pattern_invalidation, pattern_id)
    log.info("Pattern %s supprimé par %s — invalidation enfilée", pattern_id, user_id)
    return {"deleted": True, "id": pattern_id}
