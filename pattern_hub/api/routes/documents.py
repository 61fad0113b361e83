"""
Documents — surface éditeur + projection résolue.

POST /api/documents                                   → création (page, post, …)
GET  /api/documents/{id}/editor                       → blocs annotés (placeholders « pattern supprimé »)
POST /api/documents/{id}/blocks/{instance_id}/remove  → action « retirer » d'un placeholder
PUT  /api/documents/{id}/blocks                       → sauvegarde (références orphelines retirées)
GET  /api/documents/{id}/resolved?preview=            → blocs avec patterns résolus
"""
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ...database import db_create_document, db_get_document, get_db, jd, jl
from ...models import DocumentBlocksInput, DocumentCreate, DocumentDB
from ...patterns.cleanup import editor_view, remove_document_reference, save_document_blocks
from ...patterns.resolver import ResolveContext, resolve
from .deps import current_team, current_user

router = APIRouter(prefix="/api/documents", tags=["Documents"])


def _get_document(db: Session, doc_id: str) -> DocumentDB:
    doc = db_get_document(db, doc_id)
    if not doc:
        raise HTTPException(404, "Document introuvable")
    return doc


def _blocks(doc: DocumentDB) -> list:
    blocks = jl(doc.blocks)
    return blocks if isinstance(blocks, list) else []


def _editor_payload(db: Session, doc: DocumentDB, user_id: str) -> dict:
    return {
        "id":          doc.id,
        "entity_type": doc.entity_type,
        "slug":        doc.slug,
        "blocks":      editor_view(db, _blocks(doc), viewer_id=user_id),
    }


@router.post("", status_code=201)
def api_create_document(
    data: DocumentCreate,
    team_id: str = Depends(current_team),
    db: Session = Depends(get_db),
):
    doc = db_create_document(db, DocumentDB(
        entity_type=data.entity_type, team_id=team_id, slug=data.slug, title=data.title,
        name=data.name, first_name=data.first_name, last_name=data.last_name, email=data.email,
        blocks=jd(data.blocks), status=data.status,
    ))
    return JSONResponse(status_code=201, content={"id": doc.id, "entity_type": doc.entity_type, "slug": doc.slug})


@router.get("/{doc_id}/editor")
def api_document_editor(doc_id: str, user_id: str = Depends(current_user), db: Session = Depends(get_db)):
    return _editor_payload(db, _get_document(db, doc_id), user_id)


@router.post("/{doc_id}/blocks/{instance_id}/remove")
def api_remove_reference(
    doc_id: str, instance_id: str,
    user_id: str = Depends(current_user),
    db: Session = Depends(get_db),
):
    doc = remove_document_reference(db, _get_document(db, doc_id), instance_id)
    return _editor_payload(db, doc, user_id)


@router.put("/{doc_id}/blocks")
def api_save_blocks(
    doc_id: str, data: DocumentBlocksInput,
    user_id: str = Depends(current_user),
    db: Session = Depends(get_db),
):
    doc = save_document_blocks(db, _get_document(db, doc_id), data.blocks)
    return {"id": doc.id, "blocks": _blocks(doc), "updated_at": doc.updated_at.isoformat()}


@router.get("/{doc_id}/resolved")
def api_resolved_blocks(
    doc_id: str,
    preview: bool = Query(False),
    x_user_id: Optional[str] = Header(None),
    db: Session = Depends(get_db),
):
    """Projection lecture seule pour le rendu ; en preview, le propriétaire voit ses brouillons."""
    doc = _get_document(db, doc_id)
    context = ResolveContext(viewer_id=x_user_id, preview=preview and bool(x_user_id))
    return {"id": doc.id, "blocks": resolve(db, _blocks(doc), context)}
