"""
Lazy cleanup des références orphelines.

Aucune suppression en cascade : une référence vers un pattern supprimé reste
stockée dans le document. L'éditeur l'affiche comme placeholder « pattern
supprimé » avec une action de retrait ; la sauvegarde suivante du document
élimine les références orphelines.
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..models import DocumentDB
from ..database import db_update_document_blocks, jl
from . import store
from .references import extract_pattern_ids, is_pattern_reference, remove_reference

log = logging.getLogger(__name__)

REMOVE_ACTION = "remove"


def editor_view(db: Session, blocks: Optional[List[Any]], viewer_id: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Projection éditeur d'une liste de blocs.

    Chaque nœud devient ``{"kind": "block" | "pattern" | "deleted_pattern", "node": ...}``.
    Un pattern existant (tout statut) porte un résumé ; un pattern disparu
    expose l'action ``remove``. Ne modifie rien en base.
    """
    blocks = blocks or []
    ids = extract_pattern_ids(blocks)
    try:
        existing = store.get_existing_ids(db, ids) if ids else set()
    except Exception as e:
        # sans réponse fiable, aucune référence n'est présentée comme supprimée
        log.error("editor_view : %s", e)
        existing = set(ids)
    summaries = {
        p.id: {"id": p.id, "title": p.title, "status": p.status.value}
        for p in store.get_by_ids(db, list(existing), include_drafts_for=viewer_id)
    }

    view = []
    for node in blocks:
        if not is_pattern_reference(node):
            view.append({"kind": "block", "node": node})
        elif node["ref"] in existing:
            view.append({"kind": "pattern", "node": node, "pattern": summaries.get(node["ref"])})
        else:
            view.append({"kind": "deleted_pattern", "node": node, "actions": [REMOVE_ACTION]})
    return view


def prune_orphaned_references(db: Session, blocks: List[Any]) -> List[Any]:
    """
    Retire les références dont le pattern n'existe plus (appliqué à la sauvegarde).

    Si la vérification échoue, les blocs sont gardés tels quels : on ne perd
    jamais de contenu sur une erreur de lecture.
    """
    ids = extract_pattern_ids(blocks)
    if not ids:
        return list(blocks)
    try:
        existing = store.get_existing_ids(db, ids)
    except Exception as e:
        log.error("prune_orphaned_references : %s — blocs conservés", e)
        return list(blocks)

    pruned = [b for b in blocks if not (is_pattern_reference(b) and b["ref"] not in existing)]
    if len(pruned) != len(blocks):
        log.info("%d référence(s) orpheline(s) retirée(s)", len(blocks) - len(pruned))
    return pruned


def remove_document_reference(db: Session, doc: DocumentDB, instance_id: str) -> DocumentDB:
    """Action explicite « retirer » du placeholder : persiste la liste sans cette instance."""
    blocks = jl(doc.blocks)
    return db_update_document_blocks(db, doc, remove_reference(blocks if isinstance(blocks, list) else [], instance_id))


def save_document_blocks(db: Session, doc: DocumentDB, blocks: List[Any]) -> DocumentDB:
    return db_update_document_blocks(db, doc, prune_orphaned_references(db, blocks))
