"""
Reference Resolver — remplace les références de pattern par les blocs du pattern.

Projection en lecture seule : l'arbre stocké n'est jamais modifié, une
référence introuvable (supprimée, non publiée, inexistante) ne rend rien.
"""
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Mapping, Optional

from sqlalchemy.orm import Session

from ..models import Pattern
from . import store
from .references import extract_pattern_ids, is_pattern_reference

log = logging.getLogger(__name__)


def default_max_depth() -> int:
    return int(os.getenv("PATTERN_MAX_DEPTH", "10"))


@dataclass
class ResolveContext:
    """Contexte de résolution. ``preview`` + ``viewer_id`` : le propriétaire voit ses brouillons."""
    viewer_id: Optional[str] = None
    preview:   bool          = False
    max_depth: int           = field(default_factory=default_max_depth)

    @property
    def drafts_owner(self) -> Optional[str]:
        return self.viewer_id if self.preview else None


def resolve_pattern_references(
    blocks: Optional[List[Any]],
    patterns: Mapping[str, Pattern],
    max_depth: Optional[int] = None,
    _expanding: FrozenSet[str] = frozenset(),
) -> List[Any]:
    """
    Parcours en profondeur ; chaque référence connue est remplacée par ses blocs résolus.

    ``_expanding`` contient les ids en cours d'expansion sur le chemin actif :
    une référence qui y revient (A → B → A) est ignorée. Au-delà de
    ``max_depth`` niveaux imbriqués l'expansion s'arrête aussi.
    """
    if max_depth is None:
        max_depth = default_max_depth()

    resolved: List[Any] = []
    for node in blocks or []:
        if not is_pattern_reference(node):
            resolved.append(node)
            continue

        ref = node["ref"]
        pattern = patterns.get(ref)
        if pattern is None:
            log.debug("Pattern %s introuvable — référence %s ignorée", ref, node["id"])
            continue
        if ref in _expanding:
            log.warning("Cycle de patterns détecté sur %s — branche ignorée", ref)
            continue
        if len(_expanding) >= max_depth:
            log.warning("Profondeur max (%d) atteinte sur %s — branche ignorée", max_depth, ref)
            continue

        resolved.extend(
            resolve_pattern_references(pattern.blocks, patterns, max_depth, _expanding | {ref})
        )
    return resolved


def fetch_patterns(db: Session, blocks: Optional[List[Any]],
                   context: Optional[ResolveContext] = None) -> Dict[str, Pattern]:
    """
    Charge tous les patterns atteignables depuis ``blocks``.

    Un seul appel à ``store.get_by_ids`` par niveau d'imbrication, pour les
    seuls ids pas encore demandés ; un arbre sans imbrication = un appel.
    """
    context = context or ResolveContext()
    found: Dict[str, Pattern] = {}
    requested = set()
    pending = [i for i in extract_pattern_ids(blocks) if i]

    for _ in range(context.max_depth):
        pending = [i for i in pending if i not in requested]
        if not pending:
            break
        requested.update(pending)
        batch = store.get_by_ids(db, pending, include_drafts_for=context.drafts_owner)
        next_ids = []
        for p in batch:
            found[p.id] = p
            next_ids.extend(extract_pattern_ids(p.blocks))
        pending = [i for i in dict.fromkeys(next_ids) if i]
    return found


def resolve(db: Session, blocks: Optional[List[Any]],
            context: Optional[ResolveContext] = None) -> List[Any]:
    """Résout l'arbre d'un document pour le rendu. Sans référence : renvoie les mêmes blocs."""
    context = context or ResolveContext()
    if not any(is_pattern_reference(b) for b in blocks or []):
        return list(blocks or [])
    patterns = fetch_patterns(db, blocks, context)
    return resolve_pattern_references(blocks, patterns, context.max_depth)
