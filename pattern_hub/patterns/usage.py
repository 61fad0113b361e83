"""
Usage Reporter — quels documents utilisent le pattern P ?

Les usages ne sont pas matérialisés : ils sont recalculés à la demande à
partir des arbres de blocs (préfiltre SQL + garde structurelle). Les
documents (pages, posts, …) et les patterns qui imbriquent P comptent tous
deux ; ces derniers sont rapportés sous le type ``patterns``.
"""
import logging
from collections import Counter
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from ..database import db_list_documents_mentioning, db_list_patterns_mentioning, jl
from ..models import PatternUsage, PatternUsageCount, UsageReport
from .references import references_to

log = logging.getLogger(__name__)

PATTERN_ENTITY_TYPE = "patterns"


def display_title(doc) -> str:
    """title → name → prénom + nom → email → slug → id."""
    if getattr(doc, "title", None):
        return doc.title
    if getattr(doc, "name", None):
        return doc.name
    full = " ".join(p for p in (getattr(doc, "first_name", None), getattr(doc, "last_name", None)) if p)
    if full:
        return full
    for attr in ("email", "slug"):
        if getattr(doc, attr, None):
            return getattr(doc, attr)
    return doc.id


def _references(row, pattern_id: str) -> bool:
    blocks = jl(row.blocks)
    return isinstance(blocks, list) and bool(references_to(blocks, pattern_id))


def _to_usage(row, entity_type: str) -> PatternUsage:
    return PatternUsage(
        entity_type=entity_type,
        entity_id=row.id,
        entity_slug=row.slug,
        entity_title=display_title(row),
        entity_status=row.status,
        entity_updated_at=row.updated_at,
        created_at=row.created_at,
    )


def _usages_of(db: Session, pattern_id: str) -> List[PatternUsage]:
    usages = [_to_usage(d, d.entity_type)
              for d in db_list_documents_mentioning(db, pattern_id) if _references(d, pattern_id)]
    usages += [_to_usage(p, PATTERN_ENTITY_TYPE)
               for p in db_list_patterns_mentioning(db, pattern_id)
               if p.id != pattern_id and _references(p, pattern_id)]
    return usages


def _sort(usages: List[PatternUsage]) -> List[PatternUsage]:
    # tri stable : id asc, puis updated_at desc
    usages = sorted(usages, key=lambda u: u.entity_id)
    return sorted(usages, key=lambda u: u.entity_updated_at or datetime.min, reverse=True)


def _counts(usages: Iterable[PatternUsage]) -> List[PatternUsageCount]:
    c = Counter(u.entity_type for u in usages)
    return [PatternUsageCount(entity_type=t, count=n)
            for t, n in sorted(c.items(), key=lambda kv: (-kv[1], kv[0]))]


def get_usages(db: Session, pattern_id: str, entity_type: Optional[str] = None,
               page: int = 1, limit: Optional[int] = 50) -> UsageReport:
    """
    Usages d'un pattern, toutes entités confondues (patterns parents compris).

    ``counts`` et ``total`` ignorent le filtre ``entity_type`` ; la liste
    ``usages`` est filtrée puis paginée (``page`` commence à 1, ``limit=None``
    = tout). Tri : document le plus récemment modifié d'abord, puis id.
    En cas d'erreur DB : rapport vide, jamais d'exception.
    """
    if not (pattern_id or "").strip():
        return UsageReport()
    try:
        usages = _usages_of(db, pattern_id)
    except Exception as e:
        log.error("get_usages(%s) : %s", pattern_id, e)
        return UsageReport()

    rows = _sort([u for u in usages if not entity_type or u.entity_type == entity_type])
    if limit is not None:
        start = max(page - 1, 0) * limit
        rows = rows[start:start + limit]

    return UsageReport(usages=rows, counts=_counts(usages), total=len(usages))


def get_usage_count(db: Session, pattern_id: str) -> int:
    return get_usages(db, pattern_id, limit=0).total


def get_patterns_with_usages(db: Session, pattern_ids: Iterable[str]) -> List[str]:
    """Parmi ``pattern_ids``, ceux qui ont au moins un usage (avant une opération en masse)."""
    return [pid for pid in dict.fromkeys(pattern_ids) if get_usage_count(db, pid) > 0]
