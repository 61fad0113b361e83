"""
Invalidation du cache de rendu après modification / suppression d'un pattern.

Pour chaque document qui utilise le pattern, directement ou par un pattern
parent : URL publique → une tâche InvalidationTask enfilée → appel de
revalidation avec retry borné.
Best-effort : l'échec d'un usage est loggé et n'empêche pas les autres.
"""
import logging
import os
import time
from datetime import datetime
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from ..database import db_create_task, db_list_failed_tasks, db_update_task, new_session
from ..entities import EntityConfig, EntityRegistry, get_entity_base_path, load_registry
from ..models import InvalidationTaskDB, PatternUsage, TaskStatus
from ..revalidate import Revalidator, default_revalidator
from .resolver import default_max_depth
from .usage import PATTERN_ENTITY_TYPE, get_usages

log = logging.getLogger(__name__)

# Les tâches FAILED sont reprises par le balayage périodique jusqu'à ce plafond (× max_attempts)
SWEEP_ATTEMPTS_FACTOR = 3


def build_public_url(entity_type: str, slug: str, base_path: Optional[str]) -> str:
    """``/`` → /{slug} ; ``/blog`` → /blog/{slug} ; pas de base → /{entity_type}/{slug}."""
    if not base_path:
        return f"/{entity_type}/{slug}"
    if base_path == "/":
        return f"/{slug}"
    return f"{base_path}/{slug}"


def _attempts(task: Optional[InvalidationTaskDB]) -> int:
    return (task.attempts or 0) if task is not None else 0


class SkipUsage(Exception):
    """Usage sans URL publique (type non enregistré, non public, pas de slug)."""


class PatternCacheInvalidator:

    def __init__(
        self,
        registry: EntityRegistry,
        revalidator: Revalidator,
        base_path_resolver: Callable[[EntityConfig], Optional[str]] = get_entity_base_path,
        max_attempts: Optional[int] = None,
        backoff: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
        max_depth: Optional[int] = None,
    ):
        self.registry = registry
        self.revalidator = revalidator
        self.base_path_resolver = base_path_resolver
        self.max_attempts = max(1, max_attempts or int(os.getenv("INVALIDATION_MAX_ATTEMPTS", "3")))
        self.backoff = backoff if backoff is not None else float(os.getenv("INVALIDATION_BACKOFF_SECONDS", "0.5"))
        self.sleep = sleep
        self.max_depth = max(1, max_depth or default_max_depth())

    # ── URL ────────────────────────────────────────────────────────────────

    def public_url(self, usage: PatternUsage) -> str:
        config = self.registry.get(usage.entity_type)
        if config is None:
            raise SkipUsage(f"type d'entité non enregistré : {usage.entity_type}")
        if config.access.public is False:
            raise SkipUsage(f"type d'entité non public : {usage.entity_type}")
        if not usage.entity_slug:
            raise SkipUsage(f"document sans slug : {usage.entity_type}/{usage.entity_id}")
        return build_public_url(usage.entity_type, usage.entity_slug, self.base_path_resolver(config))

    # ── Flux principal ─────────────────────────────────────────────────────

    def invalidate_pattern(self, db: Session, pattern_id: str) -> Dict[str, int]:
        """
        Invalide toutes les pages qui rendent ``pattern_id``, directement ou via
        un pattern parent.

        Lecture des usages faite après le commit de la mutation (état le plus
        récent). Les usages de type ``patterns`` sont remontés niveau par niveau
        (ids déjà vus ignorés, au plus ``max_depth`` niveaux) ; chaque document
        n'est traité qu'une fois. Retourne un résumé {total, done, failed, skipped}.
        """
        summary = {"total": 0, "done": 0, "failed": 0, "skipped": 0}
        for usage in self.collect_usages(db, pattern_id):
            summary["total"] += 1
            summary[self._invalidate_usage(db, pattern_id, usage)] += 1

        if summary["total"]:
            log.info("Invalidation pattern %s : %s", pattern_id, summary)
        return summary

    def collect_usages(self, db: Session, pattern_id: str) -> List[PatternUsage]:
        """Usages directs puis ceux des patterns ancêtres, sans doublon."""
        seen_patterns = {pattern_id}
        seen_entities = {(PATTERN_ENTITY_TYPE, pattern_id)}
        collected: List[PatternUsage] = []
        level = [pattern_id]

        for depth in range(self.max_depth):
            parents = []
            for pid in level:
                for usage in get_usages(db, pid, limit=None).usages:
                    key = (usage.entity_type, usage.entity_id)
                    if key in seen_entities:
                        continue
                    seen_entities.add(key)
                    collected.append(usage)
                    if usage.entity_type == PATTERN_ENTITY_TYPE and usage.entity_id not in seen_patterns:
                        seen_patterns.add(usage.entity_id)
                        parents.append(usage.entity_id)
            if not parents:
                break
            if depth == self.max_depth - 1:
                log.warning("Profondeur max (%d) atteinte en remontant depuis %s", self.max_depth, pattern_id)
            level = parents
        return collected

    def _invalidate_usage(self, db: Session, pattern_id: str, usage: PatternUsage) -> str:
        try:
            url = self.public_url(usage)
        except SkipUsage as e:
            log.info("Invalidation ignorée : %s", e)
            self._record(db, pattern_id, usage, None, status=TaskStatus.SKIPPED.value, last_error=str(e))
            return "skipped"
        except Exception as e:
            log.error("URL publique impossible pour %s/%s : %s", usage.entity_type, usage.entity_id, e)
            self._record(db, pattern_id, usage, None, status=TaskStatus.FAILED.value, last_error=str(e))
            return "failed"

        task = self._record(db, pattern_id, usage, url)
        return "done" if self._run(db, task, url, self.max_attempts) else "failed"

        for usage in report.usages:
            try:
                url = self.public_url(usage)
            except SkipUsage as e:
                log.info("Invalidation ignorée : %s", e)
                self._record(db, pattern_id, usage, None, status=TaskStatus.SKIPPED.value, last_error=str(e))
                summary["skipped"] += 1
                continue
            except Exception as e:
                log.error("URL publique impossible pour %s/%s : %s", usage.entity_type, usage.entity_id, e)
                self._record(db, pattern_id, usage, None, status=TaskStatus.FAILED.value, last_error=str(e))
                summary["failed"] += 1
                continue

            task = self._record(db, pattern_id, usage, url)
            if self._run(db, task, url, self.max_attempts):
                summary["done"] += 1
            else:
                summary["failed"] += 1

        log.info("Invalidation pattern %s : %s", pattern_id, summary)
        return summary

    def retry_failed(self, db: Session) -> int:
        """Reprend les tâches FAILED sous le plafond ; une tentative chacune. Retourne le nombre de succès."""
        cap = self.max_attempts * SWEEP_ATTEMPTS_FACTOR
        ok = 0
        for task in db_list_failed_tasks(db, cap):
            if not task.url:
                continue
            if self._run(db, task, task.url, 1):
                ok += 1
        return ok

    # ── Interne ────────────────────────────────────────────────────────────

    def _run(self, db: Session, task: Optional[InvalidationTaskDB], url: str, attempts: int) -> bool:
        self._save(db, task, status=TaskStatus.RUNNING.value)
        last_error = None
        for n in range(attempts):
            try:
                self.revalidator.revalidate(url)
                self._save(db, task, status=TaskStatus.DONE.value,
                           attempts=_attempts(task) + 1, last_error=None)
                return True
            except Exception as e:
                last_error = e
                self._save(db, task, attempts=_attempts(task) + 1)
                log.warning("Revalidation %s échouée (tentative %d/%d) : %s", url, n + 1, attempts, e)
                if n < attempts - 1 and self.backoff > 0:
                    self.sleep(self.backoff * (2 ** n))
        self._save(db, task, status=TaskStatus.FAILED.value, last_error=str(last_error))
        log.error("Revalidation %s abandonnée : %s", url, last_error)
        return False

    def _record(self, db: Session, pattern_id: str, usage: PatternUsage, url: Optional[str],
                **fields) -> Optional[InvalidationTaskDB]:
        try:
            return db_create_task(db, InvalidationTaskDB(
                pattern_id=pattern_id,
                entity_type=usage.entity_type,
                entity_id=usage.entity_id,
                url=url,
                **fields,
            ))
        except Exception as e:
            db.rollback()
            log.error("Tâche d'invalidation non enregistrée (%s) : %s", url, e)
            return None

    def _save(self, db: Session, task: Optional[InvalidationTaskDB], **fields):
        if task is None:
            return
        try:
            db_update_task(db, task, updated_at=datetime.utcnow(), **fields)
        except Exception as e:
            db.rollback()
            log.error("Tâche %s non mise à jour : %s", task.task_id, e)


def build_invalidator() -> PatternCacheInvalidator:
    return PatternCacheInvalidator(registry=load_registry(), revalidator=default_revalidator())


# ── Points d'entrée arrière-plan ───────────────────────────────────────────

def run_pattern_invalidation(pattern_id: str):
    """Exécuté hors du thread requête (BackgroundTasks) — session DB indépendante."""
    db = new_session()
    try:
        build_invalidator().invalidate_pattern(db, pattern_id)
    except Exception as e:
        log.error("run_pattern_invalidation(%s) : %s", pattern_id, e)
    finally:
        db.close()


def run_retry_sweep():
    db = new_session()
    try:
        n = build_invalidator().retry_failed(db)
        if n:
            log.info("Balayage invalidations : %d tâche(s) rattrapée(s)", n)
    except Exception as e:
        log.error("run_retry_sweep : %s", e)
    finally:
        db.close()
