"""
Scheduler APScheduler — reprise périodique des invalidations de cache.

Un seul job : ``retry_invalidations``, toutes les INVALIDATION_RETRY_MINUTES
(5 par défaut). Il relance les InvalidationTask FAILED encore sous le plafond
de tentatives (voir ``PatternCacheInvalidator.retry_failed``).
"""
import logging
import os

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

log = logging.getLogger(__name__)

RETRY_JOB_ID = "retry_invalidations"

_scheduler: BackgroundScheduler | None = None


def _retry_interval_minutes() -> int:
    return max(1, int(os.getenv("INVALIDATION_RETRY_MINUTES", "5")))


def start_scheduler():
    """Lance le balayage des invalidations ; sans effet s'il tourne déjà."""
    global _scheduler
    if _scheduler and _scheduler.running:
        return

    _scheduler = BackgroundScheduler(timezone="UTC")
    _scheduler.add_job(
        _job_retry_invalidations,
        trigger=IntervalTrigger(minutes=_retry_interval_minutes()),
        id=RETRY_JOB_ID,
        replace_existing=True,
        misfire_grace_time=60,
        coalesce=True,
        max_instances=1,
    )
    _scheduler.start()
    log.info("Balayage des invalidations planifié toutes les %d min", _retry_interval_minutes())


def stop_scheduler():
    global _scheduler
    if _scheduler and _scheduler.running:
        _scheduler.shutdown(wait=False)
        log.info("Balayage des invalidations arrêté")
    _scheduler = None


def scheduler_status() -> dict:
    """État exposé par /health : scheduler actif ? prochain balayage ?"""
    if not _scheduler or not _scheduler.running:
        return {"running": False, "jobs": []}
    return {
        "running": True,
        "jobs": [
            {
                "id":       j.id,
                "next_run": j.next_run_time.isoformat() if j.next_run_time else None,
                "trigger":  str(j.trigger),
            }
            for j in _scheduler.get_jobs()
        ],
    }


# ── Jobs ───────────────────────────────────────────────────────────────────

def _job_retry_invalidations():
    from .patterns.invalidation import run_retry_sweep
    run_retry_sweep()
