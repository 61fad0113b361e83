"""
pattern_hub — FastAPI app
Démarrer : uvicorn pattern_hub.api.main:app --reload --port 8001
"""
import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .routes.documents import router as documents_router
from .routes.patterns import router as patterns_router

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s — %(message)s")
log = logging.getLogger(__name__)

app = FastAPI(title="pattern_hub — patterns de blocs réutilisables", version="1.0.0", docs_url="/docs")

app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])

app.include_router(patterns_router)
app.include_router(documents_router)


@app.on_event("startup")
def startup():
    from ..database import init_db
    init_db()
    log.info("DB initialisée (SQLite)")

    # Scheduler — reprise des invalidations échouées
    try:
        from ..scheduler import start_scheduler
        start_scheduler()
    except Exception as e:
        log.warning("Scheduler non démarré : %s", e)


@app.on_event("shutdown")
def shutdown():
    from ..scheduler import stop_scheduler
    stop_scheduler()


@app.get("/health")
def health():
    from ..scheduler import scheduler_status
    return {"status": "ok", "service": "pattern_hub", "version": "1.0.0", "scheduler": scheduler_status()}
