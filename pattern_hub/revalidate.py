"""
Primitive de revalidation du cache de rendu.

HttpRevalidator : POST {"path": url} vers REVALIDATE_URL (header x-revalidate-secret).
LogRevalidator  : aucun appel externe, trace seulement (dev / pas de couche de rendu).
"""
import logging
import os
from typing import Optional

import requests

log = logging.getLogger(__name__)


class Revalidator:
    def revalidate(self, url: str) -> None:
        raise NotImplementedError


class LogRevalidator(Revalidator):
    def revalidate(self, url: str) -> None:
        log.info("Revalidation (log only) : %s", url)


class HttpRevalidator(Revalidator):
    """Appelle l'endpoint de revalidation de la couche de rendu. Lève si la réponse n'est pas 2xx."""

    def __init__(self, endpoint: str, secret: Optional[str] = None, timeout: float = 5.0):
        self.endpoint = endpoint
        self.secret = secret
        self.timeout = timeout

    def revalidate(self, url: str) -> None:
        headers = {"x-revalidate-secret": self.secret} if self.secret else {}
        r = requests.post(self.endpoint, json={"path": url}, headers=headers, timeout=self.timeout)
        r.raise_for_status()
        log.info("Revalidé %s (%d)", url, r.status_code)


def default_revalidator() -> Revalidator:
    endpoint = os.getenv("REVALIDATE_URL", "")
    if not endpoint:
        return LogRevalidator()
    return HttpRevalidator(
        endpoint,
        secret=os.getenv("REVALIDATE_SECRET") or None,
        timeout=float(os.getenv("REVALIDATE_TIMEOUT", "5")),
    )
