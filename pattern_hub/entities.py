"""
Registre des types d'entité + résolution du chemin de base public.

Défauts : pages (/), posts (/blog), patterns (non public).
Override : fichier JSON pointé par ENTITIES_CONFIG_PATH (liste d'objets EntityConfig).
"""
import json
import logging
import os
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, Field, ValidationError

log = logging.getLogger(__name__)


class EntityAccess(BaseModel):
    public: bool = True


class EntityBuilder(BaseModel):
    enabled: bool = False


class EntityConfig(BaseModel):
    slug:      str
    access:    EntityAccess  = Field(default_factory=EntityAccess)
    builder:   EntityBuilder = Field(default_factory=EntityBuilder)
    base_path: Optional[str] = None


_DEFAULT_ENTITIES: List[dict] = [
    {"slug": "pages",    "access": {"public": True},  "builder": {"enabled": True}, "base_path": "/"},
    {"slug": "posts",    "access": {"public": True},  "builder": {"enabled": True}, "base_path": "/blog"},
    {"slug": "patterns", "access": {"public": False}, "builder": {"enabled": True}},
]


class EntityRegistry:
    """Lookup ``entity_type -> EntityConfig``. Injecté dans l'invalidation (substituable en test)."""

    def __init__(self, configs: Iterable[EntityConfig] = ()):
        self._configs: Dict[str, EntityConfig] = {c.slug: c for c in configs}

    def get(self, entity_type: str) -> Optional[EntityConfig]:
        return self._configs.get(entity_type)

    def register(self, config: EntityConfig):
        self._configs[config.slug] = config

    def all(self) -> List[EntityConfig]:
        return list(self._configs.values())


def get_entity_base_path(config: EntityConfig) -> Optional[str]:
    """Chemin de base public d'un type d'entité, None si non configuré."""
    base = (config.base_path or "").strip()
    if not base:
        return None
    if not base.startswith("/"):
        base = "/" + base
    return base if base == "/" else base.rstrip("/")


def load_registry(path: Optional[str] = None) -> EntityRegistry:
    """Registre par défaut, remplacé par le JSON de ENTITIES_CONFIG_PATH s'il est lisible."""
    path = path or os.getenv("ENTITIES_CONFIG_PATH")
    raw = _DEFAULT_ENTITIES
    if path:
        try:
            raw = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            log.warning("ENTITIES_CONFIG_PATH illisible (%s) — registre par défaut", e)
            raw = _DEFAULT_ENTITIES

    registry = EntityRegistry()
    for item in raw:
        try:
            registry.register(EntityConfig(**item))
        except (TypeError, ValidationError) as e:
            log.warning("Entité ignorée %r : %s", item, e)
    return registry
