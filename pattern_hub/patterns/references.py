"""
Références de pattern dans un arbre de blocs.

Un nœud de l'arbre est soit une instance de bloc ``{id, blockSlug, props}``,
soit une référence ``{type: "pattern", ref: <pattern_id>, id: <instance_id>}``.
Tout consommateur qui parcourt un arbre doit brancher sur ``is_pattern_reference``.
"""
import uuid
from typing import Any, Iterable, List, Optional

PATTERN_NODE_TYPE = "pattern"


def is_pattern_reference(node: Any) -> bool:
    """
    Garde structurelle : dict avec type == "pattern" et ``ref`` / ``id`` de type str.

    Vérifie la forme, pas le contenu : ``ref=""`` reste une référence valide.
    Un bloc dont le ``blockSlug`` vaut "pattern" n'en est pas une.
    """
    if not isinstance(node, dict):
        return False
    return (
        node.get("type") == PATTERN_NODE_TYPE
        and isinstance(node.get("ref"), str)
        and isinstance(node.get("id"), str)
    )


def extract_pattern_ids(blocks: Optional[Iterable[Any]]) -> List[str]:
    """Ids référencés (dédupliqués, ordre de première apparition)."""
    seen = {}
    for node in blocks or []:
        if is_pattern_reference(node):
            seen.setdefault(node["ref"], None)
    return list(seen)


def contains_pattern_reference(blocks: Any) -> bool:
    if not isinstance(blocks, list):
        return False
    return any(is_pattern_reference(b) for b in blocks)


def make_pattern_reference(pattern_id: str, instance_id: Optional[str] = None) -> dict:
    return {"type": PATTERN_NODE_TYPE, "ref": pattern_id, "id": instance_id or str(uuid.uuid4())}


def remove_reference(blocks: Iterable[Any], instance_id: str) -> List[Any]:
    """Copie de la liste sans la référence d'instance ``instance_id`` (les blocs ordinaires restent)."""
    return [
        b for b in blocks
        if not (is_pattern_reference(b) and b["id"] == instance_id)
    ]


def references_to(blocks: Iterable[Any], pattern_id: str) -> List[dict]:
    return [b for b in blocks or [] if is_pattern_reference(b) and b["ref"] == pattern_id]
