"""Identité transmise par l'hôte (l'authentification est faite en amont)."""
from typing import Optional

from fastapi import Header, HTTPException


def current_user(x_user_id: Optional[str] = Header(None)) -> str:
    if not (x_user_id or "").strip():
        raise HTTPException(401, "X-User-Id manquant")
    return x_user_id


def current_team(x_team_id: Optional[str] = Header(None)) -> str:
    if not (x_team_id or "").strip():
        raise HTTPException(401, "X-Team-Id manquant")
    return x_team_id
