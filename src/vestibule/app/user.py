"""Endpoints about the signed-in user."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from vestibule.infra.auth.dependencies import CurrentClaims

router = APIRouter(prefix="/user", tags=["user"])


@router.get("/profile")
async def profile(claims: CurrentClaims) -> dict[str, Any]:
    """Merged ID token and userinfo claims of the current user."""
    return claims.to_dict()
