"""
RFP CRM - Dépendances communes des routes
"""

import logging
from typing import Optional

from fastapi import Header, HTTPException

logger = logging.getLogger("routes")


async def get_actor(x_user_email: Optional[str] = Header(None)) -> str:
    """Auteur de l'action (en-tête X-User-Email posé par le frontend / gateway)"""
    return (x_user_email or "").strip() or "system"


def server_error(action: str, error: Exception) -> HTTPException:
    """500 avec {"error", "details"}"""
    logger.error(f"[API] Failed to {action}: {error}", exc_info=error)
    return HTTPException(
        status_code=500,
        detail={"error": f"Failed to {action}", "details": str(error)}
    )
