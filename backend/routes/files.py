"""
RFP CRM - Routes Files (documents générés)
"""

from fastapi import APIRouter, HTTPException, Query
from typing import Optional

from models.rfp import EntityKind
from services.document_versions import list_files

router = APIRouter(prefix="/files", tags=["Files"])


@router.get("")
async def list_generated_files(
    entity_type: str = Query(...),
    entity_id: str = Query(...),
    family: Optional[str] = None,
    limit: int = 100
):
    """Versions générées d'une entité, la plus récente d'abord"""
    if entity_type.upper() not in [k.value for k in EntityKind]:
        raise HTTPException(status_code=400, detail=f"Invalid entity_type: {entity_type}")

    files = await list_files(entity_type, entity_id, family, limit)
    return {"files": files, "count": len(files)}
