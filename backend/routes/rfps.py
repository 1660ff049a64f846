"""
RFP CRM - Routes RFPs

- Lecture d'un RFP (totaux recalculés)
- Changement de statut manuel (VALID_RFP_TRANSITIONS)
- Régénération du classeur de chiffrage depuis le snapshot
- Proposition commerciale Word
"""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import ValidationError
from pymongo.errors import PyMongoError
import logging

from models.rfp import RfpStatusUpdate
from routes.deps import get_actor, server_error
from services.blob_storage import BlobStorageError
from services.document_versions import DocumentVersionError
from services.rfp_generation import (
    DocumentRenderError,
    RfpGenerationError,
    generate_proposal_document,
    regenerate_rfp_excel,
)
from services.rfp_state import RfpStateError, get_rfp, invalid_snapshot_message, load_snapshot, update_rfp_status

router = APIRouter(prefix="/rfps", tags=["RFPs"])
logger = logging.getLogger("rfps")


@router.get("/{rfp_id}")
async def get_rfp_detail(rfp_id: str):
    try:
        rfp = await get_rfp(rfp_id)
    except RfpStateError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

    try:
        snapshot = load_snapshot(rfp)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=invalid_snapshot_message(rfp, e))

    rfp.setdefault("requirements", {})["totals"] = snapshot.totals.as_flat_dict()
    return {"rfp": rfp}


@router.patch("/{rfp_id}/status")
async def patch_rfp_status(rfp_id: str, data: RfpStatusUpdate, actor: str = Depends(get_actor)):
    try:
        rfp = await update_rfp_status(rfp_id, data.status.value, actor, stage=data.stage)
    except RfpStateError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return {"success": True, "rfp": rfp}


@router.post("/{rfp_id}/regenerate-excel")
async def regenerate_excel(rfp_id: str, actor: str = Depends(get_actor)):
    try:
        return await regenerate_rfp_excel(rfp_id, actor)
    except (RfpGenerationError, RfpStateError) as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except (DocumentRenderError, DocumentVersionError, BlobStorageError, PyMongoError) as e:
        raise server_error("regenerate RFP pricing document", e)


@router.post("/{rfp_id}/generate-proposal-document")
async def generate_proposal(rfp_id: str, actor: str = Depends(get_actor)):
    try:
        return await generate_proposal_document(rfp_id, actor)
    except (RfpGenerationError, RfpStateError) as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except (DocumentRenderError, DocumentVersionError, BlobStorageError, PyMongoError) as e:
        raise server_error("generate proposal document", e)
