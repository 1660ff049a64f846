"""
RFP CRM - Routes Site Surveys

Génération depuis un site survey:
- RFP + classeur de chiffrage (versionné)
- BOM (nomenclature par marque)
"""

from fastapi import APIRouter, Depends, HTTPException
from pymongo.errors import PyMongoError
import logging

from models.rfp import GenerateBomRequest, GenerateRfpRequest
from routes.deps import get_actor, server_error
from services.blob_storage import BlobStorageError
from services.document_versions import DocumentVersionError
from services.rfp_generation import (
    DocumentRenderError,
    RfpGenerationError,
    generate_bom_file,
    generate_rfp_from_survey,
)
from services.rfp_state import RfpStateError

router = APIRouter(prefix="/site-surveys", tags=["SiteSurveys"])
logger = logging.getLogger("site_surveys")


@router.post("/{survey_id}/generate-rfp")
async def generate_rfp(survey_id: str, data: GenerateRfpRequest, actor: str = Depends(get_actor)):
    """Crée / met à jour le RFP du lead et génère le classeur de chiffrage"""
    try:
        return await generate_rfp_from_survey(survey_id, data.equipment, data.general_notes, actor)
    except (RfpGenerationError, RfpStateError) as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except (DocumentRenderError, DocumentVersionError, BlobStorageError, PyMongoError) as e:
        raise server_error("generate RFP", e)


@router.post("/{survey_id}/generate-bom-file")
async def generate_bom(survey_id: str, data: GenerateBomRequest = None, actor: str = Depends(get_actor)):
    """BOM Excel; sans équipement fourni, reprend le snapshot du RFP courant"""
    equipment = data.equipment if data else None
    try:
        return await generate_bom_file(survey_id, equipment, actor)
    except (RfpGenerationError, RfpStateError) as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except (DocumentRenderError, DocumentVersionError, BlobStorageError, PyMongoError) as e:
        raise server_error("generate BOM file", e)
