"""
RFP CRM - Routes Products

- Mise à jour des codes EAN / fabricant (+ synchro ERP best effort)
- Traduction IA dans les langues actives
- Synchro ERP en masse des codes
"""

from fastapi import APIRouter, Depends, HTTPException
import logging

from models.product import BulkErpSyncRequest, ProductCodesUpdate
from routes.deps import get_actor
from services.erp_sync import save_product_codes, sync_codes_bulk
from services.translation import TranslationError, list_translations, translate_product

router = APIRouter(prefix="/products", tags=["Products"])
logger = logging.getLogger("products")


@router.post("/sync-codes-to-erp")
async def sync_codes_to_erp(data: BulkErpSyncRequest, actor: str = Depends(get_actor)):
    if not data.product_ids:
        raise HTTPException(status_code=400, detail="Product IDs array is required")
    return await sync_codes_bulk(data.product_ids, actor)


@router.post("/{product_id}/codes")
async def update_codes(product_id: str, data: ProductCodesUpdate, actor: str = Depends(get_actor)):
    if not data.ean_code and not data.manufacturer_code:
        raise HTTPException(status_code=400, detail="At least one of ean_code / manufacturer_code is required")
    if data.ean_code and data.ean_code == data.manufacturer_code:
        raise HTTPException(status_code=400, detail="EAN and manufacturer codes must be different")

    result = await save_product_codes(product_id, data.ean_code, data.manufacturer_code, actor)
    if result is None:
        raise HTTPException(status_code=404, detail="Product not found")
    return {
        "success": True,
        "product": result["product"],
        "erp_synced": result["erp_sync_status"] == "success",
        "erp_sync_status": result["erp_sync_status"],
    }


@router.post("/{product_id}/translate")
async def translate(product_id: str, actor: str = Depends(get_actor)):
    try:
        return await translate_product(product_id, actor)
    except TranslationError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/{product_id}/translations")
async def get_translations(product_id: str):
    translations = await list_translations(product_id)
    return {"success": True, "translations": translations}
