"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  RFP CRM - ERP Code Sync (SoftOne)                                           ║
║                                                                              ║
║  BEST EFFORT: les codes sont d'abord enregistrés en base, la synchro ERP     ║
║  vient après et son résultat n'est qu'une métadonnée (erp_sync_status).      ║
║  Un échec ERP ne fait jamais échouer l'opération appelante.                  ║
║                                                                              ║
║  CODE1 = EAN, CODE2 = code fabricant, réponse encodée en cp1253              ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import json
import logging
from typing import List, Optional

import httpx

import config
from config import db, now_iso
from services.event_logger import log_event

logger = logging.getLogger("erp_sync")

ERP_RESPONSE_ENCODING = "cp1253"


class ErpSyncError(Exception):
    """Échec transport, HTTP ou métier (success: false) de SoftOne"""
    pass


def _http_client(timeout: float) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=timeout)


def _mtrl(erp_ref):
    ref = str(erp_ref).strip()
    return int(ref) if ref.isdigit() else ref


def build_code_updates(ean_code: Optional[str] = None, manufacturer_code: Optional[str] = None) -> dict:
    updates = {}
    if ean_code:
        updates["CODE1"] = ean_code
    if manufacturer_code:
        updates["CODE2"] = manufacturer_code
    return updates


async def update_product_codes(erp_ref, ean_code: Optional[str] = None, manufacturer_code: Optional[str] = None) -> dict:
    """
    POST {SOFTONE_BASE_URL}/updateItem

    Raises:
        ErpSyncError: transport, HTTP non-2xx, JSON invalide ou success=false
    """
    if not config.SOFTONE_BASE_URL:
        raise ErpSyncError("SoftOne is not configured (SOFTONE_BASE_URL)")

    updates = build_code_updates(ean_code, manufacturer_code)
    if not updates:
        raise ErpSyncError("No codes to sync")

    payload = {
        "username": config.SOFTONE_USERNAME,
        "password": config.SOFTONE_PASSWORD,
        "company": config.SOFTONE_COMPANY,
        "MTRL": _mtrl(erp_ref),
        **updates,
    }

    try:
        async with _http_client(config.ERP_TIMEOUT_SECONDS) as client:
            resp = await client.post(
                f"{config.SOFTONE_BASE_URL}/updateItem",
                json=payload,
                headers={"Content-Type": "application/json"}
            )
    except httpx.TimeoutException as e:
        raise ErpSyncError(f"SoftOne timeout after {config.ERP_TIMEOUT_SECONDS}s") from e
    except httpx.HTTPError as e:
        raise ErpSyncError(f"SoftOne connection error: {e}") from e

    if not resp.is_success:
        raise ErpSyncError(f"SoftOne HTTP error: status {resp.status_code}")

    try:
        data = json.loads(resp.content.decode(ERP_RESPONSE_ENCODING, errors="replace"))
    except ValueError as e:
        raise ErpSyncError(f"SoftOne returned invalid JSON: {e}") from e

    if not isinstance(data, dict) or not data.get("success"):
        error = data.get("error") if isinstance(data, dict) else None
        raise ErpSyncError(error or "Failed to update product")

    logger.info(f"[ERP_SYNC] MTRL {payload['MTRL']} updated ({', '.join(updates)})")
    return data


async def sync_codes(erp_ref, ean_code: Optional[str] = None, manufacturer_code: Optional[str] = None) -> str:
    """Variante sans exception: 'success' | 'failed'"""
    try:
        await update_product_codes(erp_ref, ean_code, manufacturer_code)
        return "success"
    except ErpSyncError as e:
        logger.warning(f"[ERP_SYNC] MTRL {erp_ref} sync failed: {e}")
        return "failed"


async def _record_sync_status(product_id: str, status: str):
    update = {"erp_sync_status": status, "erp_sync_attempted_at": now_iso()}
    if status == "success":
        update["erp_synced_at"] = update["erp_sync_attempted_at"]
    await db.products.update_one({"id": product_id}, {"$set": update})


async def save_product_codes(
    product_id: str,
    ean_code: Optional[str] = None,
    manufacturer_code: Optional[str] = None,
    actor: str = "system"
) -> dict:
    """
    1. enregistre les codes sur le produit (commit)
    2. synchro ERP si erp_ref + is_active
    Le statut de synchro n'annule jamais l'étape 1.

    Returns:
        {product, codes_updated, erp_sync_status}  (erp_sync_status: success | failed | skipped)
        None si le produit n'existe pas
    """
    product = await db.products.find_one({"id": product_id}, {"_id": 0})
    if not product:
        return None

    codes = {}
    if ean_code:
        codes["ean_code"] = ean_code
    if manufacturer_code:
        codes["manufacturer_code"] = manufacturer_code

    if codes:
        await db.products.update_one({"id": product_id}, {"$set": {**codes, "updated_at": now_iso()}})
        product.update(codes)
        logger.info(f"[ERP_SYNC] Product {product_id} codes saved: {list(codes)}")

    erp_sync_status = "skipped"
    if codes and product.get("erp_ref") and product.get("is_active", False):
        erp_sync_status = await sync_codes(
            product["erp_ref"],
            product.get("ean_code"),
            product.get("manufacturer_code")
        )
        await _record_sync_status(product_id, erp_sync_status)
        product["erp_sync_status"] = erp_sync_status

    await log_event(
        action="product_codes_updated",
        entity_type="product",
        entity_id=product_id,
        user=actor,
        details={"codes": codes, "erp_sync_status": erp_sync_status}
    )
    return {
        "product": product,
        "codes_updated": bool(codes),
        "erp_sync_status": erp_sync_status,
    }


async def sync_codes_bulk(product_ids: List[str], actor: str = "system") -> dict:
    """Collect and report: un échec sur un produit n'arrête pas les autres"""
    products = await db.products.find({"id": {"$in": product_ids}}, {"_id": 0}).to_list(len(product_ids))
    found = {p["id"] for p in products}

    results = []
    errors = []

    for product_id in product_ids:
        if product_id not in found:
            results.append({"product_id": product_id, "status": "skipped", "reason": "Product not found"})

    for product in products:
        base = {"product_id": product["id"], "product_name": product.get("name")}

        if not product.get("erp_ref"):
            results.append({**base, "status": "skipped", "reason": "No ERP reference (product not in SoftOne)"})
            continue
        if not product.get("ean_code") and not product.get("manufacturer_code"):
            results.append({**base, "status": "skipped", "reason": "No EAN or manufacturer codes to sync"})
            continue

        try:
            await update_product_codes(product["erp_ref"], product.get("ean_code"), product.get("manufacturer_code"))
        except ErpSyncError as e:
            await _record_sync_status(product["id"], "failed")
            errors.append({**base, "erp_ref": product["erp_ref"], "status": "error", "error": str(e)})
            continue

        await _record_sync_status(product["id"], "success")
        results.append({
            **base,
            "erp_ref": product["erp_ref"],
            "status": "success",
            "synced_codes": build_code_updates(product.get("ean_code"), product.get("manufacturer_code")),
        })

    summary = {
        "total": len(product_ids),
        "synced": sum(1 for r in results if r["status"] == "success"),
        "skipped": sum(1 for r in results if r["status"] == "skipped"),
        "errors": len(errors),
    }
    logger.info(f"[ERP_SYNC] Bulk sync: {summary}")

    await log_event(
        action="erp_codes_bulk_sync",
        entity_type="product",
        entity_id="bulk",
        user=actor,
        details=summary
    )
    return {
        "success": True,
        "summary": summary,
        "results": results,
        "errors": errors,
    }
