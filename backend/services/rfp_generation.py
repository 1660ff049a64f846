"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  RFP CRM - Generation pipeline                                               ║
║                                                                              ║
║  Ordre FIXE, chaque étape attendue avant la suivante:                        ║
║    1. validation (équipement, survey, lien lead/customer)                    ║
║    2. totaux (pricing)                                                       ║
║    3. upsert du snapshot RFP                                                 ║
║    4. rendu du document (xlsx / docx)                                        ║
║    5. version + éviction                                                     ║
║    6. upload blob                                                            ║
║    7. enregistrement du fichier                                              ║
║                                                                              ║
║  Un échec arrête la suite, sans compensation: le snapshot mis à jour en 3    ║
║  reste en place si l'upload échoue.                                          ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
from typing import List, Optional

from openpyxl.utils.exceptions import IllegalCharacterError
from pydantic import ValidationError

from config import db, now_iso
from models.equipment import EquipmentLine
from models.rfp import DocumentHeader, RequirementsSnapshot, money
from services.document_versions import store_generated_file
from services.event_logger import log_event
from services.proposal_document import render_proposal_document
from services.rfp_state import (
    find_current_rfp,
    get_rfp,
    invalid_snapshot_message,
    load_snapshot,
    upsert_requirements,
)
from services.workbook import render_bom_workbook, render_pricing_workbook

logger = logging.getLogger("rfp_generation")

PRICING_FAMILY = "RFP Pricing"
BOM_FAMILY = "BOM"
PROPOSAL_FAMILY = "Proposal"


class RfpGenerationError(Exception):
    """Erreur métier de génération, porte le code HTTP à renvoyer"""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class DocumentRenderError(Exception):
    """Le document (xlsx / docx) n'a pas pu être produit"""
    pass


def _render(renderer, *args) -> bytes:
    try:
        return renderer(*args)
    except (IllegalCharacterError, ValueError) as e:
        logger.error(f"[RFP_GEN] {renderer.__name__} failed: {e}")
        raise DocumentRenderError(str(e)) from e


# ════════════════════════════════════════════════════════════════════════════
# CONTEXTE (survey / lead / customer)
# ════════════════════════════════════════════════════════════════════════════

async def build_context(
    lead_id: Optional[str],
    customer_id: Optional[str],
    contact_id: Optional[str] = None,
    site_survey_id: Optional[str] = None,
    survey_title: Optional[str] = None
) -> dict:
    if not lead_id and not customer_id:
        raise RfpGenerationError("Site survey is not linked to a lead or customer", 400)

    lead = await db.leads.find_one({"id": lead_id}, {"_id": 0}) if lead_id else None
    customer = await db.customers.find_one({"id": customer_id}, {"_id": 0}) if customer_id else None

    return {
        "lead_id": lead_id,
        "customer_id": customer_id,
        "contact_id": contact_id,
        "site_survey_id": site_survey_id,
        "survey_title": survey_title or (lead or {}).get("title") or "",
        "entity_type": "LEAD" if lead_id else "CUSTOMER",
        "entity_id": lead_id or customer_id,
        "reference": (lead or {}).get("lead_number") or (customer or {}).get("name") or "REF",
        "customer_name": (customer or {}).get("name") or "Customer",
    }


async def load_survey_context(site_survey_id: str) -> dict:
    survey = await db.site_surveys.find_one({"id": site_survey_id}, {"_id": 0})
    if not survey:
        raise RfpGenerationError("Site survey not found", 404)
    return await build_context(
        lead_id=survey.get("lead_id"),
        customer_id=survey.get("customer_id"),
        contact_id=survey.get("contact_id"),
        site_survey_id=site_survey_id,
        survey_title=survey.get("title"),
    )


async def context_for_rfp(rfp: dict) -> dict:
    survey_title = None
    if rfp.get("site_survey_id"):
        survey = await db.site_surveys.find_one({"id": rfp["site_survey_id"]}, {"_id": 0, "title": 1})
        survey_title = (survey or {}).get("title")
    return await build_context(
        lead_id=rfp.get("lead_id"),
        customer_id=rfp.get("customer_id"),
        contact_id=rfp.get("contact_id"),
        site_survey_id=rfp.get("site_survey_id"),
        survey_title=survey_title or rfp.get("title"),
    )


def _header(ctx: dict, rfp: Optional[dict] = None) -> DocumentHeader:
    return DocumentHeader(
        reference_number=ctx["reference"],
        customer_name=ctx["customer_name"],
        project_title=ctx["survey_title"],
        document_number=(rfp or {}).get("rfp_no") or "Draft",
    )


def _stored_snapshot(rfp: dict) -> RequirementsSnapshot:
    try:
        snapshot = load_snapshot(rfp)
    except ValidationError as e:
        raise RfpGenerationError(invalid_snapshot_message(rfp, e), 422)
    if not snapshot.equipment:
        raise RfpGenerationError("RFP has no equipment to price", 400)
    return snapshot


# ════════════════════════════════════════════════════════════════════════════
# RÉPONSES
# ════════════════════════════════════════════════════════════════════════════

def _file_payload(record: dict, products_count: int, services_count: int) -> dict:
    return {
        "filename": record["name"],
        "fileId": record["id"],
        "url": record["url"],
        "version": record["version"],
        "productsCount": products_count,
        "servicesCount": services_count,
    }


def _rfp_payload(rfp: dict) -> dict:
    return {
        "id": rfp["id"],
        "rfpNo": rfp.get("rfp_no"),
        "status": rfp.get("status"),
        "stage": rfp.get("stage"),
    }


def _totals_payload(snapshot: RequirementsSnapshot) -> dict:
    totals = snapshot.totals
    return {
        "grandTotal": money(totals.grand_total),
        "productsTotal": money(totals.products.total),
        "servicesTotal": money(totals.services.total),
        "totalMargin": money(totals.total_margin),
    }


# ════════════════════════════════════════════════════════════════════════════
# PIPELINES
# ════════════════════════════════════════════════════════════════════════════

async def _store_pricing_workbook(rfp: dict, snapshot: RequirementsSnapshot, ctx: dict, actor: str) -> dict:
    data = _render(render_pricing_workbook, snapshot, _header(ctx, rfp))
    products, services = len(snapshot.products), len(snapshot.services)
    return await store_generated_file(
        entity_type=ctx["entity_type"],
        entity_id=ctx["entity_id"],
        reference=ctx["reference"],
        family_label=PRICING_FAMILY,
        extension=".xlsx",
        data=data,
        description=(
            f"RFP Pricing Document - {products} products, {services} services "
            f"(v{{version}}) - RFP: {rfp.get('rfp_no')}"
        ),
        created_by=actor,
        related={"rfp_id": rfp["id"], "site_survey_id": ctx.get("site_survey_id")},
    )


async def generate_rfp_from_survey(
    site_survey_id: str,
    equipment: Optional[List[EquipmentLine]],
    general_notes: Optional[str],
    actor: str = "system"
) -> dict:
    if not equipment:
        raise RfpGenerationError("No equipment data provided", 400)

    ctx = await load_survey_context(site_survey_id)
    logger.info(f"[RFP_GEN] Survey {site_survey_id}: {len(equipment)} lines for {ctx['entity_type']} {ctx['entity_id']}")

    rfp = await upsert_requirements(ctx["lead_id"], equipment, general_notes, actor, ctx)
    snapshot = load_snapshot(rfp)
    record = await _store_pricing_workbook(rfp, snapshot, ctx, actor)

    await log_event(
        action="rfp_generated",
        entity_type="rfp",
        entity_id=rfp["id"],
        user=actor,
        details={"rfp_no": rfp.get("rfp_no"), "file": record["name"], "version": record["version"]},
        related={"site_survey_id": site_survey_id, "lead_id": ctx["lead_id"], "customer_id": ctx["customer_id"]}
    )

    return {
        "success": True,
        "message": "Successfully generated RFP with pricing document",
        "rfp": _rfp_payload(rfp),
        "file": _file_payload(record, len(snapshot.products), len(snapshot.services)),
        "totals": _totals_payload(snapshot),
    }


async def regenerate_rfp_excel(rfp_id: str, actor: str = "system") -> dict:
    """Nouveau classeur depuis le snapshot persisté, totaux recalculés"""
    rfp = await get_rfp(rfp_id)
    snapshot = _stored_snapshot(rfp)
    ctx = await context_for_rfp(rfp)

    record = await _store_pricing_workbook(rfp, snapshot, ctx, actor)
    logger.info(f"[RFP_GEN] Regenerated pricing workbook for {rfp.get('rfp_no')}: {record['name']}")

    return {
        "success": True,
        "message": "Successfully regenerated RFP pricing document",
        "rfp": _rfp_payload(rfp),
        "file": _file_payload(record, len(snapshot.products), len(snapshot.services)),
        "totals": _totals_payload(snapshot),
    }


def _name_of(value) -> Optional[str]:
    if isinstance(value, dict):
        return value.get("name")
    return value


async def enrich_from_products(equipment: List[EquipmentLine]) -> List[EquipmentLine]:
    """Complète les lignes liées à un produit (nom, codes, marque, catégorie)"""
    ids = [line.product_id for line in equipment if line.product_id]
    if not ids:
        return list(equipment)

    products = await db.products.find({"id": {"$in": ids}}, {"_id": 0}).to_list(len(ids))
    by_id = {p["id"]: p for p in products}

    enriched = []
    for line in equipment:
        product = by_id.get(line.product_id)
        if not product:
            enriched.append(line)
            continue
        enriched.append(line.model_copy(update={
            "name": line.name or product.get("name") or "Unknown Product",
            "code": line.code or product.get("code") or product.get("erp_code"),
            "brand": line.brand or _name_of(product.get("brand")),
            "category": line.category or _name_of(product.get("category")),
            "manufacturer_code": line.manufacturer_code or product.get("manufacturer_code"),
            "ean_code": line.ean_code or product.get("ean_code"),
        }))
    return enriched


async def generate_bom_file(
    site_survey_id: str,
    equipment: Optional[List[EquipmentLine]] = None,
    actor: str = "system"
) -> dict:
    ctx = await load_survey_context(site_survey_id)

    if not equipment:
        rfp = await find_current_rfp(ctx["lead_id"], ctx)
        if rfp:
            equipment = _stored_snapshot(rfp).equipment
    if not equipment:
        raise RfpGenerationError("No equipment data provided", 400)

    equipment = await enrich_from_products(equipment)
    products = [line for line in equipment if line.kind.value == "product"]
    services = [line for line in equipment if line.kind.value == "service"]

    data = _render(render_bom_workbook, equipment, _header(ctx), now_iso())
    record = await store_generated_file(
        entity_type=ctx["entity_type"],
        entity_id=ctx["entity_id"],
        reference=ctx["reference"],
        family_label=BOM_FAMILY,
        extension=".xlsx",
        data=data,
        description=f"Bill of Materials (BOM) - {len(products)} products, {len(services)} services (v{{version}})",
        created_by=actor,
        related={"site_survey_id": site_survey_id},
    )

    return {
        "success": True,
        "message": "Successfully generated BOM file",
        "file": _file_payload(record, len(products), len(services)),
    }


async def generate_proposal_document(rfp_id: str, actor: str = "system") -> dict:
    rfp = await get_rfp(rfp_id)
    snapshot = _stored_snapshot(rfp)
    ctx = await context_for_rfp(rfp)

    data = _render(render_proposal_document, snapshot, _header(ctx, rfp))
    record = await store_generated_file(
        entity_type=ctx["entity_type"],
        entity_id=ctx["entity_id"],
        reference=ctx["reference"],
        family_label=PROPOSAL_FAMILY,
        extension=".docx",
        data=data,
        description=f"Commercial Proposal (v{{version}}) - RFP: {rfp.get('rfp_no')}",
        created_by=actor,
        related={"rfp_id": rfp_id},
    )

    return {
        "success": True,
        "message": "Successfully generated proposal document",
        "rfp": _rfp_payload(rfp),
        "file": _file_payload(record, len(snapshot.products), len(snapshot.services)),
        "totals": _totals_payload(snapshot),
    }
