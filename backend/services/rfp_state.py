"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  RFP CRM - RFP State Record                                                  ║
║                                                                              ║
║  UN RFP courant par lead (ou par customer + site survey sans lead)           ║
║  - régénération: snapshot remplacé ("latest wins"), status -> IN_PROGRESS    ║
║  - numéros RFP#### alloués par compteur atomique (db.counters)               ║
║  - tout changement de statut est tracé dans status_history                   ║
║                                                                              ║
║  RFP_LOCK_CLOSED_STATUSES=1: refuse de régénérer AWARDED / LOST / CANCELLED  ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
import re
from typing import Any, Dict, List, Optional

from pydantic import ValidationError
from pymongo import ReturnDocument

import config
from config import db, now_iso, new_id
from models.equipment import EquipmentLine
from models.rfp import (
    CLOSED_RFP_STATUSES,
    DEFAULT_RFP_STAGE,
    RequirementsSnapshot,
    RfpStatus,
)
from services.event_logger import log_event
from services.key_locks import rfp_locks
from services.pricing import compute_totals

logger = logging.getLogger("rfp_state")

RFP_COUNTER_KEY = "rfp_number"
RFP_NUMBER_RE = re.compile(r"^RFP(\d+)$")

# Statuts depuis lesquels un retour à IN_PROGRESS est une régression
REGRESSION_STATUSES = {RfpStatus.SUBMITTED.value} | CLOSED_RFP_STATUSES


# ════════════════════════════════════════════════════════════════════════════
# VALID STATE TRANSITIONS (changements manuels)
# ════════════════════════════════════════════════════════════════════════════

VALID_RFP_TRANSITIONS = {
    "DRAFT": ["IN_PROGRESS", "CANCELLED"],
    "IN_PROGRESS": ["DRAFT", "SUBMITTED", "CANCELLED"],
    "SUBMITTED": ["IN_PROGRESS", "AWARDED", "LOST", "CANCELLED"],
    "AWARDED": [],  # TERMINAL
    "LOST": [],  # TERMINAL
    "CANCELLED": ["DRAFT"],  # Réouverture
}


class RfpStateError(Exception):
    """Transition refusée, RFP introuvable ou verrouillé"""

    def __init__(self, message: str, status_code: int = 409):
        super().__init__(message)
        self.status_code = status_code


# ════════════════════════════════════════════════════════════════════════════
# SNAPSHOT <-> DOCUMENT
# ════════════════════════════════════════════════════════════════════════════

def snapshot_to_document(snapshot: RequirementsSnapshot) -> dict:
    return {
        "equipment": [line.to_document() for line in snapshot.equipment],
        "general_notes": snapshot.general_notes,
        "totals": snapshot.totals.as_flat_dict(),
        "generated_at": snapshot.generated_at,
        "generated_by": snapshot.generated_by,
    }


def load_snapshot(rfp: dict) -> RequirementsSnapshot:
    """
    Snapshot persisté -> modèle. Les totaux stockés sont ignorés et
    recalculés depuis les lignes.
    """
    requirements = rfp.get("requirements") or {}
    equipment = [EquipmentLine.model_validate(item) for item in requirements.get("equipment") or []]
    return RequirementsSnapshot(
        equipment=equipment,
        general_notes=requirements.get("general_notes") or requirements.get("generalNotes"),
        totals=compute_totals(equipment),
        generated_at=requirements.get("generated_at") or requirements.get("generatedAt") or "",
        generated_by=requirements.get("generated_by") or requirements.get("generatedBy") or "system",
    )


def invalid_snapshot_message(rfp: dict, error: ValidationError) -> str:
    return f"Stored equipment for RFP {rfp.get('rfp_no')} is invalid: {error.error_count()} error(s)"


def _history_entry(old_status: Optional[str], new_status: str, actor: str, reason: str) -> dict:
    return {
        "from": old_status,
        "to": new_status,
        "at": now_iso(),
        "by": actor,
        "reason": reason,
    }


# ════════════════════════════════════════════════════════════════════════════
# RFP NUMBERS
# ════════════════════════════════════════════════════════════════════════════

async def _highest_existing_rfp_number() -> int:
    docs = await db.rfps.find(
        {"rfp_no": {"$regex": r"^RFP\d+$"}},
        {"_id": 0, "rfp_no": 1}
    ).to_list(100000)
    numbers = [int(RFP_NUMBER_RE.match(d["rfp_no"]).group(1)) for d in docs]
    return max(numbers) if numbers else 0


async def allocate_rfp_number() -> str:
    """RFP0001, RFP0002... unique même entre plusieurs process"""
    counter = await db.counters.find_one({"key": RFP_COUNTER_KEY}, {"_id": 0})
    if not counter:
        # Amorçage depuis les RFP déjà existants ($max: idempotent si concurrent)
        highest = await _highest_existing_rfp_number()
        await db.counters.update_one(
            {"key": RFP_COUNTER_KEY},
            {"$max": {"value": highest}},
            upsert=True
        )
        logger.info(f"[RFP_STATE] RFP counter seeded at {highest}")

    doc = await db.counters.find_one_and_update(
        {"key": RFP_COUNTER_KEY},
        {"$inc": {"value": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER
    )
    return f"RFP{int(doc['value']):04d}"


# ════════════════════════════════════════════════════════════════════════════
# UPSERT
# ════════════════════════════════════════════════════════════════════════════

def _lookup(lead_id: Optional[str], context: Dict[str, Any]) -> dict:
    if lead_id:
        return {"lead_id": lead_id}
    if context.get("customer_id") and context.get("site_survey_id"):
        return {"lead_id": None, "customer_id": context["customer_id"], "site_survey_id": context["site_survey_id"]}
    raise RfpStateError("RFP must be linked to a lead or a customer site survey", status_code=400)


async def find_current_rfp(lead_id: Optional[str], context: Dict[str, Any]) -> Optional[dict]:
    rfps = await db.rfps.find(_lookup(lead_id, context), {"_id": 0}).sort("created_at", -1).to_list(1)
    return rfps[0] if rfps else None


async def upsert_requirements(
    lead_id: Optional[str],
    equipment: List[EquipmentLine],
    general_notes: Optional[str],
    generated_by: str,
    context: Dict[str, Any]
) -> dict:
    """
    Remplace le snapshot du RFP courant (ou crée le RFP).

    context: site_survey_id, survey_title, customer_id, contact_id

    Returns:
        Document RFP à jour (sans _id), avec "created": bool
    """
    lock_key = ("lead", lead_id) if lead_id else ("customer", context.get("customer_id"), context.get("site_survey_id"))

    async with rfp_locks.hold(lock_key):
        existing = await find_current_rfp(lead_id, context)
        now = now_iso()
        snapshot = RequirementsSnapshot(
            equipment=equipment,
            general_notes=general_notes,
            totals=compute_totals(equipment),
            generated_at=now,
            generated_by=generated_by,
        )
        requirements = snapshot_to_document(snapshot)
        in_progress = RfpStatus.IN_PROGRESS.value

        if existing:
            old_status = existing.get("status")
            if old_status in CLOSED_RFP_STATUSES and config.RFP_LOCK_CLOSED_STATUSES:
                raise RfpStateError(
                    f"RFP {existing.get('rfp_no')} is {old_status}; regeneration is locked",
                    status_code=409
                )

            update = {"$set": {"requirements": requirements, "status": in_progress, "updated_at": now}}
            if old_status != in_progress:
                update["$push"] = {"status_history": _history_entry(old_status, in_progress, generated_by, "regenerated")}
            if old_status in REGRESSION_STATUSES:
                logger.warning(
                    f"[RFP_STATE] RFP {existing.get('rfp_no')} regressed {old_status} -> {in_progress} on regeneration"
                )

            await db.rfps.update_one({"id": existing["id"]}, update)
            rfp = await db.rfps.find_one({"id": existing["id"]}, {"_id": 0})
            created = False
            logger.info(f"[RFP_STATE] Updated RFP {rfp.get('rfp_no')} ({len(equipment)} lines)")
        else:
            survey_title = context.get("survey_title") or "Site Survey"
            rfp = {
                "id": new_id(),
                "rfp_no": await allocate_rfp_number(),
                "title": f"RFP for {survey_title}",
                "description": f"Request for Proposal generated from site survey: {survey_title}",
                "lead_id": lead_id,
                "customer_id": context.get("customer_id"),
                "contact_id": context.get("contact_id"),
                "site_survey_id": context.get("site_survey_id"),
                "status": in_progress,
                "stage": DEFAULT_RFP_STAGE,
                "assignee": generated_by,
                "requirements": requirements,
                "status_history": [_history_entry(None, in_progress, generated_by, "created")],
                "created_at": now,
                "updated_at": now,
            }
            await db.rfps.insert_one(rfp)
            rfp.pop("_id", None)
            created = True
            logger.info(f"[RFP_STATE] Created RFP {rfp['rfp_no']} ({len(equipment)} lines)")

    await log_event(
        action="rfp_created" if created else "rfp_requirements_updated",
        entity_type="rfp",
        entity_id=rfp["id"],
        user=generated_by,
        details={
            "rfp_no": rfp.get("rfp_no"),
            "lines": len(equipment),
            "grand_total": requirements["totals"]["grandTotal"],
        },
        related={
            "lead_id": lead_id,
            "customer_id": context.get("customer_id"),
            "site_survey_id": context.get("site_survey_id"),
        }
    )
    return {**rfp, "created": created}


# ════════════════════════════════════════════════════════════════════════════
# LECTURE / STATUT MANUEL
# ════════════════════════════════════════════════════════════════════════════

async def get_rfp(rfp_id: str) -> dict:
    rfp = await db.rfps.find_one({"id": rfp_id}, {"_id": 0})
    if not rfp:
        raise RfpStateError("RFP not found", status_code=404)
    return rfp


async def validate_rfp_transition(rfp_id: str, from_status: str, to_status: str) -> bool:
    valid_next = VALID_RFP_TRANSITIONS.get(from_status, [])
    if to_status not in valid_next:
        raise RfpStateError(
            f"INVALID TRANSITION: RFP {rfp_id} cannot go from '{from_status}' to '{to_status}'. "
            f"Valid transitions from '{from_status}': {valid_next}",
            status_code=409
        )
    return True


async def update_rfp_status(rfp_id: str, status: str, actor: str, stage: Optional[str] = None) -> dict:
    rfp = await get_rfp(rfp_id)
    old_status = rfp.get("status")
    status = RfpStatus(status).value

    if old_status == status and not stage:
        return rfp

    update = {"$set": {"updated_at": now_iso()}}
    if old_status != status:
        await validate_rfp_transition(rfp_id, old_status, status)
        update["$set"]["status"] = status
        update["$push"] = {"status_history": _history_entry(old_status, status, actor, "manual")}
    if stage:
        update["$set"]["stage"] = stage

    await db.rfps.update_one({"id": rfp_id}, update)
    logger.info(f"[RFP_STATE] RFP {rfp.get('rfp_no')} status {old_status} -> {status} by {actor}")

    await log_event(
        action="rfp_status_changed",
        entity_type="rfp",
        entity_id=rfp_id,
        user=actor,
        details={"old_status": old_status, "new_status": status, "stage": stage}
    )
    return await db.rfps.find_one({"id": rfp_id}, {"_id": 0})
