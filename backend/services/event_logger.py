"""
RFP CRM - Event Logger

Audit trail of generation, versioning and ERP sync events.
Single function to call from any route/service.
"""

from config import db, now_iso, new_id


async def log_event(
    action: str,
    entity_type: str,
    entity_id: str,
    user: str = "system",
    details: dict = None,
    related: dict = None
):
    """
    Write a single event to the event_log collection.

    Args:
        action: e.g. rfp_generated, file_version_created, file_version_evicted, erp_codes_synced
        entity_type: rfp | file | product | site_survey
        entity_id: ID of the primary entity
        user: email of user performing action
        details: free-form dict (version, filename, old_status, new_status, etc.)
        related: linked entity IDs (lead_id, customer_id, site_survey_id, etc.)
    """
    await db.event_log.insert_one({
        "id": new_id(),
        "action": action,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "user": user,
        "details": details or {},
        "related": related or {},
        "created_at": now_iso()
    })
