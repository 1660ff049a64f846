"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  RFP CRM - RFP State Record Tests                                            ║
║                                                                              ║
║  1. Création puis mise à jour du même RFP ("latest wins")                    ║
║  2. Numérotation RFP#### (compteur atomique, amorçage)                       ║
║  3. Transitions de statut manuelles                                          ║
║  4. Verrouillage optionnel des RFP fermés                                    ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import asyncio

import pytest

import config
from models.equipment import EquipmentLine
from services.rfp_state import (
    VALID_RFP_TRANSITIONS,
    RfpStateError,
    allocate_rfp_number,
    find_current_rfp,
    load_snapshot,
    update_rfp_status,
    upsert_requirements,
)

CONTEXT = {"site_survey_id": "survey-1", "survey_title": "Hotel Network", "customer_id": None}


def lines(items):
    return [EquipmentLine.model_validate(item) for item in items]


class TestUpsert:

    @pytest.mark.asyncio
    async def test_create_then_update(self, indexed_db, equipment_payload):
        first = await upsert_requirements("lead-1", lines(equipment_payload), "notes", "a@example.com", CONTEXT)
        assert first["created"] is True
        assert first["rfp_no"] == "RFP0001"
        assert first["status"] == "IN_PROGRESS"
        assert first["stage"] == "RFP_DRAFTING"
        assert first["title"] == "RFP for Hotel Network"
        assert first["requirements"]["totals"]["grandTotal"] == 270

        second = await upsert_requirements(
            "lead-1",
            lines([{"kind": "product", "quantity": 1, "unit_price": 10}]),
            None,
            "b@example.com",
            CONTEXT
        )
        assert second["created"] is False
        assert second["id"] == first["id"]
        assert second["rfp_no"] == "RFP0001"
        assert second["requirements"]["totals"]["grandTotal"] == 10
        assert second["requirements"]["generated_by"] == "b@example.com"
        assert await indexed_db.rfps.count_documents({"lead_id": "lead-1"}) == 1
        print(f"✅ RFP {second['rfp_no']} updated in place")

    @pytest.mark.asyncio
    async def test_stored_totals_ignored_on_load(self, indexed_db, equipment_payload):
        rfp = await upsert_requirements("lead-1", lines(equipment_payload), None, "a", CONTEXT)
        rfp["requirements"]["totals"]["grandTotal"] = 999999
        snapshot = load_snapshot(rfp)
        assert snapshot.totals.as_flat_dict()["grandTotal"] == 270

    @pytest.mark.asyncio
    async def test_regression_recorded_in_history(self, indexed_db, equipment_payload):
        rfp = await upsert_requirements("lead-1", lines(equipment_payload), None, "a", CONTEXT)
        await indexed_db.rfps.update_one({"id": rfp["id"]}, {"$set": {"status": "SUBMITTED"}})

        updated = await upsert_requirements("lead-1", lines(equipment_payload), None, "b", CONTEXT)
        assert updated["status"] == "IN_PROGRESS"
        last = updated["status_history"][-1]
        assert last["from"] == "SUBMITTED"
        assert last["to"] == "IN_PROGRESS"
        assert last["reason"] == "regenerated"

    @pytest.mark.asyncio
    async def test_closed_rfp_locked_when_enabled(self, indexed_db, equipment_payload, monkeypatch):
        rfp = await upsert_requirements("lead-1", lines(equipment_payload), None, "a", CONTEXT)
        await indexed_db.rfps.update_one({"id": rfp["id"]}, {"$set": {"status": "AWARDED"}})
        monkeypatch.setattr(config, "RFP_LOCK_CLOSED_STATUSES", True)

        with pytest.raises(RfpStateError) as exc:
            await upsert_requirements("lead-1", lines(equipment_payload), None, "b", CONTEXT)
        assert exc.value.status_code == 409

        current = await find_current_rfp("lead-1", CONTEXT)
        assert current["status"] == "AWARDED"

    @pytest.mark.asyncio
    async def test_customer_survey_without_lead(self, indexed_db, equipment_payload):
        ctx = {"site_survey_id": "survey-9", "customer_id": "cust-1", "survey_title": "Office"}
        first = await upsert_requirements(None, lines(equipment_payload), None, "a", ctx)
        second = await upsert_requirements(None, lines(equipment_payload), None, "a", ctx)
        other = await upsert_requirements(None, lines(equipment_payload), None, "a", {**ctx, "site_survey_id": "survey-10"})
        assert first["id"] == second["id"]
        assert other["id"] != first["id"]

    @pytest.mark.asyncio
    async def test_unlinked_rejected(self, indexed_db, equipment_payload):
        with pytest.raises(RfpStateError) as exc:
            await upsert_requirements(None, lines(equipment_payload), None, "a", {"site_survey_id": "s"})
        assert exc.value.status_code == 400

    @pytest.mark.asyncio
    async def test_concurrent_upserts_single_rfp(self, indexed_db, equipment_payload):
        results = await asyncio.gather(*[
            upsert_requirements("lead-1", lines(equipment_payload), None, f"user{i}", CONTEXT)
            for i in range(4)
        ])
        assert len({r["id"] for r in results}) == 1
        assert sum(1 for r in results if r["created"]) == 1
        assert await indexed_db.rfps.count_documents({}) == 1


class TestRfpNumbers:

    @pytest.mark.asyncio
    async def test_sequential(self, indexed_db):
        assert await allocate_rfp_number() == "RFP0001"
        assert await allocate_rfp_number() == "RFP0002"

    @pytest.mark.asyncio
    async def test_seeded_from_existing_rfps(self, indexed_db):
        await indexed_db.rfps.insert_many([
            {"id": "a", "rfp_no": "RFP0041"},
            {"id": "b", "rfp_no": "RFP0007"},
            {"id": "c", "rfp_no": "legacy-1"},
        ])
        assert await allocate_rfp_number() == "RFP0042"

    @pytest.mark.asyncio
    async def test_concurrent_numbers_unique(self, indexed_db):
        numbers = await asyncio.gather(*[allocate_rfp_number() for _ in range(10)])
        assert len(set(numbers)) == 10


class TestStatusTransitions:

    def test_terminal_statuses(self):
        assert VALID_RFP_TRANSITIONS["AWARDED"] == []
        assert VALID_RFP_TRANSITIONS["LOST"] == []
        assert "SUBMITTED" in VALID_RFP_TRANSITIONS["IN_PROGRESS"]

    @pytest.mark.asyncio
    async def test_valid_transition(self, indexed_db, equipment_payload):
        rfp = await upsert_requirements("lead-1", lines(equipment_payload), None, "a", CONTEXT)
        updated = await update_rfp_status(rfp["id"], "SUBMITTED", "manager@example.com", stage="RFP_SUBMITTED")
        assert updated["status"] == "SUBMITTED"
        assert updated["stage"] == "RFP_SUBMITTED"
        assert updated["status_history"][-1]["by"] == "manager@example.com"

        event = await indexed_db.event_log.find_one({"action": "rfp_status_changed"}, {"_id": 0})
        assert event["details"]["new_status"] == "SUBMITTED"

    @pytest.mark.asyncio
    async def test_invalid_transition(self, indexed_db, equipment_payload):
        rfp = await upsert_requirements("lead-1", lines(equipment_payload), None, "a", CONTEXT)
        with pytest.raises(RfpStateError) as exc:
            await update_rfp_status(rfp["id"], "AWARDED", "a")
        assert exc.value.status_code == 409

    @pytest.mark.asyncio
    async def test_unknown_rfp(self, indexed_db):
        with pytest.raises(RfpStateError) as exc:
            await update_rfp_status("nope", "SUBMITTED", "a")
        assert exc.value.status_code == 404
