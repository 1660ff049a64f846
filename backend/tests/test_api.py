"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  RFP CRM - API Tests (FastAPI TestClient)                                    ║
║                                                                              ║
║  Routes /api: site-surveys, rfps, files, pricing, products                   ║
║  Corps d'erreur: {"error": ...} (+ "details" pour les 500)                   ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import pytest
from fastapi.testclient import TestClient

from services import document_versions, rfp_generation
from services.blob_storage import BlobStorageError

HEADERS = {"X-User-Email": "sales@example.com"}


@pytest.fixture
def client(mock_db):
    from server import app

    with TestClient(app) as test_client:
        yield test_client


def generate(client, equipment, survey_id="survey-1", **extra):
    return client.post(
        f"/api/site-surveys/{survey_id}/generate-rfp",
        json={"equipment": equipment, **extra},
        headers=HEADERS,
    )


class TestHealth:

    def test_root(self, client):
        response = client.get("/api/")
        assert response.status_code == 200
        assert response.json()["status"] == "running"


class TestSiteSurveyRoutes:

    def test_generate_then_regenerate(self, client, lead_survey, equipment_payload):
        first = generate(client, equipment_payload, generalNotes="Back entrance")
        assert first.status_code == 200, first.text
        body = first.json()
        assert body["rfp"]["rfpNo"] == "RFP0001"
        assert body["file"]["version"] == 1
        assert body["totals"]["grandTotal"] == 270

        second = generate(client, equipment_payload)
        assert second.json()["file"]["version"] == 2
        assert second.json()["rfp"]["id"] == body["rfp"]["id"]
        print(f"✅ {second.json()['file']['filename']}")

    def test_actor_from_header(self, client, lead_survey, equipment_payload):
        rfp_id = generate(client, equipment_payload).json()["rfp"]["id"]
        rfp = client.get(f"/api/rfps/{rfp_id}").json()["rfp"]
        assert rfp["requirements"]["generated_by"] == "sales@example.com"
        assert rfp["assignee"] == "sales@example.com"

    def test_empty_equipment(self, client, lead_survey):
        response = generate(client, [])
        assert response.status_code == 400
        assert response.json() == {"error": "No equipment data provided"}

    def test_invalid_line_rejected(self, client, lead_survey):
        response = generate(client, [{"kind": "product", "quantity": 0, "unitPrice": 10}])
        assert response.status_code == 422

    def test_unknown_survey(self, client, mock_db, equipment_payload):
        response = generate(client, equipment_payload, survey_id="missing")
        assert response.status_code == 404
        assert response.json()["error"] == "Site survey not found"

    def test_upload_failure_is_500(self, client, lead_survey, equipment_payload, monkeypatch):
        async def broken_put(*args, **kwargs):
            raise BlobStorageError("CDN down")

        monkeypatch.setattr(document_versions, "put_blob", broken_put)
        response = generate(client, equipment_payload)
        assert response.status_code == 500
        assert response.json() == {"error": "Failed to generate RFP", "details": "CDN down"}

    def test_pasted_control_characters(self, client, lead_survey, equipment_payload):
        equipment = [dict(equipment_payload[0], name="Switch\x0b24p"), equipment_payload[1]]
        response = generate(client, equipment, generalNotes="Back\x0bentrance")
        assert response.status_code == 200, response.text

        rfp_id = response.json()["rfp"]["id"]
        rfp = client.get(f"/api/rfps/{rfp_id}").json()["rfp"]
        assert rfp["requirements"]["equipment"][0]["name"] == "Switch24p"
        assert rfp["requirements"]["general_notes"] == "Backentrance"

        assert client.post(f"/api/rfps/{rfp_id}/regenerate-excel").status_code == 200
        assert client.post(f"/api/rfps/{rfp_id}/generate-proposal-document").status_code == 200

    def test_render_failure_is_500(self, client, lead_survey, equipment_payload, monkeypatch):
        def broken_render(*args):
            raise ValueError("All strings must be XML compatible")

        monkeypatch.setattr(rfp_generation, "render_pricing_workbook", broken_render)
        response = generate(client, equipment_payload)
        assert response.status_code == 500
        assert response.json() == {
            "error": "Failed to generate RFP",
            "details": "All strings must be XML compatible",
        }

    def test_bom_file(self, client, lead_survey, equipment_payload):
        response = client.post("/api/site-surveys/survey-1/generate-bom-file", json={"equipment": equipment_payload})
        assert response.status_code == 200
        assert response.json()["file"]["filename"].endswith(" - BOM - v1.xlsx")


class TestRfpRoutes:

    def test_get_unknown(self, client, mock_db):
        response = client.get("/api/rfps/nope")
        assert response.status_code == 404
        assert response.json() == {"error": "RFP not found"}

    @pytest.mark.asyncio
    async def test_get_invalid_stored_snapshot(self, client, mock_db):
        await mock_db.rfps.insert_one({
            "id": "r1", "rfp_no": "RFP0003",
            "requirements": {"equipment": [{"kind": "product", "quantity": 0, "unitPrice": 5}]},
        })
        response = client.get("/api/rfps/r1")
        assert response.status_code == 422
        assert response.json() == {"error": "Stored equipment for RFP RFP0003 is invalid: 1 error(s)"}

    def test_status_flow(self, client, lead_survey, equipment_payload):
        rfp_id = generate(client, equipment_payload).json()["rfp"]["id"]

        ok = client.patch(f"/api/rfps/{rfp_id}/status", json={"status": "SUBMITTED"}, headers=HEADERS)
        assert ok.status_code == 200
        assert ok.json()["rfp"]["status"] == "SUBMITTED"

        invalid = client.patch(f"/api/rfps/{rfp_id}/status", json={"status": "DRAFT"})
        assert invalid.status_code == 409
        assert "INVALID TRANSITION" in invalid.json()["error"]

        unknown = client.patch(f"/api/rfps/{rfp_id}/status", json={"status": "WON"})
        assert unknown.status_code == 422

    def test_regenerate_and_proposal(self, client, lead_survey, equipment_payload):
        rfp_id = generate(client, equipment_payload).json()["rfp"]["id"]

        excel = client.post(f"/api/rfps/{rfp_id}/regenerate-excel")
        assert excel.status_code == 200
        assert excel.json()["file"]["version"] == 2

        proposal = client.post(f"/api/rfps/{rfp_id}/generate-proposal-document")
        assert proposal.status_code == 200
        assert proposal.json()["file"]["filename"].endswith(" - Proposal - v1.docx")


class TestFileRoutes:

    def test_list_files(self, client, lead_survey, equipment_payload):
        generate(client, equipment_payload)
        generate(client, equipment_payload)

        response = client.get("/api/files", params={"entity_type": "LEAD", "entity_id": "lead-1"})
        assert response.status_code == 200
        assert response.json()["count"] == 2

        bom_only = client.get(
            "/api/files", params={"entity_type": "LEAD", "entity_id": "lead-1", "family": "BOM"}
        )
        assert bom_only.json()["count"] == 0

    def test_invalid_entity_type(self, client, mock_db):
        response = client.get("/api/files", params={"entity_type": "ACCOUNT", "entity_id": "x"})
        assert response.status_code == 400


class TestPricingRoutes:

    def test_totals_preview(self, client, mock_db, equipment_payload):
        response = client.post("/api/pricing/totals", json={"equipment": equipment_payload})
        assert response.status_code == 200
        body = response.json()
        assert body["totals"]["grandTotal"] == 270
        assert body["weightedMargin"] == {"products": 10.0, "services": 0.0}
        assert body["lines"][0]["total_price"] == 220

    def test_empty_preview(self, client, mock_db):
        response = client.post("/api/pricing/totals", json={"equipment": []})
        assert response.json()["totals"]["grandTotal"] == 0

    @pytest.mark.asyncio
    async def test_markup_pricing(self, client, mock_db):
        await mock_db.markup_rules.insert_one({
            "id": "r1", "type": "global", "priority": 1,
            "b2bMarkupPercent": 20, "retailMarkupPercent": 40, "isActive": True,
        })
        response = client.post("/api/pricing/products", json={"products": [{"id": "p1", "cost": 100}]})
        assert response.status_code == 200
        body = response.json()
        assert body["rules_count"] == 1
        assert body["results"][0]["b2b_price"] == pytest.approx(120)
        assert body["results"][0]["retail_price"] == pytest.approx(140)
        assert body["results"][0]["b2b_markup"] == pytest.approx(20)
        assert body["results"][0]["warnings"] == []


class TestProductRoutes:

    def test_codes_unknown_product(self, client, mock_db):
        response = client.post("/api/products/nope/codes", json={"ean_code": "5201234567890"})
        assert response.status_code == 404

    def test_codes_must_differ(self, client, mock_db):
        response = client.post("/api/products/p1/codes", json={"eanCode": "X1", "manufacturerCode": "X1"})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_codes_saved(self, client, mock_db):
        await mock_db.products.insert_one({"id": "p1", "name": "Camera"})
        response = client.post("/api/products/p1/codes", json={"eanCode": "5201234567890"})
        assert response.status_code == 200
        assert response.json()["erp_sync_status"] == "skipped"
        assert response.json()["product"]["ean_code"] == "5201234567890"

    def test_bulk_sync_requires_ids(self, client, mock_db):
        response = client.post("/api/products/sync-codes-to-erp", json={"productIds": []})
        assert response.status_code == 400

    def test_translate_unknown_product(self, client, mock_db):
        response = client.post("/api/products/nope/translate")
        assert response.status_code == 404
        assert response.json() == {"error": "Product not found"}
