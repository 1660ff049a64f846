"""
RFP CRM - fixtures pytest

- base Mongo en mémoire (mongomock-motor) injectée dans tous les modules qui importent `db`
- stockage blob local dans un dossier temporaire, BunnyCDN désactivé
- pas de délai entre les appels IA
"""

import os
import sys
import tempfile
from pathlib import Path

import pytest
from mongomock_motor import AsyncMongoMockClient

BACKEND_DIR = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(BACKEND_DIR))
os.environ.setdefault("LOCAL_STORAGE_DIR", tempfile.mkdtemp(prefix="rfp_crm_static_"))

import config  # noqa: E402

DB_MODULES = [
    "config",
    "server",
    "services.event_logger",
    "services.document_versions",
    "services.markup_rules",
    "services.rfp_state",
    "services.rfp_generation",
    "services.erp_sync",
    "services.translation",
]


@pytest.fixture
def mock_db(monkeypatch, tmp_path):
    db = AsyncMongoMockClient()["rfp_crm_test"]
    for name in DB_MODULES:
        module = sys.modules.get(name)
        if module is None:
            module = __import__(name, fromlist=["db"])
        monkeypatch.setattr(module, "db", db)

    monkeypatch.setattr(config, "LOCAL_STORAGE_DIR", tmp_path / "generated")
    monkeypatch.setattr(config, "BUNNY_STORAGE_ZONE", "")
    monkeypatch.setattr(config, "BUNNY_API_KEY", "")
    monkeypatch.setattr(config, "AI_REQUEST_DELAY_SECONDS", 0)
    monkeypatch.setattr(config, "MAX_DOCUMENT_VERSIONS", 10)
    monkeypatch.setattr(config, "RFP_LOCK_CLOSED_STATUSES", False)
    return db


@pytest.fixture
async def indexed_db(mock_db):
    from services.document_versions import ensure_file_indexes

    await ensure_file_indexes()
    await mock_db.counters.create_index("key", unique=True)
    return mock_db


@pytest.fixture
async def lead_survey(indexed_db):
    """Lead + site survey liés, prêts pour une génération"""
    await indexed_db.leads.insert_one({"id": "lead-1", "lead_number": "ΞΕΝΟΔΟΧΕΙΑ ΚΡΗΤΗΣ ΑΕ", "title": "Hotel Network"})
    await indexed_db.site_surveys.insert_one({
        "id": "survey-1",
        "lead_id": "lead-1",
        "title": "Hotel Network Upgrade",
    })
    return {"lead_id": "lead-1", "survey_id": "survey-1"}


@pytest.fixture
def equipment_payload():
    """2 x 100 @ 10% + 1 x 50 @ 0% => 270"""
    return [
        {"kind": "product", "name": "Switch 24p", "brand": "Cisco", "quantity": 2, "unitPrice": 100, "margin": 10},
        {"kind": "service", "name": "Installation", "quantity": 1, "unitPrice": 50, "margin": 0},
    ]
