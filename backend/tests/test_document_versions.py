"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  RFP CRM - Versioned Document Store Tests                                    ║
║                                                                              ║
║  1. Version suivante = max + 1 (les trous restent)                           ║
║  2. Rétention: 10 fichiers max par famille, les plus anciens évincés         ║
║  3. Collision de nom (autre process) => un recalcul                          ║
║  4. Échec DB de l'éviction => génération annulée                             ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import asyncio

import pytest
from pymongo.errors import PyMongoError

import config
from services import document_versions
from services.document_versions import (
    DocumentVersionError,
    list_family,
    next_version_and_prune,
    parse_version,
    store_generated_file,
)
from services.filenames import family_base_name


async def store(n=1, reference="LEAD-7", family="RFP Pricing", entity_id="lead-7"):
    records = []
    for i in range(n):
        records.append(await store_generated_file(
            entity_type="LEAD",
            entity_id=entity_id,
            reference=reference,
            family_label=family,
            extension=".xlsx",
            data=f"payload-{i}".encode(),
            description="Pricing (v{version})",
        ))
    return records


async def seed_file(db, name, created_at, entity_id="lead-7", storage_path=None):
    await db.files.insert_one({
        "id": f"seed-{name}",
        "name": name,
        "entity_type": "LEAD",
        "entity_id": entity_id,
        "family": "RFP Pricing",
        "storage_path": storage_path,
        "created_at": created_at,
    })


class _FailingDeletes:
    def __init__(self, collection):
        self._collection = collection

    def __getattr__(self, name):
        return getattr(self._collection, name)

    async def delete_one(self, *args, **kwargs):
        raise PyMongoError("primary stepped down")


class FailingDeletesDb:
    """db dont files.delete_one échoue, le reste est délégué"""

    def __init__(self, db):
        self._db = db
        self.files = _FailingDeletes(db.files)

    def __getattr__(self, name):
        return getattr(self._db, name)


class TestVersionNumbers:

    def test_parse_version(self):
        assert parse_version("LEAD-7 - RFP Pricing - v12.xlsx") == 12
        assert parse_version("LEAD-7 - RFP Pricing.xlsx") is None
        assert parse_version(None) is None

    @pytest.mark.asyncio
    async def test_first_version_is_one(self, indexed_db):
        record = (await store())[0]
        assert record["version"] == 1
        assert record["name"] == "LEAD-7 - RFP Pricing - v1.xlsx"
        assert record["description"] == "Pricing (v1)"
        assert record["url"].startswith(config.LOCAL_STORAGE_URL)
        print(f"✅ {record['name']} -> {record['url']}")

    @pytest.mark.asyncio
    async def test_max_plus_one_keeps_gaps(self, indexed_db):
        """v1, v2, v5 existants => v6 (pas de comblement de trou)"""
        for version, stamp in ((1, "2026-01-01"), (2, "2026-01-02"), (5, "2026-01-03")):
            await seed_file(indexed_db, f"LEAD-7 - RFP Pricing - v{version}.xlsx", stamp)
        record = (await store())[0]
        assert record["version"] == 6

    @pytest.mark.asyncio
    async def test_families_are_independent(self, indexed_db):
        await store(2, family="RFP Pricing")
        bom = (await store(1, family="BOM"))[0]
        other_lead = (await store(1, entity_id="lead-8"))[0]
        assert bom["version"] == 1
        assert other_lead["version"] == 1

    @pytest.mark.asyncio
    async def test_similar_prefix_not_counted(self, indexed_db):
        await seed_file(indexed_db, "LEAD-7 - RFP Pricing Extra - v9.xlsx", "2026-01-01")
        assert (await store())[0]["version"] == 1


class TestRetention:

    @pytest.mark.asyncio
    async def test_never_more_than_ten(self, indexed_db):
        records = await store(12)
        assert [r["version"] for r in records] == list(range(1, 13))

        remaining = await list_family("LEAD", "lead-7", family_base_name("LEAD-7", "RFP Pricing"))
        versions = sorted(parse_version(r["name"]) for r in remaining)
        assert len(remaining) == 10
        assert versions == list(range(3, 13))
        print(f"✅ Remaining versions: {versions}")

    @pytest.mark.asyncio
    async def test_evicted_blob_removed(self, indexed_db):
        records = await store(11)
        first_blob = config.LOCAL_STORAGE_DIR / records[0]["storage_path"]
        last_blob = config.LOCAL_STORAGE_DIR / records[-1]["storage_path"]
        assert not first_blob.exists()
        assert last_blob.read_bytes() == b"payload-10"

        evictions = await indexed_db.event_log.count_documents({"action": "file_version_evicted"})
        assert evictions == 1

    @pytest.mark.asyncio
    async def test_over_cap_family_trimmed_in_one_go(self, indexed_db):
        """13 existants avec un max de 10 => 4 évictions, la version suivante reste 14"""
        for version in range(1, 14):
            await seed_file(indexed_db, f"LEAD-7 - RFP Pricing - v{version}.xlsx", f"2026-01-{version:02d}")
        version = await next_version_and_prune("lead-7", "LEAD", family_base_name("LEAD-7", "RFP Pricing"))
        assert version == 14

        remaining = await list_family("LEAD", "lead-7", family_base_name("LEAD-7", "RFP Pricing"))
        assert sorted(parse_version(r["name"]) for r in remaining) == list(range(5, 14))

    @pytest.mark.asyncio
    async def test_custom_cap(self, indexed_db, monkeypatch):
        monkeypatch.setattr(config, "MAX_DOCUMENT_VERSIONS", 3)
        await store(5)
        assert await indexed_db.files.count_documents({"entity_id": "lead-7"}) == 3

    @pytest.mark.asyncio
    async def test_db_failure_on_eviction_aborts(self, indexed_db, monkeypatch):
        await store(10)
        monkeypatch.setattr(document_versions, "db", FailingDeletesDb(indexed_db))
        with pytest.raises(DocumentVersionError):
            await store()
        assert await indexed_db.files.count_documents({"entity_id": "lead-7"}) == 10

    @pytest.mark.asyncio
    async def test_missing_blob_does_not_block_eviction(self, indexed_db):
        for version in range(1, 11):
            await seed_file(
                indexed_db, f"LEAD-7 - RFP Pricing - v{version}.xlsx", f"2026-01-{version:02d}",
                storage_path=f"leads/lead-7/rfp-pricing/missing_{version}.xlsx"
            )
        record = (await store())[0]
        assert record["version"] == 11
        assert await indexed_db.files.count_documents({"entity_id": "lead-7"}) == 10


class TestConcurrency:

    @pytest.mark.asyncio
    async def test_concurrent_generation_distinct_versions(self, indexed_db):
        results = await asyncio.gather(*[
            store_generated_file("LEAD", "lead-7", "LEAD-7", "RFP Pricing", ".xlsx", b"x")
            for _ in range(5)
        ])
        versions = sorted(r["version"] for r in results)
        assert versions == [1, 2, 3, 4, 5]
        print(f"✅ Concurrent versions: {versions}")

    @pytest.mark.asyncio
    async def test_duplicate_name_triggers_one_retry(self, indexed_db, monkeypatch):
        """Un autre process a pris v1 entre le calcul et l'insert"""
        await store(1)
        real_next = document_versions.next_version_and_prune
        calls = []

        async def stale_next(*args, **kwargs):
            calls.append(1)
            if len(calls) == 1:
                return 1
            return await real_next(*args, **kwargs)

        monkeypatch.setattr(document_versions, "next_version_and_prune", stale_next)
        record = (await store())[0]
        assert record["version"] == 2
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_persistent_collision_fails(self, indexed_db, monkeypatch):
        await store(1)

        async def always_one(*args, **kwargs):
            return 1

        monkeypatch.setattr(document_versions, "next_version_and_prune", always_one)
        with pytest.raises(DocumentVersionError):
            await store()
