"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  RFP CRM - Versioned Document Store                                          ║
║                                                                              ║
║  Une "famille" = tous les fichiers "<ref> - <Label> - v<N>.<ext>" d'une      ║
║  même entité (LEAD / CUSTOMER).                                              ║
║                                                                              ║
║  INVARIANTS:                                                                 ║
║  - version suivante = max(N existants) + 1, ou 1; les trous restent          ║
║  - au plus MAX_DOCUMENT_VERSIONS fichiers par famille                        ║
║  - (entity_type, entity_id, name) unique (index Mongo)                       ║
║  - l'échec de suppression DB de la version évincée annule la génération     ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
import re
import time
from typing import List, Optional

from pymongo.errors import DuplicateKeyError, PyMongoError

import config
from config import db, now_iso, new_id
from services.blob_storage import BlobStorageError, delete_blob, put_blob
from services.event_logger import log_event
from services.filenames import build_safe_filename, family_base_name, sanitize_name
from services.key_locks import file_family_locks

logger = logging.getLogger("document_versions")

# Suffixe fixe " - v<N>.<ext>"
FILE_VERSION_RE = re.compile(r" - v(\d+)\.[A-Za-z0-9]+$")

ENTITY_FOLDERS = {
    "LEAD": "leads",
    "CUSTOMER": "customers",
}

CONTENT_TYPES = {
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}


class DocumentVersionError(Exception):
    """Versioning impossible (suppression d'une version évincée, collision répétée)"""
    pass


def parse_version(filename: str) -> Optional[int]:
    match = FILE_VERSION_RE.search(filename or "")
    return int(match.group(1)) if match else None


def _family_query(entity_type: str, entity_id: str, base_name: str) -> dict:
    return {
        "entity_type": entity_type,
        "entity_id": entity_id,
        "name": {"$regex": "^" + re.escape(base_name) + r" - v\d+\.[A-Za-z0-9]+$"},
    }


async def ensure_file_indexes():
    await db.files.create_index(
        [("entity_type", 1), ("entity_id", 1), ("name", 1)],
        unique=True,
        name="uniq_entity_file_name"
    )
    await db.files.create_index([("entity_type", 1), ("entity_id", 1), ("family", 1), ("created_at", -1)])


async def list_family(entity_type: str, entity_id: str, base_name: str) -> List[dict]:
    """Versions existantes, la plus récente d'abord"""
    records = await db.files.find(
        _family_query(entity_type, entity_id, base_name),
        {"_id": 0}
    ).to_list(1000)
    records.sort(
        key=lambda r: (r.get("created_at") or "", parse_version(r.get("name")) or 0),
        reverse=True
    )
    return records


async def _evict(record: dict, actor: str):
    try:
        result = await db.files.delete_one({"id": record["id"]})
    except PyMongoError as e:
        raise DocumentVersionError(f"Failed to delete old version {record.get('name')}: {e}") from e

    if result.deleted_count != 1:
        logger.warning(f"[VERSIONS] Old version {record.get('name')} already removed from DB")

    storage_path = record.get("storage_path")
    if storage_path:
        try:
            deleted = await delete_blob(storage_path)
            if not deleted:
                logger.info(f"[VERSIONS] Blob already gone: {storage_path}")
        except BlobStorageError as e:
            logger.error(f"[VERSIONS] ORPHANED BLOB {storage_path} (record {record['id']} deleted): {e}")

    logger.info(f"[VERSIONS] Evicted {record.get('name')}")
    await log_event(
        action="file_version_evicted",
        entity_type="file",
        entity_id=record["id"],
        user=actor,
        details={"name": record.get("name"), "version": parse_version(record.get("name"))},
        related={"entity_type": record.get("entity_type"), "entity_id": record.get("entity_id")}
    )


async def next_version_and_prune(
    entity_id: str,
    entity_type: str,
    family_base: str,
    max_versions: Optional[int] = None,
    actor: str = "system"
) -> int:
    """
    Calcule la prochaine version de la famille et libère la place:
    si count >= max_versions, les (count - max_versions + 1) plus anciennes
    versions sont supprimées avant l'insertion de la nouvelle.
    """
    max_versions = max_versions or config.MAX_DOCUMENT_VERSIONS
    records = await list_family(entity_type, entity_id, family_base)

    versions = [v for v in (parse_version(r.get("name")) for r in records) if v]
    next_version = max(versions) + 1 if versions else 1

    if len(records) >= max_versions:
        to_evict = records[max_versions - 1:]
        logger.info(
            f"[VERSIONS] {family_base}: {len(records)} versions (max {max_versions}), "
            f"evicting {len(to_evict)}"
        )
        for record in reversed(to_evict):
            await _evict(record, actor)

    return next_version


async def record_file(metadata: dict) -> dict:
    doc = {
        "id": new_id(),
        "created_at": now_iso(),
        **metadata,
    }
    await db.files.insert_one(doc)
    doc.pop("_id", None)
    return doc


def _storage_path(entity_type: str, entity_id: str, family_label: str, filename: str) -> str:
    folder = ENTITY_FOLDERS.get(entity_type, entity_type.lower() + "s")
    family_slug = sanitize_name(family_label).lower().replace(" ", "-")
    timestamp = int(time.time() * 1000)
    return f"{folder}/{entity_id}/{family_slug}/{timestamp}_{filename}"


async def store_generated_file(
    entity_type: str,
    entity_id: str,
    reference: str,
    family_label: str,
    extension: str,
    data: bytes,
    description: str = "",
    created_by: str = "system",
    related: dict = None
) -> dict:
    """
    version -> éviction -> upload -> enregistrement, sous verrou par famille.
    Une DuplicateKeyError (autre process) déclenche UN recalcul, puis échec.
    "{version}" dans description est remplacé par le numéro attribué.
    """
    base = family_base_name(reference, family_label)
    extension = extension if extension.startswith(".") else "." + extension

    async with file_family_locks.hold((entity_type, entity_id, base)):
        for attempt in (1, 2):
            version = await next_version_and_prune(entity_id, entity_type, base, actor=created_by)
            filename = build_safe_filename(reference, family_label, version, extension)
            storage_path = _storage_path(entity_type, entity_id, family_label, filename)

            upload = await put_blob(storage_path, data, CONTENT_TYPES.get(extension, "application/octet-stream"))

            try:
                record = await record_file({
                    "name": filename,
                    "entity_id": entity_id,
                    "entity_type": entity_type,
                    "family": family_label,
                    "version": version,
                    "url": upload["url"],
                    "storage_path": upload["storage_path"],
                    "size": upload["size"],
                    "filetype": extension.lstrip("."),
                    "description": description.replace("{version}", str(version)),
                    "created_by": created_by,
                    "related": related or {},
                })
            except DuplicateKeyError as e:
                try:
                    await delete_blob(upload["storage_path"])
                except BlobStorageError as cleanup_error:
                    logger.error(f"[VERSIONS] ORPHANED BLOB {upload['storage_path']}: {cleanup_error}")
                if attempt == 1:
                    logger.warning(f"[VERSIONS] {filename} already exists, recomputing version")
                    continue
                raise DocumentVersionError(f"Version collision persists for {filename}") from e

            logger.info(f"[VERSIONS] Stored {filename} for {entity_type} {entity_id}")
            await log_event(
                action="file_version_created",
                entity_type="file",
                entity_id=record["id"],
                user=created_by,
                details={"name": filename, "version": version, "family": family_label, "size": upload["size"]},
                related={"entity_type": entity_type, "entity_id": entity_id, **(related or {})}
            )
            return record


async def list_files(entity_type: str, entity_id: str, family: Optional[str] = None, limit: int = 100) -> List[dict]:
    query = {"entity_type": entity_type.upper(), "entity_id": entity_id}
    if family:
        query["family"] = family
    return await db.files.find(query, {"_id": 0}).sort("created_at", -1).to_list(limit)
