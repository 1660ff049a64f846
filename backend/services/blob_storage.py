"""
RFP CRM - Blob storage

put_blob(path, data) -> {url, storage_path, size, backend}
- BunnyCDN (Storage API, PUT + AccessKey) si BUNNY_STORAGE_ZONE/BUNNY_API_KEY
- sinon disque local sous LOCAL_STORAGE_DIR, servi par /static

delete_blob(path): True si supprimé, False si déjà absent (404),
BlobStorageError sinon.
"""

import asyncio
import logging
from pathlib import Path

import httpx

import config

logger = logging.getLogger("blob_storage")


class BlobStorageError(Exception):
    """Upload / suppression impossible côté stockage"""
    pass


def _http_client(timeout: float) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=timeout)


def bunny_enabled() -> bool:
    return bool(config.BUNNY_STORAGE_ZONE and config.BUNNY_API_KEY)


def _bunny_storage_url(storage_path: str) -> str:
    return f"https://{config.BUNNY_STORAGE_HOST}/{config.BUNNY_STORAGE_ZONE}/{storage_path}"


def _public_url(storage_path: str) -> str:
    if bunny_enabled():
        base = config.BUNNY_CDN_URL or f"https://{config.BUNNY_STORAGE_ZONE}.b-cdn.net"
        return f"{base}/{storage_path}"
    return f"{config.LOCAL_STORAGE_URL}/{storage_path}"


def _local_path(storage_path: str) -> Path:
    root = Path(config.LOCAL_STORAGE_DIR).resolve()
    target = (root / storage_path).resolve()
    if root != target and root not in target.parents:
        raise BlobStorageError(f"Invalid storage path: {storage_path}")
    return target


def _write_local(target: Path, data: bytes) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(data)


async def put_blob(storage_path: str, data: bytes, content_type: str = "application/octet-stream") -> dict:
    storage_path = storage_path.lstrip("/")

    if bunny_enabled():
        try:
            async with _http_client(config.UPLOAD_TIMEOUT_SECONDS) as client:
                resp = await client.put(
                    _bunny_storage_url(storage_path),
                    content=data,
                    headers={"AccessKey": config.BUNNY_API_KEY, "Content-Type": content_type}
                )
        except httpx.HTTPError as e:
            raise BlobStorageError(f"Upload failed for {storage_path}: {e}") from e
        if resp.status_code not in (200, 201):
            raise BlobStorageError(f"Upload failed for {storage_path}: HTTP {resp.status_code} {resp.text[:200]}")
        backend = "bunny"
    else:
        try:
            await asyncio.to_thread(_write_local, _local_path(storage_path), data)
        except OSError as e:
            raise BlobStorageError(f"Local write failed for {storage_path}: {e}") from e
        backend = "local"

    logger.info(f"[BLOB] Stored {storage_path} ({len(data)} bytes, {backend})")
    return {
        "url": _public_url(storage_path),
        "storage_path": storage_path,
        "size": len(data),
        "backend": backend,
    }


async def delete_blob(storage_path: str) -> bool:
    storage_path = (storage_path or "").lstrip("/")
    if not storage_path:
        return False

    if bunny_enabled():
        try:
            async with _http_client(config.UPLOAD_TIMEOUT_SECONDS) as client:
                resp = await client.delete(
                    _bunny_storage_url(storage_path),
                    headers={"AccessKey": config.BUNNY_API_KEY}
                )
        except httpx.HTTPError as e:
            raise BlobStorageError(f"Delete failed for {storage_path}: {e}") from e
        if resp.status_code == 404:
            return False
        if resp.status_code not in (200, 204):
            raise BlobStorageError(f"Delete failed for {storage_path}: HTTP {resp.status_code}")
        return True

    target = _local_path(storage_path)
    try:
        await asyncio.to_thread(target.unlink)
    except FileNotFoundError:
        return False
    except OSError as e:
        raise BlobStorageError(f"Local delete failed for {storage_path}: {e}") from e
    return True
