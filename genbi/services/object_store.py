"""
Object Store
============

Storage capabilities the ingestion pipeline depends on, and the two
backends that provide them.

ObjectStore covers bucket listing/creation and object I/O. StorageAdmin
covers the privileged operations normally done server-side: provisioning
a bucket through the storage-manager function and attaching access
policies. Both backends implement both protocols.

Backends:
    LocalObjectStore   directories under `storage_directory`, one per bucket
    SupabaseStorage    Supabase Storage REST API, edge function and RPC over httpx

Every failure surfaces as StorageError carrying the HTTP-style status so
callers can tell "already exists" and "access denied" apart from the rest.
"""

import logging
import shutil
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol
from urllib.parse import quote

import aiofiles
import aiofiles.os
import httpx

from genbi.config import Settings, settings as default_settings
from genbi.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

_ACCESS_DENIED_MARKERS = ("row-level security", "permission denied", "unauthorized")
_CONFLICT_MARKERS = ("already exists", "duplicate")


class StorageError(Exception):
    """A storage call failed. status_code is 0 for transport failures."""

    def __init__(self, message: str, status_code: int = 0):
        self.message = message
        self.status_code = status_code
        super().__init__(f"[{status_code}] {message}" if status_code else message)

    @property
    def is_conflict(self) -> bool:
        return self.status_code == 409 or any(m in self.message.lower() for m in _CONFLICT_MARKERS)

    @property
    def is_access_denied(self) -> bool:
        return self.status_code in (401, 403) or any(
            m in self.message.lower() for m in _ACCESS_DENIED_MARKERS
        )

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404 or "not found" in self.message.lower()


class ObjectStore(Protocol):
    backend_name: str

    async def list_buckets(self) -> List[str]: ...

    async def create_bucket(self, name: str, *, public: bool = True) -> None: ...

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        *,
        content_type: Optional[str] = None,
        upsert: bool = False,
    ) -> str: ...

    async def download(self, bucket: str, path: str) -> bytes: ...

    async def remove(self, bucket: str, paths: List[str]) -> None: ...

    async def merge_chunks(
        self, bucket: str, path: str, chunk_paths: List[str], *, content_type: Optional[str] = None
    ) -> str: ...

    def public_url(self, bucket: str, path: str) -> str: ...


class StorageAdmin(Protocol):
    async def provision_bucket(self, name: str, *, public: bool = True) -> None: ...

    async def attach_policies(self, name: str) -> None: ...


# =============================================================================
# Local filesystem backend
# =============================================================================

class LocalObjectStore:
    """Buckets are directories under root; objects are files inside them."""

    backend_name = "local"

    def __init__(self, root: str, public_base_url: str):
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")

    def _bucket_dir(self, bucket: str) -> Path:
        bucket_dir = self.root / bucket
        if not bucket_dir.is_dir():
            raise StorageError(f"Bucket not found: {bucket}", status_code=404)
        return bucket_dir

    def _object_path(self, bucket: str, path: str) -> Path:
        parts = Path(path).parts
        if not parts or ".." in parts or Path(path).is_absolute():
            raise StorageError(f"Invalid object path: {path!r}", status_code=400)
        return self._bucket_dir(bucket) / path

    async def list_buckets(self) -> List[str]:
        if not self.root.exists():
            return []
        return sorted(p.name for p in self.root.iterdir() if p.is_dir())

    async def create_bucket(self, name: str, *, public: bool = True) -> None:
        bucket_dir = self.root / name
        if bucket_dir.exists():
            raise StorageError(f"Bucket {name} already exists", status_code=409)
        bucket_dir.mkdir(parents=True)
        logger.info("local_bucket_created", extra={"storage.bucket": name})

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        *,
        content_type: Optional[str] = None,
        upsert: bool = False,
    ) -> str:
        target = self._object_path(bucket, path)
        if target.exists() and not upsert:
            raise StorageError(f"The resource already exists: {path}", status_code=409)
        target.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(target, "wb") as out_file:
            await out_file.write(data)
        return self.public_url(bucket, path)

    async def download(self, bucket: str, path: str) -> bytes:
        target = self._object_path(bucket, path)
        if not target.is_file():
            raise StorageError(f"Object not found: {path}", status_code=404)
        async with aiofiles.open(target, "rb") as in_file:
            return await in_file.read()

    async def remove(self, bucket: str, paths: List[str]) -> None:
        for path in paths:
            target = self._object_path(bucket, path)
            if target.is_file():
                await aiofiles.os.remove(target)

    async def merge_chunks(
        self, bucket: str, path: str, chunk_paths: List[str], *, content_type: Optional[str] = None
    ) -> str:
        target = self._object_path(bucket, path)
        target.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(target, "wb") as out_file:
            for chunk_path in chunk_paths:
                source = self._object_path(bucket, chunk_path)
                if not source.is_file():
                    raise StorageError(f"Missing chunk: {chunk_path}", status_code=404)
                async with aiofiles.open(source, "rb") as in_file:
                    await out_file.write(await in_file.read())
        return self.public_url(bucket, path)

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self.public_base_url}/{bucket}/{quote(path)}"

    async def provision_bucket(self, name: str, *, public: bool = True) -> None:
        (self.root / name).mkdir(parents=True, exist_ok=True)

    async def attach_policies(self, name: str) -> None:
        # Filesystem buckets have no access policies
        return None

    def drop_bucket(self, name: str) -> None:
        """Remove a bucket and its contents. Test and maintenance helper."""
        shutil.rmtree(self.root / name, ignore_errors=True)


# =============================================================================
# Supabase backend
# =============================================================================

class SupabaseStorage:
    """Async client for Supabase Storage, the storage-manager function and policy RPCs."""

    backend_name = "supabase"

    def __init__(
        self,
        url: str,
        service_key: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = url.rstrip("/")
        self._service_key = service_key
        self._timeout = timeout
        self._transport = transport

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self._service_key}",
            "apikey": self._service_key,
        }
        headers.update(extra or {})
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Any] = None,
        content: Optional[bytes] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url, timeout=self._timeout, transport=self._transport
            ) as client:
                resp = await client.request(
                    method, path, json=json, content=content, headers=self._headers(headers)
                )
        except httpx.HTTPError as e:
            raise StorageError(f"{method} {path} failed: {e}") from e

        if resp.status_code >= 400:
            raise self._error_from_response(resp)
        return resp

    @staticmethod
    def _error_from_response(resp: httpx.Response) -> StorageError:
        status = resp.status_code
        try:
            body = resp.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            message = body.get("message") or body.get("error") or resp.text
            # Storage API reports the semantic status in the body ("409" on duplicates)
            body_status = str(body.get("statusCode", ""))
            if body_status.isdigit():
                status = int(body_status)
        else:
            message = resp.text or f"HTTP {resp.status_code}"
        return StorageError(str(message), status_code=status)

    @staticmethod
    def _object_ref(bucket: str, path: str) -> str:
        return f"{quote(bucket)}/{quote(path)}"

    async def list_buckets(self) -> List[str]:
        resp = await self._request("GET", "/storage/v1/bucket")
        return [b.get("name") or b.get("id") for b in resp.json()]

    async def create_bucket(self, name: str, *, public: bool = True) -> None:
        await self._request(
            "POST", "/storage/v1/bucket", json={"id": name, "name": name, "public": public}
        )

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        *,
        content_type: Optional[str] = None,
        upsert: bool = False,
    ) -> str:
        await self._request(
            "POST",
            f"/storage/v1/object/{self._object_ref(bucket, path)}",
            content=data,
            headers={
                "Content-Type": content_type or "application/octet-stream",
                "x-upsert": "true" if upsert else "false",
                "cache-control": "max-age=3600",
            },
        )
        return self.public_url(bucket, path)

    async def download(self, bucket: str, path: str) -> bytes:
        resp = await self._request("GET", f"/storage/v1/object/{self._object_ref(bucket, path)}")
        return resp.content

    async def remove(self, bucket: str, paths: List[str]) -> None:
        await self._request("DELETE", f"/storage/v1/object/{quote(bucket)}", json={"prefixes": paths})

    async def merge_chunks(
        self, bucket: str, path: str, chunk_paths: List[str], *, content_type: Optional[str] = None
    ) -> str:
        resp = await self._request(
            "POST",
            "/functions/v1/storage-manager",
            json={
                "action": "merge-chunks",
                "bucketName": bucket,
                "filePath": path,
                "chunks": chunk_paths,
                "contentType": content_type,
            },
        )
        data = resp.json() if resp.content else {}
        return (data or {}).get("url") or self.public_url(bucket, path)

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self._base_url}/storage/v1/object/public/{self._object_ref(bucket, path)}"

    async def provision_bucket(self, name: str, *, public: bool = True) -> None:
        resp = await self._request(
            "POST",
            "/functions/v1/storage-manager",
            json={"action": "create-bucket", "bucketName": name, "isPublic": public},
        )
        data = resp.json() if resp.content else {}
        if isinstance(data, dict) and data.get("success") is False:
            raise StorageError(data.get("message") or f"storage-manager could not create {name}")

    async def attach_policies(self, name: str) -> None:
        await self._request(
            "POST", "/rest/v1/rpc/create_public_storage_policies", json={"bucket_name": name}
        )


def build_object_store(config: Optional[Settings] = None):
    """Object store for the configured backend."""
    config = config or default_settings
    if config.storage_backend == "supabase":
        if not (config.supabase_url and config.supabase_service_key):
            raise ConfigurationError("Supabase backend selected without URL/service key")
        return SupabaseStorage(
            config.supabase_url, config.supabase_service_key, timeout=config.storage_timeout_s
        )
    return LocalObjectStore(config.storage_directory, config.public_base_url)
