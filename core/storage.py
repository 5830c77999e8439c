"""
Core Storage Utilities.

Wraps the Supabase Storage bucket that holds save files and avatars. Objects
live at `{user_id}/{file_name}` and carry a small user metadata map (only the
`label` key is used). Regular calls go through the synchronous storage3 client
in a worker thread; save uploads use Supabase's TUS resumable endpoint over
httpx so that byte-level progress can be reported.
"""
import asyncio
import base64
import json
import datetime
from typing import Any, Callable, Dict, List, Optional

import httpx
from storage3.utils import StorageException

from core.config import settings, logger as core_logger
from core.errors import StorageError, TransferFailed
from core.models import SaveFile, save_object_path

logger = core_logger.getChild("Storage")

ProgressCallback = Callable[[int, int], None]

# Placeholder object Supabase creates for empty "folders"
FOLDER_PLACEHOLDER = ".emptyFolderPlaceholder"


def _first_key(d: Dict[str, Any], *keys: str) -> Any:
    for k in keys:
        if k in d and d[k] is not None:
            return d[k]
    return None


def _parse_timestamp(value: Any) -> Optional[datetime.datetime]:
    if not value:
        return None
    if isinstance(value, datetime.datetime):
        return value
    try:
        return datetime.datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        logger.debug(f"Unparseable timestamp from storage: {value!r}")
        return None


def _encode_tus_metadata(values: Dict[str, str]) -> str:
    """Upload-Metadata header: comma separated `key base64(value)` pairs."""
    return ",".join(
        f"{key} {base64.b64encode(value.encode('utf-8')).decode('ascii')}"
        for key, value in values.items()
    )


def _save_file(name: str, info: Dict[str, Any], listing: Dict[str, Any]) -> SaveFile:
    """Builds a SaveFile from an `info` response, falling back to the folder listing entry."""
    listing_meta = listing.get("metadata") or {}
    custom = info.get("metadata") or info.get("user_metadata") or {}
    size = _first_key(info, "size", "content_length")
    if size is None:
        size = _first_key(listing_meta, "size", "contentLength") or 0
    return SaveFile(
        name=name,
        size=int(size),
        uploaded_at=_parse_timestamp(_first_key(info, "created_at", "last_modified") or listing.get("created_at")),
        label=str(custom.get("label") or ""),
        content_type=_first_key(info, "content_type", "mimetype") or listing_meta.get("mimetype"),
    )


class SaveObjectStore:
    """Object store for one bucket, addressed by `{user_id}/{file_name}` paths."""

    def __init__(self, client: Any, http_client: Optional[httpx.AsyncClient] = None,
                 bucket: str = settings.SAVE_STORAGE_BUCKET,
                 chunk_size: int = settings.RESUMABLE_CHUNK_SIZE):
        self._client = client
        self._http_client = http_client
        self.bucket = bucket
        self.chunk_size = chunk_size

    def _bucket(self) -> Any:
        return self._client.storage.from_(self.bucket)

    async def _call(self, description: str, fn: Callable[[], Any]) -> Any:
        """Runs a synchronous storage3 call in a thread, normalizing its errors."""
        try:
            return await asyncio.to_thread(fn)
        except StorageException as e:
            detail = e.args[0] if e.args else e
            message = detail.get("message", str(detail)) if isinstance(detail, dict) else str(detail)
            logger.error(f"Storage error during {description}: {message}", exc_info=False)
            raise StorageError(message) from e
        except httpx.HTTPError as e:
            logger.error(f"Network error during {description}: {e}", exc_info=False)
            raise StorageError(str(e)) from e

    # --- Listing & metadata ---------------------------------------------------

    async def list_entries(self, user_id: str) -> List[Dict[str, Any]]:
        """Raw listing of the user's folder: one dict per object, no per-object metadata calls."""
        items = await self._call(
            f"list {user_id}/",
            lambda: self._bucket().list(user_id, {"limit": 1000, "sortBy": {"column": "name", "order": "asc"}}),
        )
        # Sub-folders come back without an id
        return [
            item for item in items or []
            if item.get("name") and item.get("name") != FOLDER_PLACEHOLDER and item.get("id") is not None
        ]

    async def list_names(self, user_id: str) -> List[str]:
        return [item["name"] for item in await self.list_entries(user_id)]

    async def list_files(self, user_id: str) -> List[SaveFile]:
        """
        Lists the user's save files, including each object's custom metadata.
        When one object's metadata cannot be fetched it is still listed, built
        from the folder listing alone (no label).
        """
        files: List[SaveFile] = []
        for item in await self.list_entries(user_id):
            name = item["name"]
            try:
                files.append(await self.get_file(user_id, name, listing=item))
            except StorageError as e:
                logger.warning(f"[{user_id}] Metadata for '{name}' unavailable, using listing only: {e.message}")
                files.append(_save_file(name, {}, item))
        logger.debug(f"[{user_id}] Listed {len(files)} save files.")
        return files

    async def get_file(self, user_id: str, name: str, listing: Optional[Dict[str, Any]] = None) -> SaveFile:
        """Fetches metadata for one object (size, timestamps and the custom label)."""
        path = save_object_path(user_id, name)
        info = await self._call(f"info {path}", lambda: self._bucket().info(path))
        return _save_file(name, info or {}, listing or {})

    async def exists(self, path: str) -> bool:
        """False only when the store reports the object missing; other failures raise StorageError."""
        return bool(await self._call(f"exists {path}", lambda: self._bucket().exists(path)))

    # --- Transfers ------------------------------------------------------------

    async def upload(self, path: str, content: bytes, content_type: str = "application/octet-stream",
                     metadata: Optional[Dict[str, str]] = None) -> None:
        """Single-request upload, overwriting any object already at `path`."""
        file_options: Dict[str, Any] = {"content-type": content_type, "upsert": "true"}
        if metadata is not None:
            file_options["metadata"] = metadata
        await self._call(
            f"upload {path}",
            lambda: self._bucket().upload(path=path, file=content, file_options=file_options),
        )
        logger.info(f"Uploaded {len(content)} bytes to '{path}'.")

    async def upload_resumable(self, path: str, content: bytes, *, access_token: str,
                               content_type: str = "application/octet-stream",
                               metadata: Optional[Dict[str, str]] = None,
                               on_progress: Optional[ProgressCallback] = None) -> None:
        """
        Uploads through the TUS endpoint in fixed-size chunks, overwriting any
        existing object. `on_progress(bytes_transferred, total_bytes)` is called
        once before the first chunk and after every acknowledged chunk.
        Raises TransferFailed with the server's error text on failure.
        """
        if self._http_client is None:
            raise TransferFailed("Resumable upload requires an HTTP client.")
        if not settings.SUPABASE_URL:
            raise TransferFailed("Supabase URL not configured.")

        endpoint = f"{settings.SUPABASE_URL.rstrip('/')}/storage/v1/upload/resumable"
        total = len(content)
        base_headers = {
            "authorization": f"Bearer {access_token}",
            "apikey": settings.SUPABASE_KEY or "",
            "tus-resumable": "1.0.0",
            "x-upsert": "true",
        }
        upload_metadata = _encode_tus_metadata({
            "bucketName": self.bucket,
            "objectName": path,
            "contentType": content_type,
            "cacheControl": "3600",
            "metadata": json.dumps(metadata or {}),
        })

        def report(done: int):
            if on_progress:
                on_progress(done, total)

        try:
            create = await self._http_client.post(
                endpoint,
                headers={**base_headers, "upload-length": str(total), "upload-metadata": upload_metadata},
            )
            create.raise_for_status()
            location = create.headers.get("location")
            if not location:
                raise TransferFailed("Resumable upload was not assigned a location.")
            upload_url = httpx.URL(endpoint).join(location)
            logger.debug(f"Resumable upload for '{path}' created at {upload_url}.")

            offset = 0
            report(offset)
            while offset < total:
                chunk = content[offset:offset + self.chunk_size]
                response = await self._http_client.patch(
                    upload_url,
                    headers={
                        **base_headers,
                        "upload-offset": str(offset),
                        "content-type": "application/offset+octet-stream",
                    },
                    content=chunk,
                )
                response.raise_for_status()
                server_offset = int(response.headers.get("upload-offset", offset + len(chunk)))
                offset = max(offset, server_offset)
                report(offset)
        except httpx.HTTPStatusError as e:
            try: detail = e.response.json().get("message", e.response.text)
            except Exception: detail = e.response.text
            logger.error(f"Resumable upload of '{path}' rejected ({e.response.status_code}): {detail}")
            raise TransferFailed(f"{detail}") from e
        except httpx.RequestError as e:
            logger.error(f"Network error during resumable upload of '{path}': {e}")
            raise TransferFailed(str(e)) from e

        logger.info(f"Resumable upload of '{path}' finished ({total} bytes).")

    async def download(self, path: str) -> bytes:
        return await self._call(f"download {path}", lambda: self._bucket().download(path))

    async def create_signed_url(self, path: str, expires_in: int) -> str:
        result = await self._call(
            f"sign {path}", lambda: self._bucket().create_signed_url(path, expires_in)
        )
        url = _first_key(result or {}, "signedURL", "signedUrl", "signed_url")
        if not url:
            raise StorageError(f"No signed URL returned for '{path}'.")
        return str(url)

    async def remove(self, paths: List[str]) -> List[str]:
        """Deletes objects, returning the names the store reports as removed."""
        if not paths:
            return []
        removed = await self._call(f"remove {len(paths)} objects", lambda: self._bucket().remove(paths))
        names = [item.get("name") for item in removed or [] if isinstance(item, dict)]
        logger.info(f"Removed {len(names)} of {len(paths)} requested objects.")
        return names
