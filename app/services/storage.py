from httpx import AsyncClient, AsyncBaseTransport, HTTPError, InvalidURL, StreamError
from structlog import get_logger
from pathlib import PurePosixPath
from typing import Iterable, List, Optional
from urllib.parse import quote
import time

from app.services.progress import ProgressStream, UploadProgress

logger = get_logger()

CHUNK_SIZE = 64 * 1024

class StorageError(Exception):
    def __init__(self, key: str, message: str, status_code: int | None = None):
        super().__init__(message)
        self.key = key
        self.message = message
        self.status_code = status_code

def _safe_filename(filename: str | None) -> str:
    # Browsers may send full client paths; keep the last component only
    name = PurePosixPath((filename or "").replace("\\", "/")).name
    return name or "image"

def storage_keys(filenames: Iterable[str | None], now_ms: int | None = None) -> List[str]:
    """Build `<epoch-millis><filename>` keys for one batch.

    Two files in the same batch that would share a key get the next free millisecond.
    """
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    seen = set()
    keys = []
    for filename in filenames:
        name = _safe_filename(filename)
        offset = 0
        key = f"{stamp}{name}"
        while key in seen:
            offset += 1
            key = f"{stamp + offset}{name}"
        seen.add(key)
        keys.append(key)
    return keys

def _error_message(resp) -> str:
    try:
        body = resp.json()
    except Exception:
        body = None
    if isinstance(body, dict):
        msg = body.get("message") or body.get("error")
        if msg:
            return str(msg)
    snippet = (resp.text or "").strip()
    if len(snippet) > 200:
        snippet = snippet[:200] + "..."
    return snippet or f"HTTP {resp.status_code}"

class SupabaseObjectStore:
    """Uploads image bytes to a Supabase Storage bucket and hands back public URLs.

    The bucket enforces the per-file size cap; oversize files come back as 413.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        bucket: str,
        *,
        timeout: float = 60.0,
        transport: Optional[AsyncBaseTransport] = None,
    ):
        self._base = base_url.rstrip("/")
        self._api_key = api_key
        self._bucket = bucket
        self._timeout = timeout
        self._transport = transport

    def object_url(self, key: str) -> str:
        return f"{self._base}/storage/v1/object/{self._bucket}/{quote(key)}"

    def public_url(self, key: str) -> str:
        return f"{self._base}/storage/v1/object/public/{self._bucket}/{quote(key)}"

    async def upload(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str | None = None,
        progress: ProgressStream | None = None,
    ) -> str:
        total = len(data)

        async def body():
            sent = 0
            for start in range(0, total, CHUNK_SIZE):
                chunk = data[start:start + CHUNK_SIZE]
                yield chunk
                sent += len(chunk)
                if progress is not None:
                    progress.publish(UploadProgress(key=key, bytes_transferred=sent, total_bytes=total))

        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "apikey": self._api_key,
            "Content-Type": content_type or "application/octet-stream",
            "Content-Length": str(total),
            "x-upsert": "false",
        }
        try:
            async with AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(self.object_url(key), content=body(), headers=headers)
        except (HTTPError, InvalidURL, StreamError) as e:
            logger.error("Object store request failed", key=key, error=str(e))
            raise StorageError(key, f"{type(e).__name__}: {e}") from e

        if not 200 <= resp.status_code < 300:
            message = _error_message(resp)
            logger.warning("Object store rejected upload", key=key, status_code=resp.status_code, error=message)
            raise StorageError(key, message, status_code=resp.status_code)

        logger.info("Stored image", key=key, total_bytes=total)
        return self.public_url(key)
