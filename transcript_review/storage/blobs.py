"""Blob store contract, a local-filesystem implementation, and key resolution.

WHY: Audio uploads and generated peak envelopes live in object storage.
The pipeline only needs a handful of operations (exists, download,
upload with metadata, public URL, delete) and must be able to recover an
object key from whatever URL form the upload path recorded.

HOW: LocalBlobStore maps object keys to files under a root directory and
keeps per-object metadata (content type, cache control, public flag) in
JSON sidecars under ``<root>/.meta``. resolve_storage_path() recognises
the three URL shapes the upload path can produce.

RULES:
- Keys are relative POSIX paths; absolute keys and ".." are rejected
- download() raises NotFoundError for a missing object
- delete() tolerates a missing object (returns False)
- Filesystem failures surface as StorageError
- resolve_storage_path() returns None when no key can be derived
"""

from __future__ import annotations

import json
import logging
import re
import shutil
from pathlib import Path, PurePosixPath
from typing import Any, Dict, Optional, Protocol, Union
from urllib.parse import quote, unquote, urlparse

from transcript_review.config import BLOB_PUBLIC_BASE_URL, BLOB_ROOT
from transcript_review.errors import NotFoundError, StorageError, ValidationError

logger = logging.getLogger(__name__)

_META_DIR = ".meta"
_OBJECT_PATH = re.compile(r"^(?:/v0)?/b/[^/]+/o/(.+)$")


class BlobStore(Protocol):
    """What the pipeline needs from object storage."""

    def exists(self, key: str) -> bool: ...

    def download(self, key: str, dest: Path) -> Path: ...

    def upload(
        self,
        key: str,
        data: Union[bytes, str],
        content_type: str,
        cache_control: Optional[str] = None,
    ) -> None: ...

    def make_public(self, key: str) -> str: ...

    def delete(self, key: str) -> bool: ...


def resolve_storage_path(url: str) -> Optional[str]:
    """Derive the object key from an audio URL.

    Supported shapes:
    - ``gs://bucket/path/to/file`` (any non-HTTP scheme)
    - ``https://host/v0/b/bucket/o/path%2Fto%2Ffile?alt=media``, key
      URL-encoded after ``/b/<bucket>/o/``
    - ``https://host/bucket/path/to/file``, key as literal path after
      the bucket name

    Returns None when the URL has none of these shapes.
    """
    if not url:
        return None
    parsed = urlparse(url.strip())
    if not parsed.scheme:
        return None

    if parsed.scheme in ("http", "https"):
        path = parsed.path
        match = _OBJECT_PATH.match(path)
        if match:
            return unquote(match.group(1))
        parts = path.lstrip("/").split("/", 1)
        if len(parts) < 2 or not parts[1]:
            return None
        return unquote(parts[1])

    if not parsed.netloc:
        return None
    key = unquote(parsed.path.lstrip("/"))
    return key or None


class LocalBlobStore:
    """Object storage backed by a local directory.

    RULES:
    - The root directory is created lazily on first write
    - public_url(key) is "{public_base_url}/{key}" with the key URL-quoted
    """

    def __init__(
        self,
        root: Union[str, Path] = BLOB_ROOT,
        public_base_url: str = BLOB_PUBLIC_BASE_URL,
    ) -> None:
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def _path(self, key: str) -> Path:
        posix = PurePosixPath(key)
        if not key or posix.is_absolute() or ".." in posix.parts or posix.parts[0] == _META_DIR:
            raise ValidationError("Invalid object key: {!r}".format(key))
        return self.root.joinpath(*posix.parts)

    def _meta_path(self, key: str) -> Path:
        return self.root / _META_DIR / (self._path(key).relative_to(self.root).as_posix() + ".json")

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def download(self, key: str, dest: Path) -> Path:
        """Copy an object to a local path and return that path."""
        src = self._path(key)
        if not src.is_file():
            raise NotFoundError("Object not found: {}".format(key))
        dest = Path(dest)
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(src, dest)
        except OSError as exc:
            raise StorageError("Failed to download {}: {}".format(key, exc)) from exc
        return dest

    def read(self, key: str) -> bytes:
        src = self._path(key)
        if not src.is_file():
            raise NotFoundError("Object not found: {}".format(key))
        try:
            return src.read_bytes()
        except OSError as exc:
            raise StorageError("Failed to read {}: {}".format(key, exc)) from exc

    def upload(
        self,
        key: str,
        data: Union[bytes, str],
        content_type: str,
        cache_control: Optional[str] = None,
    ) -> None:
        """Write an object together with its metadata."""
        target = self._path(key)
        payload = data.encode("utf-8") if isinstance(data, str) else data
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(payload)
            self._write_meta(key, {
                "content_type": content_type,
                "cache_control": cache_control,
                "public": False,
            })
        except OSError as exc:
            raise StorageError("Failed to upload {}: {}".format(key, exc)) from exc
        logger.info("Stored object %s (%d bytes, %s)", key, len(payload), content_type)

    def metadata(self, key: str) -> Dict[str, Any]:
        meta_path = self._meta_path(key)
        if not meta_path.is_file():
            return {}
        try:
            return json.loads(meta_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise StorageError("Failed to read metadata for {}: {}".format(key, exc)) from exc

    def make_public(self, key: str) -> str:
        """Mark an object public and return its public URL."""
        if not self.exists(key):
            raise NotFoundError("Object not found: {}".format(key))
        meta = self.metadata(key)
        meta["public"] = True
        try:
            self._write_meta(key, meta)
        except OSError as exc:
            raise StorageError("Failed to publish {}: {}".format(key, exc)) from exc
        return self.public_url(key)

    def public_url(self, key: str) -> str:
        return "{}/{}".format(self.public_base_url, quote(key))

    def delete(self, key: str) -> bool:
        """Delete an object. Returns False if it was already absent."""
        target = self._path(key)
        if not target.is_file():
            return False
        try:
            target.unlink()
            meta_path = self._meta_path(key)
            if meta_path.is_file():
                meta_path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise StorageError("Failed to delete {}: {}".format(key, exc)) from exc
        logger.info("Deleted object %s", key)
        return True

    def _write_meta(self, key: str, meta: Dict[str, Any]) -> None:
        meta_path = self._meta_path(key)
        meta_path.parent.mkdir(parents=True, exist_ok=True)
        meta_path.write_text(json.dumps(meta), encoding="utf-8")
