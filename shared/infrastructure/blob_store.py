"""
Blob storage for raw page HTML, block HTML/metadata and design token documents
"""
import json
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from shared.config import config
from shared.exceptions import ConfigurationError, StorageError
from shared.utils.logging import get_logger

logger = get_logger(__name__)


def page_html_key(site_id: str, page_id: str) -> str:
    return f"pages/{site_id}/{page_id}/html"


def block_html_key(site_id: str, block_id: str) -> str:
    return f"blocks/{site_id}/{block_id}/html"


def block_metadata_key(site_id: str, block_id: str) -> str:
    return f"blocks/{site_id}/{block_id}/metadata.json"


def design_tokens_key(site_id: str) -> str:
    return f"design-systems/{site_id}/tokens.json"


class BlobStore(ABC):
    """Key/value byte storage addressed by slash-separated keys"""

    @abstractmethod
    def put(self, key: str, data: bytes, content_type: str = 'application/octet-stream') -> None:
        ...

    @abstractmethod
    def get(self, key: str) -> Optional[bytes]:
        """Return the stored bytes or None when the key does not exist"""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Delete a key, returning whether it existed"""

    @abstractmethod
    def list_by_prefix(self, prefix: str) -> List[str]:
        ...

    def put_text(self, key: str, text: str, content_type: str = 'text/html; charset=utf-8') -> None:
        self.put(key, text.encode('utf-8'), content_type)

    def get_text(self, key: str) -> Optional[str]:
        data = self.get(key)
        return data.decode('utf-8', errors='replace') if data is not None else None

    def put_json(self, key: str, payload) -> None:
        self.put(key, json.dumps(payload, sort_keys=True).encode('utf-8'), 'application/json')

    def get_json(self, key: str):
        data = self.get(key)
        return json.loads(data) if data is not None else None

    def delete_prefix(self, prefix: str) -> int:
        """Delete every key under a prefix, returning how many were removed"""
        deleted = 0
        for key in self.list_by_prefix(prefix):
            if self.delete(key):
                deleted += 1
        return deleted


class InMemoryBlobStore(BlobStore):
    """Process-local blob store, used by tests and one-off runs"""

    def __init__(self):
        self._objects: Dict[str, Tuple[bytes, str]] = {}
        self._lock = threading.Lock()

    def put(self, key: str, data: bytes, content_type: str = 'application/octet-stream') -> None:
        with self._lock:
            self._objects[key] = (bytes(data), content_type)

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            entry = self._objects.get(key)
        return entry[0] if entry else None

    def content_type(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._objects.get(key)
        return entry[1] if entry else None

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._objects.pop(key, None) is not None

    def list_by_prefix(self, prefix: str) -> List[str]:
        with self._lock:
            return sorted(key for key in self._objects if key.startswith(prefix))


class FilesystemBlobStore(BlobStore):
    """
    Blob store backed by a local directory.

    Object bytes live under ``<root>/objects/<key>``; the content type is kept
    in a sidecar under ``<root>/meta/<key>.json``.
    """

    def __init__(self, root: str):
        self.root = Path(root).resolve()
        self.objects_dir = self.root / 'objects'
        self.meta_dir = self.root / 'meta'

    def _object_path(self, key: str) -> Path:
        if not key or key.startswith('/') or '..' in key.split('/'):
            raise StorageError("Invalid blob key", key=key)
        return self.objects_dir / key

    def put(self, key: str, data: bytes, content_type: str = 'application/octet-stream') -> None:
        path = self._object_path(key)
        meta_path = self.meta_dir / f"{key}.json"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            meta_path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
            meta_path.write_text(json.dumps({'content_type': content_type, 'size': len(data)}))
        except OSError as e:
            raise StorageError(f"Failed to write blob: {e}", key=key) from e

    def get(self, key: str) -> Optional[bytes]:
        path = self._object_path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Failed to read blob: {e}", key=key) from e

    def delete(self, key: str) -> bool:
        path = self._object_path(key)
        existed = path.exists()
        try:
            path.unlink(missing_ok=True)
            (self.meta_dir / f"{key}.json").unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to delete blob: {e}", key=key) from e
        return existed

    def list_by_prefix(self, prefix: str) -> List[str]:
        if not self.objects_dir.exists():
            return []
        keys = []
        for path in self.objects_dir.rglob('*'):
            if path.is_file():
                key = path.relative_to(self.objects_dir).as_posix()
                if key.startswith(prefix):
                    keys.append(key)
        return sorted(keys)


_blob_store: Optional[BlobStore] = None


def get_blob_store() -> BlobStore:
    """Blob store selected by configuration"""
    global _blob_store
    if _blob_store is None:
        if config.storage.backend == 'memory':
            _blob_store = InMemoryBlobStore()
        elif config.storage.backend == 'filesystem':
            _blob_store = FilesystemBlobStore(config.storage.root)
        else:
            raise ConfigurationError(f"Unknown blob backend: {config.storage.backend}")
        logger.info(f"Using {config.storage.backend} blob store")
    return _blob_store
