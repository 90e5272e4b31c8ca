"""
Storage clients.

The query path only needs ``get(key) -> bytes | None`` and ``exists(key)``;
the builder additionally calls ``put(key, data)``. Objects are immutable
snapshots, so no client here does any locking beyond what its backend needs.
Retries and timeouts live in the client, never in the callers.
"""

from __future__ import annotations

import os
import threading
from typing import Dict, Iterator, Optional, Protocol

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import StorageConfig, paths, storage as storage_cfg


class StorageClient(Protocol):
    def get(self, key: str) -> Optional[bytes]:
        ...

    def exists(self, key: str) -> bool:
        ...


class MemoryStorage:
    """Dict-backed storage, used for tests and dry runs."""

    def __init__(self, objects: Optional[Dict[str, bytes]] = None):
        self._objects: Dict[str, bytes] = dict(objects or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            return self._objects.get(key)

    def exists(self, key: str) -> bool:
        with self._lock:
            return key in self._objects

    def put(self, key: str, data: bytes) -> None:
        with self._lock:
            self._objects[key] = bytes(data)

    def delete(self, key: str) -> None:
        with self._lock:
            self._objects.pop(key, None)

    def keys(self) -> Iterator[str]:
        with self._lock:
            return iter(sorted(self._objects))


class LocalStorage:
    """Keys map to files under a root directory."""

    def __init__(self, root: Optional[str] = None):
        self.root = os.path.abspath(root or paths.store_dir)

    def _path(self, key: str) -> str:
        parts = key.split("/")
        if not key or key.startswith("/") or ".." in parts:
            raise ValueError(f"Invalid storage key: {key!r}")
        return os.path.join(self.root, *parts)

    def get(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        try:
            with open(path, "rb") as f:
                return f.read()
        except FileNotFoundError:
            return None

    def exists(self, key: str) -> bool:
        return os.path.isfile(self._path(key))

    def put(self, key: str, data: bytes) -> None:
        path = self._path(key)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        tmp_path = f"{path}.tmp"
        try:
            with open(tmp_path, "wb") as f:
                f.write(data)
            os.replace(tmp_path, path)
        except Exception:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise


class HttpStorage:
    """Read-only client for a bucket exposed over HTTP (public or pre-signed base URL)."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30,
        retries: int = 3,
        session: Optional[requests.Session] = None,
    ):
        if not base_url:
            raise ValueError("HttpStorage needs a base_url")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        if session is None:
            retry = Retry(
                total=retries,
                backoff_factor=0.5,
                status_forcelist=(429, 500, 502, 503, 504),
                allowed_methods=("GET", "HEAD"),
            )
            adapter = HTTPAdapter(max_retries=retry)
            self.session.mount("http://", adapter)
            self.session.mount("https://", adapter)

    def _url(self, key: str) -> str:
        return f"{self.base_url}/{key.lstrip('/')}"

    def get(self, key: str) -> Optional[bytes]:
        r = self.session.get(self._url(key), timeout=self.timeout)
        if r.status_code == 404:
            return None
        r.raise_for_status()
        return r.content

    def exists(self, key: str) -> bool:
        r = self.session.head(self._url(key), timeout=self.timeout)
        if r.status_code == 404:
            return False
        r.raise_for_status()
        return True


def open_storage(cfg: StorageConfig = storage_cfg, root: Optional[str] = None):
    """Create the storage client selected by configuration."""
    if cfg.backend == "local":
        return LocalStorage(root)
    if cfg.backend == "http":
        return HttpStorage(cfg.base_url, timeout=cfg.timeout, retries=cfg.retries)
    raise ValueError(f"Unknown storage backend: {cfg.backend!r}")
