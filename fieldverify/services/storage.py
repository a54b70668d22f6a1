"""
Object Storage Backends
=======================
Uniform interface for case photos and report PDFs, with pluggable backends.

Backends:
  - CloudinaryStore: unsigned preset uploads plus a server-side proxy for
    deletions and PDF uploads (production default).
  - S3Store: AWS S3 / S3-compatible buckets served from a public base URL.
  - LocalFSStore: local filesystem served under ``/media`` (development,
    tests, single-node installs).

Every object is addressed by the public URL the backend returned for it;
deletion takes that URL back. Remote failures surface as
``TransientRemoteError`` so callers decide whether to retry or log.
"""

from __future__ import annotations

import abc
import base64
import logging
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import boto3
import httpx
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from fieldverify.core.config import settings
from fieldverify.core.errors import TransientRemoteError
from fieldverify.services.http import http_client

logger = logging.getLogger(__name__)

PdfUploader = Callable[[bytes, str, str], str]


def format_context(context: Dict[str, object]) -> str:
    """Render photo metadata as ``key=value|key=value`` (pipes in values become commas)."""
    parts = []
    for key, value in context.items():
        if value is None or value == "":
            continue
        parts.append(f"{key}={str(value).replace('|', ',')}")
    return "|".join(parts)


class ObjectStore(abc.ABC):
    """Storage for evidence photos and generated report PDFs."""

    name = "abstract"

    @abc.abstractmethod
    def upload_image(
        self, data: bytes, *, folder: str, filename: str, context: Optional[Dict[str, object]] = None
    ) -> str:
        """Store an image and return its public URL."""

    @abc.abstractmethod
    def delete_url(self, url: str, resource_type: str = "image") -> bool:
        """Delete the object behind *url*. Returns False if nothing was deleted."""

    def open_url(self, url: str) -> Optional[bytes]:
        """Read an object this backend serves without going over HTTP, if it can."""
        return None

    @abc.abstractmethod
    def pdf_uploaders(self) -> List[Tuple[str, PdfUploader]]:
        """
        Ordered PDF upload paths as ``(name, fn(data, folder, public_id) -> url)``.

        The first path is primary and retried with backoff; the rest are
        single-shot fallbacks.
        """


# ---------------------------------------------------------------------------
# Cloudinary
# ---------------------------------------------------------------------------


class CloudinaryStore(ObjectStore):
    name = "cloudinary"

    def __init__(
        self,
        cloud_name: Optional[str] = None,
        upload_preset: Optional[str] = None,
        api_base: Optional[str] = None,
        proxy_url: Optional[str] = None,
    ):
        self.cloud_name = cloud_name or settings.cloudinary_cloud_name
        self.upload_preset = upload_preset or settings.cloudinary_upload_preset
        self.api_base = (api_base or settings.cloudinary_api_base).rstrip("/")
        self.proxy_url = (proxy_url if proxy_url is not None else settings.upload_proxy_url).rstrip("/")

    def _endpoint(self, resource_type: str) -> str:
        return f"{self.api_base}/{self.cloud_name}/{resource_type}/upload"

    @staticmethod
    def _secure_url(resp: httpx.Response, what: str) -> str:
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        if resp.is_success and body.get("secure_url"):
            return body["secure_url"]
        message = (body.get("error") or {}).get("message")
        raise TransientRemoteError(
            f"{what} upload failed: {message or f'HTTP {resp.status_code}'}",
            status=resp.status_code,
        )

    def upload_image(self, data, *, folder, filename, context=None):
        form = {"upload_preset": self.upload_preset, "folder": folder}
        rendered = format_context(context or {})
        if rendered:
            form["context"] = rendered
        try:
            with http_client(timeout=settings.upload_timeout) as client:
                resp = client.post(
                    self._endpoint("image"),
                    data=form,
                    files={"file": (filename, data, "image/jpeg")},
                )
        except httpx.HTTPError as exc:
            raise TransientRemoteError(f"Image upload failed: {exc}") from exc
        return self._secure_url(resp, "Image")

    def delete_url(self, url, resource_type="image"):
        if "cloudinary" not in url:
            return False
        if not self.proxy_url:
            logger.warning("No upload proxy configured; cannot delete %s", url)
            return False
        try:
            with http_client() as client:
                resp = client.post(
                    f"{self.proxy_url}/cloudinary/destroy-from-url",
                    json={"url": url, "resource_type": resource_type},
                )
                resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise TransientRemoteError(f"Delete of {url} failed: {exc}") from exc
        return True

    def upload_pdf_via_proxy(self, data: bytes, folder: str, public_id: str) -> str:
        if not self.proxy_url:
            raise TransientRemoteError("No upload proxy configured")
        try:
            with http_client(timeout=settings.upload_timeout) as client:
                resp = client.post(
                    f"{self.proxy_url}/cloudinary/upload-pdf",
                    json={
                        "base64": base64.b64encode(data).decode("ascii"),
                        "public_id": public_id,
                        "folder": folder,
                    },
                )
        except httpx.HTTPError as exc:
            raise TransientRemoteError(f"Proxy PDF upload failed: {exc}") from exc
        if not resp.is_success:
            raise TransientRemoteError(f"Proxy PDF upload failed: HTTP {resp.status_code}")
        try:
            payload = resp.json()
        except ValueError:
            payload = {}
        result = (payload.get("result") if isinstance(payload, dict) else None) or {}
        if not result.get("secure_url"):
            raise TransientRemoteError(f"Proxy PDF upload returned no URL: {resp.text[:200]}")
        return result["secure_url"]

    def upload_pdf_direct(self, data: bytes, folder: str, public_id: str) -> str:
        try:
            with http_client(timeout=settings.upload_timeout) as client:
                resp = client.post(
                    self._endpoint("raw"),
                    data={
                        "upload_preset": self.upload_preset,
                        "folder": folder,
                        "public_id": public_id,
                        "resource_type": "raw",
                    },
                    files={"file": (f"{public_id}.pdf", data, "application/pdf")},
                )
        except httpx.HTTPError as exc:
            raise TransientRemoteError(f"Direct PDF upload failed: {exc}") from exc
        return self._secure_url(resp, "PDF")

    def pdf_uploaders(self):
        return [("proxy", self.upload_pdf_via_proxy), ("direct", self.upload_pdf_direct)]


# ---------------------------------------------------------------------------
# S3
# ---------------------------------------------------------------------------


class S3Store(ObjectStore):
    name = "s3"

    def __init__(self, bucket: Optional[str] = None, public_base_url: Optional[str] = None, client=None):
        self.bucket = bucket or settings.s3_bucket
        self.public_base_url = (public_base_url or settings.s3_public_base_url).rstrip("/")
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client(
                "s3",
                endpoint_url=settings.s3_endpoint_url,
                aws_access_key_id=settings.s3_access_key,
                aws_secret_access_key=settings.s3_secret_key,
                region_name=settings.s3_region,
                config=BotoConfig(
                    signature_version="s3v4",
                    connect_timeout=5,
                    read_timeout=int(settings.upload_timeout),
                    retries={"max_attempts": 1},
                ),
            )
        return self._client

    def _put(self, key: str, data: bytes, content_type: str, metadata: Optional[Dict[str, str]] = None) -> str:
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                Metadata=metadata or {},
            )
        except (ClientError, BotoCoreError) as exc:
            raise TransientRemoteError(f"S3 put of {key} failed: {exc}") from exc
        return f"{self.public_base_url}/{key}"

    def upload_image(self, data, *, folder, filename, context=None):
        metadata = {"context": format_context(context or {})} if context else None
        return self._put(f"{folder}/{filename}", data, "image/jpeg", metadata)

    def delete_url(self, url, resource_type="image"):
        prefix = self.public_base_url + "/"
        if not url.startswith(prefix):
            return False
        key = url[len(prefix):]
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            raise TransientRemoteError(f"S3 delete of {key} failed: {exc}") from exc
        return True

    def upload_pdf(self, data: bytes, folder: str, public_id: str) -> str:
        return self._put(f"{folder}/{public_id}.pdf", data, "application/pdf")

    def pdf_uploaders(self):
        return [("s3", self.upload_pdf)]


# ---------------------------------------------------------------------------
# Local filesystem
# ---------------------------------------------------------------------------


class LocalFSStore(ObjectStore):
    name = "local"

    def __init__(self, root: Optional[str] = None, base_url: Optional[str] = None):
        self.root = Path(root or settings.local_store_root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        self.base_url = (base_url or settings.local_store_base_url).rstrip("/")

    def _resolve(self, key: str) -> Path:
        # Prevent directory traversal
        resolved = (self.root / key).resolve()
        if not str(resolved).startswith(str(self.root)):
            raise ValueError(f"Key escapes store root: {key}")
        return resolved

    def _write(self, key: str, data: bytes) -> str:
        path = self._resolve(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return f"{self.base_url}/{key}"

    def upload_image(self, data, *, folder, filename, context=None):
        return self._write(f"{folder}/{filename}", data)

    def delete_url(self, url, resource_type="image"):
        prefix = self.base_url + "/"
        if not url.startswith(prefix):
            return False
        path = self._resolve(url[len(prefix):])
        if path.exists():
            path.unlink()
            return True
        return False

    def open_url(self, url):
        prefix = self.base_url + "/"
        if not url.startswith(prefix):
            return None
        path = self._resolve(url[len(prefix):])
        return path.read_bytes() if path.exists() else None

    def upload_pdf(self, data: bytes, folder: str, public_id: str) -> str:
        return self._write(f"{folder}/{public_id}.pdf", data)

    def pdf_uploaders(self):
        return [("local", self.upload_pdf)]


# ---------------------------------------------------------------------------
# Factory and helpers
# ---------------------------------------------------------------------------

_store: Optional[ObjectStore] = None


def get_store() -> ObjectStore:
    """Return the configured backend (singleton)."""
    global _store
    if _store is None:
        backend = settings.storage_backend.lower()
        if backend == "cloudinary":
            _store = CloudinaryStore()
        elif backend == "s3":
            _store = S3Store()
        elif backend == "local":
            _store = LocalFSStore()
        else:
            raise ValueError(f"Unknown storage backend: {settings.storage_backend}")
        logger.info("Object store: %s", _store.name)
    return _store


def set_store(store: Optional[ObjectStore]) -> None:
    """Swap the active backend (tests, CLI)."""
    global _store
    _store = store


def read_uri(uri: str) -> bytes:
    """Fetch the bytes behind a remote URL or a staged local path."""
    if uri.startswith("http"):
        try:
            with http_client() as client:
                resp = client.get(uri)
                resp.raise_for_status()
                return resp.content
        except httpx.HTTPError as exc:
            raise TransientRemoteError(f"Fetch of {uri} failed: {exc}") from exc
    path = Path(uri[len("file://"):] if uri.startswith("file://") else uri)
    return path.read_bytes()
