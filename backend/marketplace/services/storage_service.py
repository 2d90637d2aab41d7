# Overview: Object storage client for product images (hosted bucket REST API over httpx).

from __future__ import annotations

import os
from urllib.parse import quote

import httpx
from flask import current_app

from ..validation import ValidationError

ALLOWED_IMAGE_TYPES = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/gif": ".gif",
}

EXTENSION_CONTENT_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
    ".gif": "image/gif",
}


class StorageError(RuntimeError):
    """Storage service rejected a request or could not be reached."""


class StorageTimeout(StorageError):
    """Upload did not finish within STORAGE_UPLOAD_TIMEOUT."""


class ObjectStorage:
    """
    Client for the hosted bucket.

    Object keys are "<product-slug>/<filename>". Uploads always overwrite
    (x-upsert), so re-running an import or re-uploading an image is safe.
    """

    def __init__(
        self,
        *,
        base_url: str,
        bucket: str,
        service_key: str,
        timeout: float = 100.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.bucket = bucket
        self.service_key = service_key
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_config(cls, config, transport: httpx.BaseTransport | None = None) -> "ObjectStorage":
        return cls(
            base_url=config["STORAGE_URL"],
            bucket=config["STORAGE_BUCKET"],
            service_key=config["SERVICE_ROLE_KEY"],
            timeout=config["STORAGE_UPLOAD_TIMEOUT"],
            transport=transport,
        )

    @property
    def configured(self) -> bool:
        return bool(self.base_url and self.service_key)

    def _client(self) -> httpx.Client:
        if not self.configured:
            raise StorageError("Storage is not configured. Set STORAGE_URL and SERVICE_ROLE_KEY")
        return httpx.Client(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {self.service_key}",
                "apikey": self.service_key,
            },
            timeout=self.timeout,
            transport=self.transport,
        )

    @staticmethod
    def _key(path: str) -> str:
        return quote(path.lstrip("/"), safe="/")

    def upload(self, path: str, data: bytes, content_type: str, *, upsert: bool = True) -> str:
        """Store `data` at `path`; returns the object's public URL."""
        try:
            with self._client() as client:
                resp = client.post(
                    f"/object/{self.bucket}/{self._key(path)}",
                    content=data,
                    headers={
                        "Content-Type": content_type,
                        "x-upsert": "true" if upsert else "false",
                        "cache-control": "3600",
                    },
                )
        except httpx.TimeoutException as exc:
            raise StorageTimeout(f"Upload of {path} timed out") from exc
        except httpx.HTTPError as exc:
            raise StorageError(f"Upload of {path} failed: {exc}") from exc

        if resp.status_code >= 400:
            raise StorageError(f"Upload of {path} failed: {resp.status_code} {resp.text}")
        return self.public_url(path)

    def public_url(self, path: str) -> str:
        return f"{self.base_url}/object/public/{self.bucket}/{self._key(path)}"

    def list(self, folder: str) -> list[dict]:
        """Objects directly under `folder`, as returned by the service (each has a "name")."""
        try:
            with self._client() as client:
                resp = client.post(
                    f"/object/list/{self.bucket}",
                    json={
                        "prefix": folder.strip("/"),
                        "limit": 100,
                        "offset": 0,
                        "sortBy": {"column": "name", "order": "asc"},
                    },
                )
        except httpx.HTTPError as exc:
            raise StorageError(f"Listing {folder} failed: {exc}") from exc

        if resp.status_code >= 400:
            raise StorageError(f"Listing {folder} failed: {resp.status_code} {resp.text}")
        entries = resp.json()
        return entries if isinstance(entries, list) else []


def get_storage() -> ObjectStorage:
    return current_app.extensions["storage"]


def clean_path_segment(value: str) -> str:
    """Keep storage keys to [a-z0-9_-]."""
    cleaned = "".join(ch if ch.isalnum() or ch in "-_" else "-" for ch in (value or "").strip().lower())
    return cleaned.strip("-") or "product"


def content_type_for(filename: str) -> str:
    ext = os.path.splitext(filename or "")[1].lower()
    return EXTENSION_CONTENT_TYPES.get(ext, "application/octet-stream")


def upload_product_image(slug: str, filename: str, data: bytes, content_type: str | None, storage=None) -> str:
    """
    Admin image upload: checks type and size, stores under "<slug>/<filename>".

    Raises ValidationError for bad input, StorageTimeout / StorageError from
    the service.
    """
    if not slug or not str(slug).strip():
        raise ValidationError("slug is required")
    if not data:
        raise ValidationError("file is required")

    max_bytes = current_app.config["MAX_UPLOAD_IMAGE_BYTES"]
    if len(data) > max_bytes:
        raise ValidationError(f"File too large. Maximum size is {max_bytes // (1024 * 1024)}MB")

    content_type = (content_type or content_type_for(filename)).split(";")[0].strip().lower()
    if content_type not in ALLOWED_IMAGE_TYPES:
        raise ValidationError("Invalid file type. Allowed: JPEG, PNG, WEBP, GIF")

    base, ext = os.path.splitext(os.path.basename(filename or ""))
    ext = ext.lower() if ext.lower() in EXTENSION_CONTENT_TYPES else ALLOWED_IMAGE_TYPES[content_type]
    name = f"{clean_path_segment(base) if base else 'image'}{ext}"
    path = f"{clean_path_segment(slug)}/{name}"

    storage = storage or get_storage()
    url = storage.upload(path, data, content_type, upsert=True)
    current_app.logger.info("Uploaded image %s (%d bytes)", path, len(data))
    return url
