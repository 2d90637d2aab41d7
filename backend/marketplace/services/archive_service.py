# Overview: Product archive export/import; ZIP folders holding product.json plus image files.

# backend/marketplace/services/archive_service.py
"""
Product Archives

LAYOUT (one folder per product):
    <slug>/product.json     manifest (schema_version 1, sorted keys)
    <slug>/img1.jpg         images, numbered by position in the image list
    <slug>/img2.png

The manifest carries every product column except id and timestamps, with
`images` listing file names inside the folder (or absolute URLs for images
that were not downloaded). Archives are deterministic: entries use a fixed
timestamp so exporting the same product twice gives identical bytes when
the images are unchanged.

PARTIAL FAILURE: a bad image or product never aborts the whole export or
import; it is reported per item.
"""
from __future__ import annotations

import io
import json
import os
import posixpath
import re
import zipfile
from dataclasses import dataclass, field
from urllib.parse import urlparse

import httpx
from flask import current_app

from ..models import Product
from ..validation import ValidationError, ConflictError, NotFoundError
from . import products_service
from .storage_service import EXTENSION_CONTENT_TYPES, StorageError, clean_path_segment, get_storage

SCHEMA_VERSION = 1
MANIFEST_NAME = "product.json"

# Fixed entry timestamp (earliest the ZIP format allows)
ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)

MANIFEST_FIELDS = (
    "slug", "title", "description", "price", "currency", "condition",
    "category", "brand", "payee_email", "checkout_link", "rating",
    "review_count", "reviews", "meta", "in_stock", "is_featured",
    "listed_by", "collections",
)

_REMOTE_RE = re.compile(r"^https?://", re.IGNORECASE)


def is_remote_url(value: str) -> bool:
    return bool(_REMOTE_RE.match(value or ""))


def image_extension(url: str) -> str:
    """Extension taken from the URL path; 'jpg' when missing or implausible."""
    path = urlparse(url).path
    ext = path.rsplit(".", 1)[-1] if "." in posixpath.basename(path) else ""
    if not ext or len(ext) > 10:
        return "jpg"
    return re.sub(r"[^a-zA-Z0-9]", "", ext) or "jpg"


def product_manifest(product: Product, images: list[str]) -> dict:
    data = product.to_dict()
    manifest = {k: data[k] for k in MANIFEST_FIELDS}
    manifest["images"] = images
    manifest["schema_version"] = SCHEMA_VERSION
    return manifest


def _write_entry(zf: zipfile.ZipFile, name: str, data: bytes) -> None:
    info = zipfile.ZipInfo(name, date_time=ZIP_EPOCH)
    info.compress_type = zipfile.ZIP_DEFLATED
    info.external_attr = 0o644 << 16
    zf.writestr(info, data)


# =============================================================================
# EXPORT
# =============================================================================

@dataclass
class ExportResult:
    data: bytes
    processed: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def _http_client() -> httpx.Client:
    return httpx.Client(
        timeout=current_app.config["IMAGE_FETCH_TIMEOUT"],
        follow_redirects=True,
        transport=current_app.extensions.get("http_transport"),
    )


def _download_images(client: httpx.Client, product: Product) -> tuple[list[str], list[tuple[str, bytes]]]:
    """Returns (manifest image names, files to write)."""
    names: list[str] = []
    files: list[tuple[str, bytes]] = []
    for index, url in enumerate(product.images or []):
        if not url:
            continue
        if not is_remote_url(url):
            names.append(url)
            continue
        try:
            resp = client.get(url)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            current_app.logger.warning("Skipping image %s for %s: %s", url, product.slug, exc)
            continue
        filename = f"img{index + 1}.{image_extension(url)}"
        names.append(filename)
        files.append((filename, resp.content))
    return names, files


def _add_product(zf: zipfile.ZipFile, client: httpx.Client, product: Product) -> None:
    names, files = _download_images(client, product)
    manifest = json.dumps(product_manifest(product, names), indent=2, sort_keys=True, ensure_ascii=False)
    _write_entry(zf, f"{product.slug}/{MANIFEST_NAME}", manifest.encode("utf-8"))
    for filename, content in files:
        _write_entry(zf, f"{product.slug}/{filename}", content)


def export_products(slugs) -> ExportResult:
    """
    Build one archive holding every requested product (drafts included).

    Unknown slugs are reported in `errors`; the caller decides what an
    empty result means.
    """
    if not isinstance(slugs, (list, tuple)) or not slugs:
        raise ValidationError("No product slugs provided")

    result = ExportResult(data=b"")
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf, _http_client() as client:
        for slug in slugs:
            if not isinstance(slug, str) or not slug.strip():
                result.errors.append(f"{slug!r}: invalid slug")
                continue
            product = products_service.get_product(slug.strip(), include_drafts=True)
            if product is None:
                result.errors.append(f"{slug}: Product not found")
                continue
            try:
                _add_product(zf, client, product)
            except Exception as exc:
                current_app.logger.exception("Failed to export product %s", slug)
                result.errors.append(f"{slug}: {exc}")
                continue
            result.processed.append(product.slug)

    result.data = buf.getvalue()
    current_app.logger.info(
        "Exported %d product(s), %d error(s)", len(result.processed), len(result.errors)
    )
    return result


def export_single_product(slug: str) -> bytes:
    if products_service.get_product(slug, include_drafts=True) is None:
        raise NotFoundError(f"Product not found: {slug}")
    return export_products([slug]).data


# =============================================================================
# IMPORT
# =============================================================================

@dataclass
class ImportItem:
    folder: str
    status: str  # imported | skipped | failed
    slug: str | None = None
    created: bool = False
    error: str | None = None
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        out = {"folder": self.folder, "status": self.status, "slug": self.slug}
        if self.status == "imported":
            out["created"] = self.created
        if self.error:
            out["error"] = self.error
        if self.warnings:
            out["warnings"] = list(self.warnings)
        return out


@dataclass
class ImportReport:
    results: list[ImportItem] = field(default_factory=list)

    def _count(self, status: str) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def imported(self) -> int:
        return self._count("imported")

    @property
    def skipped(self) -> int:
        return self._count("skipped")

    @property
    def failed(self) -> int:
        return self._count("failed")

    def to_dict(self) -> dict:
        return {
            "success": True,
            "imported": self.imported,
            "skipped": self.skipped,
            "failed": self.failed,
            "results": [r.to_dict() for r in self.results],
        }


class _ImportFailure(Exception):
    pass


def _normalize(name: str) -> str:
    return name.replace("\\", "/")


def _product_folders(entries: dict[str, zipfile.ZipInfo]) -> list[str]:
    folders = set()
    for name in entries:
        if name == MANIFEST_NAME:
            folders.add("")
        elif name.endswith("/" + MANIFEST_NAME):
            folders.add(name[: -len(MANIFEST_NAME) - 1])
    return sorted(folders)


def _find_image(entries: dict[str, zipfile.ZipInfo], folder: str, image: str) -> zipfile.ZipInfo | None:
    prefix = f"{folder}/" if folder else ""
    for candidate in (f"{prefix}{image}", f"{prefix}images/{image}", f"images/{image}"):
        if candidate in entries:
            return entries[candidate]
    return None


def _upload_images(zf, entries, folder: str, slug: str, images: list[str], storage) -> list[str]:
    """Sequential uploads to "<slug>/img<N><ext>"; remote URLs pass through."""
    urls = []
    max_bytes = current_app.config["MAX_UPLOAD_IMAGE_BYTES"]
    folder_key = clean_path_segment(slug)
    for index, image in enumerate(images):
        if is_remote_url(image):
            urls.append(image)
            continue
        entry = _find_image(entries, folder, image)
        if entry is None:
            raise _ImportFailure(f"Image file not found in ZIP: {image}")
        ext = os.path.splitext(entry.filename)[1].lower()
        if ext not in EXTENSION_CONTENT_TYPES:
            raise _ImportFailure(f"Unsupported image type: {image}. Allowed: jpeg, png, webp, gif")
        if entry.file_size > max_bytes:
            raise _ImportFailure(
                f"Image too large: {image}. Maximum size is {max_bytes // (1024 * 1024)}MB."
            )
        try:
            url = storage.upload(
                f"{folder_key}/img{index + 1}{ext}",
                zf.read(entry),
                EXTENSION_CONTENT_TYPES[ext],
                upsert=True,
            )
        except StorageError as exc:
            raise _ImportFailure(f"Failed to upload image {image}: {exc}") from exc
        urls.append(url)
    return urls


def _import_folder(zf, entries, folder: str, storage) -> ImportItem:
    item = ImportItem(folder=folder or ".", status="failed")
    prefix = f"{folder}/" if folder else ""
    try:
        manifest = json.loads(zf.read(entries[prefix + MANIFEST_NAME]).decode("utf-8"))
    except (ValueError, UnicodeDecodeError) as exc:
        item.error = f"Invalid JSON in {MANIFEST_NAME}: {exc}"
        return item
    if not isinstance(manifest, dict):
        item.error = f"{MANIFEST_NAME} must contain an object"
        return item

    version = manifest.pop("schema_version", SCHEMA_VERSION)
    if version != SCHEMA_VERSION:
        item.error = f"Unsupported schema_version: {version}"
        return item

    item.slug = manifest.get("slug") if isinstance(manifest.get("slug"), str) else None
    for required in ("slug", "checkout_link", "images"):
        if not manifest.get(required):
            item.status = "skipped"
            item.error = f"Missing required field: {required}"
            return item

    try:
        patch = products_service.validate_product_payload(manifest, creating=True)
        item.slug = patch["slug"]
        patch["images"] = _upload_images(zf, entries, folder, patch["slug"], patch["images"], storage)
        product, created, warnings = products_service.upsert_product(patch)
    except (ValidationError, ConflictError, _ImportFailure) as exc:
        item.error = str(exc)
        return item

    item.status = "imported"
    item.created = created
    item.warnings = warnings
    current_app.logger.info("Imported product %s (%s)", product.slug, "created" if created else "updated")
    return item


def import_products(zip_bytes: bytes, storage=None) -> ImportReport:
    """
    Import every folder in the archive that holds a product.json.

    Raises ValidationError when the archive itself is unusable (too large,
    not a ZIP, empty, or without any manifest).
    """
    max_bytes = current_app.config["MAX_IMPORT_ZIP_BYTES"]
    if not zip_bytes:
        raise ValidationError("ZIP file is empty")
    if len(zip_bytes) > max_bytes:
        raise ValidationError(f"ZIP file too large. Maximum size is {max_bytes // (1024 * 1024)}MB.")

    try:
        zf = zipfile.ZipFile(io.BytesIO(zip_bytes))
    except zipfile.BadZipFile as exc:
        raise ValidationError(f"Invalid ZIP file: {exc}")

    storage = storage or get_storage()
    report = ImportReport()
    with zf:
        entries = {_normalize(info.filename): info for info in zf.infolist() if not info.is_dir()}
        if not entries:
            raise ValidationError("ZIP file is empty")
        folders = _product_folders(entries)
        if not folders:
            raise ValidationError(
                "No product.json files found in ZIP. Each product should be in its own folder with a product.json file."
            )
        for folder in folders:
            item = _import_folder(zf, entries, folder, storage)
            if item.status != "imported":
                current_app.logger.warning("Import of %s %s: %s", item.folder, item.status, item.error)
            report.results.append(item)

    return report
