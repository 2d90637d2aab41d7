# Overview: Service-layer operations for products; encapsulates catalog business logic and database work.

# backend/marketplace/services/products_service.py
"""
Products Service

SLUG-KEYED: every operation addresses a product by slug. The slug is also
the storage folder for the product's images and the folder name inside
product archives.

FEATURED CAP:
At most FEATURED_PRODUCT_LIMIT products are featured at once. Featuring is a
single conditional UPDATE whose WHERE clause counts the currently featured
rows, so two concurrent requests cannot both take the last slot.
"""
from __future__ import annotations

import re

from flask import current_app
from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import aliased

from ..extensions import db
from ..models import Product
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
    strip_blank_values,
    parse_price_cents,
    ValidationError,
    ConflictError,
    NotFoundError,
)
from .concurrency import execute_conditional_update
from .storage_service import get_storage
from marketplace.time_utils import utcnow

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "slug", "title", "description", "price_cents", "currency",
        "condition", "category", "brand", "images", "payee_email",
        "checkout_link", "rating", "review_count", "reviews", "meta",
        "in_stock", "is_featured", "listed_by", "collections",
    },
    required_on_create={
        "slug", "title", "price_cents", "images", "checkout_link",
        "collections", "listed_by",
    },
    ignored_fields={"id", "created_at", "updated_at", "published"},
)

# NOT NULL text columns that may be left out of a create payload
PRODUCT_TEXT_DEFAULTS = {"description": "", "condition": "", "category": "", "brand": "", "payee_email": ""}

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".gif"}


class FeaturedLimitError(ConflictError):
    """Featuring would exceed FEATURED_PRODUCT_LIMIT (reported as 400)."""


def featured_limit() -> int:
    return current_app.config["FEATURED_PRODUCT_LIMIT"]


def validate_product_payload(payload, *, creating: bool) -> dict:
    """
    Normalize an external product document into a column patch.

    The external schema exposes `price` as a decimal amount; it is stored as
    price_cents. On update, blank values for NOT NULL columns are dropped so
    an untouched form field leaves the stored value alone.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    payload = dict(payload)
    if not creating:
        payload = strip_blank_values(Product, payload)

    if "price_cents" in payload:
        raise ValidationError("Field not allowed: price_cents")
    price = payload.pop("price", None)
    if price is not None and not (isinstance(price, str) and not price.strip()):
        payload["price_cents"] = parse_price_cents(price)
    elif creating:
        raise ValidationError("Missing required field: price")

    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=not creating)
    enforce_rules_product(patch, creating=creating)
    return patch


# =============================================================================
# STOREFRONT
# =============================================================================

def list_products(
    *,
    include_drafts: bool = False,
    collection: str | None = None,
    category: str | None = None,
) -> list[Product]:
    """Newest first. Drafts (meta.published == false) only with include_drafts."""
    query = db.session.query(Product).order_by(Product.created_at.desc(), Product.id.desc())
    if category:
        query = query.filter(func.lower(Product.category) == category.strip().lower())

    products = query.all()
    if not include_drafts:
        products = [p for p in products if p.published]
    if collection:
        wanted = collection.strip().lower()
        products = [p for p in products if wanted in {c.lower() for c in (p.collections or [])}]
    return products


def get_product(slug: str, *, include_drafts: bool = False) -> Product | None:
    if not slug:
        return None
    p = db.session.query(Product).filter(Product.slug == slug).first()
    if p is None:
        return None
    if not include_drafts and not p.published:
        return None
    return p


def require_product(slug: str) -> Product:
    p = get_product(slug, include_drafts=True)
    if p is None:
        raise NotFoundError(f"Product not found: {slug}")
    return p


def search_products(q: str | None, *, limit: int = 20) -> list[Product]:
    """Case-insensitive substring match over slug, title, description, brand and category."""
    term = (q or "").strip()
    if not term:
        return []
    pattern = f"%{term}%"
    candidates = (
        db.session.query(Product)
        .filter(
            or_(
                Product.slug.ilike(pattern),
                Product.title.ilike(pattern),
                Product.description.ilike(pattern),
                Product.brand.ilike(pattern),
                Product.category.ilike(pattern),
            )
        )
        .order_by(Product.created_at.desc(), Product.id.desc())
        .all()
    )
    return [p for p in candidates if p.published][:max(limit, 0)]


def list_featured_products() -> list[Product]:
    products = (
        db.session.query(Product)
        .filter(Product.is_featured.is_(True))
        .order_by(Product.updated_at.desc(), Product.id.desc())
        .all()
    )
    return [p for p in products if p.published][:featured_limit()]


def featured_count() -> int:
    return db.session.query(func.count(Product.id)).filter(Product.is_featured.is_(True)).scalar() or 0


# =============================================================================
# ADMIN
# =============================================================================

def _feature(product: Product) -> None:
    """Set is_featured on one row if a slot is free; raises FeaturedLimitError otherwise."""
    if product.is_featured:
        return
    limit = featured_limit()
    featured = aliased(Product)
    current = (
        select(func.count(featured.id))
        .where(featured.is_featured.is_(True))
        .scalar_subquery()
    )
    stmt = (
        update(Product)
        .where(
            Product.id == product.id,
            Product.is_featured.is_(False),
            current < limit,
        )
        .values(is_featured=True, updated_at=utcnow())
    )
    if not execute_conditional_update(stmt):
        raise FeaturedLimitError(
            f"Maximum {limit} featured products allowed. Please unfeature another product first."
        )
    db.session.expire(product, ["is_featured", "updated_at"])


def _apply_featured(product: Product, featured) -> None:
    if featured is None:
        return
    if featured:
        _feature(product)
    else:
        product.is_featured = False


def _ensure_slug_free(slug: str, *, exclude_id: int | None = None) -> None:
    query = db.session.query(Product.id).filter(Product.slug == slug)
    if exclude_id is not None:
        query = query.filter(Product.id != exclude_id)
    if query.first() is not None:
        raise ConflictError(f"A product with slug '{slug}' already exists")


def _commit() -> None:
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("A product with this slug already exists")


def create_product(patch: dict) -> Product:
    """
    Create a product from a validated patch.

    Raises ConflictError for a duplicate slug and FeaturedLimitError when
    is_featured is requested with no free slot (nothing is written then).
    """
    patch = dict(patch)
    featured = patch.pop("is_featured", None)
    _ensure_slug_free(patch["slug"])

    p = Product()
    for k, v in PRODUCT_TEXT_DEFAULTS.items():
        setattr(p, k, v)
    for k, v in patch.items():
        setattr(p, k, v)
    p.is_featured = False

    db.session.add(p)
    try:
        db.session.flush()
        _apply_featured(p, featured)
    except FeaturedLimitError:
        db.session.rollback()
        raise
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"A product with slug '{patch['slug']}' already exists")

    _commit()
    current_app.logger.info("Product %s created", p.slug)
    return p


def update_product(slug: str, patch: dict) -> Product | None:
    """
    Partial update. `meta` is merged into the stored object; an empty `meta`
    leaves it untouched. Returns None when the slug is unknown.
    """
    p = get_product(slug, include_drafts=True)
    if p is None:
        return None

    patch = dict(patch)
    featured = patch.pop("is_featured", None)

    if "slug" in patch and patch["slug"] != p.slug:
        _ensure_slug_free(patch["slug"], exclude_id=p.id)

    if "meta" in patch:
        incoming = patch.pop("meta") or {}
        if incoming:
            merged = dict(p.meta or {})
            merged.update(incoming)
            p.meta = merged

    for k, v in patch.items():
        setattr(p, k, v)

    try:
        db.session.flush()
        _apply_featured(p, featured)
    except FeaturedLimitError:
        db.session.rollback()
        raise
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"A product with slug '{patch.get('slug')}' already exists")

    _commit()
    current_app.logger.info("Product %s updated (%s)", p.slug, ", ".join(sorted(patch.keys())) or "meta")
    return p


def delete_product(slug: str) -> bool:
    """Physical delete. Images in storage are left in place."""
    p = get_product(slug, include_drafts=True)
    if p is None:
        return False
    db.session.delete(p)
    db.session.commit()
    current_app.logger.info("Product %s deleted", slug)
    return True


def toggle_featured(slug: str, featured: bool | None = None) -> Product:
    """Set (or flip, when featured is None) the featured flag."""
    p = require_product(slug)
    target = (not p.is_featured) if featured is None else bool(featured)
    try:
        _apply_featured(p, target)
    except FeaturedLimitError:
        db.session.rollback()
        raise
    db.session.commit()
    current_app.logger.info("Product %s featured=%s", slug, target)
    return p


def update_checkout_link(slug: str, checkout_link) -> Product:
    link = (checkout_link or "").strip() if isinstance(checkout_link, str) else ""
    if not link:
        raise ValidationError("checkout_link is required")
    if not re.match(r"^https?://", link, re.IGNORECASE):
        raise ValidationError("checkout_link must be an http(s) URL")

    p = require_product(slug)
    p.checkout_link = link
    db.session.commit()
    return p


def _natural_key(name: str):
    return [int(part) if part.isdigit() else part.lower() for part in re.split(r"(\d+)", name)]


def resync_images(slug: str, storage=None) -> list[str]:
    """
    Public URLs of the image files in the product's storage folder, in
    natural name order (img2 before img10). Read-only; the admin UI decides
    whether to save them onto the product.
    """
    folder = (slug or "").strip()
    if not folder:
        raise ValidationError("Invalid slug provided.")
    storage = storage or get_storage()

    names = []
    for entry in storage.list(folder):
        name = entry.get("name") or ""
        if not name or name.startswith("."):
            continue
        ext = ("." + name.rsplit(".", 1)[-1].lower()) if "." in name else ""
        if ext in IMAGE_EXTENSIONS:
            names.append(name)

    return [storage.public_url(f"{folder}/{name}") for name in sorted(names, key=_natural_key)]


def upsert_product(patch: dict) -> tuple[Product, bool, list[str]]:
    """
    Create or update by slug; used by archive import.

    A new product asking to be featured while the cap is reached is still
    imported, unfeatured, with a warning. Returns (product, created, warnings).
    """
    warnings: list[str] = []
    slug = patch["slug"]
    created = get_product(slug, include_drafts=True) is None

    def _write(p: dict) -> Product:
        return create_product(p) if created else update_product(slug, p)

    try:
        return _write(patch), created, warnings
    except FeaturedLimitError as exc:
        warnings.append(f"{exc} Imported as not featured.")
        patch = {k: v for k, v in patch.items() if k != "is_featured"}
        if created:
            patch["is_featured"] = False
        return _write(patch), created, warnings
