from __future__ import annotations

from ..extensions import db
from marketplace.time_utils import to_utc_z, utcnow


class Product(db.Model):
    """
    Catalog listing.

    SLUG DESIGN DECISION:
    Product.slug is the stable external identifier. Storefront URLs, storage
    folders (<slug>/<filename>), archive folders and import upserts are all
    keyed by slug; the integer id never leaves the database.

    PRICING:
    Stored in cents (price_cents); serialized as a decimal amount ("price").
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_featured", "is_featured"),
        db.Index("ix_products_category", "category"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    slug = db.Column(db.String(255), nullable=False, unique=True, index=True)

    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=False)
    price_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="USD")

    condition = db.Column(db.String(64), nullable=False)
    category = db.Column(db.String(120), nullable=False)
    brand = db.Column(db.String(120), nullable=False)

    # Ordered list of public image URLs
    images = db.Column(db.JSON, nullable=False, default=list)

    payee_email = db.Column(db.String(255), nullable=False, default="")
    checkout_link = db.Column(db.String(2048), nullable=False)

    rating = db.Column(db.Float, nullable=False, default=0)
    review_count = db.Column(db.Integer, nullable=False, default=0)
    reviews = db.Column(db.JSON, nullable=False, default=list)

    # SEO fields + published flag
    meta = db.Column(db.JSON, nullable=False, default=dict)

    in_stock = db.Column(db.Boolean, nullable=False, default=True)
    is_featured = db.Column(db.Boolean, nullable=False, default=False)
    listed_by = db.Column(db.String(32), nullable=True)
    collections = db.Column(db.JSON, nullable=False, default=list)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=db.func.now(),
        onupdate=utcnow,
    )

    @property
    def price(self) -> float:
        return round((self.price_cents or 0) / 100, 2)

    @property
    def published(self) -> bool:
        # Rows without meta.published predate drafts and count as published
        meta = self.meta or {}
        return meta.get("published") is not False

    def __repr__(self) -> str:
        return f"<Product slug={self.slug!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "slug": self.slug,
            "title": self.title,
            "description": self.description,
            "price": self.price,
            "currency": self.currency,
            "condition": self.condition,
            "category": self.category,
            "brand": self.brand,
            "images": list(self.images or []),
            "payee_email": self.payee_email or "",
            "checkout_link": self.checkout_link,
            "rating": self.rating or 0,
            "review_count": self.review_count or 0,
            "reviews": list(self.reviews or []),
            "meta": dict(self.meta or {}),
            "published": self.published,
            "in_stock": bool(self.in_stock),
            "is_featured": bool(self.is_featured),
            "listed_by": self.listed_by,
            "collections": list(self.collections or []),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
