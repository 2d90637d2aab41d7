# Overview: Public storefront routes for products; parses query input and returns JSON responses.

# backend/marketplace/routes/products.py
"""
Storefront product routes.

Public and read-only. Drafts (meta.published == false) are never returned.
"""
from flask import Blueprint, request, current_app

from ..services import products_service

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
def list_products():
    """
    List published products, newest first.

    Query params:
    - collection: str (optional) - only products tagged with this collection
    - category: str (optional) - exact category match, case-insensitive
    """
    try:
        products = products_service.list_products(
            collection=request.args.get("collection"),
            category=request.args.get("category"),
        )
    except Exception:
        current_app.logger.exception("Failed to list products")
        return {"error": "Failed to load products"}, 500

    return {"items": [p.to_dict() for p in products], "count": len(products)}


@products_bp.get("/featured")
def featured_products():
    try:
        products = products_service.list_featured_products()
    except Exception:
        current_app.logger.exception("Failed to list featured products")
        return {"error": "Failed to load featured products"}, 500

    return {"items": [p.to_dict() for p in products], "count": len(products)}


@products_bp.get("/search")
def search_products():
    """
    Query params:
    - q: str - search term (empty returns no results)
    - limit: int (optional, default 20, max 100)
    """
    q = request.args.get("q", "")
    limit = min(request.args.get("limit", default=20, type=int) or 20, 100)

    try:
        products = products_service.search_products(q, limit=limit)
    except Exception:
        current_app.logger.exception("Failed to search products")
        return {"error": "Search failed"}, 500

    return {"query": q.strip(), "items": [p.to_dict() for p in products], "count": len(products)}


@products_bp.get("/<slug>")
def get_product(slug: str):
    product = products_service.get_product(slug)
    if product is None:
        return {"error": "Product not found"}, 404
    return product.to_dict()
