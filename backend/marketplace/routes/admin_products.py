# Overview: Admin API routes for the catalog; CRUD, featuring, images and ZIP export/import.

# backend/marketplace/routes/admin_products.py
"""
Admin product routes.

SECURITY: every route requires an admin (require_admin).

Products are addressed by slug. Archive routes return application/zip.
"""
from flask import Blueprint, request, jsonify, current_app, Response

from ..decorators import require_admin
from ..services import products_service, archive_service, storage_service
from ..services.products_service import FeaturedLimitError
from ..services.storage_service import StorageError, StorageTimeout
from ..validation import ValidationError, ConflictError, NotFoundError

admin_products_bp = Blueprint("admin_products", __name__, url_prefix="/api/admin")


def _zip_response(data: bytes, filename: str) -> Response:
    return Response(
        data,
        mimetype="application/zip",
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "Content-Length": str(len(data)),
        },
    )


@admin_products_bp.get("/products")
@require_admin
def list_products_route():
    """All products including drafts, newest first."""
    products = products_service.list_products(include_drafts=True)
    return jsonify({
        "items": [p.to_dict() for p in products],
        "count": len(products),
        "featured_count": products_service.featured_count(),
        "featured_limit": products_service.featured_limit(),
    })


@admin_products_bp.post("/products")
@require_admin
def create_product_route():
    payload = request.get_json(silent=True)

    try:
        patch = products_service.validate_product_payload(payload, creating=True)
        created = products_service.create_product(patch)
    except (ValidationError, FeaturedLimitError) as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception as e:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": f"Failed to create product: {e}"}), 500

    return jsonify(created.to_dict()), 201


@admin_products_bp.get("/products/<slug>")
@require_admin
def get_product_route(slug: str):
    product = products_service.get_product(slug, include_drafts=True)
    if product is None:
        return jsonify({"error": "Product not found"}), 404
    return jsonify(product.to_dict())


@admin_products_bp.patch("/products/<slug>")
@require_admin
def update_product_route(slug: str):
    """
    Partial update. Blank values for required columns are ignored, so a
    form can post every field. `meta` is merged into the stored object.
    """
    payload = request.get_json(silent=True)

    try:
        patch = products_service.validate_product_payload(payload, creating=False)
        updated = products_service.update_product(slug, patch)
    except (ValidationError, FeaturedLimitError) as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception as e:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": f"Failed to update product: {e}"}), 500

    if updated is None:
        return jsonify({"error": "Product not found"}), 404
    return jsonify(updated.to_dict())


@admin_products_bp.delete("/products/<slug>")
@require_admin
def delete_product_route(slug: str):
    try:
        deleted = products_service.delete_product(slug)
    except Exception as e:
        current_app.logger.exception("Failed to delete product")
        return jsonify({"error": f"Failed to delete product: {e}"}), 500

    if not deleted:
        return jsonify({"error": "Product not found"}), 404
    return jsonify({"success": True})


@admin_products_bp.post("/products/<slug>/feature")
@require_admin
def feature_product_route(slug: str):
    """Body: {"is_featured": bool} (optional; omitted flips the flag)."""
    data = request.get_json(silent=True) or {}
    featured = data.get("is_featured")
    if featured is not None and not isinstance(featured, bool):
        return jsonify({"error": "is_featured must be a boolean"}), 400

    try:
        product = products_service.toggle_featured(slug, featured)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except FeaturedLimitError as e:
        return jsonify({"error": str(e)}), 400
    except Exception as e:
        current_app.logger.exception("Failed to update featured flag")
        return jsonify({"error": f"Failed to update product: {e}"}), 500

    return jsonify({"success": True, "product": product.to_dict()})


@admin_products_bp.patch("/products/<slug>/checkout")
@require_admin
def update_checkout_link_route(slug: str):
    data = request.get_json(silent=True) or {}

    try:
        product = products_service.update_checkout_link(slug, data.get("checkout_link"))
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception as e:
        current_app.logger.exception("Failed to update checkout link")
        return jsonify({"error": f"Failed to update checkout link: {e}"}), 500

    return jsonify({"success": True, "product": product.to_dict()})


@admin_products_bp.get("/products/<slug>/images")
@require_admin
def product_images_route(slug: str):
    """Image URLs currently in the product's storage folder."""
    try:
        images = products_service.resync_images(slug)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except StorageError as e:
        current_app.logger.exception("Failed to list images")
        return jsonify({"error": str(e)}), 500

    return jsonify({"images": images})


@admin_products_bp.get("/products/<slug>/download")
@require_admin
def download_product_route(slug: str):
    try:
        data = archive_service.export_single_product(slug)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to export product")
        return jsonify({"error": "Failed to export product"}), 500

    return _zip_response(data, f"{slug}.zip")


@admin_products_bp.post("/products/bulk-export")
@require_admin
def bulk_export_route():
    """Body: {"slugs": [...]}. 400 when nothing could be exported."""
    data = request.get_json(silent=True) or {}

    try:
        result = archive_service.export_products(data.get("slugs"))
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to export products")
        return jsonify({"error": "Failed to export products"}), 500

    if not result.processed:
        return jsonify({"error": "No products could be exported", "errors": result.errors}), 400

    response = _zip_response(result.data, f"products-export-{len(result.processed)}.zip")
    if result.errors:
        response.headers["X-Export-Errors"] = str(len(result.errors))
    return response


@admin_products_bp.post("/products/bulk-import")
@require_admin
def bulk_import_route():
    """multipart/form-data with a "file" ZIP upload."""
    if "file" not in request.files:
        return jsonify({"error": "file is required"}), 400

    file = request.files["file"]
    filename = (file.filename or "").lower()
    if not filename.endswith(".zip"):
        return jsonify({"error": "Invalid file type. Please upload a ZIP file."}), 400

    try:
        report = archive_service.import_products(file.read())
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to import products")
        return jsonify({"error": "Unexpected error during bulk import"}), 500

    return jsonify(report.to_dict()), 200


@admin_products_bp.post("/upload-image")
@require_admin
def upload_image_route():
    """multipart/form-data: "file" (image) and "slug" (storage folder)."""
    if "file" not in request.files:
        return jsonify({"error": "file is required"}), 400

    file = request.files["file"]
    slug = request.form.get("slug", "")

    try:
        url = storage_service.upload_product_image(slug, file.filename, file.read(), file.mimetype)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except StorageTimeout as e:
        current_app.logger.warning("Image upload timed out: %s", e)
        return jsonify({"error": "Upload timed out. Please try a smaller image."}), 408
    except StorageError as e:
        current_app.logger.exception("Failed to upload image")
        return jsonify({"error": str(e)}), 500

    return jsonify({"success": True, "url": url}), 200
