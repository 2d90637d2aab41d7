"""
Catalog tests (storefront + admin).

Verifies:
- Drafts never reach the storefront
- Create/update validation, slug conflicts, blank-field patch semantics
- Featured cap is enforced on create, update and toggle
- Image listing and upload through object storage
"""

import io

import pytest

from conftest import reload
from marketplace.models import Product
from marketplace.services import products_service
from marketplace.services.storage_service import StorageTimeout


def product_payload(slug="brass-lamp", **overrides):
    payload = {
        "slug": slug,
        "title": "Brass Lamp",
        "description": "Solid brass desk lamp.",
        "price": "45.00",
        "condition": "Good",
        "category": "Home",
        "brand": "Acme",
        "images": [f"https://cdn.test/{slug}/img1.jpg"],
        "checkout_link": f"https://pay.example.com/{slug}",
        "collections": ["home"],
        "listed_by": "Walid",
    }
    payload.update(overrides)
    return payload


# ============================================================================
# STOREFRONT
# ============================================================================

class TestStorefront:
    def test_drafts_hidden(self, client, make_product):
        make_product("published-lamp")
        make_product("draft-lamp", meta={"published": False})

        listing = client.get('/api/products')
        assert [p["slug"] for p in listing.json["items"]] == ["published-lamp"]
        assert client.get('/api/products/draft-lamp').status_code == 404
        assert client.get('/api/products/published-lamp').json["published"] is True

    def test_unknown_product(self, client):
        response = client.get('/api/products/nope')
        assert response.status_code == 404
        assert response.json["error"] == "Product not found"

    def test_collection_and_category_filters(self, client, make_product):
        make_product("lamp", collections=["home", "Vintage"], category="Home")
        make_product("jacket", collections=["fashion"], category="Clothing")

        by_collection = client.get('/api/products?collection=vintage')
        assert [p["slug"] for p in by_collection.json["items"]] == ["lamp"]
        by_category = client.get('/api/products?category=clothing')
        assert [p["slug"] for p in by_category.json["items"]] == ["jacket"]

    def test_search(self, client, make_product):
        make_product("brass-lamp", title="Brass Lamp")
        make_product("brass-draft", title="Brass Draft", meta={"published": False})
        make_product("jacket", title="Denim Jacket")

        response = client.get('/api/products/search?q=BRASS')

        assert response.json["query"] == "BRASS"
        assert [p["slug"] for p in response.json["items"]] == ["brass-lamp"]
        assert client.get('/api/products/search?q=').json["items"] == []

    def test_featured_listing(self, client, make_product):
        make_product("shown", is_featured=True)
        make_product("hidden", is_featured=True, meta={"published": False})
        make_product("plain")

        response = client.get('/api/products/featured')

        assert [p["slug"] for p in response.json["items"]] == ["shown"]


# ============================================================================
# CREATE
# ============================================================================

class TestCreateProduct:
    def test_create(self, client, admin_headers):
        response = client.post('/api/admin/products', json=product_payload(), headers=admin_headers)

        assert response.status_code == 201
        body = response.json
        assert body["slug"] == "brass-lamp"
        assert body["price"] == 45.0
        assert body["listed_by"] == "walid"
        assert body["is_featured"] is False
        assert body["payee_email"] == ""
        assert reload(Product, body["id"]).price_cents == 4500

    def test_duplicate_slug(self, client, admin_headers, make_product):
        make_product("brass-lamp")

        response = client.post('/api/admin/products', json=product_payload(), headers=admin_headers)

        assert response.status_code == 409

    @pytest.mark.parametrize("field", ["collections", "images", "checkout_link", "listed_by", "title"])
    def test_required_fields(self, client, admin_headers, field):
        payload = product_payload()
        del payload[field]

        response = client.post('/api/admin/products', json=payload, headers=admin_headers)

        assert response.status_code == 400
        assert field in response.json["error"]

    def test_missing_price(self, client, admin_headers):
        payload = product_payload()
        del payload["price"]

        response = client.post('/api/admin/products', json=payload, headers=admin_headers)

        assert response.status_code == 400
        assert "price" in response.json["error"]

    @pytest.mark.parametrize("overrides,message", [
        ({"listed_by": "nobody"}, "Invalid listed_by value"),
        ({"collections": []}, "collections"),
        ({"price": "0"}, "price must be greater than 0"),
        ({"price": "abc"}, "price must be a number"),
        ({"slug": "Bad Slug!"}, "slug may only contain"),
        ({"price_cents": 100}, "Field not allowed: price_cents"),
        ({"owner": "x"}, "Field not allowed: owner"),
    ])
    def test_invalid_payload(self, client, admin_headers, overrides, message):
        response = client.post('/api/admin/products', json=product_payload(**overrides), headers=admin_headers)

        assert response.status_code == 400
        assert message in response.json["error"]

    def test_read_only_fields_ignored(self, client, admin_headers):
        payload = product_payload(id=999, created_at="2020-01-01T00:00:00Z", published=False)

        response = client.post('/api/admin/products', json=payload, headers=admin_headers)

        assert response.status_code == 201
        assert response.json["id"] != 999


# ============================================================================
# UPDATE / DELETE
# ============================================================================

class TestUpdateProduct:
    def test_blank_fields_leave_stored_values(self, client, admin_headers, make_product):
        make_product("lamp", title="Old Title", price_cents=4500, meta={"published": True, "keywords": "lamp"})

        response = client.patch('/api/admin/products/lamp', json={
            "title": "",
            "price": "",
            "images": [],
            "description": "Updated description",
            "meta": {"seo_title": "Lamp"},
        }, headers=admin_headers)

        assert response.status_code == 200
        body = response.json
        assert body["title"] == "Old Title"
        assert body["price"] == 45.0
        assert body["images"] == ["https://cdn.test/lamp/img1.jpg"]
        assert body["description"] == "Updated description"
        assert body["meta"] == {"published": True, "keywords": "lamp", "seo_title": "Lamp"}

    def test_empty_meta_preserved(self, client, admin_headers, make_product):
        make_product("lamp", meta={"published": False, "keywords": "lamp"})

        response = client.patch('/api/admin/products/lamp', json={"meta": {}}, headers=admin_headers)

        assert response.json["meta"] == {"published": False, "keywords": "lamp"}

    def test_unpublish(self, client, admin_headers, make_product):
        make_product("lamp")

        client.patch('/api/admin/products/lamp', json={"meta": {"published": False}}, headers=admin_headers)

        assert client.get('/api/products/lamp').status_code == 404

    def test_invalid_listed_by(self, client, admin_headers, make_product):
        make_product("lamp")

        response = client.patch('/api/admin/products/lamp', json={"listed_by": "stranger"}, headers=admin_headers)

        assert response.status_code == 400

    def test_rename_to_taken_slug(self, client, admin_headers, make_product):
        make_product("lamp")
        make_product("chair")

        response = client.patch('/api/admin/products/lamp', json={"slug": "chair"}, headers=admin_headers)

        assert response.status_code == 409

    def test_unknown_product(self, client, admin_headers):
        response = client.patch('/api/admin/products/nope', json={"title": "x"}, headers=admin_headers)
        assert response.status_code == 404

    def test_checkout_link(self, client, admin_headers, make_product):
        make_product("lamp")

        bad = client.patch('/api/admin/products/lamp/checkout', json={"checkout_link": "ftp://x"}, headers=admin_headers)
        assert bad.status_code == 400

        ok = client.patch(
            '/api/admin/products/lamp/checkout',
            json={"checkout_link": "https://pay.example.com/new"},
            headers=admin_headers,
        )
        assert ok.status_code == 200
        assert ok.json["product"]["checkout_link"] == "https://pay.example.com/new"

    def test_delete(self, client, admin_headers, make_product):
        make_product("lamp")

        assert client.delete('/api/admin/products/lamp', headers=admin_headers).json == {"success": True}
        assert client.delete('/api/admin/products/lamp', headers=admin_headers).status_code == 404

    @pytest.mark.parametrize("method,endpoint,service_call,message", [
        ('POST', '/api/admin/products', "create_product", "Failed to create product: database is locked"),
        ('PATCH', '/api/admin/products/lamp', "update_product", "Failed to update product: database is locked"),
        ('DELETE', '/api/admin/products/lamp', "delete_product", "Failed to delete product: database is locked"),
    ])
    def test_store_failure_reported_to_admin(
        self, client, admin_headers, make_product, monkeypatch, method, endpoint, service_call, message
    ):
        make_product("lamp")

        def fail(*args, **kwargs):
            raise RuntimeError("database is locked")

        monkeypatch.setattr(products_service, service_call, fail)
        response = client.open(endpoint, method=method, json=product_payload("desk-lamp"), headers=admin_headers)

        assert response.status_code == 500
        assert response.json["error"] == message

    def test_admin_listing_includes_drafts(self, client, admin_headers, make_product):
        make_product("lamp", is_featured=True)
        make_product("draft", meta={"published": False})

        response = client.get('/api/admin/products', headers=admin_headers)

        assert response.json["count"] == 2
        assert response.json["featured_count"] == 1
        assert response.json["featured_limit"] == 6


# ============================================================================
# FEATURED CAP
# ============================================================================

class TestFeaturedCap:
    def _fill(self, make_product):
        for i in range(6):
            make_product(f"featured-{i}", is_featured=True)

    def test_toggle_blocked_at_limit(self, client, admin_headers, make_product):
        self._fill(make_product)
        make_product("seventh")

        response = client.post('/api/admin/products/seventh/feature', json={"is_featured": True}, headers=admin_headers)

        assert response.status_code == 400
        assert "Maximum 6 featured products" in response.json["error"]
        assert products_service.featured_count() == 6

    def test_slot_freed_by_unfeature(self, client, admin_headers, make_product):
        self._fill(make_product)
        make_product("seventh")

        client.post('/api/admin/products/featured-0/feature', json={"is_featured": False}, headers=admin_headers)
        response = client.post('/api/admin/products/seventh/feature', json={"is_featured": True}, headers=admin_headers)

        assert response.status_code == 200
        assert response.json["product"]["is_featured"] is True
        assert products_service.featured_count() == 6

    def test_toggle_without_body_flips(self, client, admin_headers, make_product):
        make_product("lamp")

        first = client.post('/api/admin/products/lamp/feature', headers=admin_headers)
        second = client.post('/api/admin/products/lamp/feature', headers=admin_headers)

        assert first.json["product"]["is_featured"] is True
        assert second.json["product"]["is_featured"] is False

    def test_feature_flag_must_be_bool(self, client, admin_headers, make_product):
        make_product("lamp")
        response = client.post('/api/admin/products/lamp/feature', json={"is_featured": "yes"}, headers=admin_headers)
        assert response.status_code == 400

    def test_feature_unknown_product(self, client, admin_headers):
        response = client.post('/api/admin/products/nope/feature', json={"is_featured": True}, headers=admin_headers)
        assert response.status_code == 404

    def test_create_featured_at_limit_writes_nothing(self, client, admin_headers, make_product, db_session):
        self._fill(make_product)

        response = client.post(
            '/api/admin/products',
            json=product_payload(is_featured=True),
            headers=admin_headers,
        )

        assert response.status_code == 400
        assert db_session.query(Product).filter_by(slug="brass-lamp").first() is None

    def test_update_featured_at_limit(self, client, admin_headers, make_product):
        self._fill(make_product)
        make_product("seventh")

        response = client.patch('/api/admin/products/seventh', json={"is_featured": True}, headers=admin_headers)

        assert response.status_code == 400
        assert reload(Product, products_service.require_product("seventh").id).is_featured is False

    def test_already_featured_is_noop(self, client, admin_headers, make_product):
        self._fill(make_product)

        response = client.post('/api/admin/products/featured-3/feature', json={"is_featured": True}, headers=admin_headers)

        assert response.status_code == 200


# ============================================================================
# IMAGES
# ============================================================================

class TestProductImages:
    def test_list_images_in_natural_order(self, client, admin_headers, storage, make_product):
        make_product("lamp")
        for name in ("img10.jpg", "img2.png", ".emptyFolderPlaceholder", "notes.txt"):
            storage.objects[f"lamp/{name}"] = (b"x", "image/jpeg")

        response = client.get('/api/admin/products/lamp/images', headers=admin_headers)

        assert response.status_code == 200
        assert response.json["images"] == [
            "https://cdn.test/lamp/img2.png",
            "https://cdn.test/lamp/img10.jpg",
        ]

    def test_upload_image(self, client, admin_headers, storage):
        response = client.post(
            '/api/admin/upload-image',
            data={"slug": "lamp", "file": (io.BytesIO(b"\x89PNG..."), "Photo 1.PNG", "image/png")},
            content_type="multipart/form-data",
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert response.json["url"] == "https://cdn.test/lamp/photo-1.png"
        assert storage.objects["lamp/photo-1.png"] == (b"\x89PNG...", "image/png")

    def test_upload_rejects_non_image(self, client, admin_headers, storage):
        response = client.post(
            '/api/admin/upload-image',
            data={"slug": "lamp", "file": (io.BytesIO(b"hello"), "notes.txt", "text/plain")},
            content_type="multipart/form-data",
            headers=admin_headers,
        )

        assert response.status_code == 400
        assert storage.objects == {}

    def test_upload_timeout(self, client, admin_headers, storage):
        storage.fail = StorageTimeout("Upload of lamp/a.jpg timed out")

        response = client.post(
            '/api/admin/upload-image',
            data={"slug": "lamp", "file": (io.BytesIO(b"jpeg"), "a.jpg", "image/jpeg")},
            content_type="multipart/form-data",
            headers=admin_headers,
        )

        assert response.status_code == 408
