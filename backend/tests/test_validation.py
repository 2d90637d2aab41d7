import pytest

from marketplace.models import Product
from marketplace.services.products_service import PRODUCT_POLICY, validate_product_payload
from marketplace.validation import (
    ValidationError,
    enforce_rules_product,
    parse_price_cents,
    strip_blank_values,
    validate_payload,
)


class TestParsePriceCents:
    @pytest.mark.parametrize("value,expected", [
        (45, 4500),
        (45.5, 4550),
        ("19.99", 1999),
        (" 0.005 ", 1),
        ("1e2", 10000),
    ])
    def test_valid(self, value, expected):
        assert parse_price_cents(value) == expected

    @pytest.mark.parametrize("value", [None, True, "", "abc", "NaN", "Infinity"])
    def test_invalid(self, value):
        with pytest.raises(ValidationError):
            parse_price_cents(value)

    def test_upper_bound(self):
        assert parse_price_cents("9999999.99") == 999_999_999
        with pytest.raises(ValidationError):
            parse_price_cents("10000000")


class TestValidatePayload:
    def test_integer_columns_reject_decimals(self):
        with pytest.raises(ValidationError) as exc:
            validate_payload(model=Product, payload={"review_count": "1.5"}, policy=PRODUCT_POLICY, partial=True)
        assert "no decimals" in str(exc.value)

    def test_string_length_enforced(self):
        with pytest.raises(ValidationError) as exc:
            validate_payload(model=Product, payload={"title": "x" * 300}, policy=PRODUCT_POLICY, partial=True)
        assert "max length" in str(exc.value)

    def test_not_null_column(self):
        with pytest.raises(ValidationError):
            validate_payload(model=Product, payload={"title": None}, policy=PRODUCT_POLICY, partial=True)

    def test_boolean_strings(self):
        patch = validate_payload(model=Product, payload={"in_stock": "no"}, policy=PRODUCT_POLICY, partial=True)
        assert patch == {"in_stock": False}

    def test_ignored_fields_dropped(self):
        patch = validate_payload(
            model=Product,
            payload={"id": 4, "published": True, "title": " Lamp "},
            policy=PRODUCT_POLICY,
            partial=True,
        )
        assert patch == {"title": "Lamp"}


class TestStripBlankValues:
    def test_only_not_null_blanks_dropped(self):
        cleaned = strip_blank_values(Product, {
            "title": "  ",
            "images": [],
            "listed_by": "",
            "description": "kept",
            "price": "",
        })
        assert cleaned == {"listed_by": "", "description": "kept", "price": ""}


class TestProductRules:
    def test_slug_normalized(self):
        patch = {"slug": "  Brass-Lamp_2 "}
        enforce_rules_product(patch, creating=False)
        assert patch["slug"] == "brass-lamp_2"

    @pytest.mark.parametrize("slug", ["-lamp", "brass lamp", "lamp/../etc", ""])
    def test_slug_rejected(self, slug):
        with pytest.raises(ValidationError):
            enforce_rules_product({"slug": slug}, creating=False)

    def test_currency_upper_cased(self):
        patch = {"currency": "eur"}
        enforce_rules_product(patch, creating=False)
        assert patch["currency"] == "EUR"

    @pytest.mark.parametrize("patch", [
        {"rating": 6.0},
        {"review_count": -1},
        {"reviews": {"a": 1}},
        {"meta": ["published"]},
        {"collections": ["home", 3]},
        {"currency": "EURO"},
    ])
    def test_rules(self, patch):
        with pytest.raises(ValidationError):
            enforce_rules_product(patch, creating=False)

    def test_update_payload_without_price(self, app):
        assert validate_product_payload({"title": "New"}, creating=False) == {"title": "New"}

    def test_payload_must_be_object(self, app):
        with pytest.raises(ValidationError):
            validate_product_payload(["title"], creating=True)
