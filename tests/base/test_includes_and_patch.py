# tests/base/test_includes_and_patch.py

import uuid
from decimal import Decimal

import pytest

from async_crud.base.entity import (
    BOOKKEEPING_FIELDS,
    SoftDeletable,
    TenantScoped,
    foreign_keys,
    has_capability,
)
from async_crud.base.exceptions import ObjectValidationException
from async_crud.base.includes import normalize_includes
from async_crud.base.patch import PatchDocument, mutable_fields
from async_crud.base.validation_exceptions import InvalidPathError
from tests.entities import (
    AuditEntry,
    Category,
    Order,
    OrderItem,
    Product,
)


# --- Include paths ---


def test_includes_resolve_case_insensitively():
    assert normalize_includes(["Category"], Product) == ["category"]
    assert normalize_includes(["items"], Order) == ["items"]


def test_includes_deduplicate():
    assert normalize_includes(["Category", "category", " CATEGORY "], Product) == [
        "category"
    ]


@pytest.mark.parametrize("paths", [None, [], ["", "  "]])
def test_no_includes(paths):
    assert normalize_includes(paths, Product) == []


def test_unknown_relation_raises():
    with pytest.raises(InvalidPathError):
        normalize_includes(["Supplier"], Product)


def test_plain_field_is_not_a_relation():
    with pytest.raises(InvalidPathError, match="not a declared relation"):
        normalize_includes(["Name"], Product)


# --- Entity capabilities ---


def test_capabilities():
    assert has_capability(Product, TenantScoped)
    assert has_capability(Product, SoftDeletable)
    assert not has_capability(AuditEntry, TenantScoped)
    assert not has_capability(AuditEntry, SoftDeletable)


def test_table_names():
    assert Product.table_name() == "products"
    assert OrderItem.table_name() == "order_items"


def test_foreign_keys_include_inbound_collections():
    assert foreign_keys(Product) == {"category_id": Category}
    assert foreign_keys(OrderItem) == {"order_id": Order}
    assert foreign_keys(Order) == {}


def test_deleted_flag_requires_timestamp():
    with pytest.raises(ValueError):
        Category(name="x", deleted=True)


# --- Patch documents ---


def test_mutable_fields_exclude_bookkeeping_and_navigation():
    fields = mutable_fields(Product)
    assert "name" in fields
    assert "price" in fields
    assert "category" not in fields
    assert not (fields & BOOKKEEPING_FIELDS)


def test_declared_mutable_fields_narrow_the_set():
    assert mutable_fields(Order) == frozenset({"reference", "note"})


def test_patch_applies_to_a_copy():
    product = Product(name="Cable", price=Decimal("5"))
    patched = PatchDocument({"Name": "USB cable", "price": "7.50"}).apply(product)
    assert patched.name == "USB cable"
    assert patched.price == Decimal("7.50")
    assert patched.id == product.id
    assert product.name == "Cable"


def test_patch_rejects_unknown_and_immutable_properties():
    product = Product(name="Cable")
    with pytest.raises(ObjectValidationException, match="invalid property: Id, Weight"):
        PatchDocument({"Weight": 3, "Id": str(uuid.uuid4())}).apply(product)


def test_patch_rejects_fields_outside_declared_whitelist():
    order = Order(reference="A-1")
    with pytest.raises(ObjectValidationException, match="invalid property: total"):
        PatchDocument({"total": "10"}).apply(order)


def test_patch_rejects_invalid_values():
    product = Product(name="Cable")
    with pytest.raises(ObjectValidationException, match="invalid Product"):
        PatchDocument({"price": "cheap"}).apply(product)
