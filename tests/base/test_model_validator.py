# tests/base/test_model_validator.py

from decimal import Decimal
from typing import List, Optional

import pytest
from pydantic import BaseModel, Field

from async_crud.base.coercion import ValueKind
from async_crud.base.model_validator import ModelValidator
from async_crud.base.validation_exceptions import InvalidPathError
from tests.entities import Category, Dimensions, Order, Product


class Ambiguous(BaseModel):
    user_name: str
    username: str


class Aliased(BaseModel):
    display_name: str = Field(alias="displayName")


def test_registry_is_cached_per_type():
    assert ModelValidator.for_type(Product) is ModelValidator.for_type(Product)


def test_rejects_non_models():
    with pytest.raises(TypeError):
        ModelValidator(dict)


@pytest.mark.parametrize("name", ["created_at", "CreatedAt", "createdAt", "CREATEDAT"])
def test_names_resolve_in_any_format(name):
    assert ModelValidator.for_type(Product).resolve_name(name) == "created_at"


def test_alias_resolves():
    assert ModelValidator.for_type(Aliased).resolve_name("displayName") == "display_name"


def test_ambiguous_normalized_name_raises():
    validator = ModelValidator.for_type(Ambiguous)
    assert validator.resolve_name("user_name") == "user_name"
    with pytest.raises(InvalidPathError, match="ambiguous"):
        validator.resolve_name("UserName")


def test_unknown_name_raises():
    with pytest.raises(InvalidPathError, match="does not exist"):
        ModelValidator.for_type(Product).resolve_name("weight")


def test_unknown_name_error_lists_valid_properties():
    validator = ModelValidator.for_type(Category)
    assert "name" in validator.field_names
    with pytest.raises(InvalidPathError, match="valid properties: .*name"):
        validator.resolve_name("title")


def test_field_accessor_metadata():
    validator = ModelValidator.for_type(Product)
    tags = validator.field("Tags")
    assert tags.is_collection
    assert tags.value_type is str
    assert validator.field("Price").kind is ValueKind.DECIMAL
    assert validator.field("Dimensions").nested_model is Dimensions


def test_resolve_nested_path():
    validator = ModelValidator.for_type(Product)
    resolved = validator.resolve_path("Dimensions.Width")
    assert resolved.path == "dimensions.width"
    assert resolved.collection is None
    assert resolved.kind is ValueKind.INTEGER
    assert resolved.read(Product(name="x", dimensions=Dimensions(width=7))) == 7
    assert validator.get_field_type("Price") is Decimal


def test_resolve_collection_path():
    resolved = ModelValidator.for_type(Order).resolve_path("Items.Quantity")
    assert resolved.collection.name == "items"
    assert resolved.kind is ValueKind.INTEGER


@pytest.mark.parametrize("path", ["Name.Length", "Dimensions.Depth", "", "Dimensions."])
def test_invalid_paths(path):
    with pytest.raises(InvalidPathError):
        ModelValidator.for_type(Product).resolve_path(path)


def test_collection_below_first_segment_is_rejected():
    class Shelf(BaseModel):
        products: List[Product] = Field(default_factory=list)

    class Store(BaseModel):
        shelf: Optional[Shelf] = None

    with pytest.raises(InvalidPathError, match="crosses a collection"):
        ModelValidator.for_type(Store).resolve_path("Shelf.Products.Name")
