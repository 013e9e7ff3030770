# tests/commands/test_handler.py

import asyncio
import uuid
from decimal import Decimal

import pytest

from async_crud.base.patch import PatchDocument
from async_crud.base.validation import EntityValidator
from async_crud.commands.commands import (
    CreateCommand,
    CreateManyCommand,
    FindCommand,
    GetCommand,
    ListAllCommand,
    ListCommand,
    PatchCommand,
    RemoveCommand,
    SoftDeleteCommand,
    UpdateCommand,
    UpdateManyCommand,
)
from async_crud.commands.handler import CrudCommandHandler
from async_crud.commands.results import CommandResultStatus, ErrorCode, ListCommandResult
from async_crud.config import CrudSettings
from tests.entities import Category, Priority, Product


class ProductValidator(EntityValidator[Product]):
    def configure(self):
        self.rule_for("name", lambda p: bool(p.name.strip()), "Name is required")
        self.rule_for("price", lambda p: p.price >= 0, "Price cannot be negative")


@pytest.fixture
def products(repository_factory, logger):
    repo = repository_factory(Product)
    return CrudCommandHandler(repo, logger, validator=ProductValidator())


@pytest.fixture
def categories(repository_factory, logger):
    return CrudCommandHandler(repository_factory(Category), logger)


async def create_product(handler, **values):
    result = await handler.handle(CreateCommand(Product(**values)))
    assert result.status is CommandResultStatus.SUCCESS, result.message
    return result.result


# --- Reads ---


async def test_get_returns_entity(products):
    created = await create_product(products, name="Cable", price=Decimal("5"))
    result = await products.handle(GetCommand(created.id))
    assert result.succeeded
    assert result.message == "Product retrieved successfully"
    assert result.result.name == "Cable"


async def test_get_missing_is_not_found_alert(products):
    missing = uuid.uuid4()
    result = await products.handle(GetCommand(missing))
    assert result.status is CommandResultStatus.ALERT
    assert result.error_code is ErrorCode.NOT_FOUND
    assert result.message == f"Id '{missing}' not found"
    assert result.result is None


async def test_find_by_filter(products):
    await create_product(products, name="Cable", color="blue")
    await create_product(products, name="Charger", color="white")

    found = await products.handle(FindCommand(filter="$(Color==WHITE)"))
    assert found.result.name == "Charger"

    missing = await products.handle(FindCommand(filter="$(Color==red)"))
    assert missing.status is CommandResultStatus.ALERT
    assert missing.error_code is ErrorCode.NOT_FOUND
    assert missing.message == "No Product matches the filter"


async def test_malformed_filter_is_an_error(products):
    result = await products.handle(FindCommand(filter="Color==red"))
    assert result.status is CommandResultStatus.ERROR
    assert result.error_code is ErrorCode.INTERNAL_SERVER_ERROR
    assert result.message.startswith("Error finding Product: ")


async def test_list_filters_sorts_and_pages(products):
    for index in range(5):
        await create_product(products, name=f"Item {index}", price=Decimal(index))

    result = await products.handle(
        ListCommand(page=2, per_page=2, filter="$(Price>=1)", sort="$(price==desc)")
    )
    assert isinstance(result, ListCommandResult)
    assert result.succeeded
    assert result.message == "Product listed successfully"
    assert [p.name for p in result.result] == ["Item 2", "Item 1"]
    assert (result.page, result.per_page, result.page_count, result.total_count) == (2, 2, 2, 4)


async def test_list_uses_default_page_size_and_newest_first(categories, settings):
    first = await categories.handle(CreateCommand(Category(name="first")))
    await asyncio.sleep(0.001)
    second = await categories.handle(CreateCommand(Category(name="second")))

    result = await categories.handle(ListCommand())
    assert result.per_page == settings.default_per_page
    assert [c.id for c in result.result] == [second.result.id, first.result.id]


async def test_list_uses_configured_default_page(repository_factory, logger):
    paged = CrudSettings(default_page=2, default_per_page=2)
    handler = CrudCommandHandler(repository_factory(Category), logger, settings=paged)
    for name in ("a", "b", "c"):
        await handler.handle(CreateCommand(Category(name=name)))

    result = await handler.handle(ListCommand(sort="$(name==asc)"))
    assert result.page == 2
    assert result.per_page == 2
    assert [c.name for c in result.result] == ["c"]

    first = await handler.handle(ListCommand(page=1, sort="$(name==asc)"))
    assert [c.name for c in first.result] == ["a", "b"]


async def test_list_filters_and_sorts_plain_enum(products):
    await create_product(products, name="low", priority=Priority.LOW)
    await create_product(products, name="high", priority=Priority.HIGH)
    await create_product(products, name="normal", priority=Priority.NORMAL)

    result = await products.handle(
        ListCommand(filter="$(Priority>=normal)", sort="$(priority==desc)")
    )
    assert result.succeeded, result.message
    assert [p.name for p in result.result] == ["high", "normal"]


async def test_list_all_includes_soft_deleted(categories):
    created = await categories.handle(CreateCommand(Category(name="old")))
    await categories.handle(SoftDeleteCommand(created.result.id))

    assert (await categories.handle(ListCommand())).total_count == 0
    everything = await categories.handle(ListAllCommand())
    assert everything.total_count == 1
    assert everything.result[0].deleted is True


# --- Create ---


async def test_create_returns_reloaded_entity(products):
    result = await products.handle(CreateCommand(Product(name="Cable", price=Decimal("5"))))
    assert result.succeeded
    assert result.message == "Product created successfully"
    assert result.result.created_at is not None
    assert result.error_code is None


async def test_create_with_includes(products, categories):
    phones = (await categories.handle(CreateCommand(Category(name="Phones")))).result
    result = await products.handle(
        CreateCommand(Product(name="iPhone", category_id=phones.id), includes=["Category"])
    )
    assert result.result.category.name == "Phones"


async def test_invalid_entity_is_rejected_without_writing(products):
    result = await products.handle(CreateCommand(Product(name=" ", price=Decimal("-1"))))
    assert result.status is CommandResultStatus.ALERT
    assert result.error_code is ErrorCode.BAD_REQUEST
    assert result.message == "Product validation failed"
    assert [n.property_name for n in result.notifications] == ["name", "price"]

    listed = await products.handle(ListAllCommand())
    assert listed.total_count == 0


async def test_structural_validation_without_validator(categories):
    category = Category(name="Phones")
    category.name = 42
    result = await categories.handle(CreateCommand(category))
    assert result.status is CommandResultStatus.ALERT
    assert result.error_code is ErrorCode.BAD_REQUEST
    assert result.notifications[0].property_name == "name"


async def test_create_many_reports_item_positions(products):
    result = await products.handle(
        CreateManyCommand([Product(name="ok"), Product(name="")])
    )
    assert result.error_code is ErrorCode.BAD_REQUEST
    assert [n.property_name for n in result.notifications] == ["1.name"]

    created = await products.handle(
        CreateManyCommand([Product(name="a"), Product(name="b")])
    )
    assert created.succeeded
    assert [p.name for p in created.result] == ["a", "b"]


async def test_duplicate_create_is_a_conflict(categories):
    created = (await categories.handle(CreateCommand(Category(name="Phones")))).result
    result = await categories.handle(CreateCommand(Category(id=created.id, name="Again")))
    assert result.status is CommandResultStatus.ERROR
    assert result.error_code is ErrorCode.CONFLICT
    assert result.message.startswith("Error creating Category: ")


async def test_unexpected_failure_is_internal_error(products, monkeypatch):
    async def broken(entities, logger):
        raise RuntimeError("disk full")

    monkeypatch.setattr(products._repository, "_insert", broken)
    result = await products.handle(CreateCommand(Product(name="Cable")))
    assert result.status is CommandResultStatus.ERROR
    assert result.error_code is ErrorCode.INTERNAL_SERVER_ERROR
    assert result.message == "Error creating Product: disk full"


async def test_cancelled_command(products):
    cancel_event = asyncio.Event()
    cancel_event.set()
    result = await products.handle(
        CreateCommand(Product(name="Cable"), cancel_event=cancel_event)
    )
    assert result.status is CommandResultStatus.ERROR
    assert result.error_code is ErrorCode.CLIENT_CLOSED_REQUEST
    assert result.message == "Creating Product was cancelled"
    assert (await products.handle(ListAllCommand())).total_count == 0


# --- Update and patch ---


async def test_update(products):
    created = await create_product(products, name="Cable")
    changed = created.model_copy(update={"name": "USB cable"})
    result = await products.handle(UpdateCommand(changed))
    assert result.succeeded
    assert result.message == "Product updated successfully"
    assert result.result.name == "USB cable"
    assert result.result.created_at == created.created_at


async def test_update_missing_is_not_found(products):
    ghost = Product(name="Ghost")
    result = await products.handle(UpdateCommand(ghost))
    assert result.error_code is ErrorCode.NOT_FOUND
    assert result.message == f"Id '{ghost.id}' not found"


async def test_update_many_stops_at_first_missing(products):
    kept = await create_product(products, name="Cable")
    ghost = Product(name="Ghost")
    result = await products.handle(
        UpdateManyCommand([kept.model_copy(update={"name": "changed"}), ghost])
    )
    assert result.error_code is ErrorCode.NOT_FOUND
    assert (await products.handle(GetCommand(kept.id))).result.name == "Cable"


async def test_patch_applies_whitelisted_changes(products):
    created = await create_product(products, name="Cable", price=Decimal("5"))
    result = await products.handle(
        PatchCommand(created.id, PatchDocument({"Price": "7.50"}))
    )
    assert result.succeeded
    assert result.message == "Product updated successfully"
    assert result.result.price == Decimal("7.50")
    assert result.result.name == "Cable"


async def test_patch_with_invalid_property_is_bad_request(products):
    created = await create_product(products, name="Cable")
    result = await products.handle(
        PatchCommand(created.id, PatchDocument({"CreatedAt": "2020-01-01", "weight": 1}))
    )
    assert result.status is CommandResultStatus.ALERT
    assert result.error_code is ErrorCode.BAD_REQUEST
    assert result.notifications[0].property_name == "patch"
    assert result.notifications[0].error_message == "invalid property: CreatedAt, weight"


async def test_patch_failing_rules_is_bad_request(products):
    created = await create_product(products, name="Cable")
    result = await products.handle(PatchCommand(created.id, PatchDocument({"price": "-3"})))
    assert result.error_code is ErrorCode.BAD_REQUEST
    assert [n.property_name for n in result.notifications] == ["price"]


async def test_patch_missing_is_not_found(products):
    result = await products.handle(PatchCommand(uuid.uuid4(), PatchDocument({"name": "x"})))
    assert result.error_code is ErrorCode.NOT_FOUND


# --- Deletes ---


async def test_soft_delete_and_remove(products):
    created = await create_product(products, name="Cable")

    deleted = await products.handle(SoftDeleteCommand(created.id))
    assert deleted.succeeded
    assert deleted.message == "Product deleted successfully"
    assert deleted.result is None
    assert (await products.handle(GetCommand(created.id))).error_code is ErrorCode.NOT_FOUND

    # Soft-deleted rows are out of reach for remove.
    removed = await products.handle(RemoveCommand(created.id))
    assert removed.error_code is ErrorCode.NOT_FOUND


async def test_remove(products):
    created = await create_product(products, name="Cable")
    result = await products.handle(RemoveCommand(created.id))
    assert result.succeeded
    assert result.message == "Product removed successfully"
    assert (await products.handle(ListAllCommand())).total_count == 0


async def test_soft_delete_missing_is_not_found(products):
    result = await products.handle(SoftDeleteCommand(uuid.uuid4()))
    assert result.status is CommandResultStatus.ALERT
    assert result.error_code is ErrorCode.NOT_FOUND


async def test_soft_delete_of_referenced_row_is_a_conflict(products, categories):
    phones = (await categories.handle(CreateCommand(Category(name="Phones")))).result
    await create_product(products, name="iPhone", category_id=phones.id)

    result = await categories.handle(SoftDeleteCommand(phones.id))
    assert result.status is CommandResultStatus.ERROR
    assert result.error_code is ErrorCode.CONFLICT
    assert result.message.startswith("Error deleting Category: ")
    assert (await categories.handle(GetCommand(phones.id))).succeeded


# --- Dispatch ---


async def test_unknown_command_type_raises(products):
    with pytest.raises(TypeError, match="Unsupported command type"):
        await products.handle(object())
