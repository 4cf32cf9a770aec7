"""Tests for the cart store, its commands and the pure transition function."""

import pytest
from pydantic import ValidationError

from services.cart_service.cart_store import (
    PLACEHOLDER_IMAGE,
    AddItem,
    CartItem,
    CartState,
    CartStore,
    ClearCart,
    LoadCart,
    Product,
    RemoveItem,
    ToggleVisibility,
    UpdateQuantity,
    reduce,
)
from services.cart_service.notifications import CollectingNotifier
from shared.exceptions import InsufficientStock
from tests.fakes import MemoryStorage


@pytest.fixture()
def storage():
    return MemoryStorage()


@pytest.fixture()
def notifier():
    return CollectingNotifier()


@pytest.fixture()
def store(storage, notifier):
    store = CartStore(storage, notifier=notifier)
    store.hydrate()
    return store


class TestProductSchema:
    def test_accepts_storefront_field_names(self):
        product = Product.model_validate({"_id": "9", "name": "Mug", "price": 199, "stock": 3})
        assert product.id == "9"
        assert product.primary_image == PLACEHOLDER_IMAGE

    def test_first_image_is_primary(self, laptop):
        assert laptop.primary_image == "/img/laptop.jpg"

    @pytest.mark.parametrize(
        "payload",
        [
            {"name": "No id", "price": 1, "stock": 1},
            {"_id": "1", "name": "Negative price", "price": -1, "stock": 1},
            {"_id": "1", "name": "Negative stock", "price": 1, "stock": -1},
            {"_id": "1", "name": "Bad price", "price": "free", "stock": 1},
        ],
    )
    def test_rejects_invalid_payloads(self, payload):
        with pytest.raises(ValidationError):
            Product.model_validate(payload)


class TestReduce:
    def test_add_inserts_new_line(self, laptop):
        state = reduce(CartState(), AddItem(laptop, 2))
        assert len(state.items) == 1
        item = state.items[0]
        assert (item.id, item.quantity, item.image, item.sku) == ("1", 2, "/img/laptop.jpg", "LAP-1")

    def test_add_merges_existing_line(self, laptop):
        state = reduce(reduce(CartState(), AddItem(laptop, 2)), AddItem(laptop, 2))
        assert len(state.items) == 1
        assert state.items[0].quantity == 4
        assert state.total == 4000

    def test_merge_is_capped_at_stock(self, laptop):
        state = reduce(CartState(), AddItem(laptop, 7))
        state = reduce(state, AddItem(laptop, 7))
        assert state.items[0].quantity == 10

    def test_add_more_than_stock_raises(self, laptop):
        with pytest.raises(InsufficientStock) as exc_info:
            reduce(CartState(), AddItem(laptop, 11))
        assert exc_info.value.requested == 11
        assert exc_info.value.available == 10

    def test_add_zero_quantity_raises(self, laptop):
        with pytest.raises(ValueError):
            reduce(CartState(), AddItem(laptop, 0))

    def test_update_clamps_to_stock(self, laptop):
        state = reduce(CartState(), AddItem(laptop, 1))
        state = reduce(state, UpdateQuantity("1", 999))
        assert state.items[0].quantity == 10

    def test_update_to_zero_is_remove(self, laptop, headphones):
        state = reduce(reduce(CartState(), AddItem(laptop, 1)), AddItem(headphones, 1))
        assert reduce(state, UpdateQuantity("1", 0)) == reduce(state, RemoveItem("1"))
        assert reduce(state, UpdateQuantity("1", -3)) == reduce(state, RemoveItem("1"))

    def test_remove_absent_product_is_noop(self, laptop):
        state = reduce(CartState(), AddItem(laptop, 1))
        assert reduce(state, RemoveItem("missing")) == state

    def test_clear_and_toggle(self, laptop):
        state = reduce(CartState(), AddItem(laptop, 1))
        assert reduce(state, ClearCart()).items == ()
        assert reduce(state, ToggleVisibility()).is_open is True

    def test_load_replaces_items(self, laptop):
        item = CartItem.from_product(laptop, 3)
        state = reduce(CartState(), LoadCart((item,)))
        assert state.items == (item,)

    def test_unknown_command(self):
        with pytest.raises(TypeError):
            reduce(CartState(), object())

    def test_reduce_does_not_mutate_input(self, laptop):
        state = CartState()
        reduce(state, AddItem(laptop, 1))
        assert state.items == ()


class TestCartStoreDerivedValues:
    def test_two_lines_total_and_count(self, store, laptop, headphones):
        store.add_item(laptop, 2)
        store.add_item(headphones, 3)
        assert store.total == 3500
        assert store.item_count == 5

    def test_totals_follow_every_mutation(self, store, laptop, headphones):
        store.add_item(laptop, 2)
        store.add_item(headphones, 1)
        store.update_quantity("2", 4)
        store.remove_item("1")
        assert store.total == sum(item.price * item.quantity for item in store.items) == 2000
        assert store.item_count == sum(item.quantity for item in store.items) == 4

    def test_lookup_helpers(self, store, laptop):
        store.add_item(laptop, 2)
        assert store.get_item_quantity("1") == 2
        assert store.get_item_quantity("2") == 0
        assert store.is_in_cart("1")
        assert not store.is_in_cart("2")


class TestCartStoreMutations:
    def test_add_persists_and_notifies(self, store, storage, notifier, laptop):
        assert store.add_item(laptop, 2) is True
        assert len(storage.saves) == 1
        assert storage.items[0].quantity == 2
        assert notifier.messages[-1] == {"level": "success", "message": "Laptop added to cart"}

    def test_add_beyond_stock_warns_and_keeps_cart(self, store, storage, notifier, laptop):
        store.add_item(laptop, 2)
        assert store.add_item(laptop, 11) is False
        assert store.get_item_quantity("1") == 2
        assert len(storage.saves) == 1
        assert notifier.messages[-1] == {"level": "warning", "message": "Not enough stock available"}

    def test_update_above_stock_warns_and_clamps(self, store, notifier, laptop):
        store.add_item(laptop, 1)
        store.update_quantity("1", 999)
        assert store.get_item_quantity("1") == 10
        assert {"level": "warning", "message": "Only 10 left in stock"} in notifier.messages

    def test_update_to_zero_removes(self, store, notifier, laptop):
        store.add_item(laptop, 1)
        store.update_quantity("1", 0)
        assert store.items == ()
        assert notifier.messages[-1]["message"] == "Item removed from cart"

    def test_update_absent_product_is_noop(self, store, storage):
        store.update_quantity("missing", 3)
        assert storage.saves == []

    def test_remove_absent_product_is_noop(self, store, storage, notifier):
        store.remove_item("missing")
        assert storage.saves == []
        assert notifier.messages == []

    def test_clear_persists_empty_cart(self, store, storage, notifier, laptop):
        store.add_item(laptop, 1)
        store.clear()
        assert store.items == ()
        assert storage.saves[-1] == []
        assert notifier.messages[-1]["message"] == "Cart cleared"

    def test_toggle_visibility_is_not_persisted(self, store, storage):
        assert store.toggle_visibility() is True
        assert store.toggle_visibility() is False
        assert storage.saves == []

    def test_snapshot_uses_storefront_field_names(self, store, laptop):
        store.add_item(laptop, 2)
        assert store.snapshot() == [
            {
                "_id": "1",
                "name": "Laptop",
                "price": 1000.0,
                "image": "/img/laptop.jpg",
                "stock": 10,
                "quantity": 2,
                "sku": "LAP-1",
            }
        ]

    def test_works_without_notifier(self, storage, laptop):
        store = CartStore(storage)
        store.hydrate()
        assert store.add_item(laptop) is True


class TestCartStoreHydration:
    def test_hydrate_reads_storage_once(self, laptop):
        storage = MemoryStorage([CartItem.from_product(laptop, 3)])
        store = CartStore(storage)
        store.hydrate()
        store.hydrate()
        assert storage.loads == 1
        assert store.get_item_quantity("1") == 3

    def test_hydrate_does_not_write(self, laptop):
        storage = MemoryStorage([CartItem.from_product(laptop, 3)])
        CartStore(storage).hydrate()
        assert storage.saves == []
