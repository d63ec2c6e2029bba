"""
Tests for order persistence, the status workflow and checkout.
"""

import json
from decimal import Decimal

import pytest

from canteen.core.exceptions import ConflictError, PersistenceError, ValidationError
from canteen.schemas import CartState, OrderStatus
from canteen.services.cart import CartStore
from canteen.services.checkout import checkout
from canteen.services.orders import OrderStore, can_transition

KEY = "canteen_orders:A"


@pytest.fixture
def orders(kv_store) -> OrderStore:
    return OrderStore(kv_store)


@pytest.fixture
def filled_cart(cart, pizza) -> CartStore:
    cart.add_item(pizza, "A")
    cart.add_item(pizza, "A")
    cart.add_item({"item_id": "2", "name": "Tea", "unit_price": "1.50"}, "A")
    return cart


# =============================================================================
# ORDER STORE
# =============================================================================

@pytest.mark.asyncio
async def test_place_order_copies_cart(orders, filled_cart):
    order = await orders.place_order(filled_cart.snapshot(), "s1", customer_name="Asha")

    assert order.status == OrderStatus.PENDING
    assert order.vendor_id == "A"
    assert order.session_id == "s1"
    assert order.customer_name == "Asha"
    assert order.total_amount == Decimal("19.48")
    assert order.item_count == 3
    assert [line.item_id for line in order.lines] == ["1", "2"]
    assert order.created_at == order.updated_at
    assert order.accepted_at is None


@pytest.mark.asyncio
async def test_order_survives_restart(kv_store, orders, filled_cart):
    order = await orders.place_order(filled_cart.snapshot(), "s1")

    restarted = OrderStore(kv_store)
    [loaded] = await restarted.list_orders("A")

    assert loaded == order
    assert json.loads(kv_store.data[KEY])[0]["total_amount"] == "19.48"


@pytest.mark.asyncio
async def test_empty_cart_cannot_be_ordered(orders, kv_store):
    with pytest.raises(ValidationError):
        await orders.place_order(CartState(), "s1")
    assert kv_store.write_count == 0


@pytest.mark.asyncio
async def test_orders_are_kept_per_vendor(orders, pizza):
    for vendor_id in ("A", "B", "A"):
        cart = CartStore()
        cart.add_item(pizza, vendor_id)
        await orders.place_order(cart.snapshot(), f"s-{vendor_id}")

    assert len(await orders.list_orders("A")) == 2
    assert len(await orders.list_orders("B")) == 1
    assert await orders.list_orders("nobody") == []


@pytest.mark.asyncio
async def test_list_filters_by_status(orders, filled_cart):
    first = await orders.place_order(filled_cart.snapshot(), "s1")
    await orders.place_order(filled_cart.snapshot(), "s2")
    await orders.update_status("A", first.id, OrderStatus.ACCEPTED)

    accepted = await orders.list_orders("A", OrderStatus.ACCEPTED)
    pending = await orders.list_orders("A", OrderStatus.PENDING)

    assert [order.id for order in accepted] == [first.id]
    assert len(pending) == 1


@pytest.mark.asyncio
async def test_full_workflow_stamps_each_step(orders, filled_cart):
    order = await orders.place_order(filled_cart.snapshot(), "s1")

    for status in (OrderStatus.ACCEPTED, OrderStatus.PREPARING, OrderStatus.READY, OrderStatus.COMPLETED):
        order = await orders.update_status("A", order.id, status)
        assert order.status == status
        assert getattr(order, f"{status.value}_at") == order.updated_at

    assert order.cancelled_at is None
    assert (await orders.get_order("A", order.id)).status == OrderStatus.COMPLETED


@pytest.mark.asyncio
@pytest.mark.parametrize("steps", [
    [],
    [OrderStatus.ACCEPTED],
    [OrderStatus.ACCEPTED, OrderStatus.PREPARING],
])
async def test_cancel_before_ready(orders, filled_cart, steps):
    order = await orders.place_order(filled_cart.snapshot(), "s1")
    for status in steps:
        await orders.update_status("A", order.id, status)

    cancelled = await orders.update_status("A", order.id, OrderStatus.CANCELLED)

    assert cancelled.status == OrderStatus.CANCELLED
    assert cancelled.cancelled_at is not None


@pytest.mark.asyncio
@pytest.mark.parametrize("target", [OrderStatus.PREPARING, OrderStatus.READY, OrderStatus.COMPLETED, OrderStatus.PENDING])
async def test_skipping_steps_is_rejected(orders, kv_store, filled_cart, target):
    order = await orders.place_order(filled_cart.snapshot(), "s1")
    writes = kv_store.write_count

    with pytest.raises(ConflictError):
        await orders.update_status("A", order.id, target)

    assert (await orders.get_order("A", order.id)).status == OrderStatus.PENDING
    assert kv_store.write_count == writes


@pytest.mark.parametrize("status", [OrderStatus.COMPLETED, OrderStatus.CANCELLED])
def test_terminal_states_have_no_exits(status):
    assert status.is_terminal
    assert not any(can_transition(status, target) for target in OrderStatus)


@pytest.mark.asyncio
async def test_update_unknown_order_returns_none(orders):
    assert await orders.update_status("A", "missing", OrderStatus.ACCEPTED) is None
    assert await orders.get_order("A", "missing") is None


@pytest.mark.asyncio
async def test_failed_write_keeps_previous_state(orders, kv_store, filled_cart):
    order = await orders.place_order(filled_cart.snapshot(), "s1")
    kv_store.fail_writes = True

    with pytest.raises(PersistenceError):
        await orders.update_status("A", order.id, OrderStatus.ACCEPTED)
    with pytest.raises(PersistenceError):
        await orders.place_order(filled_cart.snapshot(), "s2")

    [kept] = await orders.list_orders("A")
    assert kept.status == OrderStatus.PENDING


@pytest.mark.asyncio
async def test_corrupt_slot_loads_empty(kv_store, filled_cart):
    await kv_store.set(KEY, "{not json")
    orders = OrderStore(kv_store)

    assert await orders.list_orders("A") == []

    await orders.place_order(filled_cart.snapshot(), "s1")
    assert len(json.loads(kv_store.data[KEY])) == 1


@pytest.mark.asyncio
async def test_read_failure_propagates(kv_store):
    kv_store.fail_reads = True
    with pytest.raises(PersistenceError):
        await OrderStore(kv_store).list_orders("A")


@pytest.mark.asyncio
async def test_invalidate_rereads_storage(kv_store, orders, filled_cart):
    await orders.list_orders("A")
    other = OrderStore(kv_store)
    await other.place_order(filled_cart.snapshot(), "s1")

    assert await orders.list_orders("A") == []
    orders.invalidate()
    assert len(await orders.list_orders("A")) == 1


@pytest.mark.asyncio
async def test_returned_orders_are_copies(orders, filled_cart):
    order = await orders.place_order(filled_cart.snapshot(), "s1")
    order.lines[0].quantity = 40

    [stored] = await orders.list_orders("A")
    assert stored.lines[0].quantity == 2


# =============================================================================
# CHECKOUT
# =============================================================================

@pytest.mark.asyncio
async def test_checkout_places_order_and_clears_cart(orders, filled_cart):
    order = await checkout(filled_cart, "s1", orders, special_instructions="Less spicy")

    assert filled_cart.is_empty
    assert filled_cart.vendor_id is None
    assert order.total_amount == Decimal("19.48")
    assert order.special_instructions == "Less spicy"
    assert len(await orders.list_orders("A")) == 1


@pytest.mark.asyncio
async def test_checkout_empty_cart(orders, cart, kv_store):
    with pytest.raises(ValidationError):
        await checkout(cart, "s1", orders)
    assert kv_store.write_count == 0


@pytest.mark.asyncio
async def test_checkout_failure_keeps_cart(orders, kv_store, filled_cart):
    before = filled_cart.snapshot()
    kv_store.fail_writes = True

    with pytest.raises(PersistenceError):
        await checkout(filled_cart, "s1", orders)

    assert filled_cart.snapshot() == before


@pytest.mark.asyncio
async def test_checkout_checks_menu(orders, menu_store):
    tea = await menu_store.add_item("A", {"name": "Tea", "price": "1.50"})
    cake = await menu_store.add_item("A", {"name": "Cake", "price": "3.00"})
    cart = CartStore()
    cart.add_item(tea, "A")
    cart.add_item(cake, "A")

    await menu_store.set_availability("A", cake.id, False)
    with pytest.raises(ConflictError):
        await checkout(cart, "s1", orders, menu=menu_store)

    await menu_store.remove_item("A", cake.id)
    with pytest.raises(ConflictError):
        await checkout(cart, "s1", orders, menu=menu_store)

    assert cart.get_item_count() == 2
    assert await orders.list_orders("A") == []

    cart.remove_item(cake.id)
    order = await checkout(cart, "s1", orders, menu=menu_store)
    assert order.total_amount == Decimal("1.50")
