# tests/test_basket_service.py
import asyncio
from decimal import Decimal

from farmbasket.errors import RemoteFailure
from farmbasket.models.buyer.basket_models import DraftBasket, OrderedLineItem
from farmbasket.services.buyer.basket_service import BasketStore, has_changes


def line(product_id, quantity, price="1.00", pieces=-1):
    return OrderedLineItem(
        product_id=product_id,
        product_name=product_id.upper(),
        unit="kg",
        price=Decimal(price),
        quantity=Decimal(str(quantity)),
        pieces_count=pieces,
    )


def test_add_item_merges_same_product():
    async def scenario():
        basket = BasketStore()
        await basket.add_item(line("a1", 1, pieces=2))
        await basket.add_item(line("a1", "1.5", pieces=3))
        await basket.add_item(line("a2", 2, price="0.40"))
        return basket

    basket = asyncio.run(scenario())
    assert [i.product_id for i in basket.items] == ["a1", "a2"]
    assert basket.items[0].quantity == Decimal("2.5")
    assert basket.items[0].pieces_count == 5
    assert basket.total == Decimal("3.30")
    assert basket.snapshot.item_count == 2


def test_add_item_with_unknown_pieces_keeps_existing_count():
    async def scenario():
        basket = BasketStore()
        await basket.add_item(line("a1", 1, pieces=2))
        await basket.add_item(line("a1", 1))
        return basket.items[0]

    assert asyncio.run(scenario()).pieces_count == 2


def test_add_item_ignores_zero_quantity():
    async def scenario():
        basket = BasketStore()
        await basket.add_item(line("a1", 0))
        return basket

    assert asyncio.run(scenario()).items == []


def test_update_quantity_scales_pieces():
    async def scenario():
        basket = BasketStore()
        await basket.add_item(line("a1", 2, pieces=4))
        await basket.add_item(line("a2", 1))
        await basket.update_quantity("a1", 3)
        await basket.update_quantity("a2", Decimal("2"))
        return basket.items

    a1, a2 = asyncio.run(scenario())
    assert (a1.quantity, a1.pieces_count) == (Decimal("3"), 6)
    assert (a2.quantity, a2.pieces_count) == (Decimal("2"), -1)


def test_update_quantity_to_zero_removes_line():
    async def scenario():
        basket = BasketStore()
        await basket.add_item(line("a1", 2))
        await basket.update_quantity("a1", 0)
        return basket

    assert asyncio.run(scenario()).item_count == 0


def test_has_changes_ignores_line_order():
    a, b = line("a1", 1), line("a2", 2)
    assert not has_changes([], [])
    assert not has_changes([b, a], [a, b])
    assert has_changes([a], [])
    assert has_changes([a], [a, b])
    assert has_changes([a, line("a2", 3)], [a, b])
    assert has_changes([a, line("a3", 2)], [a, b])


def test_loaded_order_tracks_changes_against_baseline():
    async def scenario():
        basket = BasketStore()
        await basket.load_from_existing([line("a1", 2)], "ORD-1", "20261015")
        seen = [basket.snapshot.has_changes]
        await basket.update_quantity("a1", 3)
        seen.append(basket.snapshot.has_changes)
        await basket.update_quantity("a1", 2)
        seen.append(basket.snapshot.has_changes)
        await basket.update_quantity("a1", 5)
        await basket.mark_baseline()
        seen.append(basket.snapshot.has_changes)
        return basket, seen

    basket, seen = asyncio.run(scenario())
    assert seen == [False, True, False, False]
    assert basket.loaded_order_info() == ("ORD-1", "20261015")
    assert basket.snapshot.order_id == "ORD-1"
    assert not basket.is_draft()


def test_clear_drops_provenance():
    async def scenario():
        basket = BasketStore()
        await basket.load_from_existing([line("a1", 2)], "ORD-1", "20261015")
        await basket.clear()
        return basket

    basket = asyncio.run(scenario())
    assert basket.loaded_order_info() is None
    assert basket.snapshot.order_id is None
    assert basket.items == []


def test_observers_get_current_snapshot_first():
    async def scenario():
        basket = BasketStore()
        await basket.add_item(line("a1", 1))
        sub = basket.observe_basket()
        first = await sub.__anext__()
        await basket.add_item(line("a2", 1))
        second = await sub.__anext__()
        sub.close()
        return first, second

    first, second = asyncio.run(scenario())
    assert first.item_count == 1
    assert second.item_count == 2


def test_draft_changes_are_saved_once_after_debounce():
    saved = []

    async def save(draft: DraftBasket):
        saved.append(draft)

    async def scenario():
        basket = BasketStore(on_draft_changed=save, debounce_s=0.01, selected_date_key=lambda: "20261015")
        await basket.add_item(line("a1", 1))
        await basket.add_item(line("a2", 1))
        await basket.update_quantity("a1", 4)
        await basket.flush_draft()

    asyncio.run(scenario())
    assert len(saved) == 1
    assert [i.product_id for i in saved[0].items] == ["a1", "a2"]
    assert saved[0].items[0].quantity == Decimal("4")
    assert saved[0].selected_pickup_date_key == "20261015"


def test_loaded_order_edits_are_not_saved_as_draft():
    saved = []

    async def save(draft):
        saved.append(draft)

    async def scenario():
        basket = BasketStore(on_draft_changed=save, debounce_s=0)
        await basket.load_from_existing([line("a1", 2)], "ORD-1", "20261015")
        await basket.update_quantity("a1", 3)
        await basket.flush_draft()

    asyncio.run(scenario())
    assert saved == []


def test_failed_draft_save_does_not_reach_the_caller():
    async def save(draft):
        raise RemoteFailure("offline")

    async def scenario():
        basket = BasketStore(on_draft_changed=save, debounce_s=0)
        await basket.add_item(line("a1", 1))
        await basket.flush_draft()
        return basket

    assert asyncio.run(scenario()).item_count == 1


def test_load_from_draft_is_a_draft():
    async def scenario():
        basket = BasketStore()
        await basket.load_from_draft(DraftBasket(items=[line("a1", 1)], selected_pickup_date_key="20261015"))
        return basket

    basket = asyncio.run(scenario())
    assert basket.is_draft()
    assert basket.item_count == 1
    assert basket.to_draft("20261022").selected_pickup_date_key == "20261022"
