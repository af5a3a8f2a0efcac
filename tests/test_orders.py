from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from costing import calculate_cmv
from errors import NotFoundError, StorageError, ValidationError
from orders import OrderEngine, build_items


def _line(product, quantity, price="10.00"):
    return {"product_id": product.id, "quantity": quantity, "unit_price": Decimal(price)}


def test_end_to_end_payment_deducts_stock_and_costs(engine, store, customer, flour, coxinha, cmv):
    order = engine.create_order(customer.id, [_line(coxinha, 5)])
    assert order.total_amount == Decimal("50.00")
    assert order.status == "draft"

    result = engine.process_payment(order.id)

    assert result.order.status == "paid"
    assert result.order.paid_at is not None
    assert result.shortages == {}
    assert store.get_by_id("ingredients", flour.id).quantity_on_hand == Decimal("90")
    movements = store.get_all("stock_movements")
    assert len(movements) == 1
    assert movements[0].kind == "deduction"
    assert movements[0].reference == str(order.id)
    assert [(i.ingredient_id, i.quantity) for i in movements[0].items] == [(flour.id, Decimal("10"))]

    paid = engine.get_order(order.id)
    assert cmv.calculate_cmv([paid]) == Decimal("15.00")


def test_payment_is_idempotent(engine, store, customer, flour, coxinha):
    order = engine.create_order(customer.id, [_line(coxinha, 5)], status="pending")
    engine.process_payment(order.id)
    again = engine.process_payment(order.id)

    assert again.already_paid
    assert again.movement is None
    assert store.get_by_id("ingredients", flour.id).quantity_on_hand == Decimal("90")
    assert len(store.get_all("stock_movements")) == 1


def test_delivered_order_payment_is_noop(engine, store, customer, flour, coxinha):
    order = engine.create_order(customer.id, [_line(coxinha, 1)])
    engine.process_payment(order.id)
    engine.mark_delivered(order.id)
    result = engine.process_payment(order.id)
    assert result.already_paid
    assert result.order.status == "delivered"
    assert store.get_by_id("ingredients", flour.id).quantity_on_hand == Decimal("98")


def test_stock_never_goes_negative(engine, store, catalog, customer):
    salt = catalog.add_ingredient("Sal", unit="g", quantity_on_hand=5, unit_cost=Decimal("0.01"))
    pastel = catalog.add_product("Pastel", Decimal("6.00"),
                                 composition=[{"ingredient_id": salt.id, "quantity_per_unit": 2}])
    order = engine.create_order(customer.id, [_line(pastel, 5)])

    result = engine.process_payment(order.id)

    assert store.get_by_id("ingredients", salt.id).quantity_on_hand == Decimal("0")
    assert result.shortages == {salt.id: Decimal("5")}

    second = engine.create_order(customer.id, [_line(pastel, 1)])
    engine.process_payment(second.id)
    assert store.get_by_id("ingredients", salt.id).quantity_on_hand == Decimal("0")


def test_product_without_composition_creates_no_movement(engine, store, customer, kibe):
    order = engine.create_order(customer.id, [_line(kibe, 3, "4.00")])
    result = engine.process_payment(order.id)
    assert result.movement is None
    assert store.get_all("stock_movements") == []


def test_one_movement_aggregates_all_lines(engine, store, catalog, customer, flour, coxinha):
    empada = catalog.add_product("Empada", Decimal("5.00"),
                                 composition=[{"ingredient_id": flour.id, "quantity_per_unit": 3}])
    order = engine.create_order(customer.id, [_line(coxinha, 2), _line(empada, 1, "5.00")])
    result = engine.process_payment(order.id)

    assert len(result.movement.items) == 1
    assert result.movement.items[0].quantity == Decimal("7")
    assert store.get_by_id("ingredients", flour.id).quantity_on_hand == Decimal("93")


def test_payment_skips_deleted_ingredient(engine, store, catalog, customer, flour, coxinha):
    order = engine.create_order(customer.id, [_line(coxinha, 1)])
    catalog.delete_ingredient(flour.id)
    result = engine.process_payment(order.id)
    assert result.order.status == "paid"
    assert result.movement is None


def test_payment_failure_rolls_back_everything(engine, store, customer, flour, coxinha, monkeypatch):
    order = engine.create_order(customer.id, [_line(coxinha, 5)], status="pending")
    original = OrderEngine._apply_payment

    def failing(self, s, o):
        original(self, s, o)
        raise OperationalError("INSERT INTO stock_movement", {}, Exception("disco cheio"))

    monkeypatch.setattr(OrderEngine, "_apply_payment", failing)
    with pytest.raises(StorageError):
        engine.process_payment(order.id)

    assert engine.get_order(order.id).status == "pending"
    assert store.get_by_id("ingredients", flour.id).quantity_on_hand == Decimal("100")
    assert store.get_all("stock_movements") == []


def test_process_payment_unknown_order(engine):
    with pytest.raises(NotFoundError):
        engine.process_payment(999)


def test_cancelled_order_cannot_be_paid(engine, customer, coxinha):
    order = engine.create_order(customer.id, [_line(coxinha, 1)])
    engine.cancel_order(order.id, "cliente desistiu")
    with pytest.raises(ValidationError):
        engine.process_payment(order.id)


def test_total_reconciles_on_create_and_update(engine, customer, coxinha, kibe):
    order = engine.create_order(
        customer.id,
        [_line(coxinha, 3, "2.50"), _line(kibe, 2, "4.00")],
        delivery_fee=Decimal("7.00"),
        service_fee=Decimal("1.50"),
    )
    assert order.total_amount == Decimal("24.00")
    assert [i.subtotal for i in order.items] == [Decimal("7.50"), Decimal("8.00")]

    updated = engine.update_order(order.id, items=[_line(kibe, 1, "4.00")], delivery_fee=0)
    assert updated.total_amount == Decimal("5.50")
    assert updated.created_at == order.created_at
    reloaded = engine.get_order(order.id)
    assert reloaded.total_amount == sum(i.subtotal for i in reloaded.items) + reloaded.delivery_fee + reloaded.service_fee


def test_duplicate_lines_are_merged():
    items = build_items([
        {"product_id": 1, "quantity": 2, "unit_price": Decimal("3.00")},
        {"product_id": 1, "quantity": 1, "unit_price": Decimal("9.99")},
    ])
    assert len(items) == 1
    assert items[0].quantity == 3
    assert items[0].subtotal == Decimal("9.00")


@pytest.mark.parametrize("kwargs", [
    {"customer_id": None, "items": [{"product_id": 1, "quantity": 1, "unit_price": 1}]},
    {"customer_id": 1, "items": []},
    {"customer_id": 1, "items": [{"product_id": 1, "quantity": 0, "unit_price": 1}]},
    {"customer_id": 1, "items": [{"product_id": 1, "quantity": 1.5, "unit_price": 1}]},
    {"customer_id": 1, "items": [{"product_id": 1, "quantity": 1, "unit_price": -1}]},
    {"customer_id": 1, "items": [{"product_id": 1, "quantity": 1, "unit_price": 1}], "status": "paid"},
    {"customer_id": 1, "items": [{"product_id": 1, "quantity": 1, "unit_price": 1}], "delivery_fee": -2},
])
def test_create_validation_rejects_before_writing(engine, store, kwargs):
    with pytest.raises(ValidationError):
        engine.create_order(**kwargs)
    assert store.get_all("orders") == []


def test_state_machine(engine, customer, coxinha):
    order = engine.create_order(customer.id, [_line(coxinha, 1)])
    with pytest.raises(ValidationError):
        engine.update_order(order.id, status="delivered")
    engine.update_order(order.id, status="pending")
    engine.process_payment(order.id)
    delivered = engine.mark_delivered(order.id)
    assert delivered.delivered_at is not None
    with pytest.raises(ValidationError):
        engine.cancel_order(order.id)
    with pytest.raises(ValidationError):
        engine.update_order(order.id, status="pending")


def test_update_to_paid_deducts_stock(engine, store, customer, flour, coxinha):
    order = engine.create_order(customer.id, [_line(coxinha, 4)], status="pending")
    paid = engine.update_order(order.id, status="paid")
    assert paid.status == "paid"
    assert store.get_by_id("ingredients", flour.id).quantity_on_hand == Decimal("92")
    assert len(store.get_all("stock_movements")) == 1


def test_paid_order_items_are_frozen(engine, customer, coxinha):
    order = engine.create_order(customer.id, [_line(coxinha, 1)])
    engine.process_payment(order.id)
    with pytest.raises(ValidationError):
        engine.update_order(order.id, items=[_line(coxinha, 9)])
    # observações continuam editáveis
    assert engine.update_order(order.id, notes="retirar às 18h").notes == "retirar às 18h"


def test_cancel_and_delete_do_not_restore_stock(engine, store, customer, flour, coxinha):
    first = engine.create_order(customer.id, [_line(coxinha, 5)])
    second = engine.create_order(customer.id, [_line(coxinha, 5)])
    engine.process_payment(first.id)
    engine.process_payment(second.id)

    engine.cancel_order(first.id)
    engine.delete_order(second.id)

    assert store.get_by_id("ingredients", flour.id).quantity_on_hand == Decimal("80")
    with pytest.raises(NotFoundError):
        engine.get_order(second.id)
    with pytest.raises(NotFoundError):
        engine.delete_order(second.id)


def test_stale_order_write_is_rejected(engine, store, customer, coxinha):
    order = engine.create_order(customer.id, [_line(coxinha, 1)])
    stale = engine.get_order(order.id)
    engine.process_payment(order.id)
    stale.status = "cancelled"
    with pytest.raises(StorageError):
        store.update("orders", stale)
    assert engine.get_order(order.id).status == "paid"


def test_cmv_uses_paid_orders_from_engine(engine, store, customer, coxinha, kibe):
    a = engine.create_order(customer.id, [_line(coxinha, 2)])
    b = engine.create_order(customer.id, [_line(kibe, 10, "4.00")])
    engine.create_order(customer.id, [_line(kibe, 10, "4.00")])  # rascunho não conta
    engine.process_payment(a.id)
    engine.process_payment(b.id)
    orders = engine.list_orders()
    total = calculate_cmv(orders, store.get_all("products"), store.get_all("ingredients"), 35)
    # coxinha: 2 * 2 * 1.50 = 6.00 ; kibe: 40.00 * 35% = 14.00
    assert total == Decimal("20.00")


def test_cancelling_twice_keeps_first_reason(engine, customer, coxinha):
    order = engine.create_order(customer.id, [_line(coxinha, 1)])
    engine.cancel_order(order.id, "cliente desistiu")
    again = engine.cancel_order(order.id)
    assert again.status == "cancelled"
    assert engine.get_order(order.id).cancel_reason == "cliente desistiu"
