# costing.py
# Explosão da composição dos produtos e cálculo do CMV (custo da mercadoria vendida)

from __future__ import annotations
import logging
from decimal import Decimal
from typing import Dict, Iterable, Mapping, Optional, Tuple

from db import LedgerStore, Order, OrderItem
from money import ZERO, round_money, to_decimal
import settings

log = logging.getLogger("salgados.costing")

SOLD_STATUSES = ("paid", "delivered")


def index_by_id(entities: Iterable) -> Dict[int, object]:
    return {e.id: e for e in entities}

# ---------------------------------------------------------------------
# Composição
# ---------------------------------------------------------------------
def resolve_order_line_cost(
    item: OrderItem,
    product_index: Mapping[int, object],
    ingredient_index: Mapping[int, object],
) -> Optional[Decimal]:
    """
    Custo de material de uma linha do pedido.
    None = sem dados de composição (produto inexistente ou composição vazia);
    o chamador deve usar o percentual estimado. Ingredientes inexistentes custam zero.
    """
    product = product_index.get(item.product_id)
    if product is None or not product.composition:
        return None
    qty = to_decimal(item.quantity)
    total = ZERO
    for comp in product.composition:
        ing = ingredient_index.get(comp.ingredient_id)
        if ing is None:
            continue
        total += to_decimal(comp.quantity_per_unit) * qty * to_decimal(ing.unit_cost)
    return total


def line_requirements(item: OrderItem, product_index: Mapping[int, object]) -> Dict[int, Decimal]:
    """Insumos (ingredient_id -> quantidade) consumidos por uma linha."""
    req: Dict[int, Decimal] = {}
    product = product_index.get(item.product_id)
    if product is None:
        return req
    qty = to_decimal(item.quantity)
    for comp in product.composition:
        req[comp.ingredient_id] = req.get(comp.ingredient_id, ZERO) + to_decimal(comp.quantity_per_unit) * qty
    return req


def order_requirements(order: Order, product_index: Mapping[int, object]) -> Dict[int, Decimal]:
    """Soma insumos por todos os itens do pedido."""
    totals: Dict[int, Decimal] = {}
    for item in order.items:
        for ing_id, qty in line_requirements(item, product_index).items():
            totals[ing_id] = totals.get(ing_id, ZERO) + qty
    return totals

# ---------------------------------------------------------------------
# CMV
# ---------------------------------------------------------------------
def order_cost(
    order: Order,
    product_index: Mapping[int, object],
    ingredient_index: Mapping[int, object],
    cmv_percent,
) -> Tuple[Decimal, bool]:
    """Retorna (custo, estimado?). Estimado quando nenhuma linha tem composição."""
    has_composition = False
    total = ZERO
    for item in order.items:
        cost = resolve_order_line_cost(item, product_index, ingredient_index)
        if cost is not None:
            has_composition = True
            total += cost
    if has_composition:
        return total, False
    return to_decimal(order.total_amount) * to_decimal(cmv_percent) / 100, True


def calculate_cmv(
    orders: Iterable[Order],
    products: Iterable,
    ingredients: Iterable,
    cmv_percent=settings.CMV_DEFAULT_PERCENT,
) -> Decimal:
    product_index = index_by_id(products)
    ingredient_index = index_by_id(ingredients)
    total = ZERO
    for order in orders:
        if order.status not in SOLD_STATUSES:
            continue
        cost, _ = order_cost(order, product_index, ingredient_index, cmv_percent)
        total += cost
    # arredonda só no final
    return round_money(total)


class CmvEngine:
    def __init__(self, store: LedgerStore):
        self.store = store

    def cmv_percent(self) -> Decimal:
        value = self.store.get_config("cmv_estimated_percent")
        return settings.CMV_DEFAULT_PERCENT if value is None else to_decimal(value)

    def calculate_cmv(self, orders: Iterable[Order]) -> Decimal:
        return calculate_cmv(
            orders,
            self.store.get_all("products"),
            self.store.get_all("ingredients"),
            self.cmv_percent(),
        )

    def order_costs(self, orders: Iterable[Order]) -> Dict[int, Tuple[Decimal, bool]]:
        """Custo por pedido vendido (para relatórios detalhados)."""
        product_index = index_by_id(self.store.get_all("products"))
        ingredient_index = index_by_id(self.store.get_all("ingredients"))
        pct = self.cmv_percent()
        return {
            o.id: order_cost(o, product_index, ingredient_index, pct)
            for o in orders if o.status in SOLD_STATUSES
        }
