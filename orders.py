# orders.py
# Ciclo de vida do pedido: totais, transições de status e baixa de estoque no pagamento

from __future__ import annotations
import logging
import threading
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, NamedTuple, Optional

from sqlalchemy.orm import Session

from costing import index_by_id, order_requirements
from db import (
    LedgerStore, Order, OrderItem, Product, Ingredient, StockMovement, StockMovementItem,
    ORDER_STATUSES, utcnow,
)
from errors import NotFoundError, ValidationError
from money import ZERO, is_finite_number, round_money, to_decimal

log = logging.getLogger("salgados.orders")

# estado -> estados alcançáveis
TRANSITIONS: Dict[str, frozenset] = {
    "draft": frozenset({"pending", "paid", "cancelled"}),
    "pending": frozenset({"paid", "cancelled"}),
    "paid": frozenset({"delivered", "cancelled"}),
    "delivered": frozenset(),
    "cancelled": frozenset(),
}
INITIAL_STATUSES = ("draft", "pending")
EDITABLE_STATUSES = ("draft", "pending")
PAID_STATUSES = ("paid", "delivered")


class PaymentResult(NamedTuple):
    order: Order
    movement: Optional[StockMovement]
    shortages: Dict[int, Decimal]     # ingredient_id -> quantidade que faltou
    already_paid: bool = False

# ---------------------------------------------------------------------
# Itens e totais
# ---------------------------------------------------------------------
def _quantity(value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError("Quantidade inválida.", field="quantity")
    if isinstance(value, int):
        q = value
    elif is_finite_number(value) and to_decimal(value) == to_decimal(value).to_integral_value():
        q = int(to_decimal(value))
    else:
        raise ValidationError("Quantidade deve ser um número inteiro.", field="quantity")
    if q <= 0:
        raise ValidationError("Quantidade deve ser maior que zero.", field="quantity")
    return q


def _amount(value: Any, field: str) -> Decimal:
    if value is None:
        return ZERO
    if not is_finite_number(value) or to_decimal(value) < 0:
        raise ValidationError("Valor não pode ser negativo.", field=field)
    return round_money(value)


def build_items(items: Iterable[Any]) -> List[OrderItem]:
    """
    Normaliza as linhas (OrderItem ou dict com product_id/quantity/unit_price),
    valida e junta produtos repetidos somando a quantidade (vale o primeiro preço).
    """
    merged: Dict[int, OrderItem] = {}
    for raw in items or []:
        if isinstance(raw, OrderItem):
            product_id, quantity, unit_price = raw.product_id, raw.quantity, raw.unit_price
        elif isinstance(raw, Mapping):
            product_id, quantity, unit_price = raw.get("product_id"), raw.get("quantity"), raw.get("unit_price")
        else:
            raise ValidationError("Item de pedido inválido.", field="items")
        if product_id is None:
            raise ValidationError("Selecione um produto.", field="product_id")
        quantity = _quantity(quantity)
        price = _amount(unit_price, "unit_price")
        if product_id in merged:
            merged[product_id].quantity += quantity
        else:
            merged[product_id] = OrderItem(product_id=product_id, quantity=quantity, unit_price=price)
    out = list(merged.values())
    for it in out:
        it.subtotal = round_money(it.quantity * to_decimal(it.unit_price))
    return out


def order_total(items: Iterable[OrderItem], delivery_fee, service_fee) -> Decimal:
    subtotal = sum((to_decimal(it.subtotal) for it in items), ZERO)
    return round_money(subtotal + to_decimal(delivery_fee) + to_decimal(service_fee))


def recalculate(order: Order) -> Order:
    """Recalcula subtotais e total; nunca confia no total recebido."""
    for it in order.items:
        it.subtotal = round_money(int(it.quantity) * to_decimal(it.unit_price))
    order.total_amount = order_total(order.items, order.delivery_fee, order.service_fee)
    return order


def check_transition(current: str, new: str) -> None:
    if new not in ORDER_STATUSES:
        raise ValidationError(f"Status inválido: {new}", field="status")
    if new != current and new not in TRANSITIONS.get(current, frozenset()):
        raise ValidationError(f"Transição não permitida: {current} -> {new}", field="status")

# ---------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------
class OrderEngine:
    def __init__(self, store: LedgerStore):
        self.store = store
        # um pagamento por vez; o version_id do pedido cobre outros processos
        self._lock = threading.RLock()

    # -------- leitura --------
    def get_order(self, order_id: int) -> Order:
        order = self.store.get_by_id("orders", order_id)
        if order is None:
            raise NotFoundError("orders", order_id)
        return order

    def list_orders(self, status: Optional[str] = None) -> List[Order]:
        orders = self.store.get_all("orders")
        if status is not None:
            orders = [o for o in orders if o.status == status]
        return orders

    # -------- escrita --------
    def create_order(
        self,
        customer_id: Optional[int],
        items: Iterable[Any],
        delivery_fee=0,
        service_fee=0,
        status: str = "draft",
        notes: Optional[str] = None,
    ) -> Order:
        if not customer_id:
            raise ValidationError("Selecione um cliente.", field="customer_id")
        lines = build_items(items)
        if not lines:
            raise ValidationError("Adicione pelo menos um item.", field="items")
        if status not in INITIAL_STATUSES:
            raise ValidationError("Pedido novo deve ser rascunho ou pendente.", field="status")
        order = Order(
            customer_id=customer_id,
            status=status,
            delivery_fee=_amount(delivery_fee, "delivery_fee"),
            service_fee=_amount(service_fee, "service_fee"),
            notes=notes,
            items=lines,
        )
        recalculate(order)
        order = self.store.insert("orders", order)
        log.info("Pedido #%s criado (%s) total=%s", order.id, order.status, order.total_amount)
        return order

    def update_order(
        self,
        order_id: int,
        *,
        customer_id: Optional[int] = None,
        items: Optional[Iterable[Any]] = None,
        delivery_fee=None,
        service_fee=None,
        status: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Order:
        # valida a entrada antes de abrir a transação
        lines = build_items(items) if items is not None else None
        if lines is not None and not lines:
            raise ValidationError("Adicione pelo menos um item.", field="items")
        fees = {}
        if delivery_fee is not None:
            fees["delivery_fee"] = _amount(delivery_fee, "delivery_fee")
        if service_fee is not None:
            fees["service_fee"] = _amount(service_fee, "service_fee")

        with self._lock, self.store.transaction() as s:
            order = s.get(Order, order_id)
            if order is None:
                raise NotFoundError("orders", order_id)
            if (lines is not None or fees) and order.status not in EDITABLE_STATUSES:
                raise ValidationError("Itens e taxas só podem mudar antes do pagamento.", field="items")
            if status is not None:
                check_transition(order.status, status)

            if customer_id is not None:
                order.customer_id = customer_id
            if notes is not None:
                order.notes = notes
            if lines is not None:
                order.items = lines
            for k, v in fees.items():
                setattr(order, k, v)
            recalculate(order)

            if status is not None and status != order.status:
                self._move(s, order, status)
            s.flush()
        log.info("Pedido #%s atualizado (%s) total=%s", order.id, order.status, order.total_amount)
        return order

    def process_payment(self, order_id: int) -> PaymentResult:
        """
        Marca como pago e dá baixa nos insumos, tudo numa transação só.
        Idempotente: pedido já pago/entregue retorna sem mexer no estoque.
        """
        with self._lock, self.store.transaction() as s:
            order = s.get(Order, order_id, with_for_update=True)
            if order is None:
                raise NotFoundError("orders", order_id)
            if order.status in PAID_STATUSES:
                log.info("Pedido #%s já estava pago; nada a fazer", order_id)
                return PaymentResult(order, None, {}, already_paid=True)
            check_transition(order.status, "paid")
            result = self._apply_payment(s, order)
        log.info(
            "Pedido #%s pago; baixa de %d insumo(s)",
            order_id, len(result.movement.items) if result.movement else 0,
        )
        return result

    def mark_delivered(self, order_id: int) -> Order:
        return self.update_order(order_id, status="delivered")

    def cancel_order(self, order_id: int, reason: Optional[str] = None) -> Order:
        # estoque já baixado não volta
        with self._lock, self.store.transaction() as s:
            order = s.get(Order, order_id)
            if order is None:
                raise NotFoundError("orders", order_id)
            if order.status == "cancelled":
                # terminal: motivo original fica
                return order
            check_transition(order.status, "cancelled")
            order.status = "cancelled"
            order.cancel_reason = reason or "Sem justificativa."
            s.flush()
        log.info("Pedido #%s cancelado", order_id)
        return order

    def delete_order(self, order_id: int) -> None:
        # estoque já baixado não volta
        self.store.delete("orders", order_id)
        log.info("Pedido #%s excluído", order_id)

    # -------- internos --------
    def _move(self, s: Session, order: Order, status: str) -> None:
        if status == "paid":
            self._apply_payment(s, order)
        elif status == "delivered":
            order.status = "delivered"
            order.delivered_at = utcnow()
        else:
            order.status = status

    def _apply_payment(self, s: Session, order: Order) -> PaymentResult:
        product_ids = {it.product_id for it in order.items}
        products = s.query(Product).filter(Product.id.in_(product_ids)).all() if product_ids else []
        requirements = order_requirements(order, index_by_id(products))

        shortages: Dict[int, Decimal] = {}
        moved: List[StockMovementItem] = []
        for ing_id, qty in requirements.items():
            if qty <= 0:
                continue
            ing = s.get(Ingredient, ing_id)
            if ing is None:
                log.warning("Pedido #%s: ingrediente #%s não existe mais; ignorado", order.id, ing_id)
                continue
            available = to_decimal(ing.quantity_on_hand)
            if qty > available:
                shortages[ing_id] = qty - available
            ing.quantity_on_hand = max(ZERO, available - qty)
            moved.append(StockMovementItem(ingredient_id=ing_id, quantity=qty))

        if shortages:
            log.warning("Pedido #%s pago com faltas de estoque: %s", order.id, shortages)

        order.status = "paid"
        order.paid_at = utcnow()
        movement = None
        if moved:
            movement = StockMovement(kind="deduction", reference=str(order.id), items=moved)
            s.add(movement)
        s.flush()
        return PaymentResult(order, movement, shortages)
