# pricing.py
# Calculadora de preços de receitas + cadastro de receitas precificadas

from __future__ import annotations
import logging
from decimal import Decimal
from typing import List, Mapping, NamedTuple, Optional

from db import LedgerStore, Product, Recipe
from errors import ValidationError
from money import ZERO, cents_to_decimal, is_finite_number, round_money, to_decimal

log = logging.getLogger("salgados.pricing")

MARGIN_MAX = Decimal("300")
MARGIN_WARN = Decimal("95")


class Pricing(NamedTuple):
    unit_cost: Decimal
    suggested_price: Decimal
    profit_per_unit: Decimal


class MarginCheck(NamedTuple):
    valid: bool
    warning: Optional[str] = None
    error: Optional[str] = None


def calculate_pricing(ingredient_cost, units_produced, margin_percent) -> Pricing:
    """
    Custo de insumos + rendimento + margem -> custo unitário, preço sugerido e lucro.
    Rendimento <= 0 conta como 1; margem limitada a [0, 300]. Cada valor é
    arredondado para 2 casas antes de alimentar o próximo.
    """
    cost = to_decimal(ingredient_cost)
    units = to_decimal(units_produced)
    if units <= 0:
        units = Decimal(1)
    margin = max(ZERO, min(MARGIN_MAX, to_decimal(margin_percent)))

    unit_cost = round_money(cost / units)
    suggested_price = round_money(unit_cost * (1 + margin / 100))
    profit_per_unit = round_money(suggested_price - unit_cost)
    return Pricing(unit_cost, suggested_price, profit_per_unit)


def calculate_pricing_cents(ingredient_cost_cents: int, units_produced, margin_percent) -> Pricing:
    """Entrada da UI em centavos inteiros."""
    return calculate_pricing(cents_to_decimal(ingredient_cost_cents), units_produced, margin_percent)


def validate_margin(margin_percent) -> MarginCheck:
    if not is_finite_number(margin_percent):
        return MarginCheck(False, error="Margem inválida")
    m = to_decimal(margin_percent)
    if m < 0:
        return MarginCheck(False, error="Margem não pode ser negativa")
    if m > MARGIN_MAX:
        return MarginCheck(False, error="Margem muito alta (máximo 300%)")
    if m >= MARGIN_WARN:
        return MarginCheck(True, warning="Margem muito alta pode distorcer preço")
    return MarginCheck(True)

# ---------------------------------------------------------------------
# Custo/margem de produto (exibição do catálogo)
# ---------------------------------------------------------------------
def product_unit_cost(product: Product, ingredient_index: Mapping[int, object]) -> Decimal:
    total = ZERO
    for comp in product.composition:
        ing = ingredient_index.get(comp.ingredient_id)
        if ing is not None:
            total += to_decimal(comp.quantity_per_unit) * to_decimal(ing.unit_cost)
    return total


def product_margin(product: Product, ingredient_index: Mapping[int, object]) -> Decimal:
    """Margem sobre o preço de venda, em %. Zero se custo ou preço forem zero."""
    cost = product_unit_cost(product, ingredient_index)
    price = to_decimal(product.sale_price)
    if cost == 0 or price == 0:
        return ZERO
    return round_money((price - cost) / price * 100)

# ---------------------------------------------------------------------
# Receitas salvas
# ---------------------------------------------------------------------
class RecipeBook:
    def __init__(self, store: LedgerStore):
        self.store = store

    def save(self, name: str, ingredient_cost, yield_units, margin_percent) -> Recipe:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Informe o nome.", field="name")
        if not is_finite_number(yield_units) or to_decimal(yield_units) <= 0:
            raise ValidationError("Rendimento deve ser maior que zero.", field="yield_units")
        if not is_finite_number(ingredient_cost) or to_decimal(ingredient_cost) < 0:
            raise ValidationError("Custo de insumos inválido.", field="ingredient_cost")
        check = validate_margin(margin_percent)
        if not check.valid:
            raise ValidationError(check.error or "Margem inválida", field="margin_percent")
        if check.warning:
            log.warning("Receita %r: %s (%s%%)", name, check.warning, margin_percent)

        calc = calculate_pricing(ingredient_cost, yield_units, margin_percent)
        recipe = Recipe(
            name=name,
            ingredient_cost=round_money(ingredient_cost),
            yield_units=to_decimal(yield_units),
            margin_percent=to_decimal(margin_percent),
            suggested_price=calc.suggested_price,
            profit_per_unit=calc.profit_per_unit,
        )
        return self.store.insert("recipes", recipe)

    def list(self) -> List[Recipe]:
        return self.store.get_all("recipes")

    def delete(self, recipe_id: int) -> None:
        self.store.delete("recipes", recipe_id)
