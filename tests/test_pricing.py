from decimal import Decimal

import pytest

from errors import ValidationError
from money import fmt_money, parse_brl_to_cents, to_decimal
from pricing import calculate_pricing, calculate_pricing_cents, product_margin, validate_margin


def test_basic_pricing():
    p = calculate_pricing(100, 10, 50)
    assert p.unit_cost == Decimal("10.00")
    assert p.suggested_price == Decimal("15.00")
    assert p.profit_per_unit == Decimal("5.00")


def test_zero_cost():
    assert calculate_pricing(0, 10, 50) == (Decimal("0.00"),) * 3


def test_zero_units_counts_as_one():
    p = calculate_pricing(100, 0, 50)
    assert p.unit_cost == Decimal("100.00")
    assert p.suggested_price == Decimal("150.00")


def test_margin_is_clamped():
    assert calculate_pricing(10, 1, 1000).suggested_price == Decimal("40.00")
    assert calculate_pricing(10, 1, -20).suggested_price == Decimal("10.00")


def test_rounding_happens_per_step():
    # 10 / 3 = 3.33 ; 3.33 * 1.5 = 4.995 -> 5.00
    p = calculate_pricing(10, 3, 50)
    assert p.unit_cost == Decimal("3.33")
    assert p.suggested_price == Decimal("5.00")
    assert p.profit_per_unit == Decimal("1.67")


def test_pricing_from_cents():
    assert calculate_pricing_cents(10000, 10, 50).suggested_price == Decimal("15.00")


@pytest.mark.parametrize("margin, valid, warning, error", [
    (50, True, None, None),
    (95, True, "Margem muito alta pode distorcer preço", None),
    (-1, False, None, "Margem não pode ser negativa"),
    (301, False, None, "Margem muito alta (máximo 300%)"),
    (float("nan"), False, None, "Margem inválida"),
])
def test_validate_margin(margin, valid, warning, error):
    check = validate_margin(margin)
    assert (check.valid, check.warning, check.error) == (valid, warning, error)


def test_money_helpers():
    assert parse_brl_to_cents("R$ 1.234,56") == 123456
    assert parse_brl_to_cents("") == 0
    assert fmt_money(Decimal("1234.5")) == "R$ 1.234,50"
    assert to_decimal(float("inf")) == 0
    assert to_decimal("abc") == 0


def test_product_margin(catalog, flour, coxinha, store):
    ingredients = {i.id: i for i in store.get_all("ingredients")}
    # custo 2 * 1.50 = 3.00 ; preço 10.00
    assert product_margin(coxinha, ingredients) == Decimal("70.00")


def test_recipe_book(recipes):
    saved = recipes.save("Coxinha", Decimal("100"), Decimal("10"), 50)
    assert saved.suggested_price == Decimal("15.00")
    assert saved.profit_per_unit == Decimal("5.00")
    assert [r.name for r in recipes.list()] == ["Coxinha"]
    recipes.delete(saved.id)
    assert recipes.list() == []


def test_recipe_book_accepts_fractional_yield(recipes):
    saved = recipes.save("Bolo", 30, "0.5", 0)
    assert saved.yield_units == Decimal("0.5")
    assert saved.suggested_price == Decimal("60.00")


@pytest.mark.parametrize("args", [
    ("", 10, 10, 50),
    ("Coxinha", 10, 0, 50),
    ("Coxinha", -1, 10, 50),
    ("Coxinha", 10, 10, 400),
])
def test_recipe_book_rejects_invalid(recipes, args):
    with pytest.raises(ValidationError):
        recipes.save(*args)
    assert recipes.list() == []
