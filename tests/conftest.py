from decimal import Decimal

import pytest

from catalog import Catalog
from costing import CmvEngine
from db import LedgerStore
from orders import OrderEngine
from pricing import RecipeBook


@pytest.fixture
def store(tmp_path):
    return LedgerStore.from_url(f"sqlite:///{tmp_path / 'salgados.db'}")


@pytest.fixture
def catalog(store):
    return Catalog(store)


@pytest.fixture
def engine(store):
    return OrderEngine(store)


@pytest.fixture
def cmv(store):
    return CmvEngine(store)


@pytest.fixture
def recipes(store):
    return RecipeBook(store)


@pytest.fixture
def customer(catalog):
    return catalog.add_customer("Dona Maria", whatsapp="11988887777")


@pytest.fixture
def flour(catalog):
    return catalog.add_ingredient("Farinha", unit="g", quantity_on_hand=100, unit_cost=Decimal("1.50"))


@pytest.fixture
def coxinha(catalog, flour):
    return catalog.add_product(
        "Coxinha", Decimal("10.00"),
        composition=[{"ingredient_id": flour.id, "quantity_per_unit": 2}],
    )


@pytest.fixture
def kibe(catalog):
    # sem composição
    return catalog.add_product("Kibe", Decimal("4.00"))
