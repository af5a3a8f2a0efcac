# seed_basic.py
# Semente simples para demonstração (idempotente).
import datetime as dt
from decimal import Decimal

from catalog import Catalog
from db import LedgerStore
from orders import OrderEngine
import settings


def run(database_url=None):
    store = LedgerStore.from_url(database_url)
    catalog = Catalog(store)
    engine = OrderEngine(store)

    # Ingredientes
    existing = {i.name: i for i in catalog.ingredients()}
    ing_specs = [
        ("Farinha de Trigo", "g", 10000, "0.0100"),   # R$0,01/g
        ("Frango Desfiado", "g", 5000, "0.0300"),
        ("Óleo", "mL", 3000, "0.0080"),
    ]
    idmap = {}
    for name, unit, qty, cost in ing_specs:
        obj = existing.get(name)
        if not obj:
            obj = catalog.add_ingredient(
                name, unit=unit, quantity_on_hand=qty, unit_cost=Decimal(cost),
                expiry_date=dt.date.today() + dt.timedelta(days=30), low_stock_threshold=500,
            )
        idmap[name] = obj.id

    # Produtos
    products = {p.name: p for p in catalog.products()}
    p = products.get("Coxinha de Frango")
    if not p:
        p = catalog.add_product(
            "Coxinha de Frango", Decimal("1.50"), category="Fritos",
            composition=[
                {"ingredient_id": idmap["Farinha de Trigo"], "quantity_per_unit": 20},
                {"ingredient_id": idmap["Frango Desfiado"], "quantity_per_unit": 15},
                {"ingredient_id": idmap["Óleo"], "quantity_per_unit": 5},
            ],
        )
    kibe = products.get("Kibe")
    if not kibe:
        # sem composição: CMV cai no percentual estimado
        kibe = catalog.add_product("Kibe", Decimal("1.80"), category="Fritos")

    # Cliente
    customers = {c.name: c for c in catalog.customers()}
    c = customers.get("Cliente Exemplo")
    if not c:
        c = catalog.add_customer("Cliente Exemplo", whatsapp="11999990000", notes="Prefere entrega à tarde")

    # Pedido
    if not engine.list_orders():
        engine.create_order(
            c.id,
            [
                {"product_id": p.id, "quantity": 50, "unit_price": p.sale_price},
                {"product_id": kibe.id, "quantity": 25, "unit_price": kibe.sale_price},
            ],
            delivery_fee=Decimal("10.00"),
            status="pending",
            notes="Pedido de demonstração",
        )

    catalog.seed_default_tasks()
    print("Seed concluída.")

if __name__ == "__main__":
    settings.configure_logging()
    run()
