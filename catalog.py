# catalog.py
# Cadastros: ingredientes, produtos (com composição), clientes, alertas e tarefas de produção

from __future__ import annotations
import datetime as dt
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

from db import (
    LedgerStore, Alert, Customer, Ingredient, Product, ProductComponent, ProductionTask,
    INGREDIENT_UNITS, TASK_CATEGORIES,
)
from errors import NotFoundError, ValidationError
from money import is_finite_number, round_money, to_decimal

log = logging.getLogger("salgados.catalog")

EXPIRY_WARNING_DAYS = 3

DEFAULT_TASKS = [
    ("Preparar massa", "Preparar 3 lotes de massa para salgados", "preparacao", True),
    ("Comprar ingredientes", "Comprar ingredientes para a semana", "preparacao", True),
    ("Limpar equipamentos", "Limpeza completa dos equipamentos", "preparacao", True),
    ("Preparar recheios", "Preparar todos os recheios para montagem", "montagem", True),
    ("Montar salgados", "Montar 120 unidades de salgados variados", "montagem", False),
    ("Congelar produtos montados", "Congelar todos os salgados montados", "montagem", False),
    ("Assar primeiro lote", "Assar primeiro lote (6:00 da manhã)", "assamento", False),
    ("Embalar e etiquetar", "Embalar produtos e colar etiquetas", "embalagem", False),
    ("Entregar nos pontos", "Entregar produtos nos pontos de venda", "entrega", False),
]


def _required_name(name: Optional[str]) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Informe o nome.", field="name")
    return name


def _non_negative(value: Any, field: str):
    if value is None:
        value = 0
    if not is_finite_number(value) or to_decimal(value) < 0:
        raise ValidationError("Valor não pode ser negativo.", field=field)
    return to_decimal(value)


def build_composition(entries: Iterable[Any]) -> List[ProductComponent]:
    """Lista de {ingredient_id, quantity_per_unit}; ingrediente repetido fica com a última quantidade."""
    by_ingredient: Dict[int, ProductComponent] = {}
    for raw in entries or []:
        if isinstance(raw, ProductComponent):
            ing_id, qty = raw.ingredient_id, raw.quantity_per_unit
        elif isinstance(raw, Mapping):
            ing_id, qty = raw.get("ingredient_id"), raw.get("quantity_per_unit")
        else:
            raise ValidationError("Item de composição inválido.", field="composition")
        if ing_id is None:
            raise ValidationError("Selecione um ingrediente.", field="composition")
        if not is_finite_number(qty) or to_decimal(qty) <= 0:
            raise ValidationError("A quantidade deve ser maior que zero", field="composition")
        by_ingredient[ing_id] = ProductComponent(ingredient_id=ing_id, quantity_per_unit=to_decimal(qty))
    return list(by_ingredient.values())


class Catalog:
    def __init__(self, store: LedgerStore):
        self.store = store

    def _require(self, collection: str, entity_id: int):
        obj = self.store.get_by_id(collection, entity_id)
        if obj is None:
            raise NotFoundError(collection, entity_id)
        return obj

    # ---------------- Ingredientes ----------------
    def add_ingredient(self, name, unit="g", quantity_on_hand=0, unit_cost=0,
                       expiry_date: Optional[dt.date] = None, low_stock_threshold=0) -> Ingredient:
        ing = Ingredient(name=_required_name(name))
        self._fill_ingredient(ing, unit=unit, quantity_on_hand=quantity_on_hand, unit_cost=unit_cost,
                              expiry_date=expiry_date, low_stock_threshold=low_stock_threshold)
        return self.store.insert("ingredients", ing)

    def update_ingredient(self, ingredient_id: int, **changes) -> Ingredient:
        ing = self._require("ingredients", ingredient_id)
        if "name" in changes:
            ing.name = _required_name(changes.pop("name"))
        self._fill_ingredient(ing, **changes)
        return self.store.update("ingredients", ing)

    @staticmethod
    def _fill_ingredient(ing: Ingredient, **fields) -> None:
        if "unit" in fields:
            if fields["unit"] not in INGREDIENT_UNITS:
                raise ValidationError(f"Unidade inválida: {fields['unit']}", field="unit")
            ing.unit = fields["unit"]
        for key in ("quantity_on_hand", "unit_cost", "low_stock_threshold"):
            if key in fields:
                setattr(ing, key, _non_negative(fields[key], key))
        if "expiry_date" in fields:
            ing.expiry_date = fields["expiry_date"]

    def delete_ingredient(self, ingredient_id: int) -> None:
        # produtos que usam o ingrediente ficam com referência órfã (custo zero)
        self.store.delete("ingredients", ingredient_id)

    def ingredients(self) -> List[Ingredient]:
        return self.store.get_all("ingredients")

    # ---------------- Produtos ----------------
    def add_product(self, name, sale_price, composition: Iterable[Any] = (), sku=None,
                    description=None, category=None, active=True) -> Product:
        product = Product(name=_required_name(name), active=bool(active))
        self._fill_product(product, sale_price=sale_price, composition=composition, sku=sku,
                           description=description, category=category)
        return self.store.insert("products", product)

    def update_product(self, product_id: int, **changes) -> Product:
        product = self._require("products", product_id)
        if "name" in changes:
            product.name = _required_name(changes.pop("name"))
        if "active" in changes:
            product.active = bool(changes.pop("active"))
        self._fill_product(product, **changes)
        return self.store.update("products", product)

    @staticmethod
    def _fill_product(product: Product, **fields) -> None:
        if "sale_price" in fields:
            price = fields["sale_price"]
            if not is_finite_number(price) or to_decimal(price) <= 0:
                raise ValidationError("Informe o preço de venda.", field="sale_price")
            product.sale_price = round_money(price)
        if "composition" in fields:
            product.composition = build_composition(fields["composition"])
        for key in ("sku", "description", "category"):
            if key in fields:
                setattr(product, key, (fields[key] or None))

    def delete_product(self, product_id: int) -> None:
        # pedidos antigos continuam apontando para o id (vira "Produto não encontrado")
        self.store.delete("products", product_id)

    def products(self, active_only: bool = False) -> List[Product]:
        items = self.store.get_all("products")
        return [p for p in items if p.active] if active_only else items

    # ---------------- Clientes ----------------
    def add_customer(self, name, whatsapp=None, notes=None) -> Customer:
        return self.store.insert("customers", Customer(name=_required_name(name), whatsapp=whatsapp, notes=notes))

    def update_customer(self, customer_id: int, **changes) -> Customer:
        c = self._require("customers", customer_id)
        if "name" in changes:
            c.name = _required_name(changes["name"])
        if "whatsapp" in changes:
            c.whatsapp = changes["whatsapp"]
        if "notes" in changes:
            c.notes = changes["notes"]
        return self.store.update("customers", c)

    def delete_customer(self, customer_id: int) -> None:
        self.store.delete("customers", customer_id)

    def customers(self) -> List[Customer]:
        return self.store.get_all("customers")

    # ---------------- Alertas ----------------
    def generate_alerts(self, today: Optional[dt.date] = None) -> List[Alert]:
        """Apaga os alertas antigos e gera de novo a partir dos ingredientes.
        Alerta igual (tipo + descrição) a um já lido continua lido."""
        today = today or dt.date.today()
        limit = today + dt.timedelta(days=EXPIRY_WARNING_DAYS)
        fresh: List[Alert] = []
        for ing in self.store.get_all("ingredients"):
            if ing.expiry_date and ing.expiry_date <= limit:
                days = (ing.expiry_date - today).days
                fresh.append(Alert(
                    kind="vencimento_proximo",
                    title="Produto próximo do vencimento",
                    description=f"{ing.name} vence em {days} dias",
                ))
            if to_decimal(ing.quantity_on_hand) <= to_decimal(ing.low_stock_threshold):
                fresh.append(Alert(
                    kind="estoque_baixo",
                    title="Estoque baixo",
                    description=f"{ing.name}: restam apenas {to_decimal(ing.quantity_on_hand).normalize():f}{ing.unit}",
                ))
        with self.store.transaction() as s:
            read = {(a.kind, a.description) for a in s.query(Alert).filter(Alert.read.is_(True))}
            for a in fresh:
                a.read = (a.kind, a.description) in read
            s.query(Alert).delete()
            s.add_all(fresh)
        log.info("Alertas regenerados: %d", len(fresh))
        return fresh

    def alerts(self, unread_only: bool = False) -> List[Alert]:
        items = self.store.get_all("alerts")
        return [a for a in items if not a.read] if unread_only else items

    def mark_alert_as_read(self, alert_id: int) -> Alert:
        alert = self._require("alerts", alert_id)
        alert.read = True
        return self.store.update("alerts", alert)

    # ---------------- Produção ----------------
    def add_task(self, title, description=None, category="preparacao",
                 due_date: Optional[dt.date] = None, done=False) -> ProductionTask:
        if not (title or "").strip():
            raise ValidationError("Informe o título.", field="title")
        if category not in TASK_CATEGORIES:
            raise ValidationError(f"Categoria inválida: {category}", field="category")
        task = ProductionTask(title=title.strip(), description=description, category=category,
                              due_date=due_date or dt.date.today(), done=bool(done))
        return self.store.insert("production_tasks", task)

    def update_task(self, task_id: int, **changes) -> ProductionTask:
        task = self._require("production_tasks", task_id)
        if "category" in changes and changes["category"] not in TASK_CATEGORIES:
            raise ValidationError(f"Categoria inválida: {changes['category']}", field="category")
        if "title" in changes and not (changes["title"] or "").strip():
            raise ValidationError("Informe o título.", field="title")
        for key in ("title", "description", "category", "due_date", "done"):
            if key in changes:
                setattr(task, key, changes[key])
        return self.store.update("production_tasks", task)

    def toggle_task(self, task_id: int) -> ProductionTask:
        task = self._require("production_tasks", task_id)
        return self.update_task(task_id, done=not task.done)

    def tasks(self, category: Optional[str] = None) -> List[ProductionTask]:
        items = self.store.get_all("production_tasks")
        return [t for t in items if t.category == category] if category else items

    def seed_default_tasks(self, today: Optional[dt.date] = None) -> List[ProductionTask]:
        """Checklist padrão; só cria se ainda não houver tarefas."""
        if self.store.get_all("production_tasks"):
            return []
        return [
            self.add_task(title, description, category, due_date=today, done=done)
            for title, description, category, done in DEFAULT_TASKS
        ]
