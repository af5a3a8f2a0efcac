# db.py
# ORM, engine/sessão e o LedgerStore (CRUD por coleção + config tipada)

from __future__ import annotations
import datetime as dt
import logging
from contextlib import contextmanager
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Mapping, Optional, Union

from sqlalchemy import (
    create_engine, event, Column, Integer, String, Numeric, Boolean, DateTime, Date,
    ForeignKey, Text,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, relationship, sessionmaker, Session

from errors import NotFoundError, StorageError, ValidationError
from money import is_finite_number, to_decimal
import settings

log = logging.getLogger("salgados.db")

# ---------------------------------------------------------------------
# Base / Constantes
# ---------------------------------------------------------------------
Base = declarative_base()

INGREDIENT_UNITS = ("kg", "g", "L", "mL", "unit")
ORDER_STATUSES = ("draft", "pending", "paid", "delivered", "cancelled")
TASK_CATEGORIES = ("preparacao", "montagem", "assamento", "embalagem", "entrega")


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc).replace(tzinfo=None)

# ---------------------------------------------------------------------
# Engine helpers
# ---------------------------------------------------------------------
def make_engine(database_url: Optional[str] = None):
    url = database_url or settings.DATABASE_URL
    kw = dict(echo=False, future=True, pool_pre_ping=True)
    # Força SSL no Postgres (Neon) se não houver parâmetro
    if url.startswith("postgres") and "sslmode=" not in url:
        if "?" in url:
            url = url + "&sslmode=require"
        else:
            url = url + "?sslmode=require"
    engine = create_engine(url, **kw)
    if url.startswith("sqlite"):
        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()
    return engine


def make_sessionmaker(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)

# ---------------------------------------------------------------------
# Modelos
# ---------------------------------------------------------------------
class Config(Base):
    __tablename__ = "config"
    id = Column(Integer, primary_key=True)
    cmv_estimated_percent = Column(Numeric(5, 2), default=lambda: settings.CMV_DEFAULT_PERCENT)
    app_name = Column(String(120), default=lambda: settings.APP_NAME_DEFAULT)
    logo_url = Column(Text)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

# chave -> tipo aceito em get_config/set_config
CONFIG_KEYS: Dict[str, type] = {
    "cmv_estimated_percent": Decimal,
    "app_name": str,
    "logo_url": str,
}

class Ingredient(Base):
    __tablename__ = "ingredient"
    id = Column(Integer, primary_key=True)
    name = Column(String(120), nullable=False, index=True)
    unit = Column(String(10), default="g")
    quantity_on_hand = Column(Numeric(14, 3), default=0, nullable=False)
    unit_cost = Column(Numeric(12, 4), default=0, nullable=False)   # custo por unidade
    expiry_date = Column(Date)                                       # validade (opcional)
    low_stock_threshold = Column(Numeric(14, 3), default=0)
    created_at = Column(DateTime, default=utcnow)

class Product(Base):
    __tablename__ = "product"
    id = Column(Integer, primary_key=True)
    name = Column(String(120), nullable=False, index=True)
    sku = Column(String(64))
    description = Column(Text)
    sale_price = Column(Numeric(12, 2), nullable=False)
    category = Column(String(60))
    active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)

    composition = relationship(
        "ProductComponent",
        back_populates="product",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ProductComponent.id",
    )

class ProductComponent(Base):
    __tablename__ = "product_component"
    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey("product.id", ondelete="CASCADE"), nullable=False)
    ingredient_id = Column(Integer, nullable=False, index=True)  # sem FK: referência pode ficar órfã
    quantity_per_unit = Column(Numeric(14, 3), nullable=False)

    product = relationship("Product", back_populates="composition")

class Customer(Base):
    __tablename__ = "customer"
    id = Column(Integer, primary_key=True)
    name = Column(String(120), nullable=False, index=True)
    whatsapp = Column(String(20))
    notes = Column(Text)
    created_at = Column(DateTime, default=utcnow)

class Order(Base):
    __tablename__ = "order"
    id = Column(Integer, primary_key=True)
    customer_id = Column(Integer, index=True)
    status = Column(String(20), default="draft", nullable=False, index=True)
    delivery_fee = Column(Numeric(12, 2), default=0, nullable=False)
    service_fee = Column(Numeric(12, 2), default=0, nullable=False)
    total_amount = Column(Numeric(12, 2), default=0, nullable=False)
    notes = Column(Text)
    cancel_reason = Column(Text)
    created_at = Column(DateTime, default=utcnow, index=True)
    paid_at = Column(DateTime)
    delivered_at = Column(DateTime)
    version = Column(Integer, nullable=False)

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OrderItem.id",
    )

    __mapper_args__ = {"version_id_col": version}

class OrderItem(Base):
    __tablename__ = "order_item"
    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("order.id", ondelete="CASCADE"), nullable=False)
    product_id = Column(Integer, nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    subtotal = Column(Numeric(12, 2), nullable=False, default=0)

    order = relationship("Order", back_populates="items")

class StockMovement(Base):
    __tablename__ = "stock_movement"
    id = Column(Integer, primary_key=True)
    kind = Column(String(12), default="deduction", nullable=False)
    reference = Column(String(64), index=True)  # id do pedido ou "adjustment"
    created_at = Column(DateTime, default=utcnow)

    items = relationship(
        "StockMovementItem",
        back_populates="movement",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="StockMovementItem.id",
    )

class StockMovementItem(Base):
    __tablename__ = "stock_movement_item"
    id = Column(Integer, primary_key=True)
    movement_id = Column(Integer, ForeignKey("stock_movement.id", ondelete="CASCADE"), nullable=False)
    ingredient_id = Column(Integer, nullable=False, index=True)
    quantity = Column(Numeric(14, 3), nullable=False)

    movement = relationship("StockMovement", back_populates="items")

class Recipe(Base):
    """Receita da calculadora de preços (independente de Produto/Pedido)."""
    __tablename__ = "recipe"
    id = Column(Integer, primary_key=True)
    name = Column(String(120), nullable=False)
    ingredient_cost = Column(Numeric(12, 2), nullable=False)
    yield_units = Column(Numeric(10, 2), nullable=False, default=1)
    margin_percent = Column(Numeric(6, 2), nullable=False)
    suggested_price = Column(Numeric(12, 2), nullable=False)
    profit_per_unit = Column(Numeric(12, 2), nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

class ProductionTask(Base):
    __tablename__ = "production_task"
    id = Column(Integer, primary_key=True)
    title = Column(String(200), nullable=False)
    description = Column(Text)
    done = Column(Boolean, default=False)
    due_date = Column(Date)
    category = Column(String(20), default="preparacao")
    created_at = Column(DateTime, default=utcnow)

class Alert(Base):
    __tablename__ = "alert"
    id = Column(Integer, primary_key=True)
    kind = Column(String(24), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text)
    read = Column(Boolean, default=False)
    created_at = Column(DateTime, default=utcnow)

COLLECTIONS: Dict[str, type] = {
    "ingredients": Ingredient,
    "products": Product,
    "customers": Customer,
    "orders": Order,
    "stock_movements": StockMovement,
    "recipes": Recipe,
    "production_tasks": ProductionTask,
    "alerts": Alert,
}

# ---------------------------------------------------------------------
# Config default
# ---------------------------------------------------------------------
def get_or_create_default_config(session: Session) -> Config:
    cfg = session.query(Config).order_by(Config.id.asc()).first()
    if not cfg:
        cfg = Config()
        session.add(cfg)
        session.flush()
    return cfg

def coerce_config_value(key: str, value: Any) -> Any:
    if key not in CONFIG_KEYS:
        raise ValidationError(f"Configuração desconhecida: {key}", field=key)
    if value is None:
        return None
    if CONFIG_KEYS[key] is Decimal:
        if not is_finite_number(value):
            raise ValidationError("Informe um número válido.", field=key)
        d = to_decimal(value)
        if key == "cmv_estimated_percent" and not (0 <= d <= 100):
            raise ValidationError("Informe um percentual entre 0 e 100", field=key)
        return d
    return str(value)

# ---------------------------------------------------------------------
# Inicialização do DB
# ---------------------------------------------------------------------
def init_db(engine):
    # cria tabelas
    Base.metadata.create_all(engine)
    # seeds
    SessionLocal = make_sessionmaker(engine)
    with SessionLocal() as session:
        get_or_create_default_config(session)
        session.commit()
    return engine

# ---------------------------------------------------------------------
# LedgerStore
# ---------------------------------------------------------------------
class LedgerStore:
    """
    Coleções persistentes (ingredients, products, orders, ...) com CRUD por chamada.
    Cada chamada abre sua própria sessão/transação; `transaction()` expõe a sessão
    para operações que precisam gravar várias entidades de uma vez.
    """

    def __init__(self, session_factory):
        self.SessionLocal = session_factory

    @classmethod
    def from_url(cls, database_url: Optional[str] = None) -> "LedgerStore":
        engine = init_db(make_engine(database_url))
        return cls(make_sessionmaker(engine))

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            log.error("Transação desfeita: %s", e)
            raise StorageError(str(e)) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @staticmethod
    def model_for(collection: str) -> type:
        try:
            return COLLECTIONS[collection]
        except KeyError:
            raise ValidationError(f"Coleção desconhecida: {collection}") from None

    def get_all(self, collection: str) -> List[Any]:
        model = self.model_for(collection)
        with self.transaction() as s:
            return s.query(model).order_by(model.id.asc()).all()

    def get_by_id(self, collection: str, entity_id: int) -> Optional[Any]:
        model = self.model_for(collection)
        if entity_id is None:
            return None
        with self.transaction() as s:
            return s.get(model, entity_id)

    def insert(self, collection: str, entity: Union[Mapping[str, Any], Any]) -> Any:
        model = self.model_for(collection)
        if isinstance(entity, Mapping):
            fields = {k: v for k, v in entity.items() if k not in ("id", "created_at")}
            entity = model(**fields)
        elif not isinstance(entity, model):
            raise ValidationError(f"Entidade inválida para {collection}")
        with self.transaction() as s:
            s.add(entity)
            s.flush()
            log.debug("insert %s #%s", collection, entity.id)
        return entity

    def update(self, collection: str, entity: Any) -> Any:
        """Substitui a entidade inteira pelo id."""
        model = self.model_for(collection)
        with self.transaction() as s:
            if entity.id is None or s.get(model, entity.id) is None:
                raise NotFoundError(collection, entity.id)
            merged = s.merge(entity)
            s.flush()
        return merged

    def delete(self, collection: str, entity_id: int) -> None:
        model = self.model_for(collection)
        with self.transaction() as s:
            obj = s.get(model, entity_id)
            if obj is None:
                raise NotFoundError(collection, entity_id)
            s.delete(obj)
            log.debug("delete %s #%s", collection, entity_id)

    def get_config(self, key: str) -> Any:
        if key not in CONFIG_KEYS:
            raise ValidationError(f"Configuração desconhecida: {key}", field=key)
        with self.transaction() as s:
            return getattr(get_or_create_default_config(s), key)

    def set_config(self, key: str, value: Any) -> None:
        value = coerce_config_value(key, value)
        with self.transaction() as s:
            cfg = get_or_create_default_config(s)
            setattr(cfg, key, value)
