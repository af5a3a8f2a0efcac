from decimal import Decimal

import pytest

from db import Customer
from errors import NotFoundError, ValidationError


def test_insert_assigns_id_and_timestamp(store):
    c = store.insert("customers", {"id": 123, "name": "Joana"})
    assert c.id == 1
    assert c.created_at is not None
    assert store.get_by_id("customers", c.id).name == "Joana"


def test_update_replaces_entity(store):
    c = store.insert("customers", Customer(name="Joana", whatsapp="1"))
    c.whatsapp = "2"
    store.update("customers", c)
    assert store.get_by_id("customers", c.id).whatsapp == "2"


def test_missing_entities(store):
    assert store.get_by_id("customers", 42) is None
    assert store.get_by_id("customers", None) is None
    with pytest.raises(NotFoundError) as exc:
        store.update("customers", Customer(id=42, name="x"))
    assert exc.value.collection == "customers"
    assert exc.value.entity_id == 42
    with pytest.raises(NotFoundError):
        store.delete("customers", 42)


def test_unknown_collection(store):
    with pytest.raises(ValidationError):
        store.get_all("fornecedores")


def test_get_all_is_ordered_by_id(store):
    for name in ("C", "A", "B"):
        store.insert("customers", {"name": name})
    assert [c.name for c in store.get_all("customers")] == ["C", "A", "B"]


def test_config_defaults_and_updates(store):
    assert store.get_config("cmv_estimated_percent") == Decimal("35")
    assert store.get_config("app_name") == "SalgadosPro"
    store.set_config("app_name", "Salgados da Vó")
    store.set_config("cmv_estimated_percent", "42.5")
    assert store.get_config("app_name") == "Salgados da Vó"
    assert store.get_config("cmv_estimated_percent") == Decimal("42.5")


@pytest.mark.parametrize("key, value", [
    ("cmv_estimated_percent", 101),
    ("cmv_estimated_percent", -1),
    ("cmv_estimated_percent", "abc"),
    ("senha", "x"),
])
def test_config_rejects_invalid(store, key, value):
    with pytest.raises(ValidationError):
        store.set_config(key, value)
