import pytest

from errors import InvalidInputError
from schemas import FeeRates, Order
from settings import (
    DEFAULT_RATES,
    EnvRateSource,
    MongoRateSource,
    rate_source_from_env,
    resolve_rates,
)


class FakeCollection:
    def __init__(self, doc):
        self.doc = doc

    def find_one(self, query):
        return self.doc


class FakeDb:
    def __init__(self, doc=None):
        self.collections = {"settings": FakeCollection(doc)}

    def __getitem__(self, name):
        return self.collections[name]


def test_env_rates(monkeypatch):
    monkeypatch.setenv("SERVICE_FEE_RATE", "0.05")
    monkeypatch.setenv("SERVICE_FEE_CAP", "15")
    monkeypatch.delenv("COMMISSION_RATE", raising=False)
    assert EnvRateSource().load() == FeeRates(service_fee_rate=0.05, service_fee_cap=15, commission_rate=0.10)


def test_env_rates_garbage_falls_back(monkeypatch, caplog):
    monkeypatch.setenv("SERVICE_FEE_RATE", "four percent")
    assert resolve_rates(EnvRateSource()) == DEFAULT_RATES
    assert "using default rates" in caplog.text


def test_out_of_range_rate_falls_back(monkeypatch):
    monkeypatch.setenv("COMMISSION_RATE", "1.5")
    assert resolve_rates(EnvRateSource()) == DEFAULT_RATES


def test_database_rates():
    db = FakeDb({"_id": "financial", "service_fee_rate": 0.03, "commission_rate": 0.12})
    rates = MongoRateSource(db).load()
    assert rates.service_fee_rate == 0.03
    assert rates.service_fee_cap == 20.0
    assert rates.commission_rate == 0.12


def test_missing_database_rates_fall_back():
    assert resolve_rates(MongoRateSource(FakeDb(None))) == DEFAULT_RATES


def test_rate_source_selection(monkeypatch):
    monkeypatch.setenv("RATES_SOURCE", "database")
    assert isinstance(rate_source_from_env(FakeDb()), MongoRateSource)
    assert isinstance(rate_source_from_env(None), EnvRateSource)
    monkeypatch.delenv("RATES_SOURCE")
    assert isinstance(rate_source_from_env(FakeDb()), EnvRateSource)


def test_order_document_boundary():
    order = Order.from_document({"_id": "o1", "status": "ready", "subtotal": 10, "legacy_column": "x"})
    assert order.id == "o1"
    assert order.service_fee is None
    assert order.to_document()["_id"] == "o1"

    with pytest.raises(InvalidInputError) as exc:
        Order.from_document({"status": "ready"})
    assert exc.value.field == "id"

    with pytest.raises(InvalidInputError) as exc:
        Order.from_document({"_id": "o2", "status": "delivered"})
    assert exc.value.field == "status"
