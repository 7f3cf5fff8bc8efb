"""Tests for gemrelay/store/factory.py: get_store factory."""

import pytest

import gemrelay.store.factory as factory_mod
from gemrelay.store.dynamodb_store import DynamoDBStore
from gemrelay.store.json_store import JSONStore


@pytest.fixture(autouse=True)
def reset_store_singleton(monkeypatch):
    """Reset the factory singleton between tests."""
    monkeypatch.setattr(factory_mod, "_store", None)
    yield
    monkeypatch.setattr(factory_mod, "_store", None)


class TestGetStore:

    def test_json_backend(self, override_settings, store_file):
        override_settings(STORE_BACKEND="json", STORE_PATH=store_file)
        assert isinstance(factory_mod.get_store(), JSONStore)

    def test_json_backend_missing_file_is_empty_store(self, override_settings, tmp_path):
        override_settings(STORE_BACKEND="json", STORE_PATH=str(tmp_path / "nonexistent.json"))
        assert isinstance(factory_mod.get_store(), JSONStore)

    def test_dynamodb_backend(self, override_settings):
        override_settings(STORE_BACKEND="dynamodb", DYNAMODB_CREDENTIALS_TABLE="creds-prod")
        store = factory_mod.get_store()
        assert isinstance(store, DynamoDBStore)
        assert store._table_names["credentials"] == "creds-prod"

    def test_singleton_returns_same_instance(self, override_settings, store_file):
        override_settings(STORE_BACKEND="json", STORE_PATH=store_file)
        assert factory_mod.get_store() is factory_mod.get_store()

    def test_unknown_backend(self, override_settings):
        override_settings(STORE_BACKEND="redis")
        with pytest.raises(ValueError):
            factory_mod.get_store()
