"""Factory for store backends."""

from gemrelay.config.settings import get_settings
from gemrelay.store.base import Store
from gemrelay.store.json_store import JSONStore

_store: Store | None = None


def get_store() -> Store:
    """Get the store singleton for the configured backend."""
    global _store
    if _store is not None:
        return _store

    settings = get_settings()
    backend = settings.store_backend

    if backend == "json":
        _store = JSONStore(settings.store_path, max_log_count=settings.max_log_count)
        return _store

    if backend == "dynamodb":
        # Lazy import to avoid boto3 dependency when not needed
        from gemrelay.store.dynamodb_store import DynamoDBStore
        _store = DynamoDBStore(
            credentials_table=settings.dynamodb_credentials_table,
            access_keys_table=settings.dynamodb_access_keys_table,
            settings_table=settings.dynamodb_settings_table,
            logs_table=settings.dynamodb_logs_table,
            region=settings.aws_region,
        )
        return _store

    raise ValueError(f"Unknown store backend: {backend}")
