from .registry import StorageProviderRegistry, get_storage_registry

__all__ = ["StorageProviderRegistry", "get_storage_registry"]
