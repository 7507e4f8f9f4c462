from .registry import NotifierRegistry, get_notifier_registry

__all__ = ["NotifierRegistry", "get_notifier_registry"]
