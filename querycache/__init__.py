"""
Transparent read-through query caching for DB-API drivers and SQLAlchemy.

Public names are imported lazily so that ``import querycache`` stays cheap
and does not pull in SQLAlchemy or redis until they are used.
"""

import importlib
import threading

__all__ = [
    "CACHE_MARKER",
    "CachingDriver",
    "Settings",
    "cacheable",
    "configure_logging",
    "create_cached_engine",
    "create_caching_driver",
    "dispose_cached_engine",
    "get_settings",
]

_LAZY_ATTRS = {
    "CACHE_MARKER": ("querycache.core.database.markers", "CACHE_MARKER"),
    "CachingDriver": ("querycache.core.database.driver", "CachingDriver"),
    "Settings": ("querycache.settings", "Settings"),
    "cacheable": ("querycache.core.database.markers", "cacheable"),
    "configure_logging": ("querycache.core.wiring", "configure_logging"),
    "create_cached_engine": ("querycache.core.database.engine", "create_cached_engine"),
    "create_caching_driver": ("querycache.core.wiring", "create_caching_driver"),
    "dispose_cached_engine": ("querycache.core.database.engine", "dispose_cached_engine"),
    "get_settings": ("querycache.settings", "get_settings"),
}

_LOADED: dict[str, object] = {}
_IMPORT_LOCK = threading.Lock()


def __getattr__(name: str) -> object:
    """PEP 562 lazy attribute access for the public API."""
    if name not in _LAZY_ATTRS:
        raise AttributeError(f"module '{__name__}' has no attribute '{name}'") from None

    if name in _LOADED:
        return _LOADED[name]

    with _IMPORT_LOCK:
        if name in _LOADED:
            return _LOADED[name]

        module_name, attr_name = _LAZY_ATTRS[name]
        try:
            module = importlib.import_module(module_name)
        except ImportError as exc:
            raise ImportError(f"Failed to lazy import '{name}' from '{module_name}'") from exc
        result = getattr(module, attr_name)
        _LOADED[name] = result
        return result


__version__ = "1.0.0"
