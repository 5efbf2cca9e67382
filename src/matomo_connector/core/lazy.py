"""Lazy re-exports for package ``__init__`` modules.

Importing ``matomo_connector.api`` should not pull in ``requests`` or
``pandas`` until one of the exported names is actually used, so the package
namespaces resolve their public names on first attribute access.
"""

from __future__ import annotations

import importlib
from collections.abc import Callable, Mapping


def lazy_exports(
    module_name: str, exports: Mapping[str, str]
) -> tuple[Callable[[str], object], Callable[[], list[str]]]:
    """
    Build ``__getattr__`` and ``__dir__`` hooks for a package module.

    Args:
        module_name: Name of the package module (for error messages).
        exports: Mapping of exported name -> dotted module path that defines it.

    Returns:
        Tuple of (__getattr__, __dir__) to assign at module level.
    """
    resolved: dict[str, object] = {}

    def __getattr__(name: str) -> object:
        if name in resolved:
            return resolved[name]
        target = exports.get(name)
        if target is None:
            raise AttributeError(f"module {module_name!r} has no attribute {name!r}")
        value = getattr(importlib.import_module(target), name)
        resolved[name] = value
        return value

    def __dir__() -> list[str]:
        return sorted(exports)

    return __getattr__, __dir__
