from .registry import Adapter, build_adapters

__all__ = ["Adapter", "build_adapters"]
