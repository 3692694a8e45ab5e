from . import bulk, imports, operations

__all__ = ["bulk", "imports", "operations"]
