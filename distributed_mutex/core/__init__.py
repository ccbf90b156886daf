# distributed_mutex/core/__init__.py

__all__ = [
    "mutex",
    "scoped",
]
