# distributed_mutex/utils/__init__.py

__all__ = [
    "interleave",
    "tokens",
]
