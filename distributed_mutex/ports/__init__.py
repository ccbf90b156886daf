# distributed_mutex/ports/__init__

__all__ = [
    "lease_store",
]
