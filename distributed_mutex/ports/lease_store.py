# distributed_mutex/ports/lease_store.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol, Union


@dataclass(frozen=True)
class LeaseRecord:
    """
    Value kept under a lock key: who owns the lease and until when.

    `expires_at` is a UNIX timestamp on the store's clock.
    """
    owner_token: str
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return self.expires_at <= now

    def remaining(self, now: float) -> float:
        return max(0.0, self.expires_at - now)

    def to_value(self) -> str:
        return f"{self.expires_at!r}:{self.owner_token}"

    @classmethod
    def from_value(cls, raw: Union[str, bytes]) -> "LeaseRecord":
        """
        Decode "<expires_at>:<owner_token>".

        A bare timestamp is a lease without an owner. Anything that does not
        parse is treated as already expired so the next acquirer reclaims it.
        """
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")

        expiry, _, owner = raw.partition(":")
        try:
            expires_at = float(expiry)
        except ValueError:
            expires_at = 0.0
        return cls(owner_token=owner, expires_at=expires_at)


class LeaseStore(Protocol):
    def try_create(self, key: str, owner_token: str, ttl: float) -> bool: ...

    def read(self, key: str) -> Optional[LeaseRecord]: ...

    def try_delete_owned(self, key: str, owner_token: str) -> bool: ...

    def now(self) -> float: ...
