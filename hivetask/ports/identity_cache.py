"""Identity cache port — local storage of the last signed-in identity.

Used only to skip re-authentication on relaunch. Entries are discardable:
the remote store is always the source of truth.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass
class CachedSession:
    identity_json: str | None   # serialized CachedIdentity, None if absent
    external_id: str | None


class IdentityCache(Protocol):
    """Abstract local session cache."""

    def load(self) -> CachedSession | None: ...

    def save(self, identity_json: str | None, external_id: str | None) -> None: ...

    def clear(self) -> None: ...
