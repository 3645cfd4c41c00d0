"""
Connection identity - the value that names one logical connection.
"""

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass(frozen=True)
class ServiceIdentity:
    """
    Immutable (url, credentials, token, gdb version) tuple

    Used as the schema cache key and to decide which features may be
    edited in one batch. Credentials (any ``requests`` auth object) and the
    token take part in equality but not in the hash, since auth objects
    are not required to be hashable.
    """

    url: str
    credentials: Any = field(default=None, hash=False)
    token: Any = field(default=None, hash=False)
    gdb_version: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "url", self.url.rstrip("/"))
