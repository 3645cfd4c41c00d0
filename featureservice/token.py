"""
Self-renewing authentication token.
"""

import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional
from loguru import logger

from .config import settings
from .client import EsriClient
from .schema import EPOCH

NEVER = datetime.max.replace(tzinfo=timezone.utc)


class Token:
    """
    Authentication token that regenerates itself shortly before expiry

    A token built from a literal string never expires. A token built with
    a generation function starts unpopulated and is generated on first use,
    then again whenever less than ``TOKEN_REFRESH_MARGIN`` seconds remain.
    The generation function receives the service url and returns a new
    ``Token``.
    """

    def __init__(
        self,
        value: Optional[str] = None,
        expiry: Optional[datetime] = None,
        generate: Optional[Callable[[Optional[str]], "Token"]] = None,
        url: Optional[str] = None,
    ) -> None:
        self._value = value
        self._expiry = expiry or (NEVER if generate is None else datetime.min.replace(tzinfo=timezone.utc))
        self._generate = generate
        self._lock = threading.Lock()
        self._listeners: List[Callable[["Token"], None]] = []
        self.url = url

    @classmethod
    def from_generator(cls, generate: Callable[[Optional[str]], "Token"], url: Optional[str] = None) -> "Token":
        return cls(generate=generate, url=url)

    @classmethod
    def from_credentials(
        cls,
        username: str,
        password: str,
        url: Optional[str] = None,
        expiration: Optional[int] = None,
        client: Optional[EsriClient] = None,
    ) -> "Token":
        """Token generated against the server's generateToken endpoint."""
        return cls(
            generate=lambda token_url: generate_token(token_url, username, password, expiration, client),
            url=url,
        )

    @property
    def expiry(self) -> datetime:
        return self._expiry

    @property
    def seconds_remaining(self) -> float:
        if self._expiry == NEVER:
            return float("inf")
        return (self._expiry - datetime.now(timezone.utc)).total_seconds()

    @property
    def minutes_remaining(self) -> float:
        return self.seconds_remaining / 60

    def subscribe(self, callback: Callable[["Token"], None]) -> None:
        """Register a callback invoked after each successful regeneration."""
        self._listeners.append(callback)

    def _needs_regeneration(self) -> bool:
        return (
            self.url is not None
            and self._generate is not None
            and self.seconds_remaining < settings.TOKEN_REFRESH_MARGIN
        )

    def string_value(self) -> Optional[str]:
        """Current token text, regenerating it first when it is about to expire."""
        if self._needs_regeneration():
            with self._lock:
                if self._needs_regeneration():
                    self._regenerate()
        return self._value

    def _regenerate(self) -> None:
        logger.debug(f"Generating token for {self.url}")
        token = self._generate(self.url)
        self._value = token._value
        self._expiry = token._expiry
        logger.info(f"Token generated, expires at {self._expiry:%Y-%m-%d %H:%M:%S} UTC")

        for callback in list(self._listeners):
            callback(self)

    def __str__(self) -> str:
        return self.string_value() or ""

    def __eq__(self, other) -> bool:
        # Literal tokens compare by value, generated ones by identity.
        if self is other:
            return True
        if not isinstance(other, Token) or self._generate is not None or other._generate is not None:
            return False
        return self._value == other._value

    def __hash__(self) -> int:
        return hash(self._value) if self._generate is None else id(self)

    def __repr__(self) -> str:
        state = "unpopulated" if self._value is None else f"expires={self._expiry.isoformat()}"
        return f"Token({state})"


def generate_token(
    url: str,
    username: str,
    password: str,
    expiration: Optional[int] = None,
    client: Optional[EsriClient] = None,
) -> Token:
    """Request a new token for the server hosting ``url``."""
    client = client or EsriClient()
    info = client.generate_token(url, username, password, expiration or settings.TOKEN_EXPIRATION)
    return Token(info.token, EPOCH + timedelta(milliseconds=info.expires))
