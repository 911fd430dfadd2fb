"""Single-use preview tokens binding a reviewed diff to a later execution."""

from __future__ import annotations

import asyncio
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Sequence

from ..common.errors import PreviewTokenExpiredError, PreviewTokenNotFoundError
from ..storage.memory import utcnow
from .models import BulkOperationRequest

LOGGER = logging.getLogger("metafin.operations.tokens")

DEFAULT_TOKEN_TTL = timedelta(minutes=30)


@dataclass(frozen=True, slots=True)
class PreviewToken:
    token: str
    item_ids: tuple[str, ...]
    request: BulkOperationRequest
    created_at: datetime


class PreviewTokenStore:
    """Keyed, lock-protected token map with a fixed time-to-live.

    Tokens live only in process memory. Expired tokens are removed lazily by
    :meth:`purge_expired` and when a consume attempt finds them stale.
    """

    def __init__(
        self,
        *,
        ttl: timedelta = DEFAULT_TOKEN_TTL,
        clock: Callable[[], datetime] = utcnow,
        logger: logging.Logger | None = None,
    ) -> None:
        if ttl <= timedelta(0):
            raise ValueError("ttl must be positive")
        self._ttl = ttl
        self._clock = clock
        self._tokens: dict[str, PreviewToken] = {}
        self._lock = asyncio.Lock()
        self._logger = logger or LOGGER

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def __len__(self) -> int:
        return len(self._tokens)

    def _is_expired(self, token: PreviewToken, now: datetime) -> bool:
        return now - token.created_at > self._ttl

    async def issue(
        self, request: BulkOperationRequest, item_ids: Sequence[str]
    ) -> PreviewToken:
        token = PreviewToken(
            token=secrets.token_urlsafe(24),
            item_ids=tuple(item_ids),
            request=request,
            created_at=self._clock(),
        )
        async with self._lock:
            self._tokens[token.token] = token
        return token

    async def consume(self, token: str) -> PreviewToken:
        """Remove and return *token*; a token can only be consumed once."""

        async with self._lock:
            stored = self._tokens.pop(token, None)
        if stored is None:
            raise PreviewTokenNotFoundError()
        if self._is_expired(stored, self._clock()):
            raise PreviewTokenExpiredError()
        return stored

    async def purge_expired(self) -> int:
        now = self._clock()
        async with self._lock:
            expired = [
                key for key, value in self._tokens.items() if self._is_expired(value, now)
            ]
            for key in expired:
                del self._tokens[key]
        if expired:
            self._logger.debug("Purged %d expired preview token(s).", len(expired))
        return len(expired)


__all__ = ["DEFAULT_TOKEN_TTL", "PreviewToken", "PreviewTokenStore"]
