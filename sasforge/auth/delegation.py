"""
Delegation key brokering.

A delegation key is a short-lived signing key issued by an identity authority
in place of the long-lived account key. Authority calls are expensive and rate
limited, so the broker caches one key per account identity and collapses
concurrent refreshes into a single in-flight request.

Per-identity lifecycle:

    EMPTY -> FETCHING -> VALID -> EXPIRED -> FETCHING -> VALID ...
                 |
                 +-> EMPTY (authority failure, surfaced to every waiter)

Author: sasforge Team
Date: 2026-10-19
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Optional

from sasforge.auth.descriptor import AccountIdentity
from sasforge.core.clock import Clock, SystemClock, format_timestamp, to_utc
from sasforge.exceptions import (
    AuthorityError,
    AuthorityUnavailableError,
    InvalidScopeError,
)

logger = logging.getLogger(__name__)

# Longest window an authority will issue a delegation key for.
MAX_DELEGATION_KEY_LIFETIME = timedelta(days=7)
DEFAULT_KEY_LIFETIME = timedelta(minutes=5)


@dataclass(frozen=True)
class DelegationKey:
    """Signing key issued by an identity authority for a bounded window."""

    signed_start: datetime
    signed_expiry: datetime
    signed_service: str
    signed_version: str
    value: bytes = field(repr=False)
    signed_oid: str = ""
    signed_tid: str = ""

    def __post_init__(self):
        object.__setattr__(self, "signed_start", to_utc(self.signed_start))
        object.__setattr__(self, "signed_expiry", to_utc(self.signed_expiry))

    def is_expired(self, now: datetime) -> bool:
        return now >= self.signed_expiry

    def covers(self, start: datetime, expiry: datetime) -> bool:
        """True when ``[start, expiry]`` lies inside the key's own window."""
        return self.signed_start <= start and expiry <= self.signed_expiry


@dataclass(frozen=True)
class DelegationKeyRequest:
    """Request sent to the identity authority."""

    identity: AccountIdentity
    start: datetime
    expiry: datetime


class DelegationKeyAuthority(ABC):
    """Request/response contract of an identity authority.

    Implementations raise ``AuthorityUnavailableError`` for transient failures
    and ``AuthorityDeniedError`` when the request is refused.
    """

    @abstractmethod
    async def fetch_delegation_key(self, request: DelegationKeyRequest) -> DelegationKey:
        """Issue a delegation key covering ``[request.start, request.expiry]``."""


class KeyState(str, Enum):
    """Cache state for one identity."""

    EMPTY = "empty"
    FETCHING = "fetching"
    VALID = "valid"
    EXPIRED = "expired"


@dataclass
class BrokerStats:
    """Delegation key broker statistics."""

    cache_hits: int = 0
    fetches: int = 0
    fetch_failures: int = 0
    shared_waits: int = 0


@dataclass
class _CacheEntry:
    state: KeyState = KeyState.EMPTY
    key: Optional[DelegationKey] = None
    inflight: Optional["asyncio.Task"] = None


class DelegationKeyBroker:
    """Supplies currently valid delegation keys, one cache entry per identity."""

    def __init__(
        self,
        authority: DelegationKeyAuthority,
        clock: Optional[Clock] = None,
        key_lifetime: timedelta = DEFAULT_KEY_LIFETIME,
        max_key_lifetime: timedelta = MAX_DELEGATION_KEY_LIFETIME,
    ):
        """
        Initialize the broker.

        Args:
            authority: Identity authority to fetch keys from
            clock: Time source for expiry decisions
            key_lifetime: Window requested for each new key
            max_key_lifetime: Policy ceiling on ``key_lifetime``

        Raises:
            InvalidScopeError: If ``key_lifetime`` is not positive or exceeds
                ``max_key_lifetime``
        """
        if key_lifetime <= timedelta(0) or key_lifetime > max_key_lifetime:
            raise InvalidScopeError(
                "Delegation key lifetime out of range",
                field="key_lifetime",
                expected=f"0 < lifetime <= {max_key_lifetime}",
                actual=str(key_lifetime),
            )

        self.authority = authority
        self.clock = clock or SystemClock()
        self.key_lifetime = key_lifetime
        self.stats = BrokerStats()

        self._entries: Dict[AccountIdentity, _CacheEntry] = {}
        self._lock = asyncio.Lock()

    def state(self, identity: AccountIdentity) -> KeyState:
        """Current cache state for ``identity``."""
        entry = self._entries.get(identity)
        if entry is None:
            return KeyState.EMPTY
        if entry.state == KeyState.VALID and entry.key.is_expired(self.clock.now()):
            return KeyState.EXPIRED
        return entry.state

    def _serves(self, key: DelegationKey, now: datetime, valid_until: Optional[datetime]) -> bool:
        if key.is_expired(now):
            return False
        if valid_until is None or valid_until <= key.signed_expiry:
            return True
        # A fresh key would not reach valid_until either.
        return valid_until > to_utc(now) + self.key_lifetime

    async def get_delegation_key(
        self,
        identity: AccountIdentity,
        timeout: Optional[float] = None,
        valid_until: Optional[datetime] = None,
    ) -> DelegationKey:
        """
        Return a valid delegation key for ``identity``, fetching one if needed.

        Concurrent callers for the same identity share one authority request
        and all observe its outcome.

        Args:
            identity: Account the key is for
            timeout: Seconds to wait for an in-flight fetch. The fetch is not
                cancelled on timeout and still populates the cache.
            valid_until: Time the key should still be valid at. A cached key
                that expires earlier is replaced when a freshly issued key
                would reach it.

        Returns:
            Valid DelegationKey

        Raises:
            AuthorityUnavailableError: Authority unreachable, or timeout elapsed
            AuthorityDeniedError: Authority refused the request
        """
        if valid_until is not None:
            valid_until = to_utc(valid_until)

        while True:
            async with self._lock:
                entry = self._entries.setdefault(identity, _CacheEntry())
                now = self.clock.now()

                if entry.state == KeyState.VALID:
                    if self._serves(entry.key, now, valid_until):
                        self.stats.cache_hits += 1
                        return entry.key
                    if entry.key.is_expired(now):
                        entry.state = KeyState.EXPIRED
                        logger.info(
                            f"Delegation key for {identity.name} expired at "
                            f"{format_timestamp(entry.key.signed_expiry)}"
                        )
                    else:
                        logger.info(
                            f"Delegation key for {identity.name} ends at "
                            f"{format_timestamp(entry.key.signed_expiry)}, "
                            f"before {format_timestamp(valid_until)}; refreshing"
                        )

                started = entry.inflight is None
                if started:
                    request = DelegationKeyRequest(
                        identity=identity,
                        start=to_utc(now),
                        expiry=to_utc(now + self.key_lifetime),
                    )
                    entry.state = KeyState.FETCHING
                    entry.inflight = asyncio.ensure_future(self._fetch(entry, request))
                    entry.inflight.add_done_callback(_retrieve_outcome)
                    self.stats.fetches += 1
                else:
                    self.stats.shared_waits += 1

                task = entry.inflight

            key = await self._wait(task, identity, timeout)
            # A shared fetch may have been requested for an earlier window.
            if started or self._serves(key, self.clock.now(), valid_until):
                return key

    async def _wait(
        self, task: "asyncio.Task", identity: AccountIdentity, timeout: Optional[float]
    ) -> DelegationKey:
        try:
            if timeout is None:
                return await asyncio.shield(task)
            return await asyncio.wait_for(asyncio.shield(task), timeout)
        except asyncio.TimeoutError as exc:
            raise AuthorityUnavailableError(
                f"Timed out after {timeout}s waiting for a delegation key for {identity.name}",
                field="timeout",
                expected=f"<= {timeout}s",
            ) from exc

    async def _fetch(self, entry: _CacheEntry, request: DelegationKeyRequest) -> DelegationKey:
        name = request.identity.name
        logger.info(
            f"Requesting delegation key for {name} "
            f"[{format_timestamp(request.start)}, {format_timestamp(request.expiry)}]"
        )
        try:
            key = await self.authority.fetch_delegation_key(request)
        except AuthorityError as exc:
            await self._on_failure(entry, name, exc)
            raise
        except Exception as exc:
            error = AuthorityUnavailableError(
                f"Delegation authority call failed: {exc}",
                field="authority",
                actual=type(exc).__name__,
            )
            await self._on_failure(entry, name, error)
            raise error from exc

        async with self._lock:
            entry.key = key
            entry.state = KeyState.VALID
            entry.inflight = None

        logger.info(
            f"Cached delegation key for {name}, valid until {format_timestamp(key.signed_expiry)}"
        )
        return key

    async def _on_failure(self, entry: _CacheEntry, name: str, exc: AuthorityError) -> None:
        async with self._lock:
            entry.key = None
            entry.state = KeyState.EMPTY
            entry.inflight = None
            self.stats.fetch_failures += 1
        logger.warning(f"Delegation key fetch for {name} failed: [{exc.error_code}] {exc.message}")

    async def invalidate(self, identity: AccountIdentity) -> None:
        """Drop the cached key for one identity. An in-flight fetch still completes."""
        async with self._lock:
            entry = self._entries.get(identity)
            if entry is not None and entry.inflight is None:
                del self._entries[identity]
                logger.debug(f"Invalidated delegation key cache for {identity.name}")

    async def clear(self) -> None:
        """Drop every idle cache entry."""
        async with self._lock:
            for identity in [i for i, e in self._entries.items() if e.inflight is None]:
                del self._entries[identity]


def _retrieve_outcome(task: "asyncio.Task") -> None:
    # Mark the exception as retrieved when every waiter has timed out.
    if not task.cancelled():
        task.exception()
