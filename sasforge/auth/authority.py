"""
Local delegation key authority.

An in-process identity authority that issues delegation keys for registered
storage accounts. It stands in for the real authority during development,
demos and tests; the real authority's transport and sign-in handshake live
outside this package.

Author: sasforge Team
Date: 2026-10-19
"""

import asyncio
import logging
import secrets
import uuid
from datetime import timedelta
from typing import Dict, Iterable, Optional

from sasforge.auth.delegation import (
    MAX_DELEGATION_KEY_LIFETIME,
    DelegationKey,
    DelegationKeyAuthority,
    DelegationKeyRequest,
)
from sasforge.core.clock import format_timestamp
from sasforge.exceptions import AuthorityDeniedError, AuthorityUnavailableError

logger = logging.getLogger(__name__)


class LocalDelegationAuthority(DelegationKeyAuthority):
    """
    Issues random delegation keys for known accounts.

    Supports:
    - Per-account principal (object id) and a fixed tenant id
    - Denial of unknown accounts and of windows longer than seven days
    - Simulated outages (``available = False``) and latency
    """

    DEFAULT_SERVICE = "b"
    DEFAULT_VERSION = "2021-08-06"
    KEY_SIZE_BYTES = 32

    def __init__(
        self,
        accounts: Iterable[str] = (),
        signed_version: str = DEFAULT_VERSION,
        tenant_id: Optional[str] = None,
        latency: float = 0.0,
        max_lifetime: timedelta = MAX_DELEGATION_KEY_LIFETIME,
    ):
        """
        Initialize the authority.

        Args:
            accounts: Account names the authority will issue keys for
            signed_version: Service version stamped on issued keys
            tenant_id: Tenant id stamped on issued keys, generated if None
            latency: Seconds to wait before answering each request
            max_lifetime: Longest key window the authority grants
        """
        self.signed_version = signed_version
        self.tenant_id = tenant_id or str(uuid.uuid4())
        self.latency = latency
        self.max_lifetime = max_lifetime
        self.available = True
        self.issued_count = 0
        self._principals: Dict[str, str] = {}

        for account in accounts:
            self.register_account(account)

        logger.info(f"LocalDelegationAuthority initialized with tenant: {self.tenant_id}")

    def register_account(self, account_name: str, object_id: Optional[str] = None) -> str:
        """Allow keys to be issued for ``account_name``; returns the principal object id."""
        principal = object_id or str(uuid.uuid4())
        self._principals[account_name] = principal
        return principal

    async def fetch_delegation_key(self, request: DelegationKeyRequest) -> DelegationKey:
        """
        Issue a delegation key for the requested window.

        Raises:
            AuthorityUnavailableError: If the authority is marked unavailable
            AuthorityDeniedError: If the account is unknown or the window is invalid
        """
        if self.latency:
            await asyncio.sleep(self.latency)

        if not self.available:
            raise AuthorityUnavailableError(
                "Local delegation authority is unavailable", field="authority"
            )

        account = request.identity.name
        principal = self._principals.get(account)
        if principal is None:
            raise AuthorityDeniedError(
                f"No principal may request delegation keys for account '{account}'",
                field="account",
                actual=account,
            )

        if request.expiry <= request.start:
            raise AuthorityDeniedError(
                "Key expiry must be later than key start",
                field="expiry",
                expected=f"> {format_timestamp(request.start)}",
                actual=format_timestamp(request.expiry),
            )

        lifetime = request.expiry - request.start
        if lifetime > self.max_lifetime:
            raise AuthorityDeniedError(
                "Requested key lifetime exceeds the authority maximum",
                field="expiry",
                expected=f"<= {self.max_lifetime}",
                actual=str(lifetime),
            )

        key = DelegationKey(
            signed_start=request.start,
            signed_expiry=request.expiry,
            signed_service=self.DEFAULT_SERVICE,
            signed_version=self.signed_version,
            value=secrets.token_bytes(self.KEY_SIZE_BYTES),
            signed_oid=principal,
            signed_tid=self.tenant_id,
        )
        self.issued_count += 1

        logger.info(
            f"Issued delegation key for account={account}, "
            f"exp={format_timestamp(key.signed_expiry)}"
        )
        return key
