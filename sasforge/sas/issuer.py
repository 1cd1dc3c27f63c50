"""
SAS issuance.

``generate_blob_sas`` and ``generate_account_sas`` turn a scope plus key
material into a ``SignedToken``. ``SasIssuer`` wraps them in the end-to-end
flows: shared-key blob SAS, account SAS, delegated blob SAS and the
multi-service connection string.

Author: sasforge Team
Date: 2026-10-19
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional, Union
from urllib.parse import urlsplit

from sasforge.auth.delegation import DelegationKey, DelegationKeyBroker
from sasforge.auth.descriptor import AccountIdentity
from sasforge.auth.signer import (
    compute_signature,
    sign_with_account_key,
    sign_with_delegation_key,
)
from sasforge.core.clock import Clock, SystemClock, format_timestamp
from sasforge.exceptions import InvalidScopeError, SigningError
from sasforge.sas.assembler import (
    build_connection_string,
    build_resource_uri,
    build_service_uri,
)
from sasforge.sas.canonical import (
    DEFAULT_VERSION,
    account_string_to_sign,
    blob_string_to_sign,
    check_version,
)
from sasforge.sas.permissions import (
    AccountSasPermission,
    AccountSasResourceType,
    AccountSasService,
    BlobSasPermission,
    SasProtocol,
)
from sasforge.sas.scope import AccountSasScope, BlobSasScope
from sasforge.sas.token import SignedToken

logger = logging.getLogger(__name__)

BlobPermissions = Union[str, Iterable[BlobSasPermission]]
AccountPermissions = Union[str, Iterable[AccountSasPermission]]


def generate_blob_sas(
    scope: BlobSasScope,
    account_name: str,
    version: str = DEFAULT_VERSION,
    account_key: Optional[bytes] = None,
    delegation_key: Optional[DelegationKey] = None,
) -> SignedToken:
    """
    Sign a container or blob scope.

    Exactly one of ``account_key`` and ``delegation_key`` must be given.

    Raises:
        SigningError: On missing/ambiguous key material, or a token window
            outside the delegation key's window
        InvalidScopeError: On an unsupported version
    """
    if (account_key is None) == (delegation_key is None):
        raise SigningError(
            "Provide exactly one of account_key or delegation_key",
            field="key",
        )

    string_to_sign = blob_string_to_sign(scope, account_name, version, delegation_key)

    parameters = []
    if delegation_key is not None:
        signature = sign_with_delegation_key(
            delegation_key, scope.start, scope.expiry, string_to_sign
        )
        parameters += [
            ("skoid", delegation_key.signed_oid),
            ("sktid", delegation_key.signed_tid),
            ("skt", format_timestamp(delegation_key.signed_start)),
            ("ske", format_timestamp(delegation_key.signed_expiry)),
            ("sks", delegation_key.signed_service),
            ("skv", delegation_key.signed_version),
        ]
    else:
        signature = compute_signature(account_key, string_to_sign)

    parameters += [
        ("sv", version),
        ("spr", scope.protocol.value),
        ("st", format_timestamp(scope.start) if scope.start else None),
        ("se", format_timestamp(scope.expiry)),
        ("sip", scope.ip_range),
        ("sr", scope.signed_resource),
        ("sp", scope.permission_letters),
        ("sig", signature),
    ]
    return SignedToken.build(parameters)


def generate_account_sas(
    scope: AccountSasScope,
    identity: AccountIdentity,
    version: str = DEFAULT_VERSION,
) -> SignedToken:
    """Sign an account scope with the identity's shared key."""
    string_to_sign = account_string_to_sign(scope, identity.name, version)
    signature = sign_with_account_key(identity, string_to_sign)

    return SignedToken.build(
        [
            ("sv", version),
            ("ss", scope.service_letters),
            ("srt", scope.resource_type_letters),
            ("spr", scope.protocol.value),
            ("st", format_timestamp(scope.start) if scope.start else None),
            ("se", format_timestamp(scope.expiry)),
            ("sip", scope.ip_range),
            ("sp", scope.permission_letters),
            ("sig", signature),
        ]
    )


@dataclass
class SasPolicy:
    """Issuance policy applied by ``SasIssuer``."""

    version: str = DEFAULT_VERSION
    protocol: SasProtocol = SasProtocol.HTTPS
    # Backdate resource-scope starts to tolerate clock skew on the service.
    start_backdate: timedelta = timedelta(0)
    delegated_max_window: timedelta = timedelta(days=7)
    # Delegation key lifetime a default-expiry delegated token must still get.
    delegated_min_remaining: timedelta = timedelta(minutes=1)

    def __post_init__(self):
        check_version(self.version)
        self.protocol = SasProtocol(self.protocol)
        for name in ("start_backdate", "delegated_min_remaining"):
            if getattr(self, name) < timedelta(0):
                raise InvalidScopeError(
                    f"{name} cannot be negative",
                    field=name,
                    expected=">= 0",
                    actual=str(getattr(self, name)),
                )


class SasIssuer:
    """Issues SAS tokens, URIs and connection strings under a policy."""

    def __init__(
        self,
        policy: Optional[SasPolicy] = None,
        clock: Optional[Clock] = None,
        broker: Optional[DelegationKeyBroker] = None,
    ):
        self.policy = policy or SasPolicy()
        self.clock = clock or (broker.clock if broker else SystemClock())
        self.broker = broker

    def _resource_start(self, now: datetime) -> datetime:
        return now - self.policy.start_backdate

    def _endpoint(self, identity: AccountIdentity, service: AccountSasService) -> str:
        """The identity's endpoint for ``service``, if the token protocol allows its scheme."""
        endpoint = identity.endpoint_for(service.host_label)
        scheme = urlsplit(endpoint).scheme.lower()
        allowed = self.policy.protocol.value.split(",")
        if scheme not in allowed:
            raise InvalidScopeError(
                f"{service.host_label} endpoint uses {scheme}, which the SAS protocol does not allow",
                field="protocol",
                expected=self.policy.protocol.value,
                actual=scheme,
            )
        return endpoint

    def blob_sas(
        self,
        identity: AccountIdentity,
        container_name: str,
        blob_name: Optional[str],
        permissions: BlobPermissions,
        expires_in: timedelta,
        start: Optional[datetime] = None,
    ) -> SignedToken:
        """Shared-key SAS for a blob (or a container when ``blob_name`` is None)."""
        if not identity.has_shared_key:
            raise SigningError(
                f"Account '{identity.name}' has no shared key", field="AccountKey"
            )

        now = self.clock.now()
        scope = BlobSasScope(
            container_name=container_name,
            blob_name=blob_name,
            permissions=permissions,
            start=start or self._resource_start(now),
            expiry=now + expires_in,
            protocol=self.policy.protocol,
        )
        token = generate_blob_sas(
            scope, identity.name, self.policy.version, account_key=identity.shared_key
        )
        logger.info(
            f"Issued {scope.signed_resource} SAS for {identity.name}/{container_name}, "
            f"sp={scope.permission_letters}, se={format_timestamp(scope.expiry)}"
        )
        return token

    def blob_sas_uri(
        self,
        identity: AccountIdentity,
        container_name: str,
        blob_name: Optional[str],
        permissions: BlobPermissions,
        expires_in: timedelta,
        start: Optional[datetime] = None,
    ) -> str:
        endpoint = self._endpoint(identity, AccountSasService.BLOB)
        token = self.blob_sas(identity, container_name, blob_name, permissions, expires_in, start)
        return build_resource_uri(endpoint, container_name, blob_name, token)

    def account_sas(
        self,
        identity: AccountIdentity,
        services: Iterable[AccountSasService],
        resource_types: Iterable[AccountSasResourceType],
        permissions: AccountPermissions,
        expires_in: timedelta,
        start: Optional[datetime] = None,
    ) -> SignedToken:
        """Account SAS. No start is set unless one is given."""
        now = self.clock.now()
        scope = AccountSasScope(
            services=services,
            resource_types=resource_types,
            permissions=permissions,
            start=start,
            expiry=now + expires_in,
            protocol=self.policy.protocol,
        )
        token = generate_account_sas(scope, identity, self.policy.version)
        logger.info(
            f"Issued account SAS for {identity.name}, ss={scope.service_letters}, "
            f"srt={scope.resource_type_letters}, sp={scope.permission_letters}"
        )
        return token

    def account_sas_uri(
        self,
        identity: AccountIdentity,
        services: Iterable[AccountSasService],
        resource_types: Iterable[AccountSasResourceType],
        permissions: AccountPermissions,
        expires_in: timedelta,
        service: AccountSasService = AccountSasService.BLOB,
        start: Optional[datetime] = None,
    ) -> str:
        """Account SAS URI against one service endpoint."""
        endpoint = self._endpoint(identity, service)
        token = self.account_sas(
            identity, services, resource_types, permissions, expires_in, start
        )
        return build_service_uri(endpoint, token)

    def connection_string(
        self,
        identity: AccountIdentity,
        services: Iterable[AccountSasService],
        resource_types: Iterable[AccountSasResourceType],
        permissions: AccountPermissions,
        expires_in: timedelta,
    ) -> str:
        """Connection string for several services sharing one account SAS."""
        services = frozenset(services)
        endpoints = {service: self._endpoint(identity, service) for service in services}
        token = self.account_sas(identity, services, resource_types, permissions, expires_in)
        return build_connection_string(endpoints, token)

    async def delegated_blob_sas(
        self,
        identity: AccountIdentity,
        container_name: str,
        blob_name: Optional[str],
        permissions: BlobPermissions,
        expires_in: Optional[timedelta] = None,
        timeout: Optional[float] = None,
    ) -> SignedToken:
        """
        Blob SAS signed with a broker-supplied delegation key.

        A backdated start is clamped to the key's own start. Without
        ``expires_in`` the token expires together with the key, and a cached
        key with less than ``policy.delegated_min_remaining`` left is refreshed
        first. A cached key that ends before the requested expiry is refreshed
        when a new key would cover it.

        Raises:
            InvalidScopeError: If the window exceeds the delegated maximum
            SigningError: If the token window is not inside the key's window
            AuthorityUnavailableError, AuthorityDeniedError: From the broker
        """
        if self.broker is None:
            raise SigningError("No delegation key broker configured", field="broker")

        needed = expires_in if expires_in is not None else self.policy.delegated_min_remaining
        key = await self.broker.get_delegation_key(
            identity, timeout=timeout, valid_until=self.clock.now() + needed
        )

        now = self.clock.now()
        start = max(self._resource_start(now), key.signed_start)
        scope = BlobSasScope(
            container_name=container_name,
            blob_name=blob_name,
            permissions=permissions,
            start=start,
            expiry=now + expires_in if expires_in is not None else key.signed_expiry,
            protocol=self.policy.protocol,
        )
        scope.check_window(self.policy.delegated_max_window)

        token = generate_blob_sas(
            scope, identity.name, self.policy.version, delegation_key=key
        )
        logger.info(
            f"Issued delegated {scope.signed_resource} SAS for {identity.name}/{container_name}, "
            f"se={format_timestamp(scope.expiry)}"
        )
        return token

    async def delegated_blob_sas_uri(
        self,
        identity: AccountIdentity,
        container_name: str,
        blob_name: Optional[str],
        permissions: BlobPermissions,
        expires_in: Optional[timedelta] = None,
        timeout: Optional[float] = None,
    ) -> str:
        endpoint = self._endpoint(identity, AccountSasService.BLOB)
        token = await self.delegated_blob_sas(
            identity, container_name, blob_name, permissions, expires_in, timeout
        )
        return build_resource_uri(endpoint, container_name, blob_name, token)
