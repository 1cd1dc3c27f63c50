"""
SAS scope models.

A scope is what a token grants: which resource(s), which permissions, over
which time window and protocol. Scopes validate on construction, so an
invalid scope never reaches the canonicalizer or the signer.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import FrozenSet, Optional

from sasforge.core.clock import to_utc
from sasforge.exceptions import InvalidScopeError
from sasforge.sas.permissions import (
    AccountSasPermission,
    AccountSasResourceType,
    AccountSasService,
    BlobSasPermission,
    SasProtocol,
    coerce_members,
    to_letters,
)


def _normalise_time(value: Optional[datetime], name: str) -> Optional[datetime]:
    if value is None:
        return None
    try:
        return to_utc(value)
    except ValueError as exc:
        raise InvalidScopeError(str(exc), field=name, expected="timezone-aware datetime") from exc


def _check_window(start: Optional[datetime], expiry: Optional[datetime]) -> None:
    if expiry is None:
        raise InvalidScopeError("Expiry is required", field="expiry")
    if start is not None and expiry <= start:
        raise InvalidScopeError(
            "Expiry must be later than start",
            field="expiry",
            expected=f"> {start.isoformat()}",
            actual=expiry.isoformat(),
        )


def _coerce_protocol(value) -> SasProtocol:
    try:
        return SasProtocol(value)
    except ValueError:
        raise InvalidScopeError(
            f"Unsupported protocol: {value!r}",
            field="protocol",
            expected=" or ".join(p.value for p in SasProtocol),
            actual=value,
        ) from None


class _ScopeWindowMixin:
    """Window helpers shared by both scope kinds."""

    start: Optional[datetime]
    expiry: datetime

    @property
    def window(self) -> Optional[timedelta]:
        if self.start is None:
            return None
        return self.expiry - self.start

    def check_window(self, max_window: timedelta) -> None:
        """
        Enforce a policy maximum on ``expiry - start``.

        Raises:
            InvalidScopeError: If the window exceeds ``max_window``, or if the
                scope has no start to measure from
        """
        if self.start is None:
            raise InvalidScopeError(
                "A start time is required when a maximum window applies",
                field="start",
                expected=f"window <= {max_window}",
            )
        if self.window > max_window:
            raise InvalidScopeError(
                "SAS validity window exceeds the policy maximum",
                field="expiry",
                expected=f"<= {max_window}",
                actual=str(self.window),
            )


@dataclass(frozen=True)
class BlobSasScope(_ScopeWindowMixin):
    """Resource-scope SAS: a single blob, or a whole container when ``blob_name`` is unset."""

    container_name: str
    permissions: FrozenSet[BlobSasPermission]
    expiry: datetime
    blob_name: Optional[str] = None
    start: Optional[datetime] = None
    protocol: SasProtocol = SasProtocol.HTTPS
    ip_range: Optional[str] = None

    def __post_init__(self):
        if not self.container_name:
            raise InvalidScopeError("Container name is required", field="container_name")
        if self.blob_name == "":
            raise InvalidScopeError(
                "Blob name cannot be empty; omit it for a container scope",
                field="blob_name",
            )

        permissions = coerce_members(self.permissions, BlobSasPermission, "permissions")
        if not permissions:
            raise InvalidScopeError("At least one permission is required", field="permissions")
        if self.blob_name is not None and BlobSasPermission.LIST in permissions:
            raise InvalidScopeError(
                "List permission is only legal on a container scope",
                field="permissions",
                expected="no 'l' on a blob scope",
                actual=to_letters(permissions, BlobSasPermission),
            )

        start = _normalise_time(self.start, "start")
        expiry = _normalise_time(self.expiry, "expiry")
        _check_window(start, expiry)

        object.__setattr__(self, "permissions", permissions)
        object.__setattr__(self, "start", start)
        object.__setattr__(self, "expiry", expiry)
        object.__setattr__(self, "protocol", _coerce_protocol(self.protocol))

    @property
    def signed_resource(self) -> str:
        """``b`` for a blob, ``c`` for a container."""
        return "c" if self.blob_name is None else "b"

    @property
    def permission_letters(self) -> str:
        return to_letters(self.permissions, BlobSasPermission)


@dataclass(frozen=True)
class AccountSasScope(_ScopeWindowMixin):
    """Account-scope SAS over one or more services and resource-type classes."""

    services: FrozenSet[AccountSasService]
    resource_types: FrozenSet[AccountSasResourceType]
    permissions: FrozenSet[AccountSasPermission]
    expiry: datetime
    start: Optional[datetime] = None
    protocol: SasProtocol = SasProtocol.HTTPS
    ip_range: Optional[str] = None

    def __post_init__(self):
        services = coerce_members(self.services, AccountSasService, "services")
        resource_types = coerce_members(
            self.resource_types, AccountSasResourceType, "resource_types"
        )
        permissions = coerce_members(self.permissions, AccountSasPermission, "permissions")

        for name, members in (
            ("services", services),
            ("resource_types", resource_types),
            ("permissions", permissions),
        ):
            if not members:
                raise InvalidScopeError(f"At least one entry is required in {name}", field=name)

        start = _normalise_time(self.start, "start")
        expiry = _normalise_time(self.expiry, "expiry")
        _check_window(start, expiry)

        object.__setattr__(self, "services", services)
        object.__setattr__(self, "resource_types", resource_types)
        object.__setattr__(self, "permissions", permissions)
        object.__setattr__(self, "start", start)
        object.__setattr__(self, "expiry", expiry)
        object.__setattr__(self, "protocol", _coerce_protocol(self.protocol))

    @property
    def permission_letters(self) -> str:
        return to_letters(self.permissions, AccountSasPermission)

    @property
    def service_letters(self) -> str:
        return to_letters(self.services, AccountSasService)

    @property
    def resource_type_letters(self) -> str:
        return to_letters(self.resource_types, AccountSasResourceType)
