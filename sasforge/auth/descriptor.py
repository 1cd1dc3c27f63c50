"""
Credential descriptor parsing.

A descriptor is the familiar storage connection string:
``DefaultEndpointsProtocol=https;AccountName=acct;AccountKey=<base64>;EndpointSuffix=core.windows.net``.
Values may themselves contain ``=`` (base64 padding), so each segment is split
on the first ``=`` only.

Author: sasforge Team
Date: 2026-10-19
"""

import base64
import binascii
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional
from urllib.parse import urlsplit

from sasforge.exceptions import InvalidScopeError, MalformedDescriptorError

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT_SUFFIX = "core.windows.net"
DEFAULT_ENDPOINTS_PROTOCOL = "https"
ENDPOINT_SCHEMES = ("http", "https")

SHARED_KEY_FIELDS = ("AccountName", "AccountKey")

# Descriptor key -> service host label
ENDPOINT_KEYS = {
    "BlobEndpoint": "blob",
    "QueueEndpoint": "queue",
    "FileEndpoint": "file",
    "TableEndpoint": "table",
}


def parse_descriptor(
    descriptor: str,
    required: Iterable[str] = SHARED_KEY_FIELDS,
) -> Dict[str, str]:
    """
    Parse a ``Key=Value;Key=Value`` descriptor into a mapping.

    Args:
        descriptor: Descriptor string
        required: Keys that must be present in the result

    Returns:
        Mapping of key -> value, in descriptor order

    Raises:
        MalformedDescriptorError: If a segment lacks ``=``, has an empty key,
            repeats a key, or a required key is missing
    """
    if descriptor is None:
        raise MalformedDescriptorError("Descriptor is missing", field="descriptor")

    settings: Dict[str, str] = {}

    for index, segment in enumerate(s for s in descriptor.split(";") if s):
        if "=" not in segment:
            raise MalformedDescriptorError(
                f"Descriptor segment {index} has no '=' separator",
                field=f"segment[{index}]",
                expected="Key=Value",
                actual=_mask(segment),
            )

        name, value = segment.split("=", 1)

        if not name:
            raise MalformedDescriptorError(
                f"Descriptor segment {index} has an empty key",
                field=f"segment[{index}]",
                expected="Key=Value",
            )
        if name in settings:
            raise MalformedDescriptorError(
                f"Duplicate descriptor key: {name}",
                field=name,
            )

        settings[name] = value

    missing = [key for key in required if key not in settings]
    if missing:
        raise MalformedDescriptorError(
            f"Descriptor is missing required keys: {', '.join(missing)}",
            field=missing[0],
            expected=", ".join(required),
            actual=", ".join(settings) or "<empty>",
        )

    return settings


def _mask(segment: str) -> str:
    # A segment without '=' may still be a pasted secret; never echo it whole.
    return segment[:4] + "..." if len(segment) > 4 else segment


@dataclass(frozen=True)
class AccountIdentity:
    """Storage account identity and shared key material.

    ``shared_key`` is empty for identities that only sign with delegation keys.
    """

    name: str
    shared_key: bytes = field(default=b"", repr=False)
    blob_endpoint: str = ""
    queue_endpoint: str = ""
    file_endpoint: str = ""
    table_endpoint: str = ""

    def __post_init__(self):
        if not self.name:
            raise MalformedDescriptorError("Account name cannot be empty", field="AccountName")
        if not self.blob_endpoint:
            object.__setattr__(self, "blob_endpoint", default_endpoint(self.name, "blob"))
        for service in ("queue", "file", "table"):
            attr = f"{service}_endpoint"
            if not getattr(self, attr):
                object.__setattr__(self, attr, default_endpoint(self.name, service))

    @property
    def has_shared_key(self) -> bool:
        return bool(self.shared_key)

    def endpoint_for(self, service: str) -> str:
        """Return the endpoint for ``blob``, ``queue``, ``file`` or ``table``."""
        try:
            return getattr(self, f"{service}_endpoint")
        except AttributeError:
            raise InvalidScopeError(
                f"Unknown storage service: {service}",
                field="service",
                expected=", ".join(ENDPOINT_KEYS.values()),
                actual=service,
            ) from None

    @classmethod
    def for_account(
        cls,
        name: str,
        endpoint_suffix: str = DEFAULT_ENDPOINT_SUFFIX,
        protocol: str = DEFAULT_ENDPOINTS_PROTOCOL,
    ) -> "AccountIdentity":
        """Identity without a shared key, for delegated signing flows."""
        return cls(
            name=name,
            **{
                f"{service}_endpoint": default_endpoint(name, service, endpoint_suffix, protocol)
                for service in ENDPOINT_KEYS.values()
            },
        )

    @classmethod
    def from_descriptor(
        cls,
        descriptor: str,
        required: Iterable[str] = SHARED_KEY_FIELDS,
    ) -> "AccountIdentity":
        """
        Build an identity from a credential descriptor.

        Args:
            descriptor: Connection-string style descriptor
            required: Keys the caller needs (shared-key flows need both
                ``AccountName`` and ``AccountKey``)

        Returns:
            Parsed AccountIdentity

        Raises:
            MalformedDescriptorError: On any parse failure or an invalid key
        """
        settings = parse_descriptor(descriptor, required=required)

        name = settings.get("AccountName")
        if not name:
            raise MalformedDescriptorError(
                "Descriptor has no AccountName", field="AccountName"
            )

        shared_key = b""
        if "AccountKey" in settings:
            shared_key = decode_account_key(settings["AccountKey"])

        suffix = settings.get("EndpointSuffix", DEFAULT_ENDPOINT_SUFFIX)
        protocol = settings.get("DefaultEndpointsProtocol", DEFAULT_ENDPOINTS_PROTOCOL).lower()
        if protocol not in ENDPOINT_SCHEMES:
            raise MalformedDescriptorError(
                f"Unsupported DefaultEndpointsProtocol: {protocol}",
                field="DefaultEndpointsProtocol",
                expected=" or ".join(ENDPOINT_SCHEMES),
                actual=protocol,
            )

        endpoints = {
            f"{service}_endpoint": check_endpoint(key, settings[key])
            if settings.get(key)
            else default_endpoint(name, service, suffix, protocol)
            for key, service in ENDPOINT_KEYS.items()
        }

        identity = cls(name=name, shared_key=shared_key, **endpoints)
        logger.debug(f"Parsed account identity for {name} (blob endpoint {identity.blob_endpoint})")
        return identity


def decode_account_key(account_key: str) -> bytes:
    """Decode a base64 account key.

    Raises:
        MalformedDescriptorError: If the key is empty or not valid base64
    """
    if not account_key:
        raise MalformedDescriptorError("AccountKey cannot be empty", field="AccountKey")
    try:
        return base64.b64decode(account_key, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise MalformedDescriptorError(
            "AccountKey is not valid base64",
            field="AccountKey",
            expected="base64",
        ) from exc


def default_endpoint(
    account_name: str,
    service: str,
    suffix: Optional[str] = None,
    protocol: Optional[str] = None,
) -> str:
    """Default ``{protocol}://{account}.{service}.{suffix}`` endpoint."""
    return (
        f"{protocol or DEFAULT_ENDPOINTS_PROTOCOL}://"
        f"{account_name}.{service}.{suffix or DEFAULT_ENDPOINT_SUFFIX}"
    )


def check_endpoint(key: str, endpoint: str) -> str:
    """Validate an explicit ``BlobEndpoint``-style value from a descriptor.

    Raises:
        MalformedDescriptorError: If the value is not an absolute http(s) URI
            without query or fragment
    """
    parts = urlsplit(endpoint)
    if parts.scheme.lower() not in ENDPOINT_SCHEMES or not parts.netloc:
        raise MalformedDescriptorError(
            f"{key} must be an absolute http or https URI",
            field=key,
            expected="scheme://host[/path]",
            actual=endpoint,
        )
    if parts.query or parts.fragment:
        raise MalformedDescriptorError(
            f"{key} must not carry a query or fragment",
            field=key,
            expected="scheme://host[/path]",
            actual=endpoint,
        )
    return endpoint
